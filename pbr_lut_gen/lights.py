"""
Light Extractor — reads PBR-enabled light entities from a parsed VMF.

Every supported falloff model is folded into the single quadratic form the
shader evaluates:

    brightness(d) = intensity / (1 + K * d^2)

with a range past which the light is ignored. Three sources are handled:

    light / light_spot with _fifty_percent_distance   K = 1 / d50^2
    light / light_spot with legacy c/l/q attenuation  K = q / max(c, 1)
    func_ggx_area (brush area light)                  pure quadratic, scaled 0.25

Usage:
    from pbr_lut_gen.vmf_parser import VMFMap
    from pbr_lut_gen.lights import extract_lights

    vmf = VMFMap.load("map.vmf")
    for light in extract_lights(vmf):
        print(light.debug_id, light.light_type.name, light.range)
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from .geometry import AABB, Vec3, entity_aabb, light_basis, vec_dot
from .vmf_parser import KVNode, VMFMap, classname, entity_id, parse_vector, targetname

# ─── Constants ────────────────────────────────────────────────────────────────

PBR_INTENSITY_MULT = 1.0
MAX_HDR_OVERBRIGHT = 16.0

# Brightness below which a light counts as "zero" when solving for range
LIGHT_CUTOFF_THRESHOLD = 0.2

MIN_RANGE = 64.0
MAX_RANGE = 65000.0

DEFAULT_LIGHT_VALUE = '255 255 255 200'
DEFAULT_INTENSITY = 200.0

# Area lights are pure quadratic; this brings them to point-light brightness
AREA_INTENSITY_SCALE = 0.25

LIGHT_CLASSES = ('light', 'light_spot', 'func_ggx_area')
BLOCKER_KEYS = ('pbr_blocker_name', 'pbr_blocker_name_2')

BLOCKER_FLAG_BOX = 1
BLOCKER_FLAG_FIZZLER = 2


# ─── Light shapes ─────────────────────────────────────────────────────────────
#
# Plain value types, one per shape. Callers branch on the concrete type.

@dataclass(frozen=True)
class PointLight:
    name = 'Point'
    type_id = 0


@dataclass(frozen=True)
class SpotLight:
    direction: Vec3
    inner_angle: float      # degrees, full cone
    outer_angle: float      # degrees, full cone
    exponent: float = 1.0

    name = 'Spot'
    type_id = 1


@dataclass(frozen=True)
class RectLight:
    direction: Vec3
    width: float
    height: float
    bidirectional: bool = False

    name = 'Area'
    type_id = 2


LightType = Union[PointLight, SpotLight, RectLight]


@dataclass(frozen=True)
class BlockerDef:
    """A box volume baked alongside a light so the shader can clip it."""
    width: float
    height: float
    depth: float
    pos: Optional[Vec3] = None
    flag: int = BLOCKER_FLAG_BOX

    @property
    def is_fizzler(self) -> bool:
        return self.flag == BLOCKER_FLAG_FIZZLER


@dataclass(frozen=True)
class LightDef:
    """A light normalized to the shader's (intensity, K, range) model."""
    debug_id: str
    is_named_light: bool
    light_type: LightType
    pos: Vec3
    color: Vec3
    intensity: float
    range: float
    attenuation_k: float
    fifty_percent_distance: Optional[float] = None
    blockers: Tuple[Optional[BlockerDef], Optional[BlockerDef]] = (None, None)
    initially_dark: bool = False

    @property
    def direction(self) -> Optional[Vec3]:
        if isinstance(self.light_type, (SpotLight, RectLight)):
            return self.light_type.direction
        return None


# ─── Key parsing helpers ──────────────────────────────────────────────────────

def _get_float(entity: KVNode, key: str) -> Optional[float]:
    value = entity.get_property(key)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _get_int(entity: KVNode, key: str, default: int = 0) -> int:
    value = entity.get_property(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def sanitize_name(name: str) -> str:
    """Strip characters that cannot appear in script identifiers."""
    return ''.join(c for c in name if c not in '.- ')


def parse_color_intensity(s: str) -> Tuple[Vec3, float]:
    """Parse a _light value like '255 128 0 200' -> ((1.0, 0.5, 0.0), 200)."""
    parts = []
    for token in s.split():
        try:
            parts.append(float(token))
        except ValueError:
            continue
    if len(parts) >= 4:
        return (parts[0] / 255.0, parts[1] / 255.0, parts[2] / 255.0), parts[3]
    if len(parts) == 3:
        return (parts[0] / 255.0, parts[1] / 255.0, parts[2] / 255.0), DEFAULT_INTENSITY
    return (1.0, 1.0, 1.0), DEFAULT_INTENSITY


def angles_to_direction(angles_str: str, pitch: Optional[str] = None) -> Vec3:
    """Convert Hammer angles (+ optional pitch key) to a direction vector.

    The pitch stored in 'angles' is negated for lights (-90 points up in
    Hammer); an explicit 'pitch' key is used as is. Components smaller
    than 1e-4 are snapped to zero.
    """
    parts = parse_vector(angles_str)
    ang_pitch = -parts[0]
    ang_yaw = parts[1]

    if pitch is not None:
        try:
            ang_pitch = float(pitch)
        except ValueError:
            pass

    p_rad = math.radians(ang_pitch)
    y_rad = math.radians(ang_yaw)
    direction = (
        math.cos(p_rad) * math.cos(y_rad),
        math.cos(p_rad) * math.sin(y_rad),
        math.sin(p_rad),
    )
    return tuple(0.0 if abs(v) < 1e-4 else v for v in direction)


def solve_range(shader_intensity: float, shader_k: float, fallback: float) -> float:
    """Distance where intensity / (1 + K d^2) drops to LIGHT_CUTOFF_THRESHOLD."""
    if shader_k > 1e-8:
        val = (shader_intensity / LIGHT_CUTOFF_THRESHOLD - 1.0) / shader_k
        return math.sqrt(val) if val > 0.0 else 1000.0
    return fallback


def legacy_attenuation(intensity: float, c: float, l: float,
                       q: float) -> Tuple[float, float]:
    """Fold legacy constant/linear/quadratic attenuation into (intensity, K).

    Source normalizes legacy lights so brightness at 100 units matches the
    raw value; the energy is rescaled to that ratio. Constants below 1 are
    treated as 1.
    """
    if c < 1e-4 and l < 1e-4 and q < 1e-4:
        c = 1.0
    ratio = c + 100.0 * l + 10000.0 * q
    src_energy = intensity * ratio if ratio > 1e-3 else 0.0
    math_c = max(c, 1.0)
    return src_energy / math_c, q / math_c


def _rect_size(box: AABB, direction: Vec3) -> Tuple[float, float]:
    """Project the brush extent onto the light's right/up axes."""
    right, up, _ = light_basis(direction)
    extent = box.size()
    width = abs(vec_dot(extent, (abs(right[0]), abs(right[1]), abs(right[2]))))
    height = abs(vec_dot(extent, (abs(up[0]), abs(up[1]), abs(up[2]))))
    return width, height


def _blocker_from_entity(entity: Optional[KVNode], light_type: LightType) -> Optional[BlockerDef]:
    if entity is None:
        return None
    box = entity_aabb(entity)
    if box is None:
        return None
    flag = BLOCKER_FLAG_BOX
    if isinstance(light_type, RectLight) and light_type.bidirectional:
        flag = BLOCKER_FLAG_FIZZLER
    size = box.size()
    return BlockerDef(width=size[0], height=size[1], depth=size[2],
                      pos=box.center, flag=flag)


# ─── Extraction ───────────────────────────────────────────────────────────────

def extract_lights(vmf: VMFMap, verbose: bool = False) -> List[LightDef]:
    """Extract every PBR light from the map, in entity order."""
    entities = vmf.entities
    by_name: Dict[str, KVNode] = {}
    for ent in entities:
        name = targetname(ent)
        if name is not None:
            by_name[name] = ent

    lights: List[LightDef] = []
    for ent in entities:
        cname = classname(ent)
        if cname not in LIGHT_CLASSES:
            continue
        if cname != 'func_ggx_area' and ent.get_property('pbr_enabled') != '1':
            if verbose:
                print(f"    Skipping {cname} {entity_id(ent)} "
                      f"({targetname(ent)}): pbr_enabled is not 1")
            continue
        lights.append(_build_light(ent, cname, by_name))

    return lights


def _build_light(ent: KVNode, cname: str, by_name: Dict[str, KVNode]) -> LightDef:
    origin = parse_vector(ent.get_property('origin'))
    color, raw_intensity = parse_color_intensity(
        ent.get_property('_light') or DEFAULT_LIGHT_VALUE)

    intensity = raw_intensity / MAX_HDR_OVERBRIGHT * PBR_INTENSITY_MULT
    scale = ent.get_property('pbr_intensity_scale')
    if scale is not None:
        try:
            intensity *= float(scale)
        except ValueError:
            pass
    color_override = ent.get_property('pbr_color_override')
    if color_override is not None and color_override != '-1 -1 -1':
        color, _ = parse_color_intensity(color_override)

    fifty = _get_float(ent, '_fifty_percent_distance')
    if fifty is not None and fifty <= 0.1:
        fifty = None

    pos = origin
    light_type: LightType

    if cname == 'func_ggx_area':
        direction = angles_to_direction(ent.get_property('angles') or '0 0 0')
        width = height = 0.0
        box = entity_aabb(ent)
        if box is not None:
            pos = box.center
            width, height = _rect_size(box, direction)

        shader_intensity, shader_k = legacy_attenuation(intensity, 0.0, 0.0, 1.0)
        shader_intensity *= AREA_INTENSITY_SCALE
        light_range = solve_range(shader_intensity, shader_k, 10000.0)

        light_type = RectLight(
            direction=direction,
            width=max(width, 1.0),
            height=max(height, 1.0),
            bidirectional=ent.get_property('pbr_bidirectional') == '1',
        )
    else:
        if fifty is not None:
            shader_k = 1.0 / (fifty * fifty)
            shader_intensity = intensity
            zero = _get_float(ent, '_zero_percent_distance')
            light_range = zero if zero is not None else fifty * 5.0
        else:
            shader_intensity, shader_k = legacy_attenuation(
                intensity,
                _get_float(ent, '_constant_attn') or 0.0,
                _get_float(ent, '_linear_attn') or 0.0,
                _get_float(ent, '_quadratic_attn') or 0.0,
            )
            light_range = solve_range(shader_intensity, shader_k, 20000.0)

        if cname == 'light_spot':
            direction = angles_to_direction(ent.get_property('angles') or '0 0 0',
                                            ent.get_property('pitch'))
            inner = _get_float(ent, '_inner_cone')
            outer = _get_float(ent, '_cone')
            exponent = _get_float(ent, '_exponent')
            inner = 30.0 if inner is None else inner
            outer = 45.0 if outer is None else outer
            light_type = SpotLight(
                direction=direction,
                inner_angle=min(inner, outer),
                outer_angle=outer,
                exponent=1.0 if exponent is None else exponent,
            )
        else:
            light_type = PointLight()

    range_override = _get_float(ent, 'pbr_range_override')
    if range_override is not None and range_override > 0.1:
        light_range = range_override
    light_range = min(max(light_range, MIN_RANGE), MAX_RANGE)

    blockers = tuple(
        _blocker_from_entity(by_name.get(ent.get_property(key) or ''), light_type)
        for key in BLOCKER_KEYS
    )

    name = targetname(ent)
    return LightDef(
        debug_id=sanitize_name(name) if name is not None else entity_id(ent),
        is_named_light=name is not None,
        light_type=light_type,
        pos=pos,
        color=color,
        intensity=shader_intensity,
        range=light_range,
        attenuation_k=shader_k,
        fifty_percent_distance=fifty,
        blockers=blockers,
        initially_dark=(_get_int(ent, 'spawnflags') & 1) != 0,
    )


def strip_pbr_entities(vmf: VMFMap) -> int:
    """Remove every func_ggx_* entity before the map goes to VBSP."""
    return vmf.remove_entities(lambda ent: 'func_ggx' in classname(ent).lower())
