"""
PBR Pipeline — associates lights with func_ggx_surface entities.

For every PBR surface in the map:
  1. Score every extracted light against the surface bounds
     (attenuation, range window, cone/hemisphere gate, ray visibility).
  2. Apply the surface's force/exclude lists, normalize and rank the
     scores, and keep at most LUT_WIDTH lights.
  3. Wire named lights that are toggled by I/O into material_modify_control
     helpers so the shader's $c4 lanes follow the light state.
  4. Emit the LUT texture and the patch material, nudge the surface brush
     off its wall, and point its toolspbr faces at the new material.

Usage:
    from pbr_lut_gen.vmf_parser import VMFMap
    from pbr_lut_gen.lights import extract_lights
    from pbr_lut_gen.pipeline import process_map_pipeline

    vmf = VMFMap.load("mymap.vmf")
    lights = extract_lights(vmf)
    clusters = process_map_pipeline(vmf, lights, game_dir, "mymap")
"""
from __future__ import annotations

import math
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

from .geometry import AABB, ConvexBrush, entity_aabb, face_normal, vec_scale
from .lights import LightDef
from .lut import LUT_WIDTH, generate_vtf, save_lut_preview
from .scoring import calculate_score, in_reach
from .vmf_parser import (
    KVNode, VMFMap, add_connection, classname, entity_connections, entity_id,
    entity_solids, make_entity, offset_plane_points, offset_side_vertices,
    parse_plane_points, solid_sides, targetname,
)
from .vmt_writer import C4_VARS, generate_vmt

# Faces with this material are the ones that get the generated PBR material
TARGET_MATERIAL = 'tools/toolspbr'
GEOMETRY_OFFSET_UNITS = 0.975

SURFACE_CLASS = 'func_ggx_surface'
DETAIL_CLASS = 'func_detail'
CONTROL_CLASS = 'material_modify_control'

MAX_CUSTOM_SLOTS = 4      # force_light_N / exclude_light_N
MAX_DYNAMIC_SLOTS = 4     # $c4 lanes
DEFAULT_MIN_SCORE = 0.10

INPUT_TURN_ON = 'TurnOn'
INPUT_TURN_OFF = 'TurnOff'
_TOGGLE_INPUTS = {'turnon': INPUT_TURN_ON, 'turnoff': INPUT_TURN_OFF}

_CONNECTION_SPLIT_RE = re.compile('[,\x1b]')

ScoredLight = Tuple[LightDef, float]


# ─── Data types ───────────────────────────────────────────────────────────────

@dataclass
class LightCluster:
    """Lights selected for one surface; baked into one LUT."""
    name: str
    bounds: AABB
    lights: List[ScoredLight] = field(default_factory=list)
    rejected_lights: List[ScoredLight] = field(default_factory=list)
    min_cluster_score: float = DEFAULT_MIN_SCORE


@dataclass
class Connection:
    """One entity I/O connection value, split into its fields."""
    output: str
    target: str
    input: str
    parameter: str = ''
    delay: float = 0.0
    limit: int = -1


@dataclass
class LightConnection:
    """An output elsewhere in the map that turns a light on or off."""
    source_entity_idx: int
    output_name: str
    input_type: str
    delay: float


def parse_connection(output: str, value: str) -> Optional[Connection]:
    """Split 'target,input,param,delay,limit' (comma or ESC separated)."""
    parts = [p.strip() for p in _CONNECTION_SPLIT_RE.split(value)]
    if len(parts) < 2:
        return None
    delay = 0.0
    limit = -1
    if len(parts) > 3 and parts[3]:
        try:
            delay = float(parts[3])
        except ValueError:
            pass
    if len(parts) > 4 and parts[4]:
        try:
            limit = int(float(parts[4]))
        except ValueError:
            pass
    return Connection(output=output, target=parts[0], input=parts[1],
                      parameter=parts[2] if len(parts) > 2 else '',
                      delay=delay, limit=limit)


def _fmt_delay(delay: float) -> str:
    """Shortest exact form of a delay: 0.5, 2, 0.1234567."""
    text = repr(float(delay))
    return text[:-2] if text.endswith('.0') else text


# ─── Collision world ──────────────────────────────────────────────────────────

def build_collision_world(vmf: VMFMap, verbose: bool = False) -> List[ConvexBrush]:
    """World solids plus func_detail brushes; glass detail entities are skipped."""
    if verbose:
        print("  Building collision world...")
    brushes: List[ConvexBrush] = []

    world_solids = vmf.world_solids()
    if verbose:
        print(f"    {len(world_solids)} world solids")
    for solid in world_solids:
        brush = ConvexBrush.from_vmf_solid(solid, verbose=verbose)
        if brush is not None:
            brushes.append(brush)

    for ent in vmf.entities:
        if classname(ent) != DETAIL_CLASS:
            continue
        solids = entity_solids(ent)
        has_glass = any(
            'glass' in (side.get_property('material') or '').lower()
            for solid in solids for side in solid_sides(solid)
        )
        if has_glass:
            if verbose:
                print(f"    Ignoring {DETAIL_CLASS} {entity_id(ent)}: glass material")
            continue
        for solid in solids:
            brush = ConvexBrush.from_vmf_solid(solid, verbose=verbose)
            if brush is not None:
                brushes.append(brush)

    print(f"Built collision world with {len(brushes)} brushes.")
    return brushes


# ─── Connection registry ──────────────────────────────────────────────────────

def build_connection_registry(vmf: VMFMap,
                              verbose: bool = False) -> Dict[str, List[LightConnection]]:
    """Index every TurnOn/TurnOff connection by lowercased target name."""
    registry: Dict[str, List[LightConnection]] = {}
    for idx, ent in enumerate(vmf.entities):
        for output, value in entity_connections(ent):
            conn = parse_connection(output, value)
            if conn is None:
                continue
            input_type = _TOGGLE_INPUTS.get(conn.input.lower())
            if input_type is None:
                continue
            key = conn.target.lower()
            if verbose:
                print(f"    Found: Ent[{idx}] {output} -> {key}.{input_type} "
                      f"(Delay: {_fmt_delay(conn.delay)})")
            registry.setdefault(key, []).append(LightConnection(
                source_entity_idx=idx,
                output_name=output,
                input_type=input_type,
                delay=conn.delay,
            ))
    print(f"Registry built. Tracked targets: {len(registry)}")
    return registry


# ─── Selection ────────────────────────────────────────────────────────────────

def _read_slots(ent: KVNode, prefix: str) -> Set[str]:
    names = set()
    for i in range(1, MAX_CUSTOM_SLOTS + 1):
        name = ent.get_property(f"{prefix}_{i}")
        if name:
            names.add(name)
    return names


def score_lights(all_lights: List[LightDef], surface: AABB,
                 world_brushes: List[ConvexBrush],
                 force: Set[str], exclude: Set[str],
                 verbose: bool = False) -> List[ScoredLight]:
    """Score every candidate light; forced lights get +inf.

    Excluded lights are dropped. Lights out of reach with a zero score are
    not candidates at all.
    """
    scored: List[ScoredLight] = []
    for light in all_lights:
        if light.is_named_light and light.debug_id in exclude:
            if verbose:
                print(f"    {light.debug_id}: manually excluded")
            continue
        if light.is_named_light and light.debug_id in force:
            if verbose:
                print(f"    {light.debug_id}: manually included")
            scored.append((light, math.inf))
            continue
        score = calculate_score(light, surface, world_brushes, verbose=verbose)
        if score > 0.0 or in_reach(light, surface):
            scored.append((light, score))
    return scored


def select_lights(scored: List[ScoredLight],
                  min_score: float) -> Tuple[List[ScoredLight], List[ScoredLight]]:
    """Normalize, rank and cap scored lights -> (accepted, rejected)."""
    max_score = max((s for _, s in scored if not math.isinf(s)), default=0.0)
    if max_score > 0.0:
        scored = [(l, s if math.isinf(s) else s / max_score) for l, s in scored]

    # Descending score; named lights first among equal scores
    ranked = sorted(scored, key=lambda ls: (-ls[1], not ls[0].is_named_light))
    accepted = [ls for ls in ranked if math.isinf(ls[1]) or ls[1] >= min_score]
    rejected = [ls for ls in ranked if not (math.isinf(ls[1]) or ls[1] >= min_score)]

    if len(accepted) > LUT_WIDTH:
        rejected.extend(accepted[LUT_WIDTH:])
        accepted = accepted[:LUT_WIDTH]

    # Named lights take the first (dynamic) slots
    accepted.sort(key=lambda ls: not ls[0].is_named_light)
    return accepted, rejected


# ─── Geometry ─────────────────────────────────────────────────────────────────

def nudge_surface_geometry(ent: KVNode, patch_material: str,
                           verbose: bool = False) -> None:
    """Shift each solid along its toolspbr face normal and retexture that face."""
    for solid in entity_solids(ent):
        sides = solid_sides(solid)
        offset = None
        for side in sides:
            if (side.get_property('material') or '').lower() != TARGET_MATERIAL:
                continue
            points = parse_plane_points(side.get_property('plane') or '')
            if points is not None:
                offset = vec_scale(face_normal(points), GEOMETRY_OFFSET_UNITS)
                break

        if offset is not None and verbose:
            print(f"    [Geometry] Shifting solid {entity_id(solid)} by {offset}")

        for side in sides:
            if offset is not None:
                side.set_property('plane', offset_plane_points(
                    side.get_property('plane') or '', offset))
                offset_side_vertices(side, offset)
            if (side.get_property('material') or '').lower() == TARGET_MATERIAL:
                side.set_property('material', patch_material)


def _make_control_entity(ctrl_name: str, surface_name: str, material: str,
                         slot: int, center) -> KVNode:
    ctrl = make_entity(CONTROL_CLASS)
    ctrl.set_property('targetname', ctrl_name)
    ctrl.set_property('parentname', surface_name)
    ctrl.set_property('materialName', material)
    ctrl.set_property('materialVar', C4_VARS[slot])
    ctrl.set_property('origin', f"{center[0]:g} {center[1]:g} {center[2]:g}")
    return ctrl


# ─── Pipeline ─────────────────────────────────────────────────────────────────

def process_map_pipeline(vmf: VMFMap, all_lights: List[LightDef],
                         game_dir: Union[str, Path], map_name: str,
                         draft_run: bool = False, verbose: bool = False,
                         lut_preview: bool = False) -> List[LightCluster]:
    """Process every func_ggx_surface in the map. Mutates vmf in place.

    Raises MaterialTemplateError when assets are written for a surface
    without a template_material.
    """
    world_brushes = build_collision_world(vmf, verbose=verbose)
    registry = build_connection_registry(vmf, verbose=verbose)

    mat_base_rel = f"maps/{map_name}"
    mat_output_dir = Path(game_dir) / 'materials' / 'maps' / map_name

    entities = vmf.entities
    existing_names = {targetname(e) for e in entities if classname(e) == CONTROL_CLASS}
    new_entities: List[KVNode] = []
    new_connections: Dict[int, List[Tuple[str, str]]] = {}
    clusters: List[LightCluster] = []
    surface_counter = 0

    print(f"Processing '{SURFACE_CLASS}' entities...")
    for ent in entities:
        if classname(ent) != SURFACE_CLASS:
            continue
        surface_counter += 1

        # Visible but non-solid helper in the compiled map
        ent.set_property('classname', 'func_illusionary')
        ent.set_property('renderamt', '200')
        ent.set_property('rendermode', '2')

        template_material = ent.get_property('template_material')
        cluster_name = targetname(ent)
        if cluster_name is None:
            cluster_name = f"surface_{surface_counter}"
            ent.set_property('targetname', cluster_name)

        if verbose:
            print(f"  Surface: {cluster_name}")
        surface_aabb = entity_aabb(ent)
        if surface_aabb is None:
            print(f"WARNING: Surface '{cluster_name}' has no brush geometry",
                  file=sys.stderr)
            surface_aabb = AABB()

        min_score = DEFAULT_MIN_SCORE
        raw_min = ent.get_property('min_score')
        if raw_min is not None:
            try:
                min_score = float(raw_min)
            except ValueError:
                pass

        scored = score_lights(all_lights, surface_aabb, world_brushes,
                              force=_read_slots(ent, 'force_light'),
                              exclude=_read_slots(ent, 'exclude_light'),
                              verbose=verbose)
        accepted, rejected = select_lights(scored, min_score)

        if not accepted:
            print(f"WARNING: Surface '{cluster_name}' has no active lights.",
                  file=sys.stderr)
        else:
            print(f"Surface '{cluster_name}' -> assigned {len(accepted)} lights. "
                  f"(Rejected: {len(rejected)})")
            if verbose:
                print(f"    Selected: {[l.debug_id for l, _ in accepted]}")
                if rejected:
                    print(f"    Rejected: "
                          f"{[f'{l.debug_id} ({s:.2f})' for l, s in rejected]}")

        # Dynamic lights -> $c4 lanes
        patch_material = f"{mat_base_rel}/{cluster_name}"
        initial_c4 = [1.0] * MAX_DYNAMIC_SLOTS
        for slot, (light, _score) in enumerate(accepted[:MAX_DYNAMIC_SLOTS]):
            if light.initially_dark:
                initial_c4[slot] = 0.0
            if not light.is_named_light:
                continue
            conns = registry.get(light.debug_id.strip().lower())
            if not conns:
                continue

            ctrl_name = f"{cluster_name}_ctrl_{slot}"
            if ctrl_name not in existing_names:
                new_entities.append(_make_control_entity(
                    ctrl_name, cluster_name, patch_material, slot, surface_aabb.center))
                existing_names.add(ctrl_name)

            for conn in conns:
                val = '1' if conn.input_type == INPUT_TURN_ON else '0'
                value = f"{ctrl_name},SetMaterialVar,{val},{_fmt_delay(conn.delay)},-1"
                new_connections.setdefault(conn.source_entity_idx, []).append(
                    (conn.output_name, value))

        cluster = LightCluster(
            name=cluster_name,
            bounds=surface_aabb,
            lights=accepted,
            rejected_lights=rejected,
            min_cluster_score=min_score,
        )
        clusters.append(cluster)

        if draft_run:
            continue

        lut_name = f"{cluster_name}_lut"
        vtf_path = mat_output_dir / f"{lut_name}.vtf"
        vmt_path = mat_output_dir / f"{cluster_name}.vmt"
        try:
            pixels = generate_vtf(cluster, vtf_path)
            if lut_preview:
                save_lut_preview(pixels, vtf_path.with_suffix('.png'))
        except OSError as e:
            print(f"ERROR: Failed to write LUT for {cluster_name}: {e}",
                  file=sys.stderr)
        try:
            generate_vmt(vmt_path, f"{mat_base_rel}/{lut_name}", template_material,
                         initial_c4, surface_name=cluster_name)
        except OSError as e:
            print(f"ERROR: Failed to write material for {cluster_name}: {e}",
                  file=sys.stderr)

        nudge_surface_geometry(ent, patch_material, verbose=verbose)

    for ctrl in new_entities:
        vmf.add_entity(ctrl)

    for idx, conns in new_connections.items():
        for output, value in conns:
            add_connection(entities[idx], output, value)

    return clusters
