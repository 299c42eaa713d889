"""
VScript data emitter — writes the PBR_DATA table the in-game debug tools read.

The file is a Squirrel script: a SanitizeName helper followed by

    ::PBR_DATA <- {
        surfaces = [ { id, min_score, center, mins, maxs, lights, rejected }, ... ],
        lights = { _<id> = { pos, dir?, color, intensity, range, dist50?,
                              blockers?, associations?, meta }, ... }
    }
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

from .geometry import AABB, Vec3
from .lights import LightDef, RectLight

SANITIZER_FUNC = """::SanitizeName <- function(name) {
    local parts = split(name, "-. ")
    local result = "_"
    foreach(part in parts) result += part
    return result
}"""


@dataclass
class LightAssociation:
    surface: str
    rank: int
    score: float


# Squirrel has no inf literal; forced scores are written as FLT_MAX
FLT_MAX = 3.4028234663852886e+38


def _num(v: float) -> str:
    v = float(v)
    if math.isinf(v):
        return repr(math.copysign(FLT_MAX, v))
    if v.is_integer() and abs(v) < 1e15:
        return str(int(v))
    return repr(v)


def _str(s: str) -> str:
    return json.dumps(s)


def fmt_vec(v: Vec3) -> str:
    return f"Vector({_num(v[0])}, {_num(v[1])}, {_num(v[2])})"


def calculate_extent(box: AABB) -> Tuple[Vec3, Vec3, Vec3]:
    """(center, mins, maxs) with mins/maxs as half-extents around center."""
    half = tuple((box.maxs[i] - box.mins[i]) * 0.5 for i in range(3))
    return box.center, (-half[0], -half[1], -half[2]), half


def generate_meta(light: LightDef) -> str:
    shape = light.light_type
    if isinstance(shape, RectLight):
        type_str = f"Rect | Size: {_num(shape.width)}x{_num(shape.height)}"
    else:
        type_str = shape.name
    return f"Type: {type_str} | Atten_K: {_num(light.attenuation_k)}"


def build_nut_text(clusters: Sequence, all_lights: Sequence[LightDef]) -> str:
    associations: Dict[str, List[LightAssociation]] = {}
    for cluster in clusters:
        for rank, (light, score) in enumerate(cluster.lights):
            associations.setdefault(light.debug_id, []).append(
                LightAssociation(surface=cluster.name, rank=rank, score=score))

    out: List[str] = [SANITIZER_FUNC, "::PBR_DATA <- {"]

    out.append("\tsurfaces = [")
    for i, cluster in enumerate(clusters):
        center, mins, maxs = calculate_extent(cluster.bounds)
        accepted = ', '.join(_str('_' + l.debug_id) for l, _ in cluster.lights)
        rejected = ', '.join(_str('_' + l.debug_id) for l, _ in cluster.rejected_lights)
        out.append("\t\t{")
        out.append(f"\t\t\tid = {_str(cluster.name)},")
        out.append(f"\t\t\tmin_score = {_num(cluster.min_cluster_score)},")
        out.append(f"\t\t\tcenter = {fmt_vec(center)},")
        out.append(f"\t\t\tmins = {fmt_vec(mins)},")
        out.append(f"\t\t\tmaxs = {fmt_vec(maxs)},")
        out.append(f"\t\t\tlights = [{accepted}],")
        out.append(f"\t\t\trejected = [{rejected}]")
        out.append("\t\t}," if i < len(clusters) - 1 else "\t\t}")
    out.append("\t],")

    out.append("\tlights = {")
    for i, light in enumerate(all_lights):
        out.append(f"\t\t_{light.debug_id.replace('.', '_')} = {{")
        out.append(f"\t\t\tpos = {fmt_vec(light.pos)},")
        if light.direction is not None:
            out.append(f"\t\t\tdir = {fmt_vec(light.direction)},")
        # Halves round away from zero
        color = tuple(float(math.floor(c * 255.0 + 0.5)) for c in light.color)
        out.append(f"\t\t\tcolor = {fmt_vec(color)},")
        out.append(f"\t\t\tintensity = {_num(light.intensity)},")
        out.append(f"\t\t\trange = {_num(light.range)},")
        if light.fifty_percent_distance is not None:
            out.append(f"\t\t\tdist50 = {_num(light.fifty_percent_distance)},")

        blockers = [b for b in light.blockers if b is not None]
        if blockers:
            out.append("\t\t\tblockers = [")
            for blocker in blockers:
                half = (blocker.width * 0.5, blocker.height * 0.5, blocker.depth * 0.5)
                b_pos = blocker.pos if blocker.pos is not None else light.pos
                out.append("\t\t\t\t{")
                out.append(f"\t\t\t\t\tpos = {fmt_vec(b_pos)},")
                out.append(f"\t\t\t\t\tmins = {fmt_vec((-half[0], -half[1], -half[2]))},")
                out.append(f"\t\t\t\t\tmaxs = {fmt_vec(half)},")
                out.append("\t\t\t\t},")
            out.append("\t\t\t],")

        assocs = associations.get(light.debug_id)
        if assocs:
            out.append("\t\t\tassociations = [")
            for a in assocs:
                out.append(f"\t\t\t\t{{ surface = {_str(a.surface)}, rank = {a.rank}, "
                           f"score = {_num(a.score)} }},")
            out.append("\t\t\t],")

        out.append(f"\t\t\tmeta = {_str(generate_meta(light))}")
        out.append("\t\t}," if i < len(all_lights) - 1 else "\t\t}")
    out.append("\t}")
    out.append("}")
    return '\n'.join(out) + '\n'


def generate_nut(path: Union[str, Path], clusters: Sequence,
                 all_lights: Sequence[LightDef]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_nut_text(clusters, all_lights), encoding='utf-8')
