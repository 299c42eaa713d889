"""
Ray/brush tracer — slab tests against convex brushes.

Two queries are provided:
  is_occluded(start, end, brushes)      shadow test for light visibility
  trace_ray_closest(start, dir, d, ...) nearest surface hit with its UV axes

A ray that starts inside a brush counts as occluded by it: a light buried
in a wall does not illuminate anything.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .geometry import AABB, ConvexBrush, Vec3, vec_dot, vec_sub

EPSILON = 1e-3
PARALLEL_EPSILON = 1e-6

# Closest-hit rays may start this far behind a face and still count as a hit
START_TOLERANCE = 0.1


@dataclass
class RayHit:
    """Nearest hit of a ray: distance along the ray plus the face's UV axes."""
    t: float
    u_axis: str
    v_axis: str


def _is_untraceable_tool(material: str) -> bool:
    mat = material.lower()
    return 'tools' in mat and 'nodraw' not in mat and 'pbr_block' not in mat


def ray_aabb_intersect(origin: Vec3, direction: Vec3, max_dist: float,
                       box: AABB) -> bool:
    """Slab-method ray/box test over [0, max_dist]."""
    t_min = 0.0
    t_max = max_dist
    for i in range(3):
        if abs(direction[i]) < PARALLEL_EPSILON:
            if origin[i] < box.mins[i] - EPSILON or origin[i] > box.maxs[i] + EPSILON:
                return False
        else:
            ood = 1.0 / direction[i]
            t1 = (box.mins[i] - origin[i]) * ood
            t2 = (box.maxs[i] - origin[i]) * ood
            if t1 > t2:
                t1, t2 = t2, t1
            t_min = max(t_min, t1)
            t_max = min(t_max, t2)
            if t_min > t_max:
                return False
    return True


def _clip_brush(origin: Vec3, direction: Vec3, max_dist: float,
                brush: ConvexBrush, t_near: float,
                skip_tools: bool) -> Optional[Tuple[float, float, int]]:
    """Clip the ray against every plane of the brush.

    Returns (t_near, t_far, entry_plane_index) for a non-empty interval,
    or None when the ray misses. The entry index is 0 when the ray starts
    inside the brush and never crosses an entering plane.
    """
    t_far = max_dist
    enter_idx = -1
    used_planes = 0

    for i, plane in enumerate(brush.planes):
        if skip_tools and _is_untraceable_tool(plane.material):
            continue
        used_planes += 1
        numer = -(vec_dot(plane.normal, origin) + plane.dist)
        denom = vec_dot(plane.normal, direction)

        if abs(denom) < PARALLEL_EPSILON:
            # Parallel: outside this half-space means a miss
            if numer < 0.0:
                return None
            continue

        t = numer / denom
        if denom < 0.0:
            if t > t_near:
                t_near = t
                enter_idx = i
        elif t < t_far:
            t_far = t
        if t_near > t_far or t_far < 0.0:
            return None

    if used_planes == 0:
        return None
    return t_near, t_far, max(enter_idx, 0)


def is_occluded(start: Vec3, end: Vec3, brushes: Sequence[ConvexBrush],
                verbose: bool = False) -> bool:
    """True if some brush blocks the open segment start -> end."""
    diff = vec_sub(end, start)
    dist = math.sqrt(vec_dot(diff, diff))
    if dist < EPSILON:
        return False
    direction = (diff[0] / dist, diff[1] / dist, diff[2] / dist)

    for brush in brushes:
        if not ray_aabb_intersect(start, direction, dist, brush.bounds):
            continue
        hit = _clip_brush(start, direction, dist, brush, 0.0, skip_tools=False)
        if hit is None:
            continue
        t_near, t_far, plane_idx = hit
        if not (t_near < t_far - EPSILON and t_near < dist - EPSILON):
            continue

        material = brush.planes[plane_idx].material
        if 'glass' in material.lower():
            if verbose:
                print(f"      ray passes glass '{material}' on brush {brush.id}")
            continue

        if verbose:
            print(f"      ray {start} -> {end} occluded by brush {brush.id} "
                  f"({material})")
        return True
    return False


def trace_ray_closest(start: Vec3, direction: Vec3, max_dist: float,
                      brushes: Sequence[ConvexBrush],
                      verbose: bool = False) -> Optional[RayHit]:
    """Nearest brush face hit along a normalized ray, or None.

    Tool textures (except nodraw and pbr_block) cannot be hit. A ray
    starting slightly behind a face still reports it at t=0.
    """
    closest_t = max_dist
    result: Optional[RayHit] = None

    for brush in brushes:
        if not ray_aabb_intersect(start, direction, max_dist, brush.bounds):
            continue
        hit = _clip_brush(start, direction, closest_t, brush, -math.inf,
                          skip_tools=True)
        if hit is None:
            continue
        t_near, t_far, plane_idx = hit
        if not (t_near < t_far - EPSILON and t_far > EPSILON and t_near < closest_t):
            continue
        if t_near <= -START_TOLERANCE:
            continue

        closest_t = max(t_near, 0.0)
        plane = brush.planes[plane_idx]
        result = RayHit(t=closest_t, u_axis=plane.u_axis, v_axis=plane.v_axis)
        if verbose:
            print(f"      closest hit t={closest_t:.3f} on brush {brush.id}")

    return result
