"""
Light scoring — how much a light matters to one PBR surface.

The score is the estimated surface brightness (unified falloff times a
range window) multiplied by the fraction of surface sample points that can
see the light. Zero means the light is not needed for this surface.
"""
from __future__ import annotations

import math
from typing import List, Sequence

from .geometry import AABB, ConvexBrush, Vec3, sq_dist_point_aabb, vec_dot, vec_normalize, vec_sub
from .lights import LightDef, RectLight, SpotLight
from .tracer import is_occluded

# Lets a spot "catch" a surface that pokes slightly outside its cone
CONE_ANGLE_TOLERANCE_DEG = 10.0

# Surfaces darker than this are not worth a LUT slot
MIN_BRIGHTNESS = 0.5

SAMPLE_INSET = 1.0


def in_reach(light: LightDef, surface: AABB) -> bool:
    """True if the surface is within twice the light's range."""
    return math.sqrt(sq_dist_point_aabb(light.pos, surface)) <= light.range * 2.0


def sample_points(box: AABB, target: Vec3) -> List[Vec3]:
    """Center, 8 corners, and the point of the inset box closest to target."""
    mn, mx = box.mins, box.maxs
    points = [box.center]
    for z in (mn[2], mx[2]):
        for y in (mn[1], mx[1]):
            for x in (mn[0], mx[0]):
                points.append((x, y, z))

    # Inset so the nearest sample does not sit on a face flush with a wall
    inset_min = tuple(min(mn[i] + SAMPLE_INSET, box.center[i]) for i in range(3))
    inset_max = tuple(max(mx[i] - SAMPLE_INSET, box.center[i]) for i in range(3))
    points.append(tuple(
        min(max(target[i], inset_min[i]), inset_max[i]) for i in range(3)
    ))
    return points


def check_shape_visibility(light: LightDef, box: AABB) -> bool:
    """Does any sample point fall inside the spot cone / rect front side?"""
    shape = light.light_type
    if isinstance(shape, SpotLight):
        # _cone is the full opening angle
        limit_cos = math.cos(math.radians(shape.outer_angle / 2.0 + CONE_ANGLE_TOLERANCE_DEG))
        min_dot = limit_cos
    elif isinstance(shape, RectLight) and not shape.bidirectional:
        min_dot = -0.1
    else:
        return True

    light_dir = vec_normalize(shape.direction)
    for point in sample_points(box, light.pos):
        to_target = vec_sub(point, light.pos)
        dist = math.sqrt(vec_dot(to_target, to_target))
        if dist < 0.1:
            return True
        dir_to_target = (to_target[0] / dist, to_target[1] / dist, to_target[2] / dist)
        if vec_dot(light_dir, dir_to_target) >= min_dot:
            return True
    return False


def calculate_score(light: LightDef, surface: AABB,
                    world_brushes: Sequence[ConvexBrush],
                    verbose: bool = False) -> float:
    """Non-negative importance of a light for a surface."""
    dist_sq = sq_dist_point_aabb(light.pos, surface)
    dist = math.sqrt(dist_sq)
    if dist > light.range * 2.0:
        if verbose:
            print(f"    {light.debug_id}: culled by distance "
                  f"({dist:.2f} > {light.range * 2.0:.2f})")
        return 0.0

    if not check_shape_visibility(light, surface):
        if verbose:
            print(f"    {light.debug_id}: culled by shape (closest dist {dist:.1f})")
        return 0.0

    attenuation = 1.0 / (1.0 + light.attenuation_k * dist_sq)
    window = max(0.0, 1.0 - dist_sq / max(light.range * light.range, 1e-3))
    brightness = light.intensity * attenuation * window * window
    if brightness < MIN_BRIGHTNESS:
        if verbose:
            print(f"    {light.debug_id}: too dim (brightness {brightness:.3f})")
        return 0.0

    # Rays go from the surface to the light
    samples = sample_points(surface, light.pos)
    visible = sum(
        1 for point in samples
        if not is_occluded(point, light.pos, world_brushes, verbose=verbose)
    )
    if visible == 0:
        if verbose:
            print(f"    {light.debug_id}: culled by visibility (0/{len(samples)})")
        return 0.0

    visibility = visible / len(samples)
    score = brightness * visibility
    if verbose:
        print(f"    {light.debug_id}: brightness {brightness:.2f} | "
              f"vis {visibility:.2f} | score {score:.2f}")
    return score
