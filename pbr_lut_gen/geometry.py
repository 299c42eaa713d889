"""
Geometry Builder — converts VMF brush definitions into convex half-space sets.

Each VMF side contributes one plane. The brush interior is the intersection
of the inner half-spaces, which is all the ray tracer needs for slab tests
against world and detail geometry.
"""
from __future__ import annotations

import math
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .vmf_parser import (
    KVNode, entity_id, entity_solids, parse_plane_points, side_has_displacement,
    solid_sides,
)

Vec3 = Tuple[float, float, float]

# ─── Vector math utilities ────────────────────────────────────────────────────

def vec_sub(a: Vec3, b: Vec3) -> Vec3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])

def vec_add(a: Vec3, b: Vec3) -> Vec3:
    return (a[0] + b[0], a[1] + b[1], a[2] + b[2])

def vec_scale(v: Vec3, s: float) -> Vec3:
    return (v[0] * s, v[1] * s, v[2] * s)

def vec_dot(a: Vec3, b: Vec3) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]

def vec_cross(a: Vec3, b: Vec3) -> Vec3:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )

def vec_length(v: Vec3) -> float:
    return math.sqrt(v[0] ** 2 + v[1] ** 2 + v[2] ** 2)

def vec_normalize(v: Vec3) -> Vec3:
    l = vec_length(v)
    if l == 0.0:
        return (0.0, 0.0, 0.0)
    return (v[0] / l, v[1] / l, v[2] / l)


def light_basis(forward: Vec3) -> Tuple[Vec3, Vec3, Vec3]:
    """(right, up, fwd) frame the shader rebuilds from a light direction."""
    fwd = vec_normalize(forward)
    up_base = (1.0, 0.0, 0.0) if abs(fwd[2]) > 0.99 else (0.0, 0.0, 1.0)
    right = vec_normalize(vec_cross(fwd, up_base))
    up = vec_cross(right, fwd)
    return right, up, fwd


# ─── Bounding boxes ───────────────────────────────────────────────────────────

@dataclass
class AABB:
    """Axis-aligned bounding box.

    A fresh box is empty (mins=+inf, maxs=-inf) until a point is extended
    into it; center is kept at (mins+maxs)/2 from then on.
    """
    mins: Vec3 = (math.inf, math.inf, math.inf)
    maxs: Vec3 = (-math.inf, -math.inf, -math.inf)
    center: Vec3 = (0.0, 0.0, 0.0)

    @staticmethod
    def from_points(points: Sequence[Vec3]) -> AABB:
        box = AABB()
        for p in points:
            box.extend(p)
        return box

    def is_empty(self) -> bool:
        return self.mins[0] > self.maxs[0]

    def extend(self, p: Vec3) -> None:
        self.mins = (min(self.mins[0], p[0]), min(self.mins[1], p[1]),
                     min(self.mins[2], p[2]))
        self.maxs = (max(self.maxs[0], p[0]), max(self.maxs[1], p[1]),
                     max(self.maxs[2], p[2]))
        self.center = (
            (self.mins[0] + self.maxs[0]) * 0.5,
            (self.mins[1] + self.maxs[1]) * 0.5,
            (self.mins[2] + self.maxs[2]) * 0.5,
        )

    def size(self) -> Vec3:
        return vec_sub(self.maxs, self.mins)


def sq_dist_point_aabb(point: Vec3, box: AABB) -> float:
    """Squared distance from a point to the closest point of a box (0 inside)."""
    sq_dist = 0.0
    for i in range(3):
        v = point[i]
        if v < box.mins[i]:
            sq_dist += (box.mins[i] - v) * (box.mins[i] - v)
        if v > box.maxs[i]:
            sq_dist += (v - box.maxs[i]) * (v - box.maxs[i])
    return sq_dist


# ─── Planes and brushes ───────────────────────────────────────────────────────

@dataclass
class Plane:
    """A brush face plane: dot(normal, P) + dist = 0.

    The normal points out of the brush, so the inside half-space is
    dot(normal, P) + dist <= 0.
    """
    normal: Vec3
    dist: float
    material: str = ''
    u_axis: str = ''
    v_axis: str = ''

    @staticmethod
    def from_three_points(p0: Vec3, p1: Vec3, p2: Vec3, material: str = '',
                          u_axis: str = '', v_axis: str = '') -> Plane:
        """Create an outward plane from three points in VMF winding order."""
        normal = face_normal((p0, p1, p2))
        dist = -vec_dot(normal, p0)
        return Plane(normal=normal, dist=dist, material=material,
                     u_axis=u_axis, v_axis=v_axis)

    def distance_to(self, point: Vec3) -> float:
        """Signed distance from point to plane (positive = outside)."""
        return vec_dot(self.normal, point) + self.dist


def face_normal(points: Tuple[Vec3, Vec3, Vec3]) -> Vec3:
    """Outward normal of a VMF side from its three plane points.

    VMF winds sides so that cross(p1-p0, p2-p0) points into the brush.
    """
    p0, p1, p2 = points
    n = vec_cross(vec_sub(p1, p0), vec_sub(p2, p0))
    return vec_scale(vec_normalize(n), -1.0) if vec_length(n) > 0.0 else (0.0, 0.0, 0.0)


@dataclass
class ConvexBrush:
    """A convex brush as a list of outward planes plus its bounds."""
    id: int
    planes: List[Plane]
    bounds: AABB = field(default_factory=AABB)

    @staticmethod
    def from_vmf_solid(solid: KVNode, verbose: bool = False) -> Optional[ConvexBrush]:
        """Convert a VMF solid into a ConvexBrush.

        Displacement brushes and brushes without a single parseable plane
        give None.
        """
        try:
            solid_id = int(entity_id(solid))
        except ValueError:
            solid_id = 0

        sides = solid_sides(solid)
        if any(side_has_displacement(s) for s in sides):
            if verbose:
                print(f"    Solid {solid_id}: displacement brush skipped")
            return None

        planes: List[Plane] = []
        bounds = AABB()
        for side in sides:
            plane_str = side.get_property('plane') or ''
            points = parse_plane_points(plane_str)
            if points is None:
                print(f"WARNING: Solid {solid_id}: malformed plane definition "
                      f"'{plane_str}', side skipped", file=sys.stderr)
                continue
            for p in points:
                bounds.extend(p)
            planes.append(Plane.from_three_points(
                *points,
                material=side.get_property('material') or '',
                u_axis=side.get_property('uaxis') or '',
                v_axis=side.get_property('vaxis') or '',
            ))

        if not planes:
            print(f"WARNING: Solid {solid_id} skipped: no valid planes",
                  file=sys.stderr)
            return None

        if verbose:
            print(f"    Brush {solid_id}: {len(planes)} planes, "
                  f"bounds {bounds.mins} -> {bounds.maxs}")
        return ConvexBrush(id=solid_id, planes=planes, bounds=bounds)


def entity_aabb(entity: KVNode) -> Optional[AABB]:
    """Bounds of all plane points over every solid of a brush entity."""
    box = AABB()
    found = False
    for solid in entity_solids(entity):
        for side in solid_sides(solid):
            points = parse_plane_points(side.get_property('plane') or '')
            if points is None:
                continue
            for p in points:
                box.extend(p)
            found = True
    return box if found else None
