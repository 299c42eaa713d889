import pytest

from pbr_lut_gen.geometry import (
    AABB, ConvexBrush, Plane, entity_aabb, face_normal, light_basis, sq_dist_point_aabb,
    vec_dot, vec_length,
)
from pbr_lut_gen.vmf_parser import KVNode, KVPair, parse_plane_points

from conftest import box_planes, box_solid, entity_text, make_vmf


def _solid_node(mins, maxs, **kwargs):
    return make_vmf(world_solids=[box_solid(mins, maxs, **kwargs)]).world_solids()[0]


class TestFaceNormal:
    @pytest.mark.parametrize('face, expected', [
        ('top', (0.0, 0.0, 1.0)),
        ('bottom', (0.0, 0.0, -1.0)),
        ('west', (-1.0, 0.0, 0.0)),
        ('east', (1.0, 0.0, 0.0)),
        ('north', (0.0, 1.0, 0.0)),
        ('south', (0.0, -1.0, 0.0)),
    ])
    def test_outward(self, face, expected):
        points = parse_plane_points(box_planes((-8, -8, -8), (8, 8, 8))[face])
        assert face_normal(points) == pytest.approx(expected)

    def test_degenerate(self):
        assert face_normal(((0, 0, 0), (1, 0, 0), (2, 0, 0))) == (0.0, 0.0, 0.0)


class TestAABB:
    def test_empty_until_extended(self):
        box = AABB()
        assert box.is_empty()
        box.extend((1, 2, 3))
        box.extend((-1, 0, 5))
        assert not box.is_empty()
        assert box.mins == (-1, 0, 3)
        assert box.maxs == (1, 2, 5)
        assert box.center == (0.0, 1.0, 4.0)
        assert box.size() == (2, 2, 2)

    def test_sq_dist(self):
        box = AABB.from_points([(0, 0, 0), (10, 10, 10)])
        assert sq_dist_point_aabb((5, 5, 5), box) == 0.0
        assert sq_dist_point_aabb((13, 5, 14), box) == 9.0 + 16.0


class TestConvexBrush:
    def test_box_planes_contain_interior(self):
        brush = ConvexBrush.from_vmf_solid(_solid_node((0, 0, 0), (64, 32, 16)))
        assert len(brush.planes) == 6
        assert all(p.distance_to((32, 16, 8)) < 0 for p in brush.planes)
        assert any(p.distance_to((100, 16, 8)) > 0 for p in brush.planes)
        assert brush.bounds.mins == (0, 0, 0)
        assert brush.bounds.maxs == (64, 32, 16)

    def test_keeps_material_and_axes(self):
        brush = ConvexBrush.from_vmf_solid(
            _solid_node((0, 0, 0), (8, 8, 8), face_materials={'top': 'GLASS/WINDOW'}))
        top = [p for p in brush.planes if p.normal == pytest.approx((0, 0, 1))][0]
        assert top.material == 'GLASS/WINDOW'
        assert top.u_axis == '[1 0 0 0] 0.25'

    def test_displacement_skipped(self):
        solid = _solid_node((0, 0, 0), (8, 8, 8))
        solid.get_children_by_name('side')[0].children.append(KVNode('dispinfo'))
        assert ConvexBrush.from_vmf_solid(solid) is None

    def test_malformed_planes(self, capsys):
        solid = KVNode('solid', [KVPair('id', '7'),
                                 KVNode('side', [KVPair('plane', '(0 0 0)')])])
        assert ConvexBrush.from_vmf_solid(solid) is None
        assert 'WARNING' in capsys.readouterr().err

    def test_plane_from_three_points(self):
        plane = Plane.from_three_points((0, 0, 10), (0, 1, 10), (1, 0, 10))
        assert plane.normal == pytest.approx((0, 0, 1))
        assert plane.dist == pytest.approx(-10)


class TestLightBasis:
    @pytest.mark.parametrize('forward', [(1, 0, 0), (0, 0, 1), (0, 0, -1), (1, 1, 0.5)])
    def test_orthonormal(self, forward):
        right, up, fwd = light_basis(forward)
        for v in (right, up, fwd):
            assert vec_length(v) == pytest.approx(1.0)
        assert vec_dot(right, up) == pytest.approx(0.0, abs=1e-9)
        assert vec_dot(right, fwd) == pytest.approx(0.0, abs=1e-9)
        assert vec_dot(up, fwd) == pytest.approx(0.0, abs=1e-9)


def test_entity_aabb():
    vmf = make_vmf(entities=[entity_text('func_detail', solids=[
        box_solid((0, 0, 0), (8, 8, 8)), box_solid((16, -4, 2), (20, 4, 30))])])
    box = entity_aabb(vmf.entities[0])
    assert box.mins == (0, -4, 0)
    assert box.maxs == (20, 8, 30)
    assert entity_aabb(KVNode('entity')) is None
