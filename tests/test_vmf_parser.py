import pytest

from pbr_lut_gen.vmf_parser import (
    KVNode, KVPair, VMFMap, VMFParseError, VMFParser, add_connection, classname,
    entity_connections, entity_id, format_plane_points, make_entity,
    offset_plane_points, offset_side_vertices, parse_plane_points, parse_vector,
    targetname,
)

from conftest import box_solid, entity_text, make_vmf, vmf_text


class TestParser:
    def test_round_trip_preserves_structure(self):
        text = vmf_text(
            world_solids=[box_solid((0, 0, 0), (64, 64, 64))],
            entities=[entity_text('light', {'origin': '1 2 3'},
                                  connections=[('OnTrigger', 'a,TurnOn,,0,-1')])],
        )
        vmf = VMFMap.from_string(text)
        again = VMFMap.from_string(vmf.to_string())
        assert again.to_string() == vmf.to_string()
        assert len(again.world_solids()) == 1
        assert len(again.entities) == 1

    def test_brace_on_same_line(self):
        root = VMFParser().parse_string('world {\n"id" "1"\n}\n')
        world = root.get_children_by_name('world')[0]
        assert world.get_property('id') == '1'

    def test_missing_open_brace_raises(self):
        with pytest.raises(VMFParseError):
            VMFParser().parse_string('world\n"id" "1"\n')

    def test_load_and_save(self, tmp_path):
        vmf = make_vmf(entities=[entity_text('info_target', {'targetname': 't'})])
        path = tmp_path / 'out' / 'map.vmf'
        vmf.save(path)
        loaded = VMFMap.load(path)
        assert targetname(loaded.entities[0]) == 't'


class TestKVNode:
    def test_set_property_inserts_before_blocks(self):
        node = KVNode('entity', [KVPair('classname', 'light'), KVNode('connections')])
        existed = node.set_property('targetname', 'lamp')
        assert existed is False
        assert isinstance(node.children[1], KVPair)
        assert node.children[1].key == 'targetname'
        assert node.set_property('TargetName', 'lamp2') is True
        assert node.get_property('targetname') == 'lamp2'

    def test_children_by_name(self):
        vmf = make_vmf(world_solids=[box_solid((0, 0, 0), (8, 8, 8))])
        [solid] = vmf.world.get_children_by_name('solid')
        assert len(solid.get_children_by_name('side')) == 6


class TestEntityHelpers:
    def test_empty_targetname_is_absent(self):
        ent = KVNode('entity', [KVPair('targetname', '')])
        assert targetname(ent) is None
        assert entity_id(ent) == '0'
        assert classname(ent) == ''

    def test_make_entity_has_no_id(self):
        ent = make_entity('material_modify_control')
        assert classname(ent) == 'material_modify_control'
        assert ent.get_property('id') is None

    def test_add_connection_creates_block_and_dedups(self):
        ent = make_entity('logic_relay')
        assert add_connection(ent, 'OnTrigger', 'x,SetMaterialVar,1,0,-1') is True
        assert add_connection(ent, 'OnTrigger', 'x,SetMaterialVar,1,0,-1') is False
        assert add_connection(ent, 'OnTrigger', 'x,SetMaterialVar,0,0,-1') is True
        assert len(ent.get_children_by_name('connections')) == 1
        assert entity_connections(ent) == [
            ('OnTrigger', 'x,SetMaterialVar,1,0,-1'),
            ('OnTrigger', 'x,SetMaterialVar,0,0,-1'),
        ]

    def test_remove_entities(self):
        vmf = make_vmf(entities=[entity_text('func_ggx_area'), entity_text('light'),
                                 entity_text('func_ggx_surface')])
        assert vmf.remove_entities(lambda e: classname(e).startswith('func_ggx')) == 2
        assert [classname(e) for e in vmf.entities] == ['light']


class TestValueParsing:
    def test_parse_vector(self):
        assert parse_vector('1 -2.5 3') == (1.0, -2.5, 3.0)
        assert parse_vector('1 2') == (0.0, 0.0, 0.0)
        assert parse_vector(None) == (0.0, 0.0, 0.0)

    def test_parse_plane_points(self):
        points = parse_plane_points('(0 0 0) (128 0 0) (128 128 -1.5)')
        assert points == ((0.0, 0.0, 0.0), (128.0, 0.0, 0.0), (128.0, 128.0, -1.5))
        assert parse_plane_points('(0 0 0) (1 0 0)') is None
        assert parse_plane_points('garbage') is None

    def test_format_and_offset(self):
        assert format_plane_points(((0, 0, 0), (1, 0, 0), (1, 1, 0))) == \
            '(0.0000 0.0000 0.0000) (1.0000 0.0000 0.0000) (1.0000 1.0000 0.0000)'
        moved = offset_plane_points('(0 0 0) (1 0 0) (1 1 0)', (0, 0, 0.975))
        assert moved == ('(0.0000 0.0000 0.9750) (1.0000 0.0000 0.9750) '
                         '(1.0000 1.0000 0.9750)')
        assert offset_plane_points('not a plane', (1, 1, 1)) == 'not a plane'

    def test_offset_side_vertices(self):
        side = KVNode('side', [KVNode('vertices_plus', [KVPair('v', '0 0 4'),
                                                        KVPair('v', '8 0 4')])])
        offset_side_vertices(side, (0.0, 0.0, 1.0))
        values = [c.value for c in side.get_children_by_name('vertices_plus')[0].children]
        assert values == ['0.0000 0.0000 5.0000', '8.0000 0.0000 5.0000']
