"""
Shared fixtures and VMF text builders.

Boxes are written with Hammer's winding so every side's plane normal,
negated, points out of the brush.
"""
import itertools
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pbr_lut_gen.vmf_parser import VMFMap  # noqa: E402

_ids = itertools.count(1)

UAXIS = '[1 0 0 0] 0.25'
VAXIS = '[0 -1 0 0] 0.25'


def _pt(x, y, z):
    return f"({x:g} {y:g} {z:g})"


def box_planes(mins, maxs):
    """Plane strings of an axis-aligned box keyed by face."""
    x0, y0, z0 = mins
    x1, y1, z1 = maxs
    return {
        'top': f"{_pt(x0, y1, z1)} {_pt(x1, y1, z1)} {_pt(x1, y0, z1)}",
        'bottom': f"{_pt(x0, y0, z0)} {_pt(x1, y0, z0)} {_pt(x1, y1, z0)}",
        'west': f"{_pt(x0, y1, z1)} {_pt(x0, y0, z1)} {_pt(x0, y0, z0)}",
        'east': f"{_pt(x1, y0, z1)} {_pt(x1, y1, z1)} {_pt(x1, y1, z0)}",
        'north': f"{_pt(x1, y1, z1)} {_pt(x0, y1, z1)} {_pt(x0, y1, z0)}",
        'south': f"{_pt(x0, y0, z1)} {_pt(x1, y0, z1)} {_pt(x1, y0, z0)}",
    }


def box_solid(mins, maxs, material='DEV/DEV_MEASUREGENERIC01', face_materials=None):
    face_materials = face_materials or {}
    lines = ['solid', '{', f'"id" "{next(_ids)}"']
    for face, plane in box_planes(mins, maxs).items():
        lines += [
            'side', '{',
            f'"id" "{next(_ids)}"',
            f'"plane" "{plane}"',
            f'"material" "{face_materials.get(face, material)}"',
            f'"uaxis" "{UAXIS}"',
            f'"vaxis" "{VAXIS}"',
            '}',
        ]
    lines.append('}')
    return '\n'.join(lines)


def entity_text(classname, keys=None, solids=(), connections=()):
    lines = ['entity', '{', f'"id" "{next(_ids)}"', f'"classname" "{classname}"']
    for key, value in (keys or {}).items():
        lines.append(f'"{key}" "{value}"')
    if connections:
        lines += ['connections', '{']
        lines += [f'"{output}" "{value}"' for output, value in connections]
        lines.append('}')
    lines += list(solids)
    lines.append('}')
    return '\n'.join(lines)


def vmf_text(world_solids=(), entities=()):
    world = ['world', '{', '"id" "1"', '"classname" "worldspawn"', *world_solids, '}']
    return '\n'.join(['versioninfo', '{', '"formatversion" "100"', '}',
                      *world, *entities]) + '\n'


def make_vmf(world_solids=(), entities=()):
    return VMFMap.from_string(vmf_text(world_solids, entities))


def light_entity(origin, name=None, light='255 255 255 200', classname='light',
                 **keys):
    props = {'origin': f"{origin[0]:g} {origin[1]:g} {origin[2]:g}",
             '_light': light, 'pbr_enabled': '1'}
    if name is not None:
        props['targetname'] = name
    props.update(keys)
    return entity_text(classname, props)


def surface_entity(mins, maxs, name=None, template='pbr/base_metal', **keys):
    props = {}
    if name is not None:
        props['targetname'] = name
    if template is not None:
        props['template_material'] = template
    props.update(keys)
    solid = box_solid(mins, maxs, material='TOOLS/TOOLSNODRAW',
                      face_materials={'top': 'TOOLS/TOOLSPBR'})
    return entity_text('func_ggx_surface', props, solids=[solid])


def find_entity(vmf, name):
    for ent in vmf.entities:
        if ent.get_property('targetname') == name:
            return ent
    return None


@pytest.fixture
def game_dir(tmp_path):
    path = tmp_path / 'game'
    path.mkdir()
    return path
