"""
VMT Writer — patch materials that point a base PBR material at a baked LUT.

Output example:
    patch
    {
        include "materials/pbr/base_metal.vmt"
        replace
        {
            $texture1 "maps/mymap/surface_1_lut"
            $c4_x 1.00
            $c4_y 0.00
            $c4_z 1.00
            $c4_w 1.00
        }
    }
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union

from .errors import MaterialTemplateError

C4_VARS = ('$c4_x', '$c4_y', '$c4_z', '$c4_w')


def build_vmt_text(texture_rel_path: str, base_material: str,
                   initial_c4: Sequence[float]) -> str:
    # Source wants forward slashes in material paths
    clean_path = texture_rel_path.replace('\\', '/')
    lines = [
        'patch',
        '{',
        f'\tinclude "materials/{base_material}.vmt"',
        '\treplace',
        '\t{',
        f'\t\t$texture1 "{clean_path}"',
    ]
    for var, value in zip(C4_VARS, initial_c4):
        lines.append(f'\t\t{var} {value:.2f}')
    lines.append('\t}')
    lines.append('}')
    return '\n'.join(lines) + '\n'


def generate_vmt(vmt_path: Union[str, Path], texture_rel_path: str,
                 base_material: Optional[str], initial_c4: Sequence[float],
                 surface_name: str = '') -> None:
    """Write a patch VMT. A missing base material is a hard error."""
    vmt_path = Path(vmt_path)
    if not base_material:
        raise MaterialTemplateError(
            f"Missing 'template_material' on PBR surface "
            f"'{surface_name or vmt_path.stem}'. This is required!")

    text = build_vmt_text(texture_rel_path, base_material, initial_c4)
    vmt_path.parent.mkdir(parents=True, exist_ok=True)
    vmt_path.write_text(text, encoding='utf-8')
