"""
LUT packer — bakes a light cluster into an 8x8 RGBA32F look-up texture.

Each column holds one light; the rows are:

    row 0   pos.xyz              type id (Point 0, Spot 1, Rect 2)
    row 1   color.rgb            intensity
    row 2   dir.xyz              cos(inner) | rect width
    row 3   range, K, cos(outer) | rect height, exponent | bidirectional
    row 4   blocker 0 size       flag
    row 5   blocker 0 offset     0
    row 6   blocker 1 size       flag
    row 7   blocker 1 offset     0

Fizzler blockers (flag 2) store their size as (w, d, h) and their offset
in the light's (right, up, fwd) frame; other blockers store the world
space offset from the light.
"""
from __future__ import annotations

import math
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Union

import numpy as np
from PIL import Image

from .geometry import light_basis, vec_dot, vec_sub
from .lights import LightDef, RectLight, SpotLight
from .vtf_writer import write_rgba32f_vtf

if TYPE_CHECKING:
    from .pipeline import LightCluster

LUT_WIDTH = 8
LUT_HEIGHT = 8

PREVIEW_SCALE = 16


def _shape_params(light: LightDef):
    """(type_id, dir, param1, param2, extra) for the shape rows."""
    shape = light.light_type
    if isinstance(shape, SpotLight):
        return (shape.type_id, shape.direction,
                math.cos(math.radians(shape.inner_angle)),
                math.cos(math.radians(shape.outer_angle)),
                shape.exponent)
    if isinstance(shape, RectLight):
        return (shape.type_id, shape.direction, shape.width, shape.height,
                1.0 if shape.bidirectional else 0.0)
    return (shape.type_id, (0.0, 0.0, 0.0), 0.0, 0.0, 0.0)


def _pack_column(pixels: np.ndarray, col: int, light: LightDef) -> None:
    type_id, direction, param1, param2, extra = _shape_params(light)

    pixels[0, col] = (*light.pos, type_id)
    pixels[1, col] = (*light.color, light.intensity)
    pixels[2, col] = (*direction, param1)
    pixels[3, col] = (light.range, light.attenuation_k, param2, extra)
    pixels[4:8, col] = 0.0

    for b_idx, blocker in enumerate(light.blockers):
        if blocker is None:
            continue
        row = 4 + b_idx * 2
        diff = vec_sub(blocker.pos if blocker.pos is not None else light.pos, light.pos)

        if blocker.is_fizzler:
            pixels[row, col] = (blocker.width, blocker.depth, blocker.height, blocker.flag)
            right, up, fwd = light_basis(direction)
            pixels[row + 1, col] = (vec_dot(diff, right), vec_dot(diff, up),
                                    vec_dot(diff, fwd), 0.0)
        else:
            pixels[row, col] = (blocker.width, blocker.height, blocker.depth, blocker.flag)
            pixels[row + 1, col] = (*diff, 0.0)


def build_lut(cluster: LightCluster) -> np.ndarray:
    """Pack a cluster into a (LUT_HEIGHT, LUT_WIDTH, 4) float32 array."""
    if len(cluster.lights) > LUT_WIDTH:
        print(f"WARNING: Cluster '{cluster.name}': more than {LUT_WIDTH} lights "
              f"({len(cluster.lights)}), truncating", file=sys.stderr)

    pixels = np.zeros((LUT_HEIGHT, LUT_WIDTH, 4), dtype=np.float32)
    pixels[:, :, 3] = 1.0
    for col, (light, _score) in enumerate(cluster.lights[:LUT_WIDTH]):
        _pack_column(pixels, col, light)
    return pixels


def generate_vtf(cluster: LightCluster, output_path: Union[str, Path]) -> np.ndarray:
    """Bake the cluster and write it as a VTF. Returns the pixel buffer."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    pixels = build_lut(cluster)
    write_rgba32f_vtf(output_path, pixels)
    return pixels


def save_lut_preview(pixels: np.ndarray, png_path: Union[str, Path],
                     scale: int = PREVIEW_SCALE) -> None:
    """Write an 8-bit visualization of a LUT (RGB only, per-row normalized)."""
    rgb = np.abs(pixels[:, :, :3].astype(np.float64))
    row_max = rgb.reshape(rgb.shape[0], -1).max(axis=1)
    row_max[row_max == 0.0] = 1.0
    normalized = rgb / row_max[:, None, None]
    img = Image.fromarray((normalized * 255.0).round().astype(np.uint8))
    img = img.resize((img.width * scale, img.height * scale), Image.Resampling.NEAREST)

    png_path = Path(png_path)
    png_path.parent.mkdir(parents=True, exist_ok=True)
    img.save(png_path)
