"""
VTF Writer — single-mip RGBA32323232F Valve Texture Format files.

Layout (VTF 7.4, little-endian):
    0   "VTF\\0", version 7.4, header size 96
    16  width, height (u16), flags (u32), frames, first frame (u16)
    32  reflectivity (3 x f32), bump scale (f32)
    52  hi-res format, mip count, low-res format, low-res w/h, depth
    68  resource count (2)
    80  resource dictionary: thumbnail @ 96, image data @ 224
    96  16x16 DXT1 thumbnail (128 zero bytes)
    224 pixel data, row-major, 4 x f32 per pixel
"""
from __future__ import annotations

import struct
from pathlib import Path
from typing import Union

import numpy as np

from .errors import VTFWriteError

VTF_SIGNATURE = b'VTF\x00'
VTF_VERSION = (7, 4)
VTF_HEADER_SIZE = 96

IMAGE_FORMAT_RGBA32323232F = 29
IMAGE_FORMAT_DXT1 = 13

# POINTSAMPLE | CLAMPS | CLAMPT | NOMIP | NOLOD | RENDERTARGET
VTF_FLAGS = 0x0000230D

THUMB_SIZE = 16
THUMB_BYTES = 128  # 16x16 DXT1

RESOURCE_TAG_THUMB = b'\x01\x00\x00'
RESOURCE_TAG_IMAGE = b'\x30\x00\x00'

_HEADER = struct.Struct('<4s3I2HI2H4x3f4xfIBIBBH3xI8x')
_RESOURCE = struct.Struct('<3sBI')


def build_vtf_bytes(pixels: np.ndarray) -> bytes:
    """Encode a (height, width, 4) float buffer as a complete VTF file."""
    pixels = np.asarray(pixels)
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise VTFWriteError(
            f"Expected a (height, width, 4) pixel buffer, got shape {pixels.shape}")
    height, width = pixels.shape[0], pixels.shape[1]
    if width > 0xFFFF or height > 0xFFFF or width == 0 or height == 0:
        raise VTFWriteError(f"Unsupported texture size {width}x{height}")

    data = pixels.astype('<f4')
    reflectivity = data[:, :, :3].reshape(-1, 3).mean(axis=0)

    header = _HEADER.pack(
        VTF_SIGNATURE, VTF_VERSION[0], VTF_VERSION[1], VTF_HEADER_SIZE,
        width, height, VTF_FLAGS,
        1, 0,                                   # frames, first frame
        float(reflectivity[0]), float(reflectivity[1]), float(reflectivity[2]),
        1.0,                                    # bump scale
        IMAGE_FORMAT_RGBA32323232F, 1,          # hi-res format, mip count
        IMAGE_FORMAT_DXT1, THUMB_SIZE, THUMB_SIZE,
        1,                                      # depth
        2,                                      # resource count
    )
    resources = (_RESOURCE.pack(RESOURCE_TAG_THUMB, 0, VTF_HEADER_SIZE) +
                 _RESOURCE.pack(RESOURCE_TAG_IMAGE, 0, VTF_HEADER_SIZE + THUMB_BYTES))

    return header + resources + bytes(THUMB_BYTES) + data.tobytes()


def write_rgba32f_vtf(path: Union[str, Path], pixels: np.ndarray) -> None:
    """Write a float pixel buffer to path, truncating any existing file."""
    blob = build_vtf_bytes(pixels)
    Path(path).write_bytes(blob)
