import struct

import numpy as np
import pytest

from pbr_lut_gen.errors import VTFWriteError
from pbr_lut_gen.vtf_writer import build_vtf_bytes, write_rgba32f_vtf


@pytest.fixture
def pixels():
    data = np.zeros((8, 8, 4), dtype=np.float32)
    data[:, :, 3] = 1.0
    data[0, 0] = (8.0, 16.0, 32.0, 0.0)
    return data


class TestHeader:
    def test_fixed_fields(self, pixels):
        blob = build_vtf_bytes(pixels)
        assert blob[:4] == b'VTF\x00'
        assert struct.unpack_from('<3I', blob, 4) == (7, 4, 96)
        assert struct.unpack_from('<2HI2H', blob, 16) == (8, 8, 0x230D, 1, 0)
        assert struct.unpack_from('<f', blob, 48) == (1.0,)
        assert struct.unpack_from('<IBIBBH', blob, 52) == (29, 1, 13, 16, 16, 1)
        assert struct.unpack_from('<I', blob, 68) == (2,)

    def test_reflectivity_is_channel_mean(self, pixels):
        blob = build_vtf_bytes(pixels)
        assert struct.unpack_from('<3f', blob, 32) == pytest.approx((8 / 64, 16 / 64, 32 / 64))

    def test_resources(self, pixels):
        blob = build_vtf_bytes(pixels)
        assert blob[80:83] == b'\x01\x00\x00'
        assert struct.unpack_from('<I', blob, 84) == (96,)
        assert blob[88:91] == b'\x30\x00\x00'
        assert struct.unpack_from('<I', blob, 92) == (224,)
        assert blob[96:224] == bytes(128)


def test_pixel_data_row_major(pixels):
    pixels[1, 2] = (1.0, 2.0, 3.0, 4.0)
    blob = build_vtf_bytes(pixels)
    assert len(blob) == 224 + 8 * 8 * 16
    offset = 224 + (1 * 8 + 2) * 16
    assert struct.unpack_from('<4f', blob, offset) == (1.0, 2.0, 3.0, 4.0)
    assert struct.unpack_from('<4f', blob, 224) == (8.0, 16.0, 32.0, 0.0)


@pytest.mark.parametrize('shape', [(8, 8, 3), (64, 4), (0, 8, 4)])
def test_bad_shape(shape):
    with pytest.raises(VTFWriteError):
        build_vtf_bytes(np.zeros(shape, dtype=np.float32))


def test_write_truncates(tmp_path, pixels):
    path = tmp_path / 'lut.vtf'
    path.write_bytes(b'x' * 5000)
    write_rgba32f_vtf(path, pixels)
    assert path.stat().st_size == 224 + 8 * 8 * 16
