#!/usr/bin/env python3
# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

import sys

import numpy as np
import pytest

from conftest import SMALL_SHAPE, ArrayBuffer, write_image
from trtclassify.errors import ConfigurationError, DecodeError
from trtclassify.preprocess import IMAGENET_MEAN, IMAGENET_STD, load_frame, preprocess
from trtclassify.tensor import Binding, binding_nbytes

if __name__ == "__main__":
    rc = pytest.main([__file__, "-ra"])
    sys.exit(rc)


def _expected_plane_values(rgb):
    return (np.asarray(rgb, dtype=np.float32) / 255.0 - IMAGENET_MEAN) / IMAGENET_STD


def _input_buffer(shape=SMALL_SHAPE):
    binding = Binding(0, 'input', shape, True)
    return ArrayBuffer(binding, binding_nbytes(shape))


def test_load_frame_normalizes_rgb_planes(solid_image):
    frame = load_frame(solid_image, SMALL_SHAPE)
    assert frame.shape == (3, 4, 4)
    assert frame.dtype == np.float32
    expected = _expected_plane_values((255, 128, 0))
    for channel in range(3):
        np.testing.assert_allclose(frame[channel], expected[channel], rtol=1e-5)


def test_load_frame_nearest_neighbour_resize(tmp_path):
    # 2x2 image: top-left red, top-right green, bottom-left blue, bottom-right white (BGR)
    pixels = np.array([[[0, 0, 255], [0, 255, 0]],
                       [[255, 0, 0], [255, 255, 255]]], dtype=np.uint8)
    image = write_image(tmp_path / 'quad.png', pixels)
    frame = load_frame(image, (1, 3, 4, 4))

    red = _expected_plane_values((255, 0, 0))
    white = _expected_plane_values((255, 255, 255))
    # Each source pixel becomes a 2x2 block, no blending at the edges
    np.testing.assert_allclose(frame[:, 0:2, 0:2], np.broadcast_to(red[:, None, None], (3, 2, 2)),
                               rtol=1e-5)
    np.testing.assert_allclose(frame[:, 2:4, 2:4],
                               np.broadcast_to(white[:, None, None], (3, 2, 2)), rtol=1e-5)


def test_load_frame_non_square_input(solid_image):
    frame = load_frame(solid_image, (1, 3, 2, 6))
    assert frame.shape == (3, 2, 6)


def test_preprocess_writes_contiguous_planes(solid_image):
    buffer = _input_buffer()
    preprocess(solid_image, SMALL_SHAPE, buffer)

    plane_nbytes = 4 * 4 * 4
    assert buffer.uploads == [(0, plane_nbytes), (plane_nbytes, plane_nbytes),
                              (2 * plane_nbytes, plane_nbytes)]
    assert not np.isnan(buffer.data).any(), 'every input element must be written'
    expected = _expected_plane_values((255, 128, 0))
    np.testing.assert_allclose(buffer.data.reshape(3, 16), np.repeat(expected[:, None], 16, axis=1),
                               rtol=1e-5)


def test_preprocess_missing_image_touches_nothing(tmp_path):
    buffer = _input_buffer()
    with pytest.raises(DecodeError) as excinfo:
        preprocess(tmp_path / 'missing.jpg', SMALL_SHAPE, buffer)
    assert 'missing.jpg' in excinfo.value.message
    assert buffer.uploads == []


def test_preprocess_unreadable_image(tmp_path):
    path = tmp_path / 'corrupt.jpg'
    path.write_bytes(b'this is not a jpeg')
    with pytest.raises(DecodeError):
        load_frame(path, SMALL_SHAPE)


@pytest.mark.parametrize('shape', [(1, 1, 4, 4), (1, 3, 16), (3, 4, 4)])
def test_load_frame_rejects_non_rgb_nchw(solid_image, shape):
    with pytest.raises(ConfigurationError):
        load_frame(solid_image, shape)
