#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Prepare an image for the classifier and place it in the engine's input buffer.

The network was trained on ImageNet-normalized RGB images in channel-major
(``NCHW``) layout. Images are read with OpenCV, which delivers interleaved BGR
pixels, so the preprocessing resizes, reorders and normalizes the pixels and
then copies each channel plane into its slot of the input buffer.
"""

import os
from typing import Sequence, Union

import cv2
import numpy as np

from trtclassify.errors import ConfigurationError, DecodeError
from trtclassify.tensor import FLOAT_SIZE

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)

_NUM_CHANNELS = 3


def load_frame(image_path: Union[str, os.PathLike], input_shape: Sequence[int]) -> np.ndarray:
    """Decode, resize and normalize an image on the host.

    :param image_path:  Image file in any format OpenCV can decode
    :param input_shape: Shape of the input binding, ``(N, C, H, W)``
    :return:            ``float32`` array of shape ``(C, H, W)``
    :raises DecodeError:        if the image cannot be read
    :raises ConfigurationError: if the input binding is not a 3 channel ``NCHW`` tensor
    """
    if len(input_shape) != 4 or input_shape[1] != _NUM_CHANNELS:
        raise ConfigurationError('Expected an NCHW input with {} channels, got shape {}'.format(
            _NUM_CHANNELS, tuple(input_shape)), context={'shape': tuple(input_shape)})
    input_height, input_width = int(input_shape[2]), int(input_shape[3])

    frame = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if frame is None or frame.size == 0:
        raise DecodeError('Input image {} load failed'.format(image_path),
                          context={'image_path': str(image_path)})

    # Nearest neighbour keeps the result deterministic
    resized = cv2.resize(frame, (input_width, input_height), interpolation=cv2.INTER_NEAREST)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)

    normalized = (rgb.astype(np.float32) / 255.0 - IMAGENET_MEAN) / IMAGENET_STD

    # HWC -> CHW
    return np.ascontiguousarray(normalized.transpose(2, 0, 1), dtype=np.float32)


def upload_frame(frame: np.ndarray, buffer) -> None:
    """Copy each channel plane of ``frame`` to its offset in ``buffer``.

    Plane ``i`` lands at byte offset ``i * H * W * 4`` and covers exactly
    ``H * W * 4`` bytes, so the planes are contiguous with no padding.
    """
    plane_nbytes = frame.shape[1] * frame.shape[2] * FLOAT_SIZE
    for channel, plane in enumerate(frame):
        buffer.upload(np.ascontiguousarray(plane), channel * plane_nbytes)


def preprocess(image_path: Union[str, os.PathLike], input_shape: Sequence[int], buffer) -> None:
    """Decode ``image_path`` and write it into the engine's input ``buffer``.

    The image is fully decoded before anything is copied to the device.
    """
    frame = load_frame(image_path, input_shape)
    upload_frame(frame, buffer)
