#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Tensor shape helpers shared by every inference backend.
"""

from typing import NamedTuple, Sequence, Tuple

import numpy as np

from trtclassify.errors import ConfigurationError

FLOAT_SIZE = np.dtype(np.float32).itemsize
"""Size in bytes of a single ``float32`` element"""


class Binding(NamedTuple):
    """I/O metadata for one binding index of a compiled engine."""
    index: int
    name: str
    shape: Tuple[int, ...]
    is_input: bool


def element_count(shape: Sequence[int]) -> int:
    """Number of elements in a tensor of the given shape.

    An empty shape is a scalar (one element); any zero dimension gives zero.

    :param shape: Tensor dimensions, e.g. ``(N, C, H, W)``
    :return:      Product of the dimensions
    """
    count = 1
    for dim in shape:
        count *= int(dim)
    return count


def binding_nbytes(shape: Sequence[int], batch_size: int = 1) -> int:
    """Size in bytes of a ``float32`` buffer holding ``batch_size`` tensors of ``shape``.

    :raises ConfigurationError: if the shape has unresolved (negative) or
                                zero dimensions
    """
    if any(int(dim) < 0 for dim in shape):
        raise ConfigurationError('Unresolved dynamic dimension in shape {}'.format(tuple(shape)),
                                 context={'shape': tuple(shape)})
    num_elems = element_count(shape) * batch_size
    if num_elems <= 0:
        raise ConfigurationError('Cannot size a buffer for shape {} with batch size {}'.format(
            tuple(shape), batch_size), context={'shape': tuple(shape), 'batch_size': batch_size})
    return num_elems * FLOAT_SIZE


def check_extent(buffer_nbytes: int, offset: int, length: int) -> None:
    """Make sure ``length`` bytes starting at ``offset`` fit in a buffer.

    :raises ValueError: if the copy would run past either end of the buffer
    """
    if offset < 0 or offset + length > buffer_nbytes:
        raise ValueError('Copy of {} bytes at offset {} exceeds buffer of {} bytes'.format(
            length, offset, buffer_nbytes))
