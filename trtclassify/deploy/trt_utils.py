#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Utility code for managing CUDA memory used by TensorRT inference.
"""

import atexit

import numpy as np
import pycuda.driver as cuda

from trtclassify.tensor import Binding, check_extent


_CONTEXTS = {}
"""CUDA contexts already created, by GPU index"""


def make_cuda_context(gpu_index: int = 0) -> cuda.Context:
    """Initializes a CUDA context for use with the selected GPU and makes it active.

    Only one context is created per GPU: later calls return the existing one.
    The context is popped automatically when the interpreter exits.

    :param gpu_index: Which GPU in the system to use, defaults to the first GPU (index 0)
    """
    if gpu_index in _CONTEXTS:
        return _CONTEXTS[gpu_index]
    cuda.init()
    cuda_context = cuda.Device(gpu_index).make_context(cuda.ctx_flags.SCHED_AUTO)
    atexit.register(cuda_context.pop)  # ensure context is cleaned up
    _CONTEXTS[gpu_index] = cuda_context
    return cuda_context


class DeviceBuffer:
    """A region of GPU memory backing one engine binding.

    The memory is allocated on creation and must be released with
    :meth:`free` once the inference run is over. ``int(buffer)`` gives the
    device pointer that is handed to TensorRT.

    Example usage:

    .. code-block:: python

        buffer = DeviceBuffer(binding, nbytes=16 * 4)
        buffer.upload(numpy.zeros(16, dtype=numpy.float32))
        scores = buffer.download(16)
        buffer.free()
    """

    def __init__(self, binding: Binding, nbytes: int) -> None:
        """
        :param Binding binding: Engine binding this buffer is used for
        :param int nbytes:      Size of the buffer in bytes
        :var bool is_input:     Direction of the binding
        """
        self.binding = binding
        self.nbytes = nbytes
        self._device = cuda.mem_alloc(nbytes)

    @property
    def is_input(self) -> bool:
        return self.binding.is_input

    def __int__(self) -> int:
        if self._device is None:
            raise ValueError('Device buffer for {} was freed'.format(self.binding.name))
        return int(self._device)

    def upload(self, host_array: np.ndarray, offset: int = 0) -> None:
        """Copy ``host_array`` to the device, ``offset`` bytes into the buffer."""
        host_array = np.ascontiguousarray(host_array)
        check_extent(self.nbytes, offset, host_array.nbytes)
        cuda.memcpy_htod(int(self) + offset, host_array)

    def download(self, num_elems: int, dtype: np.number = np.float32) -> np.ndarray:
        """Copy the first ``num_elems`` values of the buffer to a new host array."""
        host_array = np.empty(num_elems, dtype=dtype)
        check_extent(self.nbytes, 0, host_array.nbytes)
        cuda.memcpy_dtoh(host_array, int(self))
        return host_array

    def free(self) -> None:
        """Release the device memory. Calling this more than once is harmless."""
        if self._device is not None:
            self._device.free()
            self._device = None
