#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Run the classification pipeline with the ONNX Runtime instead of TensorRT.

The classes here follow the same compile / bind / execute contract as
:mod:`trtclassify.deploy.trt` but keep every buffer in host memory, so a model
can be checked on a development machine without a GPU. There is no reduced
precision on this path.
"""

import logging
import os
import pathlib
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import onnxruntime

from trtclassify.errors import CompilationError, ConfigurationError, ParseError
from trtclassify.tensor import Binding, check_extent

_LOGGER = logging.getLogger('trtclassify')
"""Default logger used when none is injected"""

_FLOAT_TENSOR = 'tensor(float)'


class HostBuffer:
    """Host memory with the same interface as
    :class:`~trtclassify.deploy.trt_utils.DeviceBuffer`."""

    def __init__(self, binding: Binding, nbytes: int) -> None:
        self.binding = binding
        self.nbytes = nbytes
        self._host = np.zeros(nbytes, dtype=np.uint8)

    @property
    def is_input(self) -> bool:
        return self.binding.is_input

    def _memory(self) -> np.ndarray:
        if self._host is None:
            raise ValueError('Host buffer for {} was freed'.format(self.binding.name))
        return self._host

    def __int__(self) -> int:
        return self._memory().ctypes.data

    def upload(self, host_array: np.ndarray, offset: int = 0) -> None:
        raw = np.ascontiguousarray(host_array).reshape(-1).view(np.uint8)
        check_extent(self.nbytes, offset, raw.nbytes)
        self._memory()[offset:offset + raw.nbytes] = raw

    def download(self, num_elems: int, dtype: np.number = np.float32) -> np.ndarray:
        nbytes = num_elems * np.dtype(dtype).itemsize
        check_extent(self.nbytes, 0, nbytes)
        return self._memory()[:nbytes].view(dtype).copy()

    def array(self, shape: Sequence[int], dtype: np.number = np.float32) -> np.ndarray:
        """View of the buffer contents as an array of ``shape``."""
        return self._memory().view(dtype).reshape(tuple(shape))

    def free(self) -> None:
        self._host = None


class OnnxEngine:
    """An ONNX Runtime session exposed as a compiled engine."""

    fp16_mode = False

    def __init__(self, session: onnxruntime.InferenceSession, bindings: List[Binding]) -> None:
        self._session = session
        self.bindings = bindings

    def execute(self, buffers: Sequence[HostBuffer]) -> None:
        if len(buffers) != len(self.bindings):
            raise ValueError('Expected {} buffers, got {}'.format(len(self.bindings), len(buffers)))
        feeds = {binding.name: buffers[binding.index].array(binding.shape)
                 for binding in self.bindings if binding.is_input}
        outputs = [binding for binding in self.bindings if not binding.is_input]
        results = self._session.run([binding.name for binding in outputs], feeds)
        for binding, result in zip(outputs, results):
            buffers[binding.index].upload(np.asarray(result, dtype=np.float32))

    def close(self) -> None:
        self._session = None

    def __enter__(self) -> 'OnnxEngine':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class OnnxCompiler:
    """Creates :class:`OnnxEngine` objects from ONNX model files.

    :param logger:    Receives diagnostics
    :param providers: ONNX Runtime execution providers, CPU by default
    """

    def __init__(self,
                 logger: logging.Logger = _LOGGER,
                 providers: Optional[Sequence[str]] = None) -> None:
        self.logger = logger
        self.providers = list(providers or ['CPUExecutionProvider'])

    def compile(self,
                model_path: Union[str, os.PathLike],
                input_name: str,
                min_shape: Sequence[int],
                opt_shape: Sequence[int],
                max_shape: Sequence[int],
                fp16_mode: bool = True) -> OnnxEngine:
        """Load the model and resolve every binding shape for ``opt_shape``.

        Output shapes are found with one warm-up run on a zero input.
        """
        model_path = pathlib.Path(model_path)
        if not model_path.is_file():
            raise ParseError('ONNX file not found: {}'.format(model_path),
                             context={'model_path': str(model_path)})
        try:
            session = onnxruntime.InferenceSession(str(model_path), providers=self.providers)
        except Exception as e:
            self.logger.error('%s', e)
            raise ParseError('Could not parse the model: {}'.format(model_path),
                             context={'model_path': str(model_path)}) from e
        if fp16_mode:
            self.logger.debug('Reduced precision is not used by the ONNX Runtime backend')

        feeds = self._input_feeds(session, input_name, opt_shape)
        try:
            results = session.run(None, feeds)
        except Exception as e:
            raise CompilationError('Warm-up inference failed for {}'.format(model_path),
                                   context={'model_path': str(model_path)}) from e

        bindings = [Binding(index, name, feed.shape, True)
                    for index, (name, feed) in enumerate(feeds.items())]
        for output, result in zip(session.get_outputs(), results):
            if output.type != _FLOAT_TENSOR:
                raise ConfigurationError('Binding {} is not float32'.format(output.name),
                                         context={'binding': output.name})
            bindings.append(Binding(len(bindings), output.name, tuple(np.shape(result)), False))
        for binding in bindings:
            self.logger.info('Binding %d %s: %s %s', binding.index, binding.name,
                             'input' if binding.is_input else 'output', binding.shape)
        return OnnxEngine(session, bindings)

    def load(self, model_path, input_name, min_shape, opt_shape, max_shape,
             fp16_mode=True) -> OnnxEngine:
        return self.compile(model_path, input_name, min_shape, opt_shape, max_shape, fp16_mode)

    @staticmethod
    def _input_feeds(session: onnxruntime.InferenceSession,
                     input_name: str,
                     input_shape: Sequence[int]) -> Dict[str, np.ndarray]:
        inputs = session.get_inputs()
        if input_name not in [inp.name for inp in inputs]:
            raise ConfigurationError('Model has no input named {}'.format(input_name),
                                     context={'inputs': [inp.name for inp in inputs]})
        feeds = {}
        for inp in inputs:
            if inp.type != _FLOAT_TENSOR:
                raise ConfigurationError('Binding {} is not float32'.format(inp.name),
                                         context={'binding': inp.name})
            if inp.name == input_name:
                shape = tuple(input_shape)
            elif all(isinstance(dim, int) and dim >= 0 for dim in inp.shape):
                shape = tuple(inp.shape)
            else:
                raise ConfigurationError('Cannot resolve the shape of input {}'.format(inp.name),
                                         context={'binding': inp.name, 'shape': inp.shape})
            feeds[inp.name] = np.zeros(shape, dtype=np.float32)
        return feeds
