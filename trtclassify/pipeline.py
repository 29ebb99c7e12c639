#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Single image classification: compile, bind, preprocess, execute, decode.

Example usage:

.. code-block:: python

    from trtclassify.pipeline import make_pipeline

    with make_pipeline('resnet50.onnx', label_file='imagenet_classes.txt') as pipeline:
        predictions = pipeline.run('turkish_coffee.jpg')
"""

import contextlib
import enum
import logging
import os
import pathlib
import time
from typing import Callable, List, Optional, Sequence, Union

from trtclassify.errors import ConfigurationError, TrtClassifyError
from trtclassify.labels import load_labels
from trtclassify.postprocess import DEFAULT_THRESHOLD, PredictionEntry, decode, format_prediction
from trtclassify.preprocess import preprocess
from trtclassify.tensor import Binding, binding_nbytes

DEFAULT_INPUT_NAME = 'input_tensor:0'
DEFAULT_INPUT_SHAPE = (1, 3, 224, 224)
DEFAULT_WORKSPACE_SIZE = 1 << 30
"""Scratch memory the TensorRT optimizer may use for tactic selection (1GB)"""

_LOGGER = logging.getLogger('trtclassify')
"""Default logger used when none is injected"""


class PipelineState(enum.Enum):
    """Stages of a run, in the order they are reached."""
    UNINITIALIZED = 0
    COMPILED = 1
    BUFFERS_ALLOCATED = 2
    INPUT_READY = 3
    EXECUTED = 4
    DECODED = 5
    RELEASED = 6


class InferencePipeline:
    """Runs a classifier on one image at a time.

    The engine is compiled on the first run (or an explicit :meth:`compile`)
    and reused afterwards. Buffers live only for the duration of a run and
    are released on every exit path, including failures.

    If a run fails, :attr:`state` is left at the last stage that completed.

    :param compiler:    Object with a ``load(model_path, input_name, min_shape,
                        opt_shape, max_shape, fp16_mode)`` method returning an engine
    :param allocator:   Called as ``allocator(binding, nbytes)`` to create one buffer
    :param model_path:  ONNX model (or ``.plan`` file for TensorRT)
    :param input_name:  Name of the model's input binding
    :param input_shape: Fixed ``(N, C, H, W)`` input shape
    :param labels:      Class names, index ``i`` is output channel ``i``
    :param batch_size:  Number of images per inference, only 1 is supported
    :param fp16_mode:   Allow reduced precision where the device supports it
    :param threshold:   Minimum probability of a reported class
    :param logger:      Receives diagnostics and fatal errors
    :param cuda_context: CUDA context made current while the pipeline works on
                        the GPU, or ``None`` for host backends
    """

    def __init__(self,
                 compiler,
                 allocator: Callable[[Binding, int], object],
                 model_path: Union[str, os.PathLike],
                 input_name: str = DEFAULT_INPUT_NAME,
                 input_shape: Sequence[int] = DEFAULT_INPUT_SHAPE,
                 labels: Sequence[str] = (),
                 batch_size: int = 1,
                 fp16_mode: bool = True,
                 threshold: float = DEFAULT_THRESHOLD,
                 logger: logging.Logger = _LOGGER,
                 cuda_context=None) -> None:
        if batch_size != 1:
            raise ConfigurationError('Only a batch size of 1 is supported, got {}'.format(batch_size),
                                     context={'batch_size': batch_size})
        self.compiler = compiler
        self.allocator = allocator
        self.model_path = pathlib.Path(model_path)
        self.input_name = input_name
        self.input_shape = tuple(input_shape)
        self.labels = list(labels)
        self.batch_size = batch_size
        self.fp16_mode = fp16_mode
        self.threshold = threshold
        self.logger = logger
        self.cuda_context = cuda_context

        self.engine = None
        self.state = PipelineState.UNINITIALIZED
        self.last_latency: Optional[float] = None

    def compile(self):
        """Build the engine if it does not exist yet and return it."""
        if self.engine is None:
            shape = self.input_shape
            with self._activated():
                self.engine = self.compiler.load(self.model_path, self.input_name,
                                                 shape, shape, shape, self.fp16_mode)
            self.state = PipelineState.COMPILED
        return self.engine

    def run(self, image_path: Union[str, os.PathLike]) -> List[PredictionEntry]:
        """Classify one image, print and return the predictions.

        :param image_path: Image file to classify
        :return:           Predictions, most likely first
        """
        try:
            with self._activated():
                return self._run(image_path)
        except TrtClassifyError as e:
            self.logger.error('%s', e.message)
            raise

    def _run(self, image_path: Union[str, os.PathLike]) -> List[PredictionEntry]:
        engine = self.compile()
        self.state = PipelineState.COMPILED

        buffers = []
        with contextlib.ExitStack() as stack:
            for binding in engine.bindings:
                buffer = self.allocator(binding, binding_nbytes(binding.shape, self.batch_size))
                stack.callback(buffer.free)
                buffers.append(buffer)
            self.state = PipelineState.BUFFERS_ALLOCATED

            inputs = [buffer for buffer in buffers if buffer.binding.is_input]
            outputs = [buffer for buffer in buffers if not buffer.binding.is_input]
            if not inputs or not outputs:
                raise ConfigurationError('Expect at least one input and one output for network',
                                         context={'inputs': len(inputs), 'outputs': len(outputs)})

            preprocess(image_path, inputs[0].binding.shape, inputs[0])
            self.state = PipelineState.INPUT_READY

            start_time = time.monotonic()
            engine.execute(buffers)
            self.last_latency = time.monotonic() - start_time
            self.state = PipelineState.EXECUTED
            print('inference time : {:0.3f}ms'.format(self.last_latency / 1e-3))

            output = outputs[0]
            predictions = decode(output, output.binding.shape, self.batch_size, self.labels,
                                 self.threshold)
            self.state = PipelineState.DECODED
        self.state = PipelineState.RELEASED

        for entry in predictions:
            print(format_prediction(entry))
        return predictions

    def close(self) -> None:
        """Release the engine."""
        if self.engine is not None:
            with self._activated():
                self.engine.close()
            self.engine = None

    @contextlib.contextmanager
    def _activated(self):
        if self.cuda_context is None:
            yield
            return
        self.cuda_context.push()
        try:
            yield
        finally:
            self.cuda_context.pop()

    def __enter__(self) -> 'InferencePipeline':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def make_pipeline(model_path: Union[str, os.PathLike],
                  backend: str = 'tensorrt',
                  label_file: Optional[Union[str, os.PathLike]] = None,
                  workspace_size: int = DEFAULT_WORKSPACE_SIZE,
                  gpu_index: int = 0,
                  logger: logging.Logger = _LOGGER,
                  **kwargs) -> InferencePipeline:
    """Create a pipeline for the selected backend.

    :param model_path:     Model file to compile
    :param backend:        ``'tensorrt'`` (GPU) or ``'onnxruntime'`` (host reference)
    :param label_file:     Optional class names file; a missing file only loses the names
    :param workspace_size: TensorRT builder scratch memory limit in bytes
    :param gpu_index:      GPU used by the TensorRT backend
    :param logger:         Injected into the compiler, label loader and pipeline
    :param kwargs:         Passed on to :class:`InferencePipeline`
    """
    if backend == 'tensorrt':
        from trtclassify.deploy import trt, trt_utils
        kwargs.setdefault('cuda_context', trt_utils.make_cuda_context(gpu_index))
        compiler = trt.ModelCompiler(logger, workspace_size)
        allocator = trt_utils.DeviceBuffer
    elif backend == 'onnxruntime':
        from trtclassify.deploy import onnx
        compiler = onnx.OnnxCompiler(logger)
        allocator = onnx.HostBuffer
    else:
        raise ValueError('Unknown backend {}'.format(backend))
    labels = load_labels(label_file, logger)
    return InferencePipeline(compiler, allocator, model_path, labels=labels, logger=logger,
                             **kwargs)
