#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
This module optimizes a neural network using NVIDIA's TensorRT framework and
runs inference with the optimized engine.

Optimized engines can be saved in ``.plan`` format, which is an internal,
platform-specific data format for TensorRT. Since TensorRT optimization
functions by running many variations of the network on the target hardware,
it must be executed on the platform that will be used for inference.

The basic workflow is as follows:

1. Save your trained model to an ONNX file
2. Compile the model with :meth:`ModelCompiler.compile`, optionally saving
   the result with :meth:`CompiledEngine.save`
3. Bind one :class:`~trtclassify.deploy.trt_utils.DeviceBuffer` per binding
   and call :meth:`CompiledEngine.execute`
4. Later runs can skip the build with :func:`load_plan`
"""

import logging
import os
import pathlib
from typing import List, Optional, Sequence, Union

import pycuda.driver as cuda
import tensorrt as trt

from trtclassify.errors import CompilationError, ConfigurationError, ParseError, TrtClassifyError
from trtclassify.pipeline import DEFAULT_WORKSPACE_SIZE
from trtclassify.tensor import Binding

_LOGGER = logging.getLogger('trtclassify')
"""Default logger used when none is injected"""

_SEVERITY_LEVELS = {
    trt.ILogger.Severity.INTERNAL_ERROR: logging.CRITICAL,
    trt.ILogger.Severity.ERROR: logging.ERROR,
    trt.ILogger.Severity.WARNING: logging.WARNING,
    trt.ILogger.Severity.INFO: logging.INFO,
    trt.ILogger.Severity.VERBOSE: logging.DEBUG,
}


class TrtLogger(trt.ILogger):
    """Forwards TensorRT messages to a :class:`logging.Logger`.

    Filtering is left to the level of the wrapped logger.
    """

    def __init__(self, logger: logging.Logger = _LOGGER) -> None:
        trt.ILogger.__init__(self)
        self.logger = logger

    def log(self, severity: trt.ILogger.Severity, msg: str) -> None:
        self.logger.log(_SEVERITY_LEVELS.get(severity, logging.INFO), msg)


class CompiledEngine:
    """A TensorRT engine together with its execution context.

    Building an engine is expensive, so create it once and reuse it for
    every inference. The engine owns exactly one execution context and one
    CUDA stream; the context is not safe to use from multiple threads.

    :var List[Binding] bindings: I/O metadata, one entry per binding index
    :var bool fp16_mode:         Whether reduced precision was enabled at
                                 build time (``None`` for a loaded plan)
    """

    def __init__(self,
                 runtime: trt.Runtime,
                 engine: trt.ICudaEngine,
                 input_name: Optional[str] = None,
                 input_shape: Optional[Sequence[int]] = None,
                 fp16_mode: Optional[bool] = None) -> None:
        self._runtime = runtime
        self._engine = engine
        self.fp16_mode = fp16_mode
        self._context = engine.create_execution_context()
        if self._context is None:
            raise CompilationError('Unable to create TensorRT execution context')
        if input_name is not None and input_shape is not None:
            if not self._context.set_input_shape(input_name, tuple(input_shape)):
                raise ConfigurationError('Engine rejected shape {} for input {}'.format(
                    tuple(input_shape), input_name),
                    context={'input_name': input_name, 'shape': tuple(input_shape)})
        self.bindings = self._read_bindings()
        self._stream = cuda.Stream()

    def _read_bindings(self) -> List[Binding]:
        bindings = []
        for index in range(self._engine.num_io_tensors):
            name = self._engine.get_tensor_name(index)
            if self._engine.get_tensor_dtype(name) != trt.float32:
                raise ConfigurationError('Binding {} is not float32'.format(name),
                                         context={'binding': name})
            is_input = self._engine.get_tensor_mode(name) == trt.TensorIOMode.INPUT
            # Read from the context so that dynamic dimensions are resolved
            shape = tuple(self._context.get_tensor_shape(name))
            bindings.append(Binding(index, name, shape, is_input))
        return bindings

    def execute(self, buffers: Sequence) -> None:
        """Run inference on the bound buffers and wait for the result.

        :param buffers: One device buffer per binding, in binding order
        """
        if len(buffers) != len(self.bindings):
            raise ValueError('Expected {} buffers, got {}'.format(len(self.bindings), len(buffers)))
        for binding, buff in zip(self.bindings, buffers):
            self._context.set_tensor_address(binding.name, int(buff))
        if not self._context.execute_async_v3(stream_handle=self._stream.handle):
            raise TrtClassifyError('TensorRT failed to enqueue inference')
        # Results must be fully written before anyone reads the output buffer
        self._stream.synchronize()

    def serialize(self) -> bytes:
        return bytes(self._engine.serialize())

    def save(self, plan_file: Union[str, os.PathLike]) -> pathlib.Path:
        """Write the optimized engine to a ``.plan`` file."""
        plan_file = pathlib.Path(plan_file)
        with open(plan_file, 'wb') as f:
            f.write(self.serialize())
        return plan_file

    def close(self) -> None:
        """Release the context and then the engine it was created from."""
        self._context = None
        self._engine = None
        self._runtime = None

    def __enter__(self) -> 'CompiledEngine':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ModelCompiler:
    """Builds TensorRT engines from ONNX models.

    :param logger:         Receives parser errors and TensorRT messages
    :param workspace_size: Maximum scratch memory that the TensorRT optimizer
                           may use, defaults to 1GB. The default can be used in
                           most situations and may only need to be reduced on
                           very low-end GPU hardware
    """

    def __init__(self,
                 logger: logging.Logger = _LOGGER,
                 workspace_size: int = DEFAULT_WORKSPACE_SIZE) -> None:
        self.logger = logger
        self.workspace_size = workspace_size
        self._trt_logger = TrtLogger(logger)

    def compile(self,
                model_path: Union[str, os.PathLike],
                input_name: str,
                min_shape: Sequence[int],
                opt_shape: Sequence[int],
                max_shape: Sequence[int],
                fp16_mode: bool = True) -> CompiledEngine:
        """Optimize an ONNX model for the current GPU.

        :param model_path: ONNX model file
        :param input_name: Name of the model's input binding
        :param min_shape:  Smallest input shape of the optimization profile
        :param opt_shape:  Input shape to optimize for
        :param max_shape:  Largest input shape of the optimization profile
        :param fp16_mode:  Use reduced precision (float16) layers if the GPU
                           has fast float16 support
        :raises ParseError:         if the model cannot be read or parsed
        :raises ConfigurationError: if the model has no input named ``input_name``
        :raises CompilationError:   if no engine fits the constraints
        """
        model_path = pathlib.Path(model_path)  # Convert from string if necessary
        if not model_path.is_file():
            raise ParseError('ONNX file not found: {}'.format(model_path),
                             context={'model_path': str(model_path)})

        # Setup TensorRT builder and create network
        builder = trt.Builder(self._trt_logger)
        batch_flag = 1 << int(trt.NetworkDefinitionCreationFlag.EXPLICIT_BATCH)
        network = builder.create_network(flags=batch_flag)

        # Parse the ONNX file
        parser = trt.OnnxParser(network, self._trt_logger)
        if not parser.parse_from_file(str(model_path)):
            errors = [str(parser.get_error(i)) for i in range(parser.num_errors)]
            for error in errors:
                self.logger.error('%s', error)
            raise ParseError('Could not parse the model: {}'.format(model_path),
                             context={'model_path': str(model_path), 'errors': errors})

        input_names = [network.get_input(i).name for i in range(network.num_inputs)]
        if input_name not in input_names:
            raise ConfigurationError('Model has no input named {}'.format(input_name),
                                     context={'inputs': input_names})

        config = builder.create_builder_config()
        config.set_memory_pool_limit(trt.MemoryPoolType.WORKSPACE, self.workspace_size)
        fp16_enabled = bool(fp16_mode and builder.platform_has_fast_fp16)
        if fp16_enabled:
            config.set_flag(trt.BuilderFlag.FP16)

        # A single profile; min == opt == max gives a fixed shape engine
        profile = builder.create_optimization_profile()
        profile.set_shape(input_name, tuple(min_shape), tuple(opt_shape), tuple(max_shape))
        config.add_optimization_profile(profile)

        self.logger.info('Building TensorRT engine from %s (fp16=%s, workspace=%d bytes)',
                         model_path, fp16_enabled, self.workspace_size)
        serialized = builder.build_serialized_network(network, config)
        if serialized is None:
            raise CompilationError('Unable to create TensorRT engine. Check settings',
                                   context={'model_path': str(model_path),
                                            'workspace_size': self.workspace_size})

        runtime = trt.Runtime(self._trt_logger)
        engine = runtime.deserialize_cuda_engine(serialized)
        if engine is None:
            raise CompilationError('Unable to deserialize the built engine')
        compiled = CompiledEngine(runtime, engine, input_name, opt_shape, fp16_enabled)
        for binding in compiled.bindings:
            self.logger.info('Binding %d %s: %s %s', binding.index, binding.name,
                             'input' if binding.is_input else 'output', binding.shape)
        return compiled

    def load(self,
             model_path: Union[str, os.PathLike],
             input_name: str,
             min_shape: Sequence[int],
             opt_shape: Sequence[int],
             max_shape: Sequence[int],
             fp16_mode: bool = True) -> CompiledEngine:
        """Compile an ``.onnx`` model or load a pre-optimized ``.plan`` file."""
        model_path = pathlib.Path(model_path)
        if model_path.suffix == '.plan':
            return load_plan(model_path, input_name, opt_shape, self._trt_logger)
        elif model_path.suffix == '.onnx':
            return self.compile(model_path, input_name, min_shape, opt_shape, max_shape,
                                fp16_mode)
        raise ParseError('Unknown file extension {}'.format(model_path.suffix),
                         context={'model_path': str(model_path)})


def load_plan(plan_file: Union[str, os.PathLike],
              input_name: Optional[str] = None,
              input_shape: Optional[Sequence[int]] = None,
              trt_logger: Optional[TrtLogger] = None) -> CompiledEngine:
    """Load an engine previously written by :meth:`CompiledEngine.save`.

    :param plan_file:   TensorRT ``.plan`` file containing the optimized model
    :param input_name:  Input binding whose shape is set on the context
    :param input_shape: Shape to set, required if the plan has dynamic dimensions
    :param trt_logger:  Logger handed to the TensorRT runtime
    :raises ParseError: if the file is missing or is not a valid plan for this GPU
    """
    plan_file = pathlib.Path(plan_file)
    if not plan_file.is_file():
        raise ParseError('PLAN file not found: {}'.format(plan_file),
                         context={'plan_file': str(plan_file)})
    runtime = trt.Runtime(trt_logger or TrtLogger())
    with open(plan_file, 'rb') as f:
        engine = runtime.deserialize_cuda_engine(f.read())
    if engine is None:
        raise ParseError('Unable to load TensorRT plan: {}'.format(plan_file),
                         context={'plan_file': str(plan_file)})
    return CompiledEngine(runtime, engine, input_name, input_shape)
