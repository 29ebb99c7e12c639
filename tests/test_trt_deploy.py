#!/usr/bin/env python3
# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

import sys

import numpy as np
import pytest

if __name__ == "__main__":
    rc = pytest.main([__file__, "-ra"])
    sys.exit(rc)

try:
    import pycuda.driver as cuda
    import tensorrt
    from trtclassify.deploy import trt, trt_utils
except ImportError:
    pytest.skip("TensorRT or PyCUDA not available, skipping related tests",
                allow_module_level=True)

try:
    trt_utils.make_cuda_context()
except cuda.Error:
    pytest.skip("No usable CUDA device, skipping related tests", allow_module_level=True)

from conftest import INPUT_NAME, NUM_CLASSES, SMALL_SHAPE
from trtclassify.errors import ConfigurationError, ParseError
from trtclassify.pipeline import InferencePipeline, PipelineState
from trtclassify.postprocess import softmax
from trtclassify.preprocess import load_frame
from trtclassify.tensor import Binding
from trtclassify_scripts import make_plan_file


def _compile(compiler, model_path, input_name=INPUT_NAME, fp16_mode=False):
    return compiler.compile(model_path, input_name, SMALL_SHAPE, SMALL_SHAPE, SMALL_SHAPE,
                            fp16_mode)


def test_compile_bindings(tiny_model):
    model_path, _ = tiny_model
    with _compile(trt.ModelCompiler(), model_path) as engine:
        assert engine.bindings == [Binding(0, INPUT_NAME, SMALL_SHAPE, True),
                                   Binding(1, 'logits', (1, NUM_CLASSES), False)]
        assert engine.fp16_mode is False


def test_fp16_follows_platform_capability(tiny_model):
    model_path, _ = tiny_model
    has_fast_fp16 = tensorrt.Builder(tensorrt.Logger()).platform_has_fast_fp16
    with _compile(trt.ModelCompiler(), model_path, fp16_mode=True) as engine:
        assert engine.fp16_mode == has_fast_fp16


def test_parse_error(tmp_path):
    path = tmp_path / 'broken.onnx'
    path.write_bytes(b'\x00\x01not a protobuf at all')
    with pytest.raises(ParseError):
        _compile(trt.ModelCompiler(), path)


def test_unknown_input_name(tiny_model):
    model_path, _ = tiny_model
    with pytest.raises(ConfigurationError):
        _compile(trt.ModelCompiler(), model_path, input_name='images')


def test_device_buffer_copies():
    binding = Binding(0, 'input', (1, 8), True)
    buffer = trt_utils.DeviceBuffer(binding, 32)
    try:
        buffer.upload(np.arange(4, dtype=np.float32), offset=16)
        assert buffer.download(8)[4:].tolist() == [0, 1, 2, 3]
        with pytest.raises(ValueError):
            buffer.upload(np.zeros(5, dtype=np.float32), offset=16)
    finally:
        buffer.free()
    buffer.free()


def test_pipeline_on_gpu(tiny_model, solid_image, tmp_path):
    model_path, weights = tiny_model
    compiler = trt.ModelCompiler()
    with InferencePipeline(compiler, trt_utils.DeviceBuffer, model_path, input_name=INPUT_NAME,
                           input_shape=SMALL_SHAPE, fp16_mode=False) as pipeline:
        predictions = pipeline.run(solid_image)
        assert pipeline.state is PipelineState.RELEASED

        plan_file = pipeline.engine.save(tmp_path / 'tiny_classifier.plan')

    probabilities = softmax(load_frame(solid_image, SMALL_SHAPE).reshape(1, -1) @ weights)
    assert predictions[0].index == int(np.argmax(probabilities))

    with InferencePipeline(compiler, trt_utils.DeviceBuffer, plan_file, input_name=INPUT_NAME,
                           input_shape=SMALL_SHAPE) as pipeline:
        assert [p.index for p in pipeline.run(solid_image)] == [p.index for p in predictions]


def test_cuda_context_created_once_per_gpu():
    assert trt_utils.make_cuda_context() is trt_utils.make_cuda_context()
    assert trt_utils.make_cuda_context(0) is trt_utils.make_cuda_context()


def test_make_plan_file(tiny_model, capsys):
    model_path, _ = tiny_model
    stale_plan = model_path.with_suffix('.plan')
    stale_plan.write_bytes(b'left over from an earlier build')

    plan_file = make_plan_file.convert(model_path, input_name=INPUT_NAME,
                                       input_shape=SMALL_SHAPE, fp16_mode=False)
    assert plan_file == stale_plan
    assert plan_file.is_file()
    out = capsys.readouterr().out
    assert 'PLAN File Name : {}'.format(plan_file) in out
    assert 'FP16 Enabled   : False' in out

    with trt.load_plan(plan_file, INPUT_NAME, SMALL_SHAPE) as engine:
        assert engine.bindings == [Binding(0, INPUT_NAME, SMALL_SHAPE, True),
                                   Binding(1, 'logits', (1, NUM_CLASSES), False)]
