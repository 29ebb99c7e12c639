# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""Shared fixtures: in-memory stand-ins for the engine and device memory."""

import cv2
import numpy as np
import pytest

from trtclassify.tensor import Binding, FLOAT_SIZE, check_extent

INPUT_NAME = 'input_tensor:0'
SMALL_SHAPE = (1, 3, 4, 4)
NUM_CLASSES = 5


class ArrayBuffer:
    """Host buffer that remembers every copy made into it.

    Starts filled with NaN so unwritten elements can be detected.
    """

    def __init__(self, binding, nbytes, tracker=None):
        self.binding = binding
        self.nbytes = nbytes
        self.data = np.full(nbytes // FLOAT_SIZE, np.nan, dtype=np.float32)
        self.uploads = []
        self.freed = False
        self._tracker = tracker

    def __int__(self):
        return self.data.ctypes.data

    def upload(self, host_array, offset=0):
        raw = np.ascontiguousarray(host_array, dtype=np.float32).reshape(-1)
        check_extent(self.nbytes, offset, raw.nbytes)
        start = offset // FLOAT_SIZE
        self.data[start:start + raw.size] = raw
        self.uploads.append((offset, raw.nbytes))

    def download(self, num_elems, dtype=np.float32):
        check_extent(self.nbytes, 0, num_elems * FLOAT_SIZE)
        return self.data[:num_elems].astype(dtype)

    def free(self):
        if not self.freed and self._tracker is not None:
            self._tracker.live.remove(self)
        self.freed = True


class BufferTracker:
    """Allocator that keeps count of the buffers still alive."""

    def __init__(self):
        self.allocated = []
        self.live = []

    def __call__(self, binding, nbytes):
        buffer = ArrayBuffer(binding, nbytes, self)
        self.allocated.append(buffer)
        self.live.append(buffer)
        return buffer


class FakeEngine:
    """Engine that writes fixed scores to its output binding."""

    fp16_mode = False

    def __init__(self, bindings, scores=None):
        self.bindings = bindings
        self.scores = np.zeros(NUM_CLASSES, np.float32) if scores is None else scores
        self.executions = 0
        self.seen_input = None
        self.closed = False

    def execute(self, buffers):
        self.executions += 1
        for binding, buffer in zip(self.bindings, buffers):
            if binding.is_input:
                self.seen_input = buffer.download(buffer.nbytes // FLOAT_SIZE)
            else:
                buffer.upload(np.asarray(self.scores, dtype=np.float32))

    def close(self):
        self.closed = True


class FakeCompiler:
    """Compiler returning a prepared engine, or raising a prepared error."""

    def __init__(self, engine=None, error=None):
        self.engine = engine
        self.error = error
        self.calls = []

    def load(self, model_path, input_name, min_shape, opt_shape, max_shape, fp16_mode=True):
        self.calls.append((model_path, input_name, min_shape, opt_shape, max_shape, fp16_mode))
        if self.error is not None:
            raise self.error
        return self.engine


def classifier_bindings(shape=SMALL_SHAPE, num_classes=NUM_CLASSES):
    return [Binding(0, INPUT_NAME, tuple(shape), True),
            Binding(1, 'logits', (1, num_classes), False)]


def write_image(path, bgr_pixels):
    assert cv2.imwrite(str(path), np.asarray(bgr_pixels, dtype=np.uint8))
    return path


@pytest.fixture
def solid_image(tmp_path):
    """8x8 image of a single color, BGR (0, 128, 255), i.e. orange."""
    pixels = np.zeros((8, 8, 3), dtype=np.uint8)
    pixels[:, :] = (0, 128, 255)
    return write_image(tmp_path / 'solid.png', pixels)


@pytest.fixture
def tracker():
    return BufferTracker()


@pytest.fixture
def fake_engine():
    return FakeEngine(classifier_bindings())


@pytest.fixture
def label_file(tmp_path):
    path = tmp_path / 'classes.txt'
    path.write_text('tench\ngoldfish\nshark\n')
    return path


@pytest.fixture
def tiny_model(tmp_path):
    """ONNX classifier: (1, 3, 4, 4) input, flatten, matmul to 5 logits.

    Returns ``(path, weights)`` so tests can compute the expected output.
    """
    onnx = pytest.importorskip('onnx')
    from onnx import TensorProto, helper, numpy_helper

    rng = np.random.default_rng(1234)
    weights = rng.standard_normal((3 * 4 * 4, NUM_CLASSES)).astype(np.float32)
    graph = helper.make_graph(
        [helper.make_node('Flatten', [INPUT_NAME], ['flat'], axis=1),
         helper.make_node('MatMul', ['flat', 'weights'], ['logits'])],
        'tiny_classifier',
        [helper.make_tensor_value_info(INPUT_NAME, TensorProto.FLOAT, list(SMALL_SHAPE))],
        [helper.make_tensor_value_info('logits', TensorProto.FLOAT, [1, NUM_CLASSES])],
        initializer=[numpy_helper.from_array(weights, name='weights')])
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid('', 13)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    path = tmp_path / 'tiny_classifier.onnx'
    onnx.save(model, str(path))
    return path, weights
