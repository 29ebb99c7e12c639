#!/usr/bin/env python3

# Copyright (C) 2022 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

import logging
import os
import pathlib
import sys
from typing import Sequence, Union

_script_dir = pathlib.Path(__file__).parent.absolute()
_package_root = _script_dir.parent

try:
    from trtclassify.deploy import trt, trt_utils
    from trtclassify.pipeline import DEFAULT_INPUT_NAME, DEFAULT_INPUT_SHAPE, DEFAULT_WORKSPACE_SIZE
except ModuleNotFoundError as e:
    _msg = "{0}\nPlease run:\n  pip install -e {1}".format(e, _package_root)
    raise ModuleNotFoundError(_msg).with_traceback(sys.exc_info()[2]) from None


def convert(onnx_file: Union[str, os.PathLike],
            input_name: str = DEFAULT_INPUT_NAME,
            input_shape: Sequence[int] = DEFAULT_INPUT_SHAPE,
            fp16_mode: bool = True,
            workspace_size: int = DEFAULT_WORKSPACE_SIZE) -> pathlib.Path:
    """ Converts an onnx file to an optimized plan file using TensorRT.

    The ``.plan`` file is saved next to the ONNX file and can be given to
    :py:func:`trtclassify_scripts.run_inference.classify` in place of the ONNX
    model to skip the engine build.

    .. note::
        A plan file is only valid on the GPU model and TensorRT version that
        created it.

    :param onnx_file:      Trained neural network saved as an onnx file
    :param input_name:     Name of the input binding
    :param input_shape:    Fixed ``(N, C, H, W)`` input shape
    :param fp16_mode:      Allow reduced precision layers
    :param workspace_size: Builder workspace size in bytes
    :return:               Name of saved .plan file
    """
    onnx_file = pathlib.Path(onnx_file)
    plan_file = onnx_file.with_suffix('.plan')

    # Remove the output file if it already exists
    if plan_file.is_file():
        plan_file.unlink()

    trt_utils.make_cuda_context()
    compiler = trt.ModelCompiler(workspace_size=workspace_size)
    with compiler.compile(onnx_file, input_name, input_shape, input_shape, input_shape,
                          fp16_mode) as engine:
        engine.save(plan_file)
        fp16_enabled = engine.fp16_mode

    print('\nONNX File Name  : {}'.format(onnx_file))
    print('ONNX File Size  : {}'.format(os.path.getsize(onnx_file)))
    print('PLAN File Name : {}'.format(plan_file))
    print('PLAN File Size : {}'.format(os.path.getsize(plan_file)))
    print('FP16 Enabled   : {}\n'.format(fp16_enabled))
    return plan_file


if __name__ == '__main__':
    logging.basicConfig(level=logging.WARNING)
    convert(sys.argv[1])
