#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
This application is used as an example on how to classify a single image with
a TensorRT optimized classifier.
"""

import argparse
import logging
import os
import pathlib
import sys
from typing import List, Optional, Sequence, Union

_script_dir = pathlib.Path(__file__).parent.absolute()
_package_root = _script_dir.parent

try:
    from trtclassify.errors import TrtClassifyError
    from trtclassify.pipeline import (DEFAULT_INPUT_NAME, DEFAULT_INPUT_SHAPE,
                                      DEFAULT_WORKSPACE_SIZE, make_pipeline)
    from trtclassify.postprocess import PredictionEntry
except ModuleNotFoundError as e:
    _msg = "{0}\nPlease run:\n  pip install -e {1}".format(e, _package_root)
    raise ModuleNotFoundError(_msg).with_traceback(sys.exc_info()[2]) from None


def _parse_command_line_arguments(argv: Sequence[str]) -> argparse.Namespace:
    """ Parses command line input arguments for run_inference

    :param argv: Arguments, without the program name
    """
    help_formatter = argparse.ArgumentDefaultsHelpFormatter
    parser = argparse.ArgumentParser(description='Single image classification.',
                                     formatter_class=help_formatter)
    parser.add_argument('-m', type=str, required=True, dest='model_file',
                        help='Trained neural network model file (onnx or plan)')
    parser.add_argument('-i', type=str, required=True, dest='image_file',
                        help='Image to classify')
    parser.add_argument('-l', type=str, required=False, dest='label_file',
                        default=None, help='Text file with one class name per line')
    parser.add_argument('-n', type=str, required=False, dest='input_name',
                        default=DEFAULT_INPUT_NAME, help='Name of input binding')
    parser.add_argument('-s', type=int, nargs=2, required=False, dest='input_size',
                        default=list(DEFAULT_INPUT_SHAPE[2:]), metavar=('HEIGHT', 'WIDTH'),
                        help='Input height and width of the model')
    parser.add_argument('-b', type=str, required=False, dest='backend',
                        default='tensorrt', choices=['tensorrt', 'onnxruntime'],
                        help='Inference engine')
    parser.add_argument('-w', type=int, required=False, dest='workspace_size',
                        default=DEFAULT_WORKSPACE_SIZE,
                        help='TensorRT builder workspace size in bytes')
    parser.add_argument('--no-fp16', action='store_false', dest='fp16_mode',
                        help='Never use reduced precision layers')
    parser.add_argument('-v', action='count', dest='verbose', default=0,
                        help='Increase logging verbosity (-v info, -vv debug)')
    return parser.parse_args(argv)


def classify(model_file: Union[str, os.PathLike],
             image_file: Union[str, os.PathLike],
             label_file: Optional[Union[str, os.PathLike]] = None,
             input_name: str = DEFAULT_INPUT_NAME,
             input_size: Sequence[int] = DEFAULT_INPUT_SHAPE[2:],
             backend: str = 'tensorrt',
             workspace_size: int = DEFAULT_WORKSPACE_SIZE,
             fp16_mode: bool = True) -> List[PredictionEntry]:
    """ Compile the model, classify one image and print the result.

    Example usage:

    .. code-block:: python

        from trtclassify_scripts.run_inference import classify
        classify(
            'updated_model.onnx',
            'turkish_coffee.jpg',
            label_file='imagenet_classes.txt',
            input_name='input_tensor:0',
            input_size=(224, 224)
        )

    :param model_file:     Trained neural network model file (onnx or plan)
    :param image_file:     Image to classify
    :param label_file:     Text file with one class name per line
    :param input_name:     Name of the input binding
    :param input_size:     ``(height, width)`` of the model input
    :param backend:        ``'tensorrt'`` or ``'onnxruntime'``
    :param workspace_size: TensorRT builder workspace size in bytes
    :param fp16_mode:      Allow reduced precision layers
    :return:               Predictions, most likely first
    """
    height, width = input_size
    input_shape = (1, 3, height, width)
    with make_pipeline(model_file, backend=backend, label_file=label_file,
                       workspace_size=workspace_size, input_name=input_name,
                       input_shape=input_shape, fp16_mode=fp16_mode) as pipeline:
        return pipeline.run(image_file)


def main(argv: Optional[Sequence[str]] = None) -> int:
    pars = _parse_command_line_arguments(sys.argv[1:] if argv is None else argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(pars.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        classify(
            pars.model_file,
            pars.image_file,
            label_file=pars.label_file,
            input_name=pars.input_name,
            input_size=pars.input_size,
            backend=pars.backend,
            workspace_size=pars.workspace_size,
            fp16_mode=pars.fp16_mode
        )
    except TrtClassifyError as e:
        print('ERROR: {}'.format(e.message), file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
