#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Image classification on NVIDIA GPUs with TensorRT.

The pipeline compiles an ONNX classifier into a TensorRT engine, copies a
normalized image into the engine's input binding, runs it and reports the
most likely classes. The GPU stack (``tensorrt`` and ``pycuda``) is only
imported by :mod:`trtclassify.deploy.trt` and :mod:`trtclassify.deploy.trt_utils`,
so the host side modules can be used without it.
"""

__version__ = '0.1.0'
