#!/usr/bin/env python3
# Copyright 2021, Deepwave Digital, Inc.
# SPDX-License-Identifier: Commercial

# Setuptools / installation script for TrtClassify

import setuptools

setuptools.setup(
    name='TrtClassify',
    version='0.1.0',
    packages=['trtclassify', 'trtclassify.deploy', 'trtclassify_scripts'],
    license='Commercial',
    python_requires='>=3.8',
    install_requires=[
        'numpy',
        'scipy',
        'opencv-python',
        'onnxruntime',
    ],
    extras_require={
        'trt': ['tensorrt>=10', 'pycuda'],
        'test': ['pytest', 'onnx'],
    },
)
