#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Exceptions raised while building an engine and running classification.

Model and image failures are fatal to a run: they are raised before any
further device work is attempted. A missing label file is the only
recoverable failure, see :func:`trtclassify.labels.load_labels`.
"""

from typing import Any, Dict, Optional


class TrtClassifyError(Exception):
    """Base class for all errors raised by this package.

    :var str message:  Human readable description
    :var dict context: Extra values useful when debugging (paths, shapes, ...)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __repr__(self) -> str:
        ctx_str = ', context={}'.format(self.context) if self.context else ''
        return '{}({!r}{})'.format(self.__class__.__name__, self.message, ctx_str)


class ParseError(TrtClassifyError):
    """The model file is missing, malformed or uses unsupported operators."""


class CompilationError(TrtClassifyError):
    """No executable plan could be built under the given constraints."""


class ConfigurationError(TrtClassifyError):
    """Engine bindings do not match what the pipeline needs."""


class DecodeError(TrtClassifyError):
    """The input image is missing or cannot be decoded."""


class ResourceError(TrtClassifyError):
    """An auxiliary resource (e.g. the label file) could not be read."""
