#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Human readable class names for the classifier output.

The label file is plain text with one class name per line: the line number
(starting at zero) is the index of the corresponding output channel.
"""

import logging
import os
from typing import List, Optional, Sequence, Union

from trtclassify.errors import ResourceError

_LOGGER = logging.getLogger('trtclassify')
"""Default logger used when none is injected"""


def read_labels(label_file: Union[str, os.PathLike]) -> List[str]:
    """Read the class names from ``label_file``.

    :param label_file: Newline delimited text file, one class name per line
    :return:           Class names, index ``i`` is output channel ``i``
    :raises ResourceError: if the file cannot be read or is not UTF-8 text
    """
    try:
        with open(label_file, 'r', encoding='utf-8') as f:
            return [line.rstrip('\r\n') for line in f]
    except (OSError, UnicodeDecodeError) as e:
        raise ResourceError("Can't read file with class names: {}".format(label_file),
                            context={'label_file': str(label_file)}) from e


def load_labels(label_file: Optional[Union[str, os.PathLike]],
                logger: logging.Logger = _LOGGER) -> List[str]:
    """Same as :func:`read_labels` but degrades to an empty table.

    Predictions are still reported without a label file, only without names.
    """
    if label_file is None:
        return []
    try:
        return read_labels(label_file)
    except ResourceError as e:
        logger.error('%s', e.message)
        return []


def label_for(labels: Sequence[str], index: int) -> Optional[str]:
    """Name of class ``index`` or ``None`` if the table has no such entry."""
    if 0 <= index < len(labels):
        return labels[index]
    return None
