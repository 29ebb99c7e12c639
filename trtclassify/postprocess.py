#!/usr/bin/env python3

# Copyright (C) 2021 Deepwave Digital, Inc - All Rights Reserved
# You may use, distribute and modify this code under the terms of the DEEPWAVE DIGITAL SOFTWARE
# SOURCE CODE TERMS OF USE, which is provided with the code. If a copy of the license was not
# received, please write to support@deepwavedigital.com

"""
Turn the raw output tensor of a classifier into a ranked list of predictions.

The output scores are normalized with a softmax and reported from the most
to the least likely class for as long as the probability stays above a
threshold, so the number of reported classes depends on how confident the
network is.
"""

from typing import List, NamedTuple, Optional, Sequence

import numpy as np
import scipy.special

from trtclassify.labels import label_for
from trtclassify.tensor import element_count

DEFAULT_THRESHOLD = 0.005
"""Minimum probability (0.5%) of a reported class"""


class PredictionEntry(NamedTuple):
    """One reported class."""
    index: int
    confidence: float  # percent
    name: Optional[str] = None


def softmax(scores: np.ndarray) -> np.ndarray:
    """Probability distribution over all the values of ``scores``."""
    return scipy.special.softmax(np.asarray(scores, dtype=np.float64).ravel())


def rank(probabilities: np.ndarray) -> np.ndarray:
    """Indices sorted by descending probability.

    The sort is stable, so of two equal values the one with the lower index
    is ranked first.
    """
    return np.argsort(-np.asarray(probabilities), kind='stable')


def select(probabilities: np.ndarray,
           ranking: Sequence[int],
           labels: Sequence[str] = (),
           threshold: float = DEFAULT_THRESHOLD) -> List[PredictionEntry]:
    """Walk ``ranking`` and keep entries while their probability is above ``threshold``.

    :param probabilities: Probability of each class
    :param ranking:       Class indices, most likely first
    :param labels:        Class names; indices outside the table stay unnamed
    :param threshold:     Stop at the first probability not above this value
    :return:              Reported predictions, most likely first
    """
    predictions = []
    for index in ranking:
        index = int(index)
        prob = float(probabilities[index])
        if not prob > threshold:
            break
        predictions.append(PredictionEntry(index, 100.0 * prob, label_for(labels, index)))
    return predictions


def decode(buffer,
           output_shape: Sequence[int],
           batch_size: int = 1,
           labels: Sequence[str] = (),
           threshold: float = DEFAULT_THRESHOLD) -> List[PredictionEntry]:
    """Copy the output tensor to the host and report the most likely classes.

    :param buffer:       Output buffer of the engine (``DeviceBuffer`` or ``HostBuffer``)
    :param output_shape: Shape of the output binding
    :param batch_size:   Number of batches held by the buffer
    :param labels:       Class names
    :param threshold:    Minimum probability of a reported class
    """
    scores = buffer.download(element_count(output_shape) * batch_size, np.float32)
    probabilities = softmax(scores)
    return select(probabilities, rank(probabilities), labels, threshold)


def format_prediction(entry: PredictionEntry) -> str:
    """Console line for one prediction."""
    line = 'confidence: {:0.3f}% | index: {}'.format(entry.confidence, entry.index)
    if entry.name is not None:
        line = 'class: {} | {}'.format(entry.name, line)
    return line
