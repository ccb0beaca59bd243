"""
Biometric matching

Compares two face embeddings by Euclidean distance and turns the distance
into a match decision and a 0-100 confidence score.
"""
import logging
import math
from typing import Sequence, Union

import numpy as np

from voter_gate.config import MATCH_THRESHOLD
from voter_gate.exceptions import DimensionMismatchError
from voter_gate.schemas import MatchOutcome

logger = logging.getLogger(__name__)

Embedding = Union[Sequence[float], np.ndarray]


def euclidean_distance(a: Embedding, b: Embedding) -> float:
    """
    Euclidean distance between two embeddings.

    Raises:
        DimensionMismatchError: If the vectors differ in length or are empty
    """
    vec_a = np.asarray(a, dtype=np.float64).ravel()
    vec_b = np.asarray(b, dtype=np.float64).ravel()

    if vec_a.size != vec_b.size or vec_a.size == 0:
        raise DimensionMismatchError(expected=vec_a.size, actual=vec_b.size)

    return float(np.linalg.norm(vec_a - vec_b))


def distance_to_score(distance: float) -> int:
    """Map distance 0 -> 100% and distance >= 1.0 -> 0%, rounded half up."""
    accuracy = min(100.0, max(0.0, 100.0 - distance * 100.0))
    return int(math.floor(accuracy + 0.5))


class BiometricMatcher:
    """
    Fixed-threshold face embedding comparator.

    A pair is a match when the distance is strictly below the threshold.
    """

    def __init__(self, threshold: float = MATCH_THRESHOLD):
        self.threshold = threshold

    def compare(self, a: Embedding, b: Embedding) -> MatchOutcome:
        distance = euclidean_distance(a, b)
        outcome = MatchOutcome(
            distance=distance,
            is_match=distance < self.threshold,
            score=distance_to_score(distance)
        )
        logger.debug(
            f"compare: distance={distance:.4f} thr={self.threshold} -> "
            f"{'match' if outcome.is_match else 'no match'} ({outcome.score}%)"
        )
        return outcome
