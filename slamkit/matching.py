"""Brute-force Hamming matching of binary feature descriptors."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

_MIN_THRESHOLD = 30.0


@dataclass(frozen=True)
class Match:
    """A descriptor correspondence between a query set and a train set."""

    query_idx: int
    train_idx: int
    distance: float


def _as_bytes(values) -> np.ndarray:
    if isinstance(values, (bytes, bytearray, memoryview)):
        return np.frombuffer(bytes(values), dtype=np.uint8)
    return np.asarray(values, dtype=np.uint8)


def hamming_distance(a, b) -> int:
    """Number of differing bits between two descriptors of equal length."""
    left = _as_bytes(a).ravel()
    right = _as_bytes(b).ravel()
    if left.shape != right.shape:
        raise ValueError(
            f"descriptors differ in length: {left.size} and {right.size} bytes"
        )
    return int(np.unpackbits(np.bitwise_xor(left, right)).sum())


def _as_descriptor_set(values, name: str) -> np.ndarray:
    arr = _as_bytes(values)
    if arr.ndim != 2:
        raise ValueError(f"{name} must be a 2-D array of descriptor rows")
    return arr


def match_descriptors(descriptors1, descriptors2) -> list[Match]:
    """For each query descriptor, the train descriptor at the smallest distance.

    Ties go to the lowest train index.
    """
    query = _as_descriptor_set(descriptors1, "descriptors1")
    train = _as_descriptor_set(descriptors2, "descriptors2")
    if len(query) == 0 or len(train) == 0:
        return []
    if query.shape[1] != train.shape[1]:
        raise ValueError("descriptor sets differ in descriptor length")
    xor = np.bitwise_xor(query[:, None, :], train[None, :, :])
    distances = np.unpackbits(xor, axis=-1).sum(axis=-1)
    best = distances.argmin(axis=1)
    return [
        Match(query_idx, int(train_idx), float(distances[query_idx, train_idx]))
        for query_idx, train_idx in enumerate(best)
    ]


def filter_matches(matches) -> list[Match]:
    """Keep matches no farther than twice the smallest distance, or 30 at least."""
    matches = list(matches)
    if not matches:
        return []
    min_dist = min(m.distance for m in matches)
    threshold = max(2.0 * min_dist, _MIN_THRESHOLD)
    return [m for m in matches if m.distance <= threshold]