"""
Descriptor nearest-neighbor ranking and Lowe's ratio test.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

DistanceFn = Callable[[np.ndarray, np.ndarray], float]


def _knn_bf(
    query_descriptors: np.ndarray,
    candidate_descriptors: np.ndarray,
    k: int,
) -> List[List[cv2.DMatch]]:
    # HAMMING for ORB (binary descriptors), L2 for SIFT (float descriptors)
    is_binary = query_descriptors.dtype == np.uint8 and candidate_descriptors.dtype == np.uint8
    if is_binary:
        norm_type = cv2.NORM_HAMMING
    else:
        norm_type = cv2.NORM_L2
        query_descriptors = query_descriptors.astype(np.float32)
        candidate_descriptors = candidate_descriptors.astype(np.float32)
    query_descriptors = np.ascontiguousarray(query_descriptors)
    candidate_descriptors = np.ascontiguousarray(candidate_descriptors)

    matcher = cv2.BFMatcher(norm_type, crossCheck=False)
    return matcher.knnMatch(query_descriptors, candidate_descriptors, k=k)


def find_k_nearest_neighbors(
    query_feature_indices: Sequence[int],
    candidate_feature_indices: Sequence[int],
    descriptors1: np.ndarray,
    descriptors2: np.ndarray,
    k: int = 2,
    distance_fn: Optional[DistanceFn] = None,
) -> Tuple[List[List[float]], List[List[int]]]:
    """
    Return the k nearest candidates by descriptor distance for every query.

    Args:
        query_feature_indices: Rows of `descriptors1` to match.
        candidate_feature_indices: Rows of `descriptors2` to search.
        descriptors1: Descriptors of image 1 (N1, D).
        descriptors2: Descriptors of image 2 (N2, D).
        k: Number of neighbors to keep.
        distance_fn: Optional distance between two descriptors. When None,
                     cv2.BFMatcher is used with HAMMING for uint8 descriptors
                     and L2 otherwise.

    Returns:
        Tuple of (nn_distances, nn_indices) where, for the q-th query,
        nn_distances[q] holds at most k ascending distances and nn_indices[q]
        the corresponding indices into `descriptors2`.
    """
    num_queries = len(query_feature_indices)
    nn_distances: List[List[float]] = [[] for _ in range(num_queries)]
    nn_indices: List[List[int]] = [[] for _ in range(num_queries)]
    if num_queries == 0 or len(candidate_feature_indices) == 0:
        return nn_distances, nn_indices

    candidates = np.asarray(candidate_feature_indices, dtype=int)
    queries = np.asarray(query_feature_indices, dtype=int)

    if distance_fn is None:
        knn_matches = _knn_bf(descriptors1[queries], descriptors2[candidates], min(k, len(candidates)))
        for m in knn_matches:
            for match in m:
                nn_distances[match.queryIdx].append(float(match.distance))
                nn_indices[match.queryIdx].append(int(candidates[match.trainIdx]))
        return nn_distances, nn_indices

    for q, query in enumerate(queries):
        dists = np.array(
            [distance_fn(descriptors1[query], descriptors2[c]) for c in candidates],
            dtype=np.float64,
        )
        # Partial selection; only the kept k are sorted.
        if len(dists) > k:
            nearest = np.argpartition(dists, k - 1)[:k]
        else:
            nearest = np.arange(len(dists))
        nearest = nearest[np.argsort(dists[nearest], kind="stable")]
        nn_distances[q] = [float(d) for d in dists[nearest]]
        nn_indices[q] = [int(c) for c in candidates[nearest]]

    return nn_distances, nn_indices


def passes_ratio_test(distances: Sequence[float], ratio: float) -> bool:
    """
    Lowe's ratio test on ascending neighbor distances.

    Args:
        distances: Distances to the nearest neighbors, closest first.
        ratio: Maximum ratio of best to second-best distance.

    Returns:
        True if a second neighbor exists and distances[0] <= ratio * distances[1].
    """
    if len(distances) < 2:
        return False
    return distances[0] <= ratio * distances[1]


__all__ = ["find_k_nearest_neighbors", "passes_ratio_test"]
