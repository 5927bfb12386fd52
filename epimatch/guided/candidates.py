"""
Retrieval of image-2 features near a clipped epipolar segment.
"""

from __future__ import annotations

import math
from typing import AbstractSet, List, Sequence

import numpy as np

from epimatch.features.grid import ImageGrid, find_closest_cell_and_keypoints


def sample_segment(start: np.ndarray, end: np.ndarray, step: float) -> np.ndarray:
    """
    Points along the segment spaced at most `step` apart, both ends included.

    Returns:
        Array of points (M, 2), M >= 1.
    """
    start = np.asarray(start, dtype=np.float64)
    end = np.asarray(end, dtype=np.float64)
    num_steps = max(1, int(math.ceil(np.linalg.norm(end - start) / step)))
    alphas = np.linspace(0.0, 1.0, num_steps + 1)
    return start + alphas[:, None] * (end - start)


def find_features_near_epipolar_line(
    endpoints: Sequence[np.ndarray],
    grids: Sequence[ImageGrid],
    step: float,
    unmatched_features: AbstractSet[int],
    search_neighbors: bool = True,
) -> List[int]:
    """
    Walk the segment through the grid and collect the features near it.

    Args:
        endpoints: Two (2,) endpoints of the clipped epipolar line.
        grids: Image-2 grids to query.
        step: Walking step, normally the grid cell size.
        unmatched_features: Image-2 indices still available for matching.
        search_neighbors: Probe the 3x3 block around each closest cell.

    Returns:
        Sorted, deduplicated image-2 feature indices.
    """
    if len(endpoints) < 2:
        return []

    candidates = set()
    for point in sample_segment(endpoints[0], endpoints[1], step):
        candidates.update(find_closest_cell_and_keypoints(grids, point, search_neighbors))
    return sorted(idx for idx in candidates if idx in unmatched_features)


__all__ = ["find_features_near_epipolar_line", "sample_segment"]
