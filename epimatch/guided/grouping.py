"""
Grouping of near-identical epipolar lines.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

import numpy as np

from epimatch.core.data_structures import EpilineGroup
from epimatch.geometry.epilines import BoundingBox

logger = logging.getLogger(__name__)


def line_deviation(line_a: np.ndarray, line_b: np.ndarray, box: BoundingBox) -> float:
    """
    Largest separation in pixels of two normalized lines over the box.

    Signed distance to a normalized line is affine, so the difference of two
    of them peaks at a corner. Both orientations of `line_b` are tried.
    """
    corners = box.corners()
    da = corners @ line_a[:2] + line_a[2]
    db = corners @ line_b[:2] + line_b[2]
    return float(min(np.max(np.abs(da - db)), np.max(np.abs(da + db))))


def group_epipolar_lines(
    feature_indices: Sequence[int],
    lines: np.ndarray,
    box: BoundingBox,
    tolerance: float,
) -> List[EpilineGroup]:
    """
    Group features whose epipolar lines deviate by at most `tolerance` pixels.

    Features are visited in the given order; each joins the first group whose
    representative line is within tolerance, or founds a new one.

    Args:
        feature_indices: Image-1 feature indices, ascending.
        lines: Normalized lines (N, 3) aligned with `feature_indices`.
        box: Bounding box the lines are compared over.
        tolerance: Maximum deviation in pixels.

    Returns:
        EpilineGroups in creation order, without endpoints.
    """
    corners = box.corners()
    # Signed corner distances of every group representative.
    representatives = np.zeros((len(feature_indices), 4))
    groups: List[EpilineGroup] = []

    for feature, line in zip(feature_indices, np.asarray(lines, dtype=np.float64)):
        if not np.any(line[:2]):
            # Feature sits on the epipole; it has no line.
            continue
        values = corners @ line[:2] + line[2]
        if groups:
            reps = representatives[: len(groups)]
            deviation = np.minimum(
                np.max(np.abs(reps - values), axis=1),
                np.max(np.abs(reps + values), axis=1),
            )
            close = np.flatnonzero(deviation <= tolerance)
            if len(close):
                groups[close[0]].features.append(int(feature))
                continue
        representatives[len(groups)] = values
        groups.append(EpilineGroup(line=line.copy(), features=[int(feature)]))

    logger.debug("Grouped %d epipolar lines into %d groups", len(feature_indices), len(groups))
    return groups


__all__ = ["group_epipolar_lines", "line_deviation"]
