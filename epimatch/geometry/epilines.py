"""
Epipolar lines, the image-2 bounding box and line-box clipping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import cv2
import numpy as np

# Intersections closer than this (pixels) are the same point.
_POINT_EPS = 1e-9


@dataclass
class BoundingBox:
    """Axis-aligned extent of a set of image points."""

    x_min: float
    y_min: float
    x_max: float
    y_max: float

    @classmethod
    def from_points(cls, points: np.ndarray, padding: float = 0.0) -> "BoundingBox":
        """
        Bounding box of (N, 2) points, grown by `padding` pixels on every side.

        Raises:
            ValueError: If `points` is empty.
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if len(points) == 0:
            raise ValueError("Cannot bound an empty point set")
        top_left = points.min(axis=0) - padding
        bottom_right = points.max(axis=0) + padding
        return cls(
            float(top_left[0]),
            float(top_left[1]),
            float(bottom_right[0]),
            float(bottom_right[1]),
        )

    @property
    def top_left(self) -> np.ndarray:
        return np.array([self.x_min, self.y_min])

    @property
    def bottom_right(self) -> np.ndarray:
        return np.array([self.x_max, self.y_max])

    def corners(self) -> np.ndarray:
        """The four corners (4, 2)."""
        return np.array(
            [
                [self.x_min, self.y_min],
                [self.x_max, self.y_min],
                [self.x_max, self.y_max],
                [self.x_min, self.y_max],
            ]
        )


def compute_epilines(F: np.ndarray, points1: np.ndarray) -> np.ndarray:
    """
    Compute epipolar lines in image 2 for points in image 1.

    Args:
        F: Fundamental matrix (3x3) with l2 = F @ x1.
        points1: Points in first image (N, 2).

    Returns:
        Lines (N, 3) as (a, b, c) with ax + by + c = 0 and a^2 + b^2 = 1.
    """
    points1 = np.asarray(points1, dtype=np.float32).reshape(-1, 1, 2)
    if len(points1) == 0:
        return np.zeros((0, 3))
    lines = cv2.computeCorrespondEpilines(points1, 1, np.asarray(F, dtype=np.float64))
    return lines.reshape(-1, 3).astype(np.float64)


def point_line_distances(lines: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Perpendicular pixel distance from each point to its line.

    Args:
        lines: Lines (N, 3) as (a, b, c); need not be normalized.
        points: Points (N, 2).

    Returns:
        Distances (N,). Lines with a = b = 0 give inf.
    """
    lines = np.asarray(lines, dtype=np.float64).reshape(-1, 3)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    num = np.abs(lines[:, 0] * points[:, 0] + lines[:, 1] * points[:, 1] + lines[:, 2])
    den = np.hypot(lines[:, 0], lines[:, 1])
    with np.errstate(divide="ignore", invalid="ignore"):
        dist = np.where(den > 0, num / np.where(den > 0, den, 1.0), np.inf)
    return dist


def intersect_line_with_box(line: np.ndarray, box: BoundingBox) -> List[np.ndarray]:
    """
    Clip the line ax + by + c = 0 to the bounding box.

    Args:
        line: Line coefficients (3,).
        box: Bounding box to clip against.

    Returns:
        Either an empty list (line misses the box) or two (2,) endpoints.
        A line touching only a corner yields that corner twice.
    """
    a, b, c = (float(v) for v in line)
    candidates = []

    # Vertical edges x = x_min, x = x_max.
    if abs(b) > _POINT_EPS:
        for x in (box.x_min, box.x_max):
            y = -(a * x + c) / b
            if box.y_min - _POINT_EPS <= y <= box.y_max + _POINT_EPS:
                candidates.append(np.array([x, min(max(y, box.y_min), box.y_max)]))

    # Horizontal edges y = y_min, y = y_max.
    if abs(a) > _POINT_EPS:
        for y in (box.y_min, box.y_max):
            x = -(b * y + c) / a
            if box.x_min - _POINT_EPS <= x <= box.x_max + _POINT_EPS:
                candidates.append(np.array([min(max(x, box.x_min), box.x_max), y]))

    if not candidates:
        return []

    # Corners are found twice; keep the farthest pair.
    best = (candidates[0], candidates[0])
    best_dist = 0.0
    for i in range(len(candidates)):
        for j in range(i + 1, len(candidates)):
            dist = np.linalg.norm(candidates[i] - candidates[j])
            if dist > best_dist:
                best, best_dist = (candidates[i], candidates[j]), dist
    return [best[0], best[1]]


__all__ = [
    "BoundingBox",
    "compute_epilines",
    "point_line_distances",
    "intersect_line_with_box",
]
