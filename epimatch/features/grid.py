"""
Uniform spatial grid over image keypoints for fast lookup near epipolar lines.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, List, Sequence, Tuple

import numpy as np

CellKey = Tuple[int, int]


class ImageGrid:
    """
    Buckets feature indices into square cells of side `cell_size`.

    Cell (i, j) covers offset + [i, i + 1) * cell_size in x and the same in y,
    so its center sits at offset + (i + 0.5) * cell_size.
    """

    def __init__(self, cell_size: float, cell_offset_x: float = 0.0, cell_offset_y: float = 0.0):
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        self.cell_size = float(cell_size)
        self.cell_offset_x = float(cell_offset_x)
        self.cell_offset_y = float(cell_offset_y)
        self._cells: Dict[CellKey, List[int]] = defaultdict(list)

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._cells.values())

    def add_feature(self, feature_index: int, x: float, y: float) -> None:
        """Add a feature to the grid, assigning it to the cell containing (x, y)."""
        self._cells[self.get_closest_grid_center(x, y)].append(int(feature_index))

    def get_closest_grid_center(self, x: float, y: float) -> CellKey:
        """Key of the cell whose center is closest to (x, y)."""
        return (
            int(math.floor((x - self.cell_offset_x) / self.cell_size)),
            int(math.floor((y - self.cell_offset_y) / self.cell_size)),
        )

    def get_features_from_cell(self, cell_center: CellKey) -> List[int]:
        """All features in the given cell; empty if the cell holds none."""
        bucket = self._cells.get(cell_center)
        return list(bucket) if bucket else []

    def cell_center(self, cell_center: CellKey) -> np.ndarray:
        """Pixel position of a cell's center."""
        i, j = cell_center
        return np.array(
            [
                self.cell_offset_x + (i + 0.5) * self.cell_size,
                self.cell_offset_y + (j + 0.5) * self.cell_size,
            ]
        )


def build_image_grids(
    points: np.ndarray,
    feature_indices: Sequence[int],
    cell_size: float,
    top_left: np.ndarray,
    staggered: bool = False,
) -> List[ImageGrid]:
    """
    Build one grid, or four grids staggered by half a cell, over the given features.

    Args:
        points: All keypoints of the image (N, 2).
        feature_indices: Rows of `points` to insert.
        cell_size: Side of a cell in pixels.
        top_left: Grid origin, normally the bounding box minimum.
        staggered: Also build grids shifted by half a cell in x, y and both.

    Returns:
        List of populated ImageGrid instances.
    """
    half = cell_size / 2.0
    shifts = [(0.0, 0.0)]
    if staggered:
        shifts += [(half, 0.0), (0.0, half), (half, half)]

    grids = [ImageGrid(cell_size, top_left[0] + dx, top_left[1] + dy) for dx, dy in shifts]
    for grid in grids:
        for idx in feature_indices:
            x, y = points[idx]
            grid.add_feature(idx, x, y)
    return grids


def find_closest_cell_and_keypoints(
    grids: Sequence[ImageGrid],
    point: np.ndarray,
    search_neighbors: bool = False,
) -> List[int]:
    """
    Find the closest cell among all grids and return the keypoints in it.

    Args:
        grids: Grids to query; at least one.
        point: Query position (2,).
        search_neighbors: Also return the 8 cells surrounding the closest one.

    Returns:
        Feature indices of the chosen cell(s), each at most once.

    Raises:
        ValueError: If `grids` is empty.
    """
    if not grids:
        raise ValueError("At least one image grid is required")

    x, y = float(point[0]), float(point[1])
    best_grid, best_key, best_dist = None, None, math.inf
    for grid in grids:
        key = grid.get_closest_grid_center(x, y)
        dist = float(np.hypot(*(grid.cell_center(key) - (x, y))))
        if dist < best_dist:
            best_grid, best_key, best_dist = grid, key, dist

    if not search_neighbors:
        return best_grid.get_features_from_cell(best_key)

    features = []
    i, j = best_key
    for di in (-1, 0, 1):
        for dj in (-1, 0, 1):
            features.extend(best_grid.get_features_from_cell((i + di, j + dj)))
    return features


__all__ = ["ImageGrid", "build_image_grids", "find_closest_cell_and_keypoints"]
