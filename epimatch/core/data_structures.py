"""
Shared core data structures for guided matching.

These dataclasses are intentionally simple containers used across:
- fundamental matrix construction
- the spatial grid and epiline grouping
- the guided epipolar matcher
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

import cv2
import numpy as np


@dataclass
class Camera:
    """Represents a single calibrated, posed camera."""

    # Intrinsic matrix (3x3).
    K: np.ndarray
    # Rotation (3x3) and translation (3,) from world to camera coordinates.
    R: np.ndarray
    t: np.ndarray
    id: int = 0

    def __post_init__(self) -> None:
        self.K = np.asarray(self.K, dtype=np.float64).reshape(3, 3)
        self.R = np.asarray(self.R, dtype=np.float64).reshape(3, 3)
        self.t = np.asarray(self.t, dtype=np.float64).reshape(3)

    @property
    def center(self) -> np.ndarray:
        """Camera center in world coordinates, C = -R^T t."""
        return -self.R.T @ self.t

    @property
    def projection_matrix(self) -> np.ndarray:
        """P = K [R | t] (3x4)."""
        return self.K @ np.hstack([self.R, self.t.reshape(3, 1)])


@dataclass
class KeypointsAndDescriptors:
    """
    Keypoints and descriptors of one image.

    `keypoints` is an (N, 2) array (x, y) in pixel coordinates and
    `descriptors` an (N, D) array aligned with it by row index, float32 (SIFT)
    or uint8 (ORB). The row index is the feature's identity everywhere.
    """

    keypoints: np.ndarray
    descriptors: np.ndarray

    def __post_init__(self) -> None:
        self.keypoints = np.asarray(self.keypoints, dtype=np.float64).reshape(-1, 2)
        self.descriptors = np.asarray(self.descriptors)
        if len(self.descriptors) != len(self.keypoints):
            raise ValueError(
                f"Got {len(self.keypoints)} keypoints but {len(self.descriptors)} descriptors"
            )

    def __len__(self) -> int:
        return len(self.keypoints)

    @classmethod
    def from_cv2(
        cls,
        keypoints: Sequence[cv2.KeyPoint],
        descriptors: np.ndarray | None,
    ) -> "KeypointsAndDescriptors":
        """
        Build from the output of a cv2 detector's detectAndCompute.

        Args:
            keypoints: List of cv2.KeyPoint objects.
            descriptors: Array of descriptors (N, D), or None when nothing was detected.

        Returns:
            KeypointsAndDescriptors with (N, 2) pixel positions.
        """
        pts = np.array([kp.pt for kp in keypoints], dtype=np.float64).reshape(-1, 2)
        if descriptors is None:
            descriptors = np.zeros((0, 0), dtype=np.float32)
        return cls(keypoints=pts, descriptors=descriptors)


@dataclass
class IndexedFeatureMatch:
    """A correspondence between feature indices of image 1 and image 2."""

    feature1_ind: int
    feature2_ind: int
    # Descriptor distance of the match.
    distance: float = 0.0


@dataclass
class EpilineGroup:
    """
    Image-1 features whose epipolar lines in image 2 are near-identical.

    All members share `line` (the line of the first member) and its clipped
    `endpoints`; each member keeps its own exact line for the final check.
    """

    line: np.ndarray
    features: List[int] = field(default_factory=list)
    # Two (2,) points once the line is clipped to the bounding box.
    endpoints: List[np.ndarray] = field(default_factory=list)


__all__ = ["Camera", "KeypointsAndDescriptors", "IndexedFeatureMatch", "EpilineGroup"]
