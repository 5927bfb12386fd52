"""
Fundamental matrix construction from two calibrated, posed cameras.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from epimatch.core.data_structures import Camera

# Baselines shorter than this fraction of the scene scale count as zero.
MIN_RELATIVE_BASELINE = 1e-9


class DegenerateGeometryError(ValueError):
    """Raised when two cameras define no epipolar constraint."""


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """
    Cross-product matrix [v]x such that [v]x @ w == cross(v, w).

    Args:
        v: Vector (3,).

    Returns:
        Skew-symmetric matrix (3x3).
    """
    x, y, z = np.asarray(v, dtype=np.float64).reshape(3)
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def relative_pose(camera1: Camera, camera2: Camera) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pose of camera2 relative to camera1.

    Args:
        camera1: First camera (world to camera R1, t1).
        camera2: Second camera (world to camera R2, t2).

    Returns:
        Tuple of (R, t) such that x_cam2 = R @ x_cam1 + t.
    """
    R = camera2.R @ camera1.R.T
    t = camera2.t - R @ camera1.t
    return R, t


def constrain_F(F: np.ndarray) -> np.ndarray:
    """
    Enforce rank-2 constraint on fundamental matrix using SVD.

    Args:
        F: Fundamental matrix (3x3).

    Returns:
        Rank-2 constrained fundamental matrix (3x3).
    """
    U, S, Vt = np.linalg.svd(F)
    # Zero out smallest singular value
    S[2] = 0
    return U @ np.diag(S) @ Vt


def compute_fundamental_matrix(camera1: Camera, camera2: Camera) -> np.ndarray:
    """
    Compute the fundamental matrix mapping image-1 points to image-2 lines.

    The essential matrix E = [t]x R of the relative pose is conjugated by the
    inverse calibration matrices: F = K2^-T @ E @ K1^-1. For a homogeneous
    pixel x1 in image 1, F @ x1 is its epipolar line in image 2.

    Args:
        camera1: First camera.
        camera2: Second camera.

    Returns:
        Fundamental matrix F (3x3), rank 2, unit Frobenius norm.

    Raises:
        DegenerateGeometryError: If the camera centers coincide or F is not finite.
    """
    baseline = np.linalg.norm(camera2.center - camera1.center)
    scale = max(1.0, np.linalg.norm(camera1.center), np.linalg.norm(camera2.center))
    if not np.isfinite(baseline) or baseline <= MIN_RELATIVE_BASELINE * scale:
        raise DegenerateGeometryError(
            f"Camera centers coincide (baseline {baseline:.3g}); no epipolar constraint"
        )

    R, t = relative_pose(camera1, camera2)
    E = skew_symmetric(t) @ R
    try:
        F = np.linalg.inv(camera2.K).T @ E @ np.linalg.inv(camera1.K)
    except np.linalg.LinAlgError as err:
        raise DegenerateGeometryError(f"Calibration matrix is singular: {err}") from err

    if not np.all(np.isfinite(F)):
        raise DegenerateGeometryError("Fundamental matrix is not finite")

    F = constrain_F(F)
    norm = np.linalg.norm(F)
    if norm == 0:
        raise DegenerateGeometryError("Fundamental matrix vanishes")
    return F / norm


__all__ = [
    "DegenerateGeometryError",
    "compute_fundamental_matrix",
    "constrain_F",
    "relative_pose",
    "skew_symmetric",
]
