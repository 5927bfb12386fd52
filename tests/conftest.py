"""Shared synthetic two-view scenes."""

import numpy as np
import pytest

from epimatch.core.data_structures import Camera, IndexedFeatureMatch, KeypointsAndDescriptors

K = np.array(
    [
        [500.0, 0.0, 320.0],
        [0.0, 500.0, 240.0],
        [0.0, 0.0, 1.0],
    ]
)

DESCRIPTOR_DIM = 32

# Image-1 positions of the withheld features; their epipolar lines are y = v.
WITHHELD = [(100.0, 60.0), (180.0, 140.0), (260.0, 220.0), (340.0, 300.0), (420.0, 380.0)]
NUM_SEEDS = 20


def rotation_y(degrees):
    a = np.deg2rad(degrees)
    return np.array(
        [
            [np.cos(a), 0.0, np.sin(a)],
            [0.0, 1.0, 0.0],
            [-np.sin(a), 0.0, np.cos(a)],
        ]
    )


def stereo_cameras():
    """Second camera shifted one unit along x; epipolar lines are horizontal."""
    camera1 = Camera(K, np.eye(3), np.zeros(3), id=0)
    camera2 = Camera(K, np.eye(3), np.array([-1.0, 0.0, 0.0]), id=1)
    return camera1, camera2


def planar_scene(off_line_feature=None, off_line_pixels=5.0, ambiguous_feature=None):
    """
    Two views of the plane Z = 10, where image-2 positions are image-1 minus 50px in x.

    Features 0..19 are seeded matches, 20..24 are withheld correspondences.
    Image 2 also holds one distractor per withheld feature, 30px along its
    epipolar line, twice as far in descriptor space as the true match.
    """
    rng = np.random.default_rng(7)

    seeds1 = np.array([[30.0 + 25.0 * i, 20.0 + 21.0 * i] for i in range(NUM_SEEDS)])
    withheld1 = np.array(WITHHELD)
    keypoints1 = np.vstack([seeds1, withheld1])
    descriptors1 = rng.uniform(0.0, 10.0, (len(keypoints1), DESCRIPTOR_DIM)).astype(np.float32)

    unit = np.eye(DESCRIPTOR_DIM, dtype=np.float32)
    true2, true_desc, distractor2, distractor_desc = [], [], [], []
    for k, (u, v) in enumerate(WITHHELD):
        q = NUM_SEEDS + k
        dy = off_line_pixels if k == off_line_feature else 0.5
        true2.append([u - 50.0, v + dy])
        true_desc.append(descriptors1[q] + unit[0] * 1.0)
        distractor2.append([u - 20.0, v])
        second = 1.1 if k == ambiguous_feature else 2.0
        distractor_desc.append(descriptors1[q] + unit[1] * second)

    keypoints2 = np.vstack([seeds1 - [50.0, 0.0], true2, distractor2])
    descriptors2 = np.vstack(
        [descriptors1[:NUM_SEEDS], np.array(true_desc), np.array(distractor_desc)]
    ).astype(np.float32)

    features1 = KeypointsAndDescriptors(keypoints1, descriptors1)
    features2 = KeypointsAndDescriptors(keypoints2, descriptors2)
    seeds = [IndexedFeatureMatch(i, i, 0.0) for i in range(NUM_SEEDS)]
    return features1, features2, seeds


def project(camera, points3d):
    cam = points3d @ camera.R.T + camera.t
    pix = cam @ camera.K.T
    return pix[:, :2] / pix[:, 2:3]


def random_scene(num_points=200, num_seeds=50, num_clutter=100, seed=3):
    """General rotated two-view scene with clutter in image 2."""
    rng = np.random.default_rng(seed)
    camera1 = Camera(K, np.eye(3), np.zeros(3), id=0)
    R2 = rotation_y(5.0)
    center2 = np.array([1.0, 0.2, 0.0])
    camera2 = Camera(K, R2, -R2 @ center2, id=1)

    points3d = np.column_stack(
        [
            rng.uniform(-4.0, 4.0, num_points),
            rng.uniform(-3.0, 3.0, num_points),
            rng.uniform(8.0, 12.0, num_points),
        ]
    )
    keypoints1 = project(camera1, points3d)
    keypoints2 = np.vstack(
        [
            project(camera2, points3d),
            np.column_stack(
                [rng.uniform(0.0, 640.0, num_clutter), rng.uniform(0.0, 480.0, num_clutter)]
            ),
        ]
    )
    descriptors1 = rng.uniform(0.0, 10.0, (num_points, DESCRIPTOR_DIM)).astype(np.float32)
    descriptors2 = np.vstack(
        [
            descriptors1 + rng.normal(0.0, 0.3, descriptors1.shape),
            rng.uniform(0.0, 10.0, (num_clutter, DESCRIPTOR_DIM)),
        ]
    ).astype(np.float32)

    features1 = KeypointsAndDescriptors(keypoints1, descriptors1)
    features2 = KeypointsAndDescriptors(keypoints2, descriptors2)
    seeds = [IndexedFeatureMatch(i, i, 0.0) for i in range(num_seeds)]
    return camera1, camera2, features1, features2, seeds


@pytest.fixture
def cameras():
    return stereo_cameras()


@pytest.fixture
def scene():
    return planar_scene()
