"""
Guided epipolar matching between two calibrated, posed views.

Unmatched features of image 1 are turned into epipolar lines in image 2. Lines
that nearly coincide are grouped, each group's line is clipped to the extent of
the unmatched image-2 features and walked through a spatial grid to collect
candidates, and every query keeps its two nearest candidates by descriptor
distance. A match is accepted when it passes Lowe's ratio test and lies within
`guided_matching_max_distance_pixels` of the query's epipolar line.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from epimatch.core.data_structures import (
    Camera,
    EpilineGroup,
    IndexedFeatureMatch,
    KeypointsAndDescriptors,
)
from epimatch.features.grid import ImageGrid, build_image_grids
from epimatch.features.matching import DistanceFn, find_k_nearest_neighbors, passes_ratio_test
from epimatch.geometry.epilines import (
    BoundingBox,
    compute_epilines,
    intersect_line_with_box,
    point_line_distances,
)
from epimatch.geometry.fundamental import DegenerateGeometryError, compute_fundamental_matrix
from epimatch.guided.candidates import find_features_near_epipolar_line
from epimatch.guided.grouping import group_epipolar_lines

logger = logging.getLogger(__name__)

# (query index, ascending nn distances, matching image-2 indices)
Proposal = Tuple[int, List[float], List[int]]


@dataclass
class GuidedMatchingOptions:
    """Parameters of the guided epipolar matcher."""

    # Features closer than this to the epipolar line are considered for matching.
    guided_matching_max_distance_pixels: float = 2.0
    # Keep a match only if its descriptor distance is below lowes_ratio times
    # the distance of the second nearest neighbor.
    lowes_ratio: float = 0.8
    # Probe the 3x3 block of cells around each closest cell.
    search_neighboring_cells: bool = True
    # Build four grids shifted by half a cell instead of one.
    staggered_grids: bool = False
    # Worker threads for candidate retrieval and ranking.
    num_threads: int = 1
    # Descriptor distance; None uses cv2.BFMatcher (L2 or HAMMING).
    distance_fn: Optional[DistanceFn] = None

    def __post_init__(self) -> None:
        if self.guided_matching_max_distance_pixels <= 0:
            raise ValueError(
                "guided_matching_max_distance_pixels must be positive, "
                f"got {self.guided_matching_max_distance_pixels}"
            )
        if not 0 < self.lowes_ratio <= 1:
            raise ValueError(f"lowes_ratio must be in (0, 1], got {self.lowes_ratio}")
        if self.num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {self.num_threads}")

    @property
    def cell_size(self) -> float:
        return 2.0 * self.guided_matching_max_distance_pixels

    @property
    def grouping_tolerance(self) -> float:
        return 0.5 * self.guided_matching_max_distance_pixels


class GuidedEpipolarMatcher:
    """
    Find additional matches between two images using their epipolar geometry.

    Only features without a match in the list passed to `get_matches` take part;
    valid new matches are appended to that list.
    """

    def __init__(
        self,
        options: GuidedMatchingOptions,
        camera1: Camera,
        camera2: Camera,
        features1: KeypointsAndDescriptors,
        features2: KeypointsAndDescriptors,
    ):
        self.options = options
        self.camera1 = camera1
        self.camera2 = camera2
        self.features1 = features1
        self.features2 = features2

        # Rebuilt on every call to get_matches.
        self.fundamental_matrix: Optional[np.ndarray] = None
        self.bounding_box: Optional[BoundingBox] = None
        self.image_grids: List[ImageGrid] = []

    def get_matches(self, matches: List[IndexedFeatureMatch]) -> bool:
        """
        Append guided matches to `matches`.

        Args:
            matches: Existing matches; extended in place, never reordered.

        Returns:
            False if the guided search could not run (degenerate geometry or an
            image without features), True otherwise, including when no new
            match was found.
        """
        matched_features1: Set[int] = {m.feature1_ind for m in matches}
        matched_features2: Set[int] = {m.feature2_ind for m in matches}

        unmatched1 = [i for i in range(len(self.features1)) if i not in matched_features1]
        unmatched2 = [i for i in range(len(self.features2)) if i not in matched_features2]

        if not self._initialize(unmatched2):
            return False
        if not unmatched1 or not unmatched2:
            logger.info("No unmatched features left; guided matching has nothing to do")
            return True

        lines = compute_epilines(self.fundamental_matrix, self.features1.keypoints[unmatched1])
        query_lines = dict(zip(unmatched1, lines))
        available2 = set(unmatched2)
        groups = group_epipolar_lines(
            unmatched1, lines, self.bounding_box, self.options.grouping_tolerance
        )

        if self.options.num_threads > 1:
            with ThreadPoolExecutor(max_workers=self.options.num_threads) as executor:
                proposals = list(
                    executor.map(lambda group: self._process_group(group, available2), groups)
                )
        else:
            proposals = [self._process_group(group, available2) for group in groups]

        # Serial reduction in group order; first accepted match wins.
        num_before = len(matches)
        for group_proposals in proposals:
            self._accept_proposals(
                group_proposals, query_lines, matches, matched_features1, matched_features2
            )

        logger.info(
            "Guided matching: %d unmatched features in %d epiline groups, %d new matches",
            len(unmatched1),
            len(groups),
            len(matches) - num_before,
        )
        return True

    def _initialize(self, unmatched2: List[int]) -> bool:
        """Compute F and the grids over the unmatched image-2 features."""
        self.fundamental_matrix = None
        self.bounding_box = None
        self.image_grids = []

        if len(self.features1) == 0 or len(self.features2) == 0:
            logger.warning("Guided matching needs features in both images; skipping")
            return False

        try:
            self.fundamental_matrix = compute_fundamental_matrix(self.camera1, self.camera2)
        except DegenerateGeometryError as err:
            logger.warning("Guided matching skipped: %s", err)
            return False

        if not unmatched2:
            return True

        padding = (
            self.options.guided_matching_max_distance_pixels + self.options.grouping_tolerance
        )
        self.bounding_box = BoundingBox.from_points(
            self.features2.keypoints[unmatched2], padding=padding
        )
        self.image_grids = build_image_grids(
            self.features2.keypoints,
            unmatched2,
            self.options.cell_size,
            self.bounding_box.top_left,
            staggered=self.options.staggered_grids,
        )
        return True

    def _process_group(self, group: EpilineGroup, unmatched2: Set[int]) -> List[Proposal]:
        """Clip, retrieve candidates and rank; reads shared state only."""
        group.endpoints = intersect_line_with_box(group.line, self.bounding_box)
        if not group.endpoints:
            logger.debug("Epiline group of %d features misses the image", len(group.features))
            return []

        candidates = find_features_near_epipolar_line(
            group.endpoints,
            self.image_grids,
            self.options.cell_size,
            unmatched2,
            search_neighbors=self.options.search_neighboring_cells,
        )
        if not candidates:
            return []

        nn_distances, nn_indices = find_k_nearest_neighbors(
            group.features,
            candidates,
            self.features1.descriptors,
            self.features2.descriptors,
            k=2,
            distance_fn=self.options.distance_fn,
        )
        return list(zip(group.features, nn_distances, nn_indices))

    def _accept_proposals(
        self,
        proposals: List[Proposal],
        query_lines: Dict[int, np.ndarray],
        matches: List[IndexedFeatureMatch],
        matched_features1: Set[int],
        matched_features2: Set[int],
    ) -> None:
        max_distance = self.options.guided_matching_max_distance_pixels
        for query, distances, indices in proposals:
            if not passes_ratio_test(distances, self.options.lowes_ratio):
                continue
            best = indices[0]
            if query in matched_features1 or best in matched_features2:
                continue

            # Re-check against the exact line; the grid lookup is coarse.
            line_distance = point_line_distances(
                query_lines[query], self.features2.keypoints[best]
            )[0]
            if line_distance > max_distance:
                continue

            matches.append(IndexedFeatureMatch(query, best, distances[0]))
            matched_features1.add(query)
            matched_features2.add(best)


__all__ = ["GuidedEpipolarMatcher", "GuidedMatchingOptions"]
