"""
Blob selection module: finds the largest color blob in a cleaned mask.
"""

import cv2
import numpy as np
from typing import List, Optional, Tuple
from dataclasses import dataclass


MIN_BLOB_AREA = 1


@dataclass
class Region:
    """A top-level contour with its zeroth and first order moments."""
    contour: np.ndarray
    area: float
    centroid: Tuple[float, float]


@dataclass
class SelectedBlob:
    """The region chosen as the tracked object."""
    contour: np.ndarray
    centroid: Tuple[float, float]
    area: float

    @property
    def num_points(self) -> int:
        return len(self.contour)


class BlobSelector:
    """Selects the largest region whose area lies within the configured bounds."""

    def __init__(self, min_area: float = MIN_BLOB_AREA, max_area: Optional[float] = None):
        """
        Initialize blob selector.

        Args:
            min_area: Regions must be larger than this (default: 1)
            max_area: Regions must be smaller than this; None means no upper
                bound until set_frame_size() derives it from the frame

        Raises:
            ValueError: If the bounds are invalid
        """
        if min_area < 0:
            raise ValueError(f"Invalid min_area: {min_area}. Must be non-negative.")

        if max_area is not None and max_area <= min_area:
            raise ValueError(f"Invalid max_area: {max_area}. Must be greater than min_area ({min_area}).")

        self.min_area = min_area
        self.max_area = max_area

    def set_frame_size(self, width: int, height: int):
        """Derive the maximum blob area from the processing resolution, once."""
        if self.max_area is None:
            self.max_area = width * height

    def find_regions(self, mask: np.ndarray) -> List[Region]:
        """
        Extract top-level regions from a binary mask.

        Contours are retrieved as a two-level hierarchy (outer boundaries and
        holes); only the outer boundaries are returned, in the order of the
        top-level sibling chain.

        Args:
            mask: Binary mask (single channel, uint8)

        Returns:
            List of regions, possibly empty
        """
        contours, hierarchy = cv2.findContours(mask.copy(), cv2.RETR_CCOMP,
                                               cv2.CHAIN_APPROX_SIMPLE)

        if hierarchy is None or len(contours) == 0:
            return []

        links = hierarchy[0]

        # Head of the top-level chain: no parent, no previous sibling
        index = -1
        for i, (_, previous, _, parent) in enumerate(links):
            if parent < 0 and previous < 0:
                index = i
                break

        regions = []
        while index >= 0:
            moments = cv2.moments(contours[index])
            area = moments["m00"]
            if area > 0:
                centroid = (moments["m10"] / area, moments["m01"] / area)
            else:
                centroid = (0.0, 0.0)
            regions.append(Region(contour=contours[index], area=area, centroid=centroid))
            index = links[index][0]

        return regions

    def select(self, mask: np.ndarray) -> Optional[SelectedBlob]:
        """
        Select the largest qualifying region in a cleaned mask.

        Args:
            mask: Cleaned binary mask

        Returns:
            SelectedBlob, or None when the mask has no region inside the area bounds
        """
        return self.select_from(self.find_regions(mask))

    def select_from(self, regions: List[Region]) -> Optional[SelectedBlob]:
        """
        Pick the largest region strictly inside (min_area, max_area).

        Ties keep the region found first.
        """
        max_area = self.max_area if self.max_area is not None else float("inf")

        best = None
        for region in regions:
            if not (self.min_area < region.area < max_area):
                continue
            if best is None or region.area > best.area:
                best = region

        if best is None:
            return None

        return SelectedBlob(contour=best.contour, centroid=best.centroid, area=best.area)
