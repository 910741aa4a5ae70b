"""
Pose estimation module.

The vehicle pose is the principal axis of symmetry of a rotated rectangle
(a fitted ellipse or the CamShift tracking box): the segment joining the
midpoints of the rectangle's two shortest sides. Half its length is used as
the characteristic object size.
"""

import cv2
import numpy as np
from typing import Tuple, Optional
from dataclasses import dataclass


MIN_ELLIPSE_POINTS = 5


@dataclass
class TrackingBox:
    """Rotated rectangle describing the tracked object's extent and orientation."""
    center: Tuple[float, float]
    size: Tuple[float, float]
    angle: float

    @classmethod
    def from_rotated_rect(cls, rect) -> "TrackingBox":
        """Build from OpenCV's ((cx, cy), (w, h), angle) tuple."""
        (cx, cy), (w, h), angle = rect
        return cls(center=(float(cx), float(cy)), size=(float(w), float(h)), angle=float(angle))

    def to_rotated_rect(self):
        return (tuple(self.center), tuple(self.size), self.angle)

    @property
    def is_degenerate(self) -> bool:
        """True when the box has no area (no confident track)."""
        return self.size[0] <= 0 or self.size[1] <= 0

    def corners(self) -> np.ndarray:
        """Four corner points, in OpenCV's boxPoints order."""
        return cv2.boxPoints(self.to_rotated_rect()).astype(np.float64)


@dataclass
class Pose:
    """Principal axis endpoints and characteristic size."""
    axis_start: Tuple[float, float]
    axis_end: Tuple[float, float]
    size: float

    @property
    def axis_length(self) -> float:
        return float(np.hypot(self.axis_end[0] - self.axis_start[0],
                              self.axis_end[1] - self.axis_start[1]))

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.axis_start[0] + self.axis_end[0]) / 2,
                (self.axis_start[1] + self.axis_end[1]) / 2)


@dataclass
class PoseEstimate:
    """Result of fitting a contour: ellipse box, min-area rectangle and pose."""
    ellipse: TrackingBox
    min_rect: TrackingBox
    pose: Pose


class PoseEstimator:
    """Derives the principal axis and size of the vehicle from its outline."""

    @staticmethod
    def can_estimate(contour: np.ndarray) -> bool:
        """Ellipse fitting needs at least five contour points."""
        return contour is not None and len(contour) >= MIN_ELLIPSE_POINTS

    def principal_axis(self, box: TrackingBox) -> Pose:
        """
        Compute the principal axis of a rotated rectangle.

        The shortest side is found scanning the four sides in corner order;
        the first one wins on ties. The axis joins the midpoint of that side
        to the midpoint of the opposite side.

        Args:
            box: Rotated rectangle

        Returns:
            Pose with axis endpoints and size (half the axis length)
        """
        points = box.corners()

        shortest_length = float("inf")
        shortest_index = 0
        for j in range(4):
            length = np.linalg.norm(points[j] - points[(j + 1) % 4])
            if length < shortest_length:
                shortest_length = length
                shortest_index = j

        i = shortest_index
        midpoint_1 = (points[i] + points[(i + 1) % 4]) * 0.5
        midpoint_2 = (points[(i + 2) % 4] + points[(i + 3) % 4]) * 0.5

        size = float(np.linalg.norm(midpoint_1 - midpoint_2)) / 2

        return Pose(
            axis_start=(float(midpoint_1[0]), float(midpoint_1[1])),
            axis_end=(float(midpoint_2[0]), float(midpoint_2[1])),
            size=size
        )

    def estimate(self, contour: np.ndarray) -> PoseEstimate:
        """
        Fit a contour and compute its pose.

        Args:
            contour: Closed polygon with at least five points

        Returns:
            PoseEstimate built from the minimum ellipse

        Raises:
            ValueError: If the contour has fewer than five points
        """
        if not self.can_estimate(contour):
            count = 0 if contour is None else len(contour)
            raise ValueError(f"Contour has {count} points, ellipse fitting needs {MIN_ELLIPSE_POINTS}")

        min_rect = TrackingBox.from_rotated_rect(cv2.minAreaRect(contour))
        ellipse = TrackingBox.from_rotated_rect(cv2.fitEllipse(contour))

        return PoseEstimate(
            ellipse=ellipse,
            min_rect=min_rect,
            pose=self.principal_axis(ellipse)
        )

    def estimate_box(self, box: TrackingBox) -> Optional[Pose]:
        """Pose of a tracking box, or None when the box is degenerate."""
        if box is None or box.is_degenerate:
            return None
        return self.principal_axis(box)
