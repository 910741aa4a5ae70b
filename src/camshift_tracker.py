"""
Adaptive tracking module using hue histogram back projection and CamShift.

The user marks the vehicle with a rectangle; its hue histogram becomes the
target model and CamShift follows the mode of the back projection from frame
to frame. UI input reaches the tracker as explicit event objects.
"""

import cv2
import numpy as np
from enum import Enum
from typing import Optional, Tuple
from dataclasses import dataclass

from color_segmenter import ColorBand, ColorSegmenter
from pose_estimator import TrackingBox


HISTOGRAM_SIZE = 16
HUE_RANGE = [0, 180]
TERM_CRITERIA = (cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 10, 1)

Window = Tuple[int, int, int, int]  # x, y, width, height


class TrackingMode(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    TRACKING = "tracking"


@dataclass(frozen=True)
class SelectionMade:
    """The user finished dragging a rectangle over the object."""
    rect: Window


@dataclass(frozen=True)
class CancelTracking:
    """The user asked to stop tracking."""


@dataclass
class TrackerUpdate:
    """Per-frame output of the adaptive tracker."""
    box: Optional[TrackingBox]
    window: Optional[Window]
    back_projection: Optional[np.ndarray]
    mode: TrackingMode


def clip_window(window: Window, frame_size: Tuple[int, int]) -> Window:
    """Intersect a window with [0, width) x [0, height)."""
    width, height = frame_size
    x, y, w, h = window
    x0 = max(0, x)
    y0 = max(0, y)
    x1 = min(width, x + w)
    y1 = min(height, y + h)
    if x1 <= x0 or y1 <= y0:
        return (x0, y0, 0, 0)
    return (x0, y0, x1 - x0, y1 - y0)


def reseed_window(window: Window, frame_size: Tuple[int, int]) -> Window:
    """
    Replace a collapsed search window with a square around its last location.

    Args:
        window: Collapsed window (area <= 1)
        frame_size: (width, height) of the frame

    Returns:
        Square window of side (min(width, height) + 5) // 6 centered on the
        old window, clipped to the frame
    """
    width, height = frame_size
    side = (min(width, height) + 5) // 6
    x, y, w, h = window
    cx = x + w // 2
    cy = y + h // 2
    return clip_window((cx - side // 2, cy - side // 2, side, side), frame_size)


class CamShiftTracker:
    """Histogram back projection tracker with an idle/initializing/tracking state machine."""

    def __init__(self,
                 histogram_size: int = HISTOGRAM_SIZE,
                 segmenter: Optional[ColorSegmenter] = None):
        """
        Initialize tracker.

        Args:
            histogram_size: Number of hue bins in the target model (default: 16)
            segmenter: ColorSegmenter instance (creates default if None)

        Raises:
            ValueError: If histogram_size is not positive
        """
        if histogram_size <= 0 or histogram_size > 180:
            raise ValueError(f"Invalid histogram_size: {histogram_size}. Must be between 1 and 180.")

        self.histogram_size = histogram_size
        self.segmenter = segmenter if segmenter is not None else ColorSegmenter()

        self.mode = TrackingMode.IDLE
        self.selection: Optional[Window] = None
        self.window: Optional[Window] = None
        self.histogram: Optional[np.ndarray] = None

    def handle(self, event) -> TrackingMode:
        """
        Feed a UI event into the state machine.

        Args:
            event: SelectionMade or CancelTracking

        Returns:
            Mode after the event
        """
        if isinstance(event, SelectionMade):
            x, y, w, h = event.rect
            if w > 0 and h > 0:
                self.selection = (int(x), int(y), int(w), int(h))
                self.mode = TrackingMode.INITIALIZING
                print(f"  Object selected at {self.selection}")
        elif isinstance(event, CancelTracking):
            if self.mode != TrackingMode.IDLE:
                print("  Tracking cancelled")
            self.reset()
        else:
            raise ValueError(f"Unknown tracker event: {event!r}")

        return self.mode

    def reset(self):
        """Drop the target model and return to idle."""
        self.mode = TrackingMode.IDLE
        self.selection = None
        self.window = None
        self.histogram = None

    def _build_histogram(self, hue: np.ndarray, sv_mask: np.ndarray, window: Window) -> np.ndarray:
        x, y, w, h = window
        roi = hue[y:y + h, x:x + w]
        roi_mask = sv_mask[y:y + h, x:x + w]

        histogram = cv2.calcHist([roi], [0], roi_mask, [self.histogram_size], HUE_RANGE)
        cv2.normalize(histogram, histogram, 0, 255, cv2.NORM_MINMAX)
        return histogram

    def update(self, hsv: np.ndarray, band: ColorBand) -> TrackerUpdate:
        """
        Process one frame.

        In the initializing state the target histogram is built from the
        selection first; in the tracking state the back projection is masked
        by the saturation/value threshold and CamShift runs from the previous
        window for at most 10 iterations.

        Args:
            hsv: HSV frame (value plane equalized)
            band: Color band for the saturation/value threshold

        Returns:
            TrackerUpdate; box is None while idle and may be degenerate when
            the track is not confident
        """
        if self.mode == TrackingMode.IDLE:
            return TrackerUpdate(box=None, window=None, back_projection=None, mode=self.mode)

        height, width = hsv.shape[:2]
        sv_mask = self.segmenter.saturation_value_mask(hsv, band)
        hue = self.segmenter.hue_plane(hsv)

        if self.mode == TrackingMode.INITIALIZING:
            selection = clip_window(self.selection, (width, height))
            if selection[2] <= 0 or selection[3] <= 0:
                print(f"  Selection {self.selection} is outside the frame, ignoring")
                self.reset()
                return TrackerUpdate(box=None, window=None, back_projection=None, mode=self.mode)

            self.histogram = self._build_histogram(hue, sv_mask, selection)
            self.window = selection
            self.mode = TrackingMode.TRACKING
            print(f"  Tracking started from window {selection}")

        back_projection = cv2.calcBackProject([hue], [0], self.histogram, HUE_RANGE, 1)
        back_projection = cv2.bitwise_and(back_projection, sv_mask)

        rotated_rect, window = cv2.CamShift(back_projection, self.window, TERM_CRITERIA)
        window = tuple(int(v) for v in window)

        if window[2] * window[3] <= 1:
            window = reseed_window(window, (width, height))
            print(f"  Search window collapsed, reseeded to {window}")

        self.window = window

        return TrackerUpdate(
            box=TrackingBox.from_rotated_rect(rotated_rect),
            window=window,
            back_projection=back_projection,
            mode=self.mode
        )
