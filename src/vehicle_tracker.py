"""
Per-frame vehicle tracking: session state and the two tracking strategies.

Both strategies take a preprocessed frame and return a TrackingResult:
- ThresholdStrategy re-detects the vehicle every frame by color
  thresholding, morphology and largest-blob selection
- CamShiftStrategy follows a user-selected target with histogram back
  projection and CamShift
The pose estimator is shared by both.
"""

import numpy as np
from typing import Dict, Optional, Tuple
from dataclasses import dataclass, field

from color_segmenter import ColorBand, ColorSegmenter
from morphology import MorphologicalCleaner
from blob_selector import BlobSelector, MIN_BLOB_AREA
from pose_estimator import PoseEstimator, Pose, TrackingBox
from camshift_tracker import CamShiftTracker, TrackingMode


STRATEGIES = ("threshold", "camshift")


@dataclass
class TrackingSession:
    """
    Mutable state shared between the UI and the pipeline.

    UI handlers change it between frames; the pipeline reads the band once
    at the start of each frame.
    """
    band: ColorBand = field(default_factory=ColorBand)
    paused: bool = False
    show_back_projection: bool = False

    def update_band(self, **changes) -> ColorBand:
        """Apply slider changes; kernel sizes are corrected here."""
        self.band = self.band.replace(**changes)
        return self.band

    def toggle_pause(self) -> bool:
        self.paused = not self.paused
        return self.paused

    def toggle_back_projection(self) -> bool:
        self.show_back_projection = not self.show_back_projection
        return self.show_back_projection


@dataclass
class FrameContext:
    """Everything computed from one input frame before strategy-specific work."""
    frame: np.ndarray
    blurred: np.ndarray
    hsv: np.ndarray
    band: ColorBand


@dataclass
class TrackingResult:
    """Outcome of locating the vehicle in one frame."""
    found: bool
    position: Optional[Tuple[float, float]] = None
    box: Optional[TrackingBox] = None
    pose: Optional[Pose] = None
    area: float = 0.0
    stages: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def size(self) -> Optional[float]:
        return self.pose.size if self.pose is not None else None


class ThresholdStrategy:
    """Static color-segmentation tracking; no state carried between frames."""

    name = "threshold"

    def __init__(self,
                 segmenter: Optional[ColorSegmenter] = None,
                 cleaner: Optional[MorphologicalCleaner] = None,
                 selector: Optional[BlobSelector] = None,
                 pose_estimator: Optional[PoseEstimator] = None):
        self.segmenter = segmenter if segmenter is not None else ColorSegmenter()
        self.cleaner = cleaner if cleaner is not None else MorphologicalCleaner()
        self.selector = selector if selector is not None else BlobSelector()
        self.pose_estimator = pose_estimator if pose_estimator is not None else PoseEstimator()

    def locate(self, context: FrameContext) -> TrackingResult:
        """
        Find the largest blob matching the band and estimate its pose.

        Args:
            context: Preprocessed frame

        Returns:
            TrackingResult; pose is None when the blob outline is too small
            for ellipse fitting
        """
        band = context.band
        height, width = context.hsv.shape[:2]
        self.selector.set_frame_size(width, height)

        threshold = self.segmenter.threshold(context.hsv, band)
        cleaned = self.cleaner.clean(threshold, band.erode_size, band.dilate_size)
        stages = {"blurred": context.blurred, "threshold": threshold, "cleaned": cleaned}

        blob = self.selector.select(cleaned)
        if blob is None:
            return TrackingResult(found=False, stages=stages)

        box = None
        pose = None
        if self.pose_estimator.can_estimate(blob.contour):
            estimate = self.pose_estimator.estimate(blob.contour)
            box = estimate.ellipse
            pose = estimate.pose

        return TrackingResult(
            found=True,
            position=blob.centroid,
            box=box,
            pose=pose,
            area=blob.area,
            stages=stages
        )


class CamShiftStrategy:
    """Adaptive mean-shift tracking of a user-selected target."""

    name = "camshift"

    def __init__(self,
                 tracker: Optional[CamShiftTracker] = None,
                 pose_estimator: Optional[PoseEstimator] = None):
        self.tracker = tracker if tracker is not None else CamShiftTracker()
        self.pose_estimator = pose_estimator if pose_estimator is not None else PoseEstimator()

    def handle(self, event) -> TrackingMode:
        return self.tracker.handle(event)

    @property
    def mode(self) -> TrackingMode:
        return self.tracker.mode

    def locate(self, context: FrameContext) -> TrackingResult:
        """
        Advance the tracker by one frame.

        Returns:
            TrackingResult; not found while idle or when the tracking box is
            degenerate (the box is still attached for inspection)
        """
        update = self.tracker.update(context.hsv, context.band)

        stages = {"blurred": context.blurred}
        if update.back_projection is not None:
            stages["back_projection"] = update.back_projection

        box = update.box
        if box is None or box.is_degenerate:
            return TrackingResult(found=False, box=box, stages=stages)

        return TrackingResult(
            found=True,
            position=box.center,
            box=box,
            pose=self.pose_estimator.estimate_box(box),
            area=box.size[0] * box.size[1],
            stages=stages
        )


def create_strategy(name: str,
                    min_area: float = MIN_BLOB_AREA,
                    max_area: Optional[float] = None):
    """
    Build a tracking strategy by name.

    Args:
        name: "threshold" or "camshift"
        min_area: Minimum blob area (threshold strategy only)
        max_area: Maximum blob area; None derives it from the frame size

    Raises:
        ValueError: If the name is unknown
    """
    if name == "threshold":
        return ThresholdStrategy(selector=BlobSelector(min_area=min_area, max_area=max_area))
    if name == "camshift":
        return CamShiftStrategy()
    raise ValueError(f"Unknown tracking strategy: {name}. Must be one of: {', '.join(STRATEGIES)}")


class VehicleTracker:
    """Runs the shared preprocessing and the selected strategy on each frame."""

    def __init__(self,
                 strategy=None,
                 session: Optional[TrackingSession] = None,
                 segmenter: Optional[ColorSegmenter] = None):
        """
        Initialize vehicle tracker with dependency injection.

        Args:
            strategy: ThresholdStrategy or CamShiftStrategy (threshold if None)
            session: TrackingSession instance (creates default if None)
            segmenter: ColorSegmenter used for blur and HSV conversion
        """
        self.strategy = strategy if strategy is not None else ThresholdStrategy()
        self.session = session if session is not None else TrackingSession()
        self.segmenter = segmenter if segmenter is not None else ColorSegmenter()

    def prepare(self, frame: np.ndarray) -> FrameContext:
        """Blur and convert a frame, reading the session's band exactly once."""
        band = self.session.band
        blurred = self.segmenter.blur(frame, band)
        hsv = self.segmenter.to_hsv(blurred)
        return FrameContext(frame=frame, blurred=blurred, hsv=hsv, band=band)

    def process(self, frame: np.ndarray) -> TrackingResult:
        """
        Locate the vehicle in a BGR frame.

        Args:
            frame: Input frame at processing resolution (BGR)

        Returns:
            TrackingResult for this frame
        """
        return self.strategy.locate(self.prepare(frame))
