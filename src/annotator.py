"""
Drawing helpers for the annotated output video and the debug views.
"""

import cv2
import numpy as np
from typing import Optional, Tuple

from pose_estimator import Pose, TrackingBox
from vehicle_tracker import TrackingResult


LOCATION_COLOR = (0, 255, 0)
LOCATION_THICKNESS = 1
POSE_LINE_COLOR = (0, 255, 255)
NOT_FOUND_COLOR = (0, 0, 255)
NOT_FOUND_TEXT = "Vehicle not found!"

HISTOGRAM_IMAGE_SHAPE = (200, 320, 3)


def _point(p) -> Tuple[int, int]:
    return (int(round(p[0])), int(round(p[1])))


def draw_object_position(frame: np.ndarray, x: float, y: float, radius: float,
                         draw_circle: bool = False):
    """
    Draw crosshairs centered on the object, clipped to the frame.

    Args:
        frame: Frame to draw into (BGR, modified in place)
        x, y: Object position
        radius: Crosshair arm length
        draw_circle: Also draw a circle of the given radius
    """
    height, width = frame.shape[:2]
    x, y = int(round(x)), int(round(y))
    radius = int(round(radius))

    if draw_circle and radius > 0:
        cv2.circle(frame, (x, y), radius, LOCATION_COLOR, LOCATION_THICKNESS)

    top = max(y - radius, 0)
    bottom = min(y + radius, height)
    left = max(x - radius, 0)
    right = min(x + radius, width)

    cv2.line(frame, (x, y), (x, top), LOCATION_COLOR, LOCATION_THICKNESS)
    cv2.line(frame, (x, y), (x, bottom), LOCATION_COLOR, LOCATION_THICKNESS)
    cv2.line(frame, (x, y), (left, y), LOCATION_COLOR, LOCATION_THICKNESS)
    cv2.line(frame, (x, y), (right, y), LOCATION_COLOR, LOCATION_THICKNESS)

    cv2.putText(frame, f"[{x},{y}]", (x, y + radius + 20),
                cv2.FONT_HERSHEY_PLAIN, 1, LOCATION_COLOR, 1, cv2.LINE_8)


def draw_principal_axis(frame: np.ndarray, pose: Pose):
    """Draw the pose axis as a thick yellow line."""
    cv2.line(frame, _point(pose.axis_start), _point(pose.axis_end), POSE_LINE_COLOR, 2, cv2.LINE_8)


def draw_tracking_ellipse(frame: np.ndarray, box: TrackingBox):
    cv2.ellipse(frame, box.to_rotated_rect(), LOCATION_COLOR, LOCATION_THICKNESS, cv2.LINE_AA)


def draw_not_found(frame: np.ndarray):
    cv2.putText(frame, NOT_FOUND_TEXT, (50, 50), cv2.FONT_HERSHEY_SIMPLEX, 1, NOT_FOUND_COLOR, 2)


def invert_selection(frame: np.ndarray, rect: Tuple[int, int, int, int]):
    """Show the selection being dragged by inverting it in place."""
    x, y, w, h = rect
    if w <= 0 or h <= 0:
        return
    roi = frame[y:y + h, x:x + w]
    cv2.bitwise_not(roi, roi)


def annotate(frame: np.ndarray, result: TrackingResult, strategy: str,
             show_back_projection: bool = False) -> np.ndarray:
    """
    Draw the tracking result onto a copy of the frame.

    Args:
        frame: Frame at processing resolution (BGR)
        result: Tracking result for this frame
        strategy: "threshold" or "camshift"
        show_back_projection: Draw over the back projection instead of the frame

    Returns:
        Annotated frame (BGR)
    """
    back_projection = result.stages.get("back_projection")
    if show_back_projection and back_projection is not None:
        output = cv2.cvtColor(back_projection, cv2.COLOR_GRAY2BGR)
    else:
        output = frame.copy()

    if strategy == "threshold":
        if not result.found:
            draw_not_found(output)
        elif result.pose is not None:
            draw_principal_axis(output, result.pose)
            x, y = result.position
            draw_object_position(output, x, y, result.pose.size, draw_circle=True)
        else:
            # Outline too small for a pose: position only, radius from the blob area
            x, y = result.position
            draw_object_position(output, x, y, np.sqrt(result.area / np.pi))
    elif result.found:
        box = result.box
        draw_tracking_ellipse(output, box)
        x, y = box.center
        draw_object_position(output, x, y, min(box.size) / 2)
        if result.pose is not None:
            draw_principal_axis(output, result.pose)

    return output


def render_histogram(histogram: Optional[np.ndarray]) -> np.ndarray:
    """
    Render a normalized hue histogram as colored bars.

    Args:
        histogram: Histogram normalized to 0-255, or None for a blank image

    Returns:
        200x320 BGR image
    """
    image = np.zeros(HISTOGRAM_IMAGE_SHAPE, dtype=np.uint8)
    if histogram is None:
        return image

    values = np.asarray(histogram, dtype=np.float32).ravel()
    bins = len(values)
    rows, cols = image.shape[:2]
    bin_width = cols // bins

    hues = np.array([[[int(i * 180.0 / bins), 255, 255] for i in range(bins)]], dtype=np.uint8)
    colors = cv2.cvtColor(hues, cv2.COLOR_HSV2BGR)[0]

    for i in range(bins):
        value = int(np.clip(values[i] * rows / 255, 0, rows))
        color = tuple(int(c) for c in colors[i])
        cv2.rectangle(image, (i * bin_width, rows), ((i + 1) * bin_width, rows - value), color, -1)

    return image


def compose_debug_view(result: TrackingResult, annotated: np.ndarray,
                       four_frame: bool = True) -> np.ndarray:
    """
    Lay out the intermediate threshold stages next to the annotated frame.

    Four frame mode: blurred | threshold on top, cleaned | annotated below.
    Two frame mode: threshold | annotated. Without threshold stages (camshift)
    the annotated frame is returned as is.
    """
    threshold = result.stages.get("threshold")
    cleaned = result.stages.get("cleaned")
    if threshold is None or cleaned is None:
        return annotated

    threshold_color = cv2.cvtColor(threshold, cv2.COLOR_GRAY2BGR)
    if not four_frame:
        return np.hstack([threshold_color, annotated])

    cleaned_color = cv2.cvtColor(cleaned, cv2.COLOR_GRAY2BGR)
    top = np.hstack([result.stages["blurred"], threshold_color])
    bottom = np.hstack([cleaned_color, annotated])
    return np.vstack([top, bottom])
