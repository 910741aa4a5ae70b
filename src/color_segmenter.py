"""
Color segmentation module for locating the vehicle by its hull color.

Converts frames to HSV, equalizes brightness and thresholds on a color band
made of two hue sub-ranges (red wraps around 0 in HSV), one saturation range
and one value range.
"""

import cv2
import numpy as np
from typing import Tuple
from dataclasses import dataclass, replace


def correct_blur_kernel(size: int) -> int:
    """Gaussian kernel sizes must be positive and odd."""
    size = max(1, int(size))
    if size % 2 == 0:
        size += 1
    return size


def correct_morph_kernel(size: int) -> int:
    """Erode and dilate kernel sizes cannot be 0."""
    return max(1, int(size))


@dataclass(frozen=True)
class ColorBand:
    """
    Thresholding parameters for the tracked color.

    Hue is in OpenCV units (0-180), saturation and value in 0-255. Kernel
    sizes are corrected on construction, so a band never holds an even blur
    kernel or a zero erode/dilate kernel.
    """
    hue_1_min: int = 0
    hue_1_max: int = 10
    hue_2_min: int = 160
    hue_2_max: int = 180
    saturation_min: int = 120
    saturation_max: int = 255
    value_min: int = 100
    value_max: int = 255
    blur_kernel_size: int = 21
    erode_size: int = 2
    dilate_size: int = 16

    def __post_init__(self):
        object.__setattr__(self, "blur_kernel_size", correct_blur_kernel(self.blur_kernel_size))
        object.__setattr__(self, "erode_size", correct_morph_kernel(self.erode_size))
        object.__setattr__(self, "dilate_size", correct_morph_kernel(self.dilate_size))

    def replace(self, **changes) -> "ColorBand":
        """Return a copy with some fields changed (kernel policy re-applied)."""
        return replace(self, **changes)

    @property
    def lower_1(self) -> Tuple[int, int, int]:
        return (self.hue_1_min, self.saturation_min, self.value_min)

    @property
    def upper_1(self) -> Tuple[int, int, int]:
        return (self.hue_1_max, self.saturation_max, self.value_max)

    @property
    def lower_2(self) -> Tuple[int, int, int]:
        return (self.hue_2_min, self.saturation_min, self.value_min)

    @property
    def upper_2(self) -> Tuple[int, int, int]:
        return (self.hue_2_max, self.saturation_max, self.value_max)


class ColorSegmenter:
    """Produces binary masks of pixels matching a color band."""

    def blur(self, frame: np.ndarray, band: ColorBand) -> np.ndarray:
        """
        Smooth the frame with the band's Gaussian kernel.

        Args:
            frame: Input frame (BGR)
            band: Color band holding the blur kernel size

        Returns:
            Blurred frame (BGR)
        """
        k = band.blur_kernel_size
        return cv2.GaussianBlur(frame, (k, k), 0, 0)

    def to_hsv(self, frame: np.ndarray) -> np.ndarray:
        """
        Convert a BGR frame to HSV and equalize the value channel.

        Equalizing V normalizes lighting so that the value range of the band
        holds across over- and under-exposed footage.

        Args:
            frame: Input frame (BGR), usually already blurred

        Returns:
            HSV frame with equalized value plane
        """
        hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
        h, s, v = cv2.split(hsv)
        v = cv2.equalizeHist(v)
        return cv2.merge([h, s, v])

    def threshold(self, hsv: np.ndarray, band: ColorBand) -> np.ndarray:
        """
        Threshold an HSV frame on both hue sub-ranges.

        Args:
            hsv: HSV frame
            band: Color band

        Returns:
            Single-channel mask, 255 where the pixel matches either hue
            sub-range and the saturation and value ranges, 0 elsewhere
        """
        lower_mask = cv2.inRange(hsv, np.array(band.lower_1), np.array(band.upper_1))
        upper_mask = cv2.inRange(hsv, np.array(band.lower_2), np.array(band.upper_2))

        # Masks are binary and saturate at 255, so the sum is a union
        return cv2.addWeighted(lower_mask, 1.0, upper_mask, 1.0, 0.0)

    def saturation_value_mask(self, hsv: np.ndarray, band: ColorBand) -> np.ndarray:
        """Threshold on saturation and value only; hue is not restricted."""
        lower = np.array((0, band.saturation_min, band.value_min))
        upper = np.array((180, band.saturation_max, band.value_max))
        return cv2.inRange(hsv, lower, upper)

    def hue_plane(self, hsv: np.ndarray) -> np.ndarray:
        """Extract the hue channel as a contiguous single-channel image."""
        return np.ascontiguousarray(hsv[:, :, 0])

    def segment(self, frame: np.ndarray, band: ColorBand) -> np.ndarray:
        """Blur, convert and threshold a BGR frame in one call."""
        return self.threshold(self.to_hsv(self.blur(frame, band)), band)
