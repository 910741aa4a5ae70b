"""
Morphological cleanup of color threshold masks.
"""

import cv2
import numpy as np

from color_segmenter import correct_morph_kernel


class MorphologicalCleaner:
    """Erodes then dilates a binary mask to drop speckle and merge blob fragments."""

    def __init__(self, erode_passes: int = 2, dilate_passes: int = 2):
        """
        Initialize cleaner.

        Args:
            erode_passes: Number of erosions (default: 2)
            dilate_passes: Number of dilations (default: 2)

        Raises:
            ValueError: If a pass count is negative
        """
        if erode_passes < 0 or dilate_passes < 0:
            raise ValueError(f"Invalid pass counts: erode={erode_passes}, dilate={dilate_passes}")

        self.erode_passes = erode_passes
        self.dilate_passes = dilate_passes

    def clean(self, mask: np.ndarray, erode_size: int, dilate_size: int) -> np.ndarray:
        """
        Clean a binary mask.

        A single erosion leaves speckle at typical kernel sizes, so the mask is
        eroded twice. Dilation usually runs with a larger kernel than erosion
        because the vehicle is sparse in the mask once noise is gone.

        Args:
            mask: Binary mask (single channel, uint8)
            erode_size: Side of the square erosion element (0 is corrected to 1)
            dilate_size: Side of the square dilation element (0 is corrected to 1)

        Returns:
            Cleaned mask with the same shape
        """
        erode_size = correct_morph_kernel(erode_size)
        dilate_size = correct_morph_kernel(dilate_size)

        erode_element = cv2.getStructuringElement(cv2.MORPH_RECT, (erode_size, erode_size))
        dilate_element = cv2.getStructuringElement(cv2.MORPH_RECT, (dilate_size, dilate_size))

        cleaned = mask.copy()
        for _ in range(self.erode_passes):
            cleaned = cv2.erode(cleaned, erode_element)
        for _ in range(self.dilate_passes):
            cleaned = cv2.dilate(cleaned, dilate_element)

        return cleaned
