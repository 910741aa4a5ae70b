"""
Unit tests for vehicle_tracker module.
"""

import math

import pytest
import numpy as np
import cv2
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from vehicle_tracker import (
    VehicleTracker, TrackingSession, ThresholdStrategy, CamShiftStrategy, create_strategy
)
from camshift_tracker import SelectionMade, TrackingMode
from color_segmenter import ColorBand


SHARP_BAND = ColorBand(blur_kernel_size=3, erode_size=1, dilate_size=1)


def red_circle_frame(center=(400, 300), radius=30, size=(800, 600)):
    frame = np.zeros((size[1], size[0], 3), dtype=np.uint8)
    cv2.circle(frame, center, radius, (0, 0, 255), -1)
    return frame


class TestTrackingSession:
    """Test cases for TrackingSession."""

    def test_update_band_corrects_kernels(self):
        session = TrackingSession()
        band = session.update_band(blur_kernel_size=10, dilate_size=0)

        assert band.blur_kernel_size == 11
        assert band.dilate_size == 1
        assert session.band is band

    def test_toggles(self):
        session = TrackingSession()

        assert session.toggle_pause() is True
        assert session.toggle_pause() is False
        assert session.toggle_back_projection() is True

    def test_band_read_once_per_frame(self):
        session = TrackingSession(band=SHARP_BAND)
        tracker = VehicleTracker(session=session)

        context = tracker.prepare(red_circle_frame())
        session.update_band(saturation_min=0)

        assert context.band is SHARP_BAND
        assert context.band.saturation_min == 120


class TestThresholdStrategy:
    """Test cases for threshold tracking."""

    def test_finds_red_circle(self):
        tracker = VehicleTracker(strategy=ThresholdStrategy(),
                                 session=TrackingSession(band=SHARP_BAND))

        result = tracker.process(red_circle_frame())

        assert result.found
        assert result.position[0] == pytest.approx(400, abs=1.5)
        assert result.position[1] == pytest.approx(300, abs=1.5)
        assert abs(result.area - math.pi * 30 ** 2) / (math.pi * 30 ** 2) < 0.15
        assert result.pose is not None
        assert result.size == pytest.approx(30, abs=2.5)
        assert not np.isnan(result.size)
        assert result.pose.center[0] == pytest.approx(400, abs=3)
        assert result.pose.center[1] == pytest.approx(300, abs=3)
        assert set(result.stages) == {"blurred", "threshold", "cleaned"}

    def test_default_band_centroid(self):
        result = VehicleTracker().process(red_circle_frame())

        assert result.found
        assert result.position[0] == pytest.approx(400, abs=3)
        assert result.position[1] == pytest.approx(300, abs=3)
        assert result.pose is not None
        assert not np.isnan(result.pose.size)

    def test_deterministic(self):
        tracker = VehicleTracker(session=TrackingSession(band=SHARP_BAND))
        frame = red_circle_frame(center=(250, 200))

        first = tracker.process(frame.copy())
        second = tracker.process(frame.copy())

        assert first.position == second.position
        assert first.area == second.area
        assert first.pose == second.pose

    def test_not_found_on_empty_frame(self):
        result = VehicleTracker().process(np.zeros((240, 320, 3), dtype=np.uint8))

        assert not result.found
        assert result.pose is None
        assert result.position is None
        assert "cleaned" in result.stages

    def test_small_outline_found_without_pose(self):
        frame = np.zeros((100, 100, 3), dtype=np.uint8)
        cv2.rectangle(frame, (40, 40), (49, 49), (0, 0, 255), -1)
        band = ColorBand(blur_kernel_size=1, erode_size=1, dilate_size=1)

        result = VehicleTracker(session=TrackingSession(band=band)).process(frame)

        assert result.found
        assert result.area == pytest.approx(81)
        assert result.pose is None
        assert result.size is None

    def test_max_area_from_frame(self):
        strategy = ThresholdStrategy()
        VehicleTracker(strategy=strategy).process(np.zeros((120, 160, 3), dtype=np.uint8))

        assert strategy.selector.max_area == 160 * 120


class TestCamShiftStrategy:
    """Test cases for CamShift tracking."""

    def test_idle_not_found(self):
        tracker = VehicleTracker(strategy=CamShiftStrategy())

        result = tracker.process(red_circle_frame())

        assert not result.found
        assert result.box is None

    def test_tracks_selection(self):
        strategy = CamShiftStrategy()
        band = ColorBand(blur_kernel_size=1)
        tracker = VehicleTracker(strategy=strategy, session=TrackingSession(band=band))
        frame = np.zeros((200, 200, 3), dtype=np.uint8)
        cv2.rectangle(frame, (100, 100), (139, 139), (0, 0, 255), -1)

        assert strategy.handle(SelectionMade((95, 95, 50, 50))) == TrackingMode.INITIALIZING

        result = tracker.process(frame)

        assert strategy.mode == TrackingMode.TRACKING
        assert result.found
        assert result.position[0] == pytest.approx(119.5, abs=2)
        assert result.position[1] == pytest.approx(119.5, abs=2)
        assert result.pose is not None
        assert result.area > 0
        assert "back_projection" in result.stages


class TestCreateStrategy:
    """Test cases for strategy selection."""

    def test_known_strategies(self):
        assert isinstance(create_strategy("threshold"), ThresholdStrategy)
        assert isinstance(create_strategy("camshift"), CamShiftStrategy)

    def test_area_bounds_passed(self):
        strategy = create_strategy("threshold", min_area=50, max_area=5000)

        assert strategy.selector.min_area == 50
        assert strategy.selector.max_area == 5000

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            create_strategy("meanshift")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
