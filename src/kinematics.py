"""
Telemetry derived from the vehicle's pose track: heading, speed and turn rate.
"""

import numpy as np
from typing import List, Tuple, Dict, Optional

from pose_estimator import Pose


class TrackKinematics:
    """Converts per-frame positions and poses into navigation telemetry."""

    def __init__(self,
                 fps: float = 30.0,
                 pixels_per_meter: Optional[float] = None):
        """
        Initialize kinematics calculator.

        Args:
            fps: Video frame rate (frames per second)
            pixels_per_meter: Image scale; None until calibrated

        Raises:
            ValueError: If parameters are invalid
        """
        if fps <= 0:
            raise ValueError(f"Invalid fps: {fps}")

        if pixels_per_meter is not None and pixels_per_meter <= 0:
            raise ValueError(f"Invalid pixels_per_meter: {pixels_per_meter}. Must be positive.")

        self.fps = fps
        self.pixels_per_meter = pixels_per_meter

    def calibrate_from_vehicle(self, size_pixels: float, vehicle_length_m: float) -> float:
        """
        Calibrate the image scale from the vehicle's known length.

        The pose size is half the length along the principal axis, so the
        full vehicle spans twice that many pixels.

        Args:
            size_pixels: Pose size in pixels
            vehicle_length_m: Vehicle length in meters

        Returns:
            Pixels per meter

        Raises:
            ValueError: If inputs are invalid
        """
        if size_pixels <= 0:
            raise ValueError(f"Invalid size_pixels: {size_pixels}. Must be positive.")

        if vehicle_length_m <= 0:
            raise ValueError(f"Invalid vehicle_length_m: {vehicle_length_m}. Must be positive.")

        self.pixels_per_meter = (size_pixels * 2) / vehicle_length_m
        print(f"Calibrated: {self.pixels_per_meter:.2f} pixels/meter")
        return self.pixels_per_meter

    @staticmethod
    def heading_degrees(pose: Pose) -> float:
        """
        Orientation of the principal axis in image coordinates.

        The axis has no front or back, so the angle is folded into [0, 180).
        0 points along +x, 90 along +y (down in the image).
        """
        dx = pose.axis_end[0] - pose.axis_start[0]
        dy = pose.axis_end[1] - pose.axis_start[1]
        return float(np.degrees(np.arctan2(dy, dx)) % 180.0)

    @staticmethod
    def heading_difference(previous: float, current: float) -> float:
        """Signed smallest change between two axis headings, in (-90, 90]."""
        delta = (current - previous) % 180.0
        if delta > 90.0:
            delta -= 180.0
        return delta

    def calculate_speed(self, track: List[Tuple[float, float, int]]) -> Dict:
        """
        Average ground speed over a track.

        Args:
            track: List of (x, y, frame_number) tuples

        Returns:
            Dictionary with distance, time and speed in pixels and, when
            calibrated, meters
        """
        if not track or len(track) < 2:
            return {"error": "Insufficient track data"}

        points = np.array([(x, y) for x, y, _ in track], dtype=np.float64)
        distance_pixels = float(np.sum(np.linalg.norm(np.diff(points, axis=0), axis=1)))

        frames_elapsed = track[-1][2] - track[0][2]
        time_seconds = frames_elapsed / self.fps

        if time_seconds <= 0:
            return {"error": "No time elapsed between track points"}

        speed_pixels = distance_pixels / time_seconds

        result = {
            "distance_pixels": round(distance_pixels, 2),
            "time_seconds": round(time_seconds, 2),
            "speed_pixels_per_second": round(speed_pixels, 2),
            "frames_analyzed": frames_elapsed,
        }

        if self.pixels_per_meter:
            result["distance_m"] = round(distance_pixels / self.pixels_per_meter, 2)
            result["speed_m_per_second"] = round(speed_pixels / self.pixels_per_meter, 2)

        return result

    def calculate_turn_rate(self, headings: List[Tuple[float, int]]) -> Optional[float]:
        """
        Mean turn rate in degrees per second.

        Args:
            headings: List of (heading_degrees, frame_number) tuples

        Returns:
            Turn rate, or None with fewer than two headings
        """
        if len(headings) < 2:
            return None

        total_turn = 0.0
        for (previous, _), (current, _) in zip(headings, headings[1:]):
            total_turn += self.heading_difference(previous, current)

        frames_elapsed = headings[-1][1] - headings[0][1]
        if frames_elapsed <= 0:
            return None

        return total_turn / (frames_elapsed / self.fps)

    def get_statistics(self, track: List[Tuple[float, float, int]],
                       sizes: Optional[List[float]] = None) -> Dict:
        """
        Aggregate statistics over a tracking session.

        Args:
            track: List of (x, y, frame_number) tuples where the vehicle was found
            sizes: Optional pose sizes for the same frames

        Returns:
            Dictionary with summary statistics
        """
        if not track:
            return {"error": "No track data"}

        xs = [p[0] for p in track]
        ys = [p[1] for p in track]

        stats = {
            "points": len(track),
            "start_position": (round(xs[0], 1), round(ys[0], 1)),
            "end_position": (round(xs[-1], 1), round(ys[-1], 1)),
            "x_range_pixels": round(max(xs) - min(xs), 2),
            "y_range_pixels": round(max(ys) - min(ys), 2),
        }

        speed = self.calculate_speed(track)
        if "error" not in speed:
            stats.update(speed)

        if sizes:
            stats["mean_size_pixels"] = round(float(np.mean(sizes)), 2)
            stats["median_size_pixels"] = round(float(np.median(sizes)), 2)

        return stats
