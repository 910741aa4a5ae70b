"""
Main video processing module that wires the frame source, the vehicle
tracker, the interactive window, the annotated output video and the
telemetry database together.
"""

import os
import sys
import time
import argparse
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from annotator import annotate, compose_debug_view, invert_selection, render_histogram
from camshift_tracker import CancelTracking, SelectionMade, TrackingMode, clip_window
from color_segmenter import ColorBand
from database import TelemetryDatabase
from kinematics import TrackKinematics
from vehicle_tracker import STRATEGIES, TrackingSession, VehicleTracker, create_strategy


PROCESSING_VIDEO_HEIGHT_LIMIT = 1080
NUM_FPS_SAMPLE_FRAMES = 120
DEFAULT_FPS = 30.0
OUTPUT_CODEC = "DIVX"
OUTPUT_NAME_FORMAT = "%Y_%m_%d_%H_%M_%S.avi"

MAIN_WINDOW = "USV Tracker"
HISTOGRAM_WINDOW = "Histogram"
ESCAPE_KEY = 27

EXIT_SINK_UNAVAILABLE = 3
EXIT_SOURCE_UNAVAILABLE = 4


class SourceUnavailableError(RuntimeError):
    """The video file or stream could not be opened."""


class SinkUnavailableError(RuntimeError):
    """The output video could not be opened for writing."""


def compute_processing_size(width: int, height: int,
                            height_limit: int = PROCESSING_VIDEO_HEIGHT_LIMIT) -> Tuple[Tuple[int, int], bool]:
    """
    Compute the resolution frames are processed at.

    Inputs taller than the limit are scaled down to it, keeping the aspect ratio.

    Args:
        width: Input width in pixels
        height: Input height in pixels
        height_limit: Maximum processing height

    Returns:
        ((width, height), resize_needed) tuple

    Raises:
        ValueError: If a dimension or the limit is not positive
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid input size: {width}x{height}")

    if height_limit <= 0:
        raise ValueError(f"Invalid height_limit: {height_limit}. Must be positive.")

    if height > height_limit:
        ratio = height_limit / height
        return (int(width * ratio), height_limit), True

    return (width, height), False


def output_file_name(output_dir: str = "output", now: Optional[datetime] = None) -> str:
    """Timestamped output video path, e.g. output/2016_05_10_14_03_59.avi."""
    now = now if now is not None else datetime.now()
    return os.path.join(output_dir, now.strftime(OUTPUT_NAME_FORMAT))


def measure_stream_fps(capture, num_sample_frames: int = NUM_FPS_SAMPLE_FRAMES) -> float:
    """
    Estimate the frame rate of a live stream by timing sample reads.

    The sampled frames are consumed.

    Args:
        capture: Opened cv2.VideoCapture
        num_sample_frames: Number of frames to read

    Returns:
        Frames per second (DEFAULT_FPS when timing fails)
    """
    print(f"Measuring stream frame rate over {num_sample_frames} frames...")
    start = time.time()
    read = 0
    for _ in range(num_sample_frames):
        ret, _ = capture.read()
        if not ret:
            break
        read += 1
    elapsed = time.time() - start

    if read == 0 or elapsed <= 0:
        print(f"Warning: Could not measure stream frame rate, using {DEFAULT_FPS} FPS")
        return DEFAULT_FPS

    return read / elapsed


def open_sink(path: str, fps: float, size: Tuple[int, int], codec: str = OUTPUT_CODEC):
    """
    Open the annotated output video.

    Raises:
        SinkUnavailableError: If the writer cannot be opened
    """
    output_dir = os.path.dirname(path)
    if output_dir:
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as e:
            raise SinkUnavailableError(f"Cannot create output directory {output_dir}: {e}")

    fourcc = cv2.VideoWriter_fourcc(*codec)
    writer = cv2.VideoWriter(path, fourcc, fps, size, True)

    if not writer.isOpened():
        raise SinkUnavailableError(f"Cannot open the output video file {path} for write.")

    return writer


class InteractiveWindow:
    """
    Main window with trackbars, mouse selection and keyboard controls.

    Mouse and key input is turned into session changes and tracker events,
    which the processing loop applies between frames.
    """

    def __init__(self, session: TrackingSession, strategy: str,
                 frame_size: Tuple[int, int], fullscreen: bool = False):
        self.session = session
        self.strategy = strategy
        self.frame_size = frame_size

        self.selecting = False
        self.origin = (0, 0)
        self.selection = (0, 0, 0, 0)
        self.pending_events: List = []

        cv2.namedWindow(MAIN_WINDOW, cv2.WINDOW_NORMAL)
        if fullscreen:
            cv2.setWindowProperty(MAIN_WINDOW, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)

        self._create_trackbars()

        if strategy == "camshift":
            cv2.namedWindow(HISTOGRAM_WINDOW, cv2.WINDOW_NORMAL)
            cv2.setMouseCallback(MAIN_WINDOW, self.on_mouse)

    def _create_trackbars(self):
        band = self.session.band
        kernel_max = min(self.frame_size)

        sliders = []
        if self.strategy == "threshold":
            sliders += [
                ("H 1 Min", "hue_1_min", 180),
                ("H 1 Max", "hue_1_max", 180),
                ("H 2 Min", "hue_2_min", 180),
                ("H 2 Max", "hue_2_max", 180),
            ]
        sliders += [
            ("S Min", "saturation_min", 255),
            ("S Max", "saturation_max", 255),
            ("V Min", "value_min", 255),
            ("V Max", "value_max", 255),
            ("Blur", "blur_kernel_size", kernel_max),
        ]
        if self.strategy == "threshold":
            sliders += [
                ("Erode", "erode_size", kernel_max),
                ("Dilate", "dilate_size", kernel_max),
            ]

        for label, field_name, maximum in sliders:
            cv2.createTrackbar(label, MAIN_WINDOW, getattr(band, field_name), maximum,
                               self._trackbar_handler(label, field_name))

    def _trackbar_handler(self, label: str, field_name: str):
        def on_trackbar(position: int):
            band = self.session.update_band(**{field_name: position})
            corrected = getattr(band, field_name)
            if corrected != position:
                cv2.setTrackbarPos(label, MAIN_WINDOW, corrected)
        return on_trackbar

    def on_mouse(self, event, x, y, flags, param):
        """Drag a rectangle with the left button to select the vehicle."""
        if self.selecting:
            rect = (min(x, self.origin[0]), min(y, self.origin[1]),
                    abs(x - self.origin[0]), abs(y - self.origin[1]))
            self.selection = clip_window(rect, self.frame_size)

        if event == cv2.EVENT_LBUTTONDOWN:
            self.origin = (x, y)
            self.selection = (x, y, 0, 0)
            self.selecting = True
        elif event == cv2.EVENT_LBUTTONUP:
            self.selecting = False
            if self.selection[2] > 0 and self.selection[3] > 0:
                self.pending_events.append(SelectionMade(self.selection))

    def poll(self, delay_ms: int = 10) -> Tuple[bool, List]:
        """
        Wait for input and collect what happened since the last poll.

        Returns:
            (quit_requested, tracker_events) tuple
        """
        key = cv2.waitKey(delay_ms) & 0xFF
        events = self.pending_events
        self.pending_events = []

        if key == ESCAPE_KEY:
            return True, events

        if key == ord("p"):
            paused = self.session.toggle_pause()
            print("  Paused" if paused else "  Resumed")
        elif self.strategy == "camshift":
            if key == ord("b"):
                self.session.toggle_back_projection()
            elif key == ord("c"):
                events.append(CancelTracking())

        return False, events

    def show(self, view: np.ndarray, histogram: Optional[np.ndarray] = None):
        if self.selecting:
            view = view.copy()
            invert_selection(view, self.selection)
        cv2.imshow(MAIN_WINDOW, view)
        if self.strategy == "camshift":
            cv2.imshow(HISTOGRAM_WINDOW, render_histogram(histogram))

    def close(self):
        cv2.destroyAllWindows()


class VideoProcessor:
    """Main processor for tracking the vehicle through a video."""

    def __init__(self,
                 strategy: str = "camshift",
                 band: Optional[ColorBand] = None,
                 db: Optional[TelemetryDatabase] = None,
                 output_dir: str = "output",
                 height_limit: int = PROCESSING_VIDEO_HEIGHT_LIMIT,
                 min_area: float = 1,
                 max_area: Optional[float] = None,
                 display: bool = True,
                 four_frame: bool = True,
                 fullscreen: bool = False,
                 vehicle_length_m: Optional[float] = None):
        """
        Initialize video processor with dependency injection.

        Args:
            strategy: "threshold" or "camshift"
            band: Initial color band (defaults if None)
            db: TelemetryDatabase for per-frame poses (no recording if None)
            output_dir: Directory for the annotated video
            height_limit: Inputs taller than this are scaled down
            min_area: Minimum blob area (threshold strategy)
            max_area: Maximum blob area; None uses the frame area
            display: Show the interactive window
            four_frame: Four-panel debug view instead of two (threshold strategy)
            fullscreen: Make the main window full screen
            vehicle_length_m: Known vehicle length for scale calibration

        Raises:
            ValueError: If parameters are invalid
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Invalid strategy: {strategy}. Must be one of: {', '.join(STRATEGIES)}")

        if height_limit <= 0:
            raise ValueError(f"Invalid height_limit: {height_limit}. Must be positive.")

        if vehicle_length_m is not None and vehicle_length_m <= 0:
            raise ValueError(f"Invalid vehicle_length_m: {vehicle_length_m}. Must be positive.")

        self.strategy_name = strategy
        self.session = TrackingSession(band=band if band is not None else ColorBand())
        self.tracker = VehicleTracker(
            strategy=create_strategy(strategy, min_area=min_area, max_area=max_area),
            session=self.session
        )
        self.db = db
        self.output_dir = output_dir
        self.height_limit = height_limit
        self.display = display
        self.four_frame = four_frame
        self.fullscreen = fullscreen
        self.vehicle_length_m = vehicle_length_m

    def open_source(self, source: str):
        capture = cv2.VideoCapture(source)
        if not capture.isOpened():
            raise SourceUnavailableError(f"Could not open video source: {source}")
        return capture

    def _record_pose(self, session_id: int, frame_number: int, result, kinematics: TrackKinematics):
        heading = kinematics.heading_degrees(result.pose) if result.pose is not None else None
        axis = (result.pose.axis_start, result.pose.axis_end) if result.pose is not None else None
        self.db.add_pose(
            session_id=session_id,
            frame_number=frame_number,
            found=result.found,
            position=result.position,
            heading_deg=heading,
            size=result.size,
            area=result.area if result.found else None,
            axis=axis,
            commit=False
        )

    def run(self, source: str, is_stream: bool = False,
            initial_selection: Optional[Tuple[int, int, int, int]] = None) -> Dict:
        """
        Track the vehicle through a video file or live stream.

        Args:
            source: Video file path or stream URL
            is_stream: Measure the frame rate instead of reading it from the file
            initial_selection: Optional (x, y, w, h) selection for the camshift
                strategy, in processing coordinates

        Returns:
            Dictionary with processing results

        Raises:
            SourceUnavailableError: If the source cannot be opened
            SinkUnavailableError: If the output video cannot be opened
        """
        print(f"\n{'='*60}")
        print(f"Tracking vehicle in: {source} ({self.strategy_name})")
        print(f"{'='*60}\n")

        capture = self.open_source(source)
        writer = None
        window = None

        try:
            if is_stream:
                fps = measure_stream_fps(capture)
            else:
                fps = capture.get(cv2.CAP_PROP_FPS)
                if not fps or fps <= 0:
                    print(f"Warning: Source has no frame rate, using {DEFAULT_FPS} FPS")
                    fps = DEFAULT_FPS

            input_size = (int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                          int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)))

            # Some streams report no size; take it from the first frame
            first_frame = None
            if input_size[0] <= 0 or input_size[1] <= 0:
                ret, first_frame = capture.read()
                if not ret:
                    raise SourceUnavailableError(f"No frames could be read from: {source}")
                input_size = (first_frame.shape[1], first_frame.shape[0])

            processing_size, resize = compute_processing_size(*input_size, self.height_limit)

            print(f"Input: {input_size[0]}x{input_size[1]} at {fps:.1f} FPS")
            if resize:
                print(f"Processing at {processing_size[0]}x{processing_size[1]}")

            output_path = output_file_name(self.output_dir)
            writer = open_sink(output_path, fps, processing_size)
            print(f"✓ Writing annotated video to {output_path}\n")

            kinematics = TrackKinematics(fps=fps)
            session_id = None
            if self.db is not None:
                session_id = self.db.create_session(
                    source=source,
                    strategy=self.strategy_name,
                    fps=fps,
                    frame_size=processing_size,
                    output_file=output_path
                )

            if self.display:
                window = InteractiveWindow(self.session, self.strategy_name,
                                           processing_size, fullscreen=self.fullscreen)

            if initial_selection is not None:
                self._dispatch([SelectionMade(tuple(initial_selection))])

            track = []
            sizes = []
            frame_number = 0
            frames_found = 0
            last_view = None
            last_histogram = None
            held_frame = None

            while True:
                if window is not None:
                    quit_requested, events = window.poll()
                    if quit_requested:
                        break
                    self._dispatch(events)
                    last_histogram = self._histogram()

                if not self.session.paused:
                    if first_frame is not None:
                        frame, first_frame = first_frame, None
                    else:
                        ret, frame = capture.read()
                        if not ret:
                            break

                    if resize:
                        frame = cv2.resize(frame, processing_size, interpolation=cv2.INTER_LANCZOS4)

                    held_frame = frame
                    result = self.tracker.process(frame)
                    annotated = annotate(frame, result, self.strategy_name,
                                         self.session.show_back_projection)
                    writer.write(annotated)

                    if result.found:
                        frames_found += 1
                        track.append((result.position[0], result.position[1], frame_number))
                        if result.size is not None:
                            sizes.append(result.size)

                    if session_id is not None:
                        self._record_pose(session_id, frame_number, result, kinematics)

                    last_view = compose_debug_view(result, annotated, self.four_frame)
                    last_histogram = self._histogram()
                    frame_number += 1

                    if frame_number % 30 == 0:
                        print(f"  Processed {frame_number} frames - vehicle found in {frames_found}")
                        if self.db is not None:
                            self.db.commit()

                elif self.strategy_name == "threshold" and held_frame is not None:
                    # Paused: redo the held frame so slider changes stay visible.
                    # Nothing is written or recorded.
                    result = self.tracker.process(held_frame)
                    annotated = annotate(held_frame, result, self.strategy_name)
                    last_view = compose_debug_view(result, annotated, self.four_frame)

                if window is not None and last_view is not None:
                    window.show(last_view, last_histogram)

        finally:
            capture.release()
            if writer is not None:
                writer.release()
            if window is not None:
                window.close()
            if self.db is not None:
                self.db.commit()

        if self.vehicle_length_m and sizes:
            kinematics.calibrate_from_vehicle(float(np.median(sizes)), self.vehicle_length_m)

        detection_rate = (frames_found / frame_number * 100) if frame_number > 0 else 0.0

        print(f"\n✓ Vehicle found in {frames_found}/{frame_number} frames ({detection_rate:.1f}%)")
        print("Processing finished!")

        return {
            "success": True,
            "session_id": session_id,
            "frames_processed": frame_number,
            "frames_found": frames_found,
            "detection_rate": round(detection_rate, 2),
            "output_video": output_path,
            "telemetry": kinematics.get_statistics(track, sizes) if track else {},
        }

    def _dispatch(self, events: List):
        """Deliver UI events to the tracker; a selection made while paused resumes."""
        handle = getattr(self.tracker.strategy, "handle", None)
        for event in events:
            if handle is None:
                continue
            mode = handle(event)
            if isinstance(event, SelectionMade) and mode == TrackingMode.INITIALIZING:
                self.session.paused = False

    def _histogram(self) -> Optional[np.ndarray]:
        tracker = getattr(self.tracker.strategy, "tracker", None)
        return tracker.histogram if tracker is not None else None


def _band_from_args(args) -> ColorBand:
    band = ColorBand()
    changes = {}
    if args.hue1:
        changes.update(hue_1_min=args.hue1[0], hue_1_max=args.hue1[1])
    if args.hue2:
        changes.update(hue_2_min=args.hue2[0], hue_2_max=args.hue2[1])
    if args.saturation:
        changes.update(saturation_min=args.saturation[0], saturation_max=args.saturation[1])
    if args.value:
        changes.update(value_min=args.value[0], value_max=args.value[1])
    if args.blur is not None:
        changes["blur_kernel_size"] = args.blur
    if args.erode is not None:
        changes["erode_size"] = args.erode
    if args.dilate is not None:
        changes["dilate_size"] = args.dilate
    return band.replace(**changes) if changes else band


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Track a colored surface vehicle in video and estimate its pose"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--video", "-v", help="Path to video file")
    source.add_argument("--stream", "-s", help="Video stream URL (rtmp://, rtsp://, ...)")
    parser.add_argument(
        "--mode", "-m",
        default="camshift",
        choices=list(STRATEGIES),
        help="Tracking strategy"
    )
    parser.add_argument("--output-dir", "-o", default="output", help="Directory for the annotated video")
    parser.add_argument("--height-limit", type=int, default=PROCESSING_VIDEO_HEIGHT_LIMIT,
                        help="Scale inputs taller than this down before processing")
    parser.add_argument("--roi", type=int, nargs=4, metavar=("X", "Y", "W", "H"),
                        help="Initial object selection for camshift mode")
    parser.add_argument("--no-display", action="store_true", help="Run without the interactive window")
    parser.add_argument("--two-frame", action="store_true", help="Two-panel debug view instead of four")
    parser.add_argument("--fullscreen", action="store_true", help="Full screen main window")
    parser.add_argument("--db", help="Record per-frame pose telemetry to this SQLite database")
    parser.add_argument("--vehicle-length", type=float, help="Vehicle length in meters for scale calibration")
    parser.add_argument("--min-area", type=float, default=1, help="Minimum blob area in pixels")
    parser.add_argument("--max-area", type=float, help="Maximum blob area in pixels (default: frame area)")
    parser.add_argument("--hue1", type=int, nargs=2, metavar=("MIN", "MAX"), help="First hue range (0-180)")
    parser.add_argument("--hue2", type=int, nargs=2, metavar=("MIN", "MAX"), help="Second hue range (0-180)")
    parser.add_argument("--saturation", type=int, nargs=2, metavar=("MIN", "MAX"), help="Saturation range")
    parser.add_argument("--value", type=int, nargs=2, metavar=("MIN", "MAX"), help="Value range")
    parser.add_argument("--blur", type=int, help="Gaussian blur kernel size")
    parser.add_argument("--erode", type=int, help="Erode kernel size")
    parser.add_argument("--dilate", type=int, help="Dilate kernel size")
    return parser


def main(argv: Optional[List[str]] = None):
    """Command-line interface for vehicle tracking."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_display and args.mode == "camshift" and not args.roi:
        parser.error("--no-display with camshift mode requires --roi")

    db = TelemetryDatabase(args.db) if args.db else None

    try:
        processor = VideoProcessor(
            strategy=args.mode,
            band=_band_from_args(args),
            db=db,
            output_dir=args.output_dir,
            height_limit=args.height_limit,
            min_area=args.min_area,
            max_area=args.max_area,
            display=not args.no_display,
            four_frame=not args.two_frame,
            fullscreen=args.fullscreen,
            vehicle_length_m=args.vehicle_length
        )

        result = processor.run(
            args.stream or args.video,
            is_stream=args.stream is not None,
            initial_selection=args.roi
        )

        telemetry = result["telemetry"]
        if telemetry:
            print("\nTelemetry:")
            print(f"  Start: {telemetry['start_position']}  End: {telemetry['end_position']}")
            if "speed_pixels_per_second" in telemetry:
                print(f"  Speed: {telemetry['speed_pixels_per_second']} px/s")
            if "speed_m_per_second" in telemetry:
                print(f"  Speed: {telemetry['speed_m_per_second']} m/s")

    except SinkUnavailableError as e:
        print(f"ERROR: {e}")
        sys.exit(EXIT_SINK_UNAVAILABLE)
    except SourceUnavailableError as e:
        print(f"ERROR: {e}")
        sys.exit(EXIT_SOURCE_UNAVAILABLE)
    finally:
        if db is not None:
            db.close()


if __name__ == "__main__":
    main()
