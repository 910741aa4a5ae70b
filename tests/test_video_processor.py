"""
Unit tests for video_processor module.
"""

import pytest
import numpy as np
import cv2
import sys
import os
from datetime import datetime
from unittest.mock import Mock, patch, DEFAULT

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from video_processor import (
    VideoProcessor, InteractiveWindow, SinkUnavailableError, SourceUnavailableError,
    compute_processing_size, output_file_name, measure_stream_fps, open_sink,
    build_parser, main, _band_from_args, MAIN_WINDOW, DEFAULT_FPS
)
from annotator import annotate
from camshift_tracker import SelectionMade, CancelTracking, TrackingMode
from color_segmenter import ColorBand
from database import TelemetryDatabase
from vehicle_tracker import TrackingSession


SHARP_BAND = ColorBand(blur_kernel_size=3, erode_size=1, dilate_size=1)


def red_circle_frames(count=3, size=(640, 480)):
    frames = []
    for i in range(count):
        frame = np.zeros((size[1], size[0], 3), dtype=np.uint8)
        cv2.circle(frame, (200 + 10 * i, 240), 30, (0, 0, 255), -1)
        frames.append(frame)
    return frames


def mock_capture(frames, fps=25.0, opened=True, report_size=True):
    height, width = frames[0].shape[:2] if frames else (480, 640)
    if not report_size:
        height, width = 0, 0
    properties = {
        cv2.CAP_PROP_FPS: fps,
        cv2.CAP_PROP_FRAME_WIDTH: width,
        cv2.CAP_PROP_FRAME_HEIGHT: height,
    }
    capture = Mock()
    capture.isOpened.return_value = opened
    capture.get.side_effect = lambda prop: properties[prop]
    capture.read.side_effect = [(True, f.copy()) for f in frames] + [(False, None)]
    return capture


def mock_writer(opened=True):
    writer = Mock()
    writer.isOpened.return_value = opened
    return writer


class TestHelpers:
    """Test cases for module-level helpers."""

    def test_processing_size_unchanged(self):
        assert compute_processing_size(1920, 1080) == ((1920, 1080), False)

    def test_processing_size_scaled(self):
        assert compute_processing_size(3840, 2160) == ((1920, 1080), True)
        assert compute_processing_size(1920, 2160, 1080) == ((960, 1080), True)

    def test_processing_size_invalid(self):
        with pytest.raises(ValueError):
            compute_processing_size(0, 1080)

        with pytest.raises(ValueError):
            compute_processing_size(1920, 1080, 0)

    def test_output_file_name(self):
        name = output_file_name("output", now=datetime(2016, 5, 10, 14, 3, 59))

        assert name == os.path.join("output", "2016_05_10_14_03_59.avi")

    def test_measure_stream_fps(self):
        capture = Mock()
        capture.read.return_value = (True, None)

        with patch("video_processor.time.time", side_effect=[100.0, 104.0]):
            assert measure_stream_fps(capture, 120) == pytest.approx(30.0)

    def test_measure_stream_fps_no_frames(self):
        capture = Mock()
        capture.read.return_value = (False, None)

        with patch("video_processor.time.time", side_effect=[100.0, 101.0]):
            assert measure_stream_fps(capture) == DEFAULT_FPS

    def test_open_sink_failure(self, tmp_path):
        with patch("video_processor.cv2.VideoWriter", return_value=mock_writer(opened=False)):
            with pytest.raises(SinkUnavailableError):
                open_sink(str(tmp_path / "out.avi"), 30.0, (640, 480))

    def test_open_sink_creates_directory(self, tmp_path):
        path = tmp_path / "nested" / "out.avi"

        with patch("video_processor.cv2.VideoWriter", return_value=mock_writer()) as writer_cls:
            open_sink(str(path), 30.0, (640, 480))

        assert (tmp_path / "nested").is_dir()
        assert writer_cls.call_args[0][3] == (640, 480)

    def test_band_from_args(self):
        args = build_parser().parse_args(["--video", "x.mov", "--blur", "4", "--hue1", "0", "15"])

        band = _band_from_args(args)

        assert band.blur_kernel_size == 5
        assert band.hue_1_max == 15
        assert band.hue_2_min == 160


class TestVideoProcessor:
    """Test cases for VideoProcessor."""

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            VideoProcessor(strategy="meanshift", display=False)

        with pytest.raises(ValueError):
            VideoProcessor(height_limit=0, display=False)

        with pytest.raises(ValueError):
            VideoProcessor(vehicle_length_m=-2, display=False)

    def test_source_unavailable(self, tmp_path):
        processor = VideoProcessor(strategy="threshold", display=False, output_dir=str(tmp_path))

        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture([], opened=False)):
            with pytest.raises(SourceUnavailableError):
                processor.run("missing.mov")

    def test_headless_threshold_run(self, tmp_path):
        db = TelemetryDatabase(str(tmp_path / "telemetry.db"))
        processor = VideoProcessor(strategy="threshold", band=SHARP_BAND, db=db,
                                   output_dir=str(tmp_path), display=False)
        capture = mock_capture(red_circle_frames())
        writer = mock_writer()

        with patch("video_processor.cv2.VideoCapture", return_value=capture), \
                patch("video_processor.cv2.VideoWriter", return_value=writer):
            result = processor.run("input/run.mov")

        assert result["success"]
        assert result["frames_processed"] == 3
        assert result["frames_found"] == 3
        assert result["detection_rate"] == 100.0
        assert writer.write.call_count == 3
        capture.release.assert_called_once()
        writer.release.assert_called_once()

        telemetry = result["telemetry"]
        assert telemetry["points"] == 3
        assert telemetry["x_range_pixels"] == pytest.approx(20, abs=1)

        poses = db.get_session_poses(result["session_id"])
        assert len(poses) == 3
        assert all(p["found"] for p in poses)
        assert poses[0]["heading_deg"] is not None
        db.close()

    def test_headless_run_resizes(self, tmp_path):
        processor = VideoProcessor(strategy="threshold", band=SHARP_BAND,
                                   output_dir=str(tmp_path), height_limit=240, display=False)
        writer = mock_writer()

        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture(red_circle_frames(1))), \
                patch("video_processor.cv2.VideoWriter", return_value=writer) as writer_cls:
            processor.run("input/run.mov")

        assert writer_cls.call_args[0][3] == (320, 240)
        assert writer.write.call_args[0][0].shape == (240, 320, 3)

    def test_headless_camshift_run(self, tmp_path):
        frames = []
        for i in range(3):
            frame = np.zeros((240, 320, 3), dtype=np.uint8)
            cv2.rectangle(frame, (100 + 4 * i, 100), (139 + 4 * i, 139), (0, 0, 255), -1)
            frames.append(frame)
        processor = VideoProcessor(strategy="camshift", band=ColorBand(blur_kernel_size=1),
                                   output_dir=str(tmp_path), display=False)

        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture(frames)), \
                patch("video_processor.cv2.VideoWriter", return_value=mock_writer()):
            result = processor.run("input/run.mov", initial_selection=(95, 95, 50, 50))

        assert result["frames_processed"] == 3
        assert result["frames_found"] == 3

    def test_vehicle_length_calibrates_speed(self, tmp_path):
        processor = VideoProcessor(strategy="threshold", band=SHARP_BAND,
                                   output_dir=str(tmp_path), display=False, vehicle_length_m=2.0)

        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture(red_circle_frames())), \
                patch("video_processor.cv2.VideoWriter", return_value=mock_writer()):
            result = processor.run("input/run.mov")

        assert "speed_m_per_second" in result["telemetry"]

    def test_high_frame_rate_source(self, tmp_path):
        processor = VideoProcessor(strategy="threshold", band=SHARP_BAND,
                                   output_dir=str(tmp_path), display=False)
        capture = mock_capture(red_circle_frames(31), fps=300.0)

        with patch("video_processor.cv2.VideoCapture", return_value=capture), \
                patch("video_processor.cv2.VideoWriter", return_value=mock_writer()):
            result = processor.run("input/run.mov")

        telemetry = result["telemetry"]
        assert telemetry["time_seconds"] == pytest.approx(0.1)
        assert telemetry["speed_pixels_per_second"] == pytest.approx(3000, rel=0.01)

    def test_size_from_first_frame(self, tmp_path):
        processor = VideoProcessor(strategy="threshold", band=SHARP_BAND,
                                   output_dir=str(tmp_path), display=False)
        capture = mock_capture(red_circle_frames(2), report_size=False)

        with patch("video_processor.cv2.VideoCapture", return_value=capture), \
                patch("video_processor.cv2.VideoWriter", return_value=mock_writer()) as writer_cls:
            result = processor.run("rtmp://camera/live")

        assert writer_cls.call_args[0][3] == (640, 480)
        assert result["frames_processed"] == 2
        assert result["frames_found"] == 2

    def test_sizeless_empty_source(self, tmp_path):
        processor = VideoProcessor(strategy="threshold", output_dir=str(tmp_path), display=False)

        with patch("video_processor.cv2.VideoCapture",
                   return_value=mock_capture([], report_size=False)):
            with pytest.raises(SourceUnavailableError):
                processor.run("rtmp://camera/live")

    def test_cancel_while_paused_clears_histogram(self, tmp_path):
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        cv2.rectangle(frame, (100, 100), (139, 139), (0, 0, 255), -1)
        processor = VideoProcessor(strategy="camshift", band=ColorBand(blur_kernel_size=1),
                                   output_dir=str(tmp_path))

        def poll():
            poll.calls += 1
            if poll.calls == 1:
                return False, [SelectionMade((95, 95, 50, 50))]
            if poll.calls == 2:
                processor.session.paused = True
                return False, [CancelTracking()]
            return True, []
        poll.calls = 0

        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture([frame] * 3)), \
                patch("video_processor.cv2.VideoWriter", return_value=mock_writer()), \
                patch("video_processor.InteractiveWindow") as window_cls:
            window_cls.return_value.poll.side_effect = poll
            result = processor.run("input/run.mov")

        shows = window_cls.return_value.show.call_args_list
        assert result["frames_processed"] == 1
        assert shows[0][0][1] is not None
        assert shows[-1][0][1] is None

    def test_paused_threshold_reprocesses_held_frame(self, tmp_path):
        processor = VideoProcessor(strategy="threshold", band=SHARP_BAND,
                                   output_dir=str(tmp_path))
        writer = mock_writer()

        def poll():
            poll.calls += 1
            if poll.calls == 2:
                processor.session.paused = True
                processor.session.update_band(hue_1_min=90, hue_1_max=100,
                                              hue_2_min=90, hue_2_max=100)
            return poll.calls > 2, []
        poll.calls = 0

        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture(red_circle_frames())), \
                patch("video_processor.cv2.VideoWriter", return_value=writer), \
                patch("video_processor.InteractiveWindow") as window_cls, \
                patch.object(processor.tracker, "process", wraps=processor.tracker.process) as process, \
                patch("video_processor.annotate", wraps=annotate) as annotate_spy:
            window_cls.return_value.poll.side_effect = poll
            result = processor.run("input/run.mov")

        assert result["frames_processed"] == 1
        assert writer.write.call_count == 1
        assert process.call_count == 2
        assert annotate_spy.call_args_list[0][0][1].found
        assert not annotate_spy.call_args_list[-1][0][1].found

    def test_selection_while_paused_resumes(self):
        processor = VideoProcessor(strategy="camshift", display=False)
        processor.session.paused = True

        processor._dispatch([SelectionMade((0, 0, 10, 10))])

        assert not processor.session.paused
        assert processor.tracker.strategy.mode == TrackingMode.INITIALIZING

    def test_threshold_ignores_tracker_events(self):
        processor = VideoProcessor(strategy="threshold", display=False)

        processor._dispatch([SelectionMade((0, 0, 10, 10)), CancelTracking()])

        assert not processor.session.paused


@pytest.fixture
def gui():
    with patch.multiple("video_processor.cv2", namedWindow=DEFAULT, createTrackbar=DEFAULT,
                        setMouseCallback=DEFAULT, setWindowProperty=DEFAULT,
                        setTrackbarPos=DEFAULT, waitKey=DEFAULT) as mocks:
        yield mocks


class TestInteractiveWindow:
    """Test cases for InteractiveWindow input handling."""

    def test_threshold_trackbars(self, gui):
        InteractiveWindow(TrackingSession(), "threshold", (640, 480))

        labels = [c[0][0] for c in gui["createTrackbar"].call_args_list]
        assert "H 1 Min" in labels
        assert "Dilate" in labels
        gui["setMouseCallback"].assert_not_called()

    def test_camshift_trackbars(self, gui):
        InteractiveWindow(TrackingSession(), "camshift", (640, 480))

        labels = [c[0][0] for c in gui["createTrackbar"].call_args_list]
        assert "H 1 Min" not in labels
        assert "Erode" not in labels
        assert "Blur" in labels
        gui["setMouseCallback"].assert_called_once()

    def test_trackbar_corrects_kernel(self, gui):
        session = TrackingSession()
        window = InteractiveWindow(session, "threshold", (640, 480))

        window._trackbar_handler("Blur", "blur_kernel_size")(4)

        assert session.band.blur_kernel_size == 5
        gui["setTrackbarPos"].assert_called_with("Blur", MAIN_WINDOW, 5)

    def test_mouse_drag_selection(self, gui):
        window = InteractiveWindow(TrackingSession(), "camshift", (640, 480))

        window.on_mouse(cv2.EVENT_LBUTTONDOWN, 10, 10, 0, None)
        window.on_mouse(cv2.EVENT_MOUSEMOVE, 50, 40, 0, None)
        window.on_mouse(cv2.EVENT_LBUTTONUP, 50, 40, 0, None)

        gui["waitKey"].return_value = -1
        quit_requested, events = window.poll()

        assert not quit_requested
        assert events == [SelectionMade((10, 10, 40, 30))]

    def test_click_without_drag_selects_nothing(self, gui):
        window = InteractiveWindow(TrackingSession(), "camshift", (640, 480))

        window.on_mouse(cv2.EVENT_LBUTTONDOWN, 10, 10, 0, None)
        window.on_mouse(cv2.EVENT_LBUTTONUP, 10, 10, 0, None)

        gui["waitKey"].return_value = -1
        assert window.poll() == (False, [])

    def test_keys(self, gui):
        session = TrackingSession()
        window = InteractiveWindow(session, "camshift", (640, 480))

        gui["waitKey"].return_value = ord("c")
        assert window.poll() == (False, [CancelTracking()])

        gui["waitKey"].return_value = ord("p")
        window.poll()
        assert session.paused

        gui["waitKey"].return_value = ord("b")
        window.poll()
        assert session.show_back_projection

        gui["waitKey"].return_value = 27
        assert window.poll()[0]


class TestMain:
    """Test cases for the command-line entry point."""

    def test_source_unavailable_exit_code(self, tmp_path):
        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture([], opened=False)):
            with pytest.raises(SystemExit) as exc_info:
                main(["--video", "missing.mov", "--mode", "threshold", "--no-display",
                      "--output-dir", str(tmp_path)])

        assert exc_info.value.code == 4

    def test_sizeless_empty_stream_exit_code(self, tmp_path):
        with patch("video_processor.cv2.VideoCapture",
                   return_value=mock_capture([], report_size=False)):
            with pytest.raises(SystemExit) as exc_info:
                main(["--video", "input/empty.mov", "--mode", "threshold", "--no-display",
                      "--output-dir", str(tmp_path)])

        assert exc_info.value.code == 4

    def test_sink_unavailable_exit_code(self, tmp_path):
        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture(red_circle_frames(1))), \
                patch("video_processor.cv2.VideoWriter", return_value=mock_writer(opened=False)):
            with pytest.raises(SystemExit) as exc_info:
                main(["--video", "input/run.mov", "--mode", "threshold", "--no-display",
                      "--output-dir", str(tmp_path)])

        assert exc_info.value.code == 3

    def test_headless_camshift_requires_roi(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--video", "input/run.mov", "--no-display"])

        assert exc_info.value.code == 2

    def test_source_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_headless_run_records_telemetry(self, tmp_path):
        db_path = tmp_path / "telemetry.db"

        with patch("video_processor.cv2.VideoCapture", return_value=mock_capture(red_circle_frames())), \
                patch("video_processor.cv2.VideoWriter", return_value=mock_writer()):
            main(["--video", "input/run.mov", "--mode", "threshold", "--no-display",
                  "--output-dir", str(tmp_path), "--db", str(db_path),
                  "--blur", "3", "--erode", "1", "--dilate", "1"])

        with TelemetryDatabase(str(db_path)) as db:
            stats = db.get_detection_stats()

        assert stats["total_frames"] == 3
        assert stats["frames_found"] == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
