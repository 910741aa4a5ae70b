"""
Unit tests for database module.
"""

import pytest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from database import TelemetryDatabase


@pytest.fixture
def db(tmp_path):
    database = TelemetryDatabase(str(tmp_path / "data" / "telemetry.db"))
    yield database
    database.close()


class TestTelemetryDatabase:
    """Test cases for TelemetryDatabase."""

    def test_creates_directory(self, tmp_path):
        path = tmp_path / "nested" / "telemetry.db"

        with TelemetryDatabase(str(path)):
            pass

        assert path.exists()

    def test_create_session(self, db):
        session_id = db.create_session("input/run.mov", "threshold", date="2016-05-10",
                                       fps=30.0, frame_size=(1920, 1080))

        sessions = db.get_all_sessions()

        assert len(sessions) == 1
        assert sessions[0]["session_id"] == session_id
        assert sessions[0]["frame_width"] == 1920
        assert sessions[0]["frame_height"] == 1080
        assert sessions[0]["strategy"] == "threshold"
        assert sessions[0]["total_frames"] == 0

    def test_add_and_get_poses(self, db):
        session_id = db.create_session("input/run.mov", "camshift")
        db.add_pose(session_id, 0, True, position=(10.0, 20.0), heading_deg=45.0,
                    size=12.0, area=300.0, axis=((0.0, 0.0), (10.0, 10.0)))
        db.add_pose(session_id, 1, False)

        poses = db.get_session_poses(session_id)

        assert [p["frame_number"] for p in poses] == [0, 1]
        assert poses[0]["x"] == 10.0
        assert poses[0]["axis_x2"] == 10.0
        assert poses[1]["x"] is None
        assert poses[1]["found"] == 0

        found = db.get_session_poses(session_id, found_only=True)
        assert len(found) == 1

    def test_batched_inserts(self, db):
        session_id = db.create_session("rtmp://camera", "threshold")
        for i in range(5):
            db.add_pose(session_id, i, i % 2 == 0, position=(i, i), commit=False)
        db.commit()

        assert len(db.get_session_poses(session_id)) == 5

    def test_detection_stats(self, db):
        first = db.create_session("a.mov", "threshold")
        second = db.create_session("b.mov", "threshold")
        db.add_pose(first, 0, True, position=(1, 1), size=10.0)
        db.add_pose(first, 1, True, position=(2, 2), size=20.0)
        db.add_pose(first, 2, False)
        db.add_pose(second, 0, False)

        stats = db.get_detection_stats(first)

        assert stats["total_frames"] == 3
        assert stats["frames_found"] == 2
        assert stats["avg_size"] == pytest.approx(15.0)
        assert db.get_detection_stats()["total_frames"] == 4

    def test_session_counts(self, db):
        session_id = db.create_session("a.mov", "threshold")
        db.add_pose(session_id, 0, True, position=(1, 1))
        db.add_pose(session_id, 1, False)

        session = db.get_all_sessions()[0]

        assert session["total_frames"] == 2
        assert session["frames_found"] == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
