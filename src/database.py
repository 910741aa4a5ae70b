"""
Database module for storing vehicle pose telemetry per tracking session.
"""

import sqlite3
import os
from datetime import datetime
from typing import List, Dict, Optional, Tuple


class TelemetryDatabase:
    """Handles all database operations for pose telemetry."""

    def __init__(self, db_path: str = "data/telemetry.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._ensure_db_directory()
        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        self.cursor = self.conn.cursor()
        self._create_tables()

    def _ensure_db_directory(self):
        """Create database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    def _create_tables(self):
        """Create database tables if they don't exist."""

        self.cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                source TEXT NOT NULL,
                strategy TEXT NOT NULL,
                fps REAL,
                frame_width INTEGER,
                frame_height INTEGER,
                output_file TEXT,
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.cursor.execute("""
            CREATE TABLE IF NOT EXISTS poses (
                pose_id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id INTEGER NOT NULL,
                frame_number INTEGER NOT NULL,
                found BOOLEAN NOT NULL,
                x REAL,
                y REAL,
                heading_deg REAL,
                size REAL,
                area REAL,
                axis_x1 REAL,
                axis_y1 REAL,
                axis_x2 REAL,
                axis_y2 REAL,
                FOREIGN KEY (session_id) REFERENCES sessions (session_id)
            )
        """)

        self.cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_poses_session
            ON poses(session_id, frame_number)
        """)

        self.conn.commit()
        print(f"Database initialized at {self.db_path}")

    def create_session(self, source: str, strategy: str, date: str = None,
                       fps: float = None, frame_size: Tuple[int, int] = None,
                       output_file: str = None, notes: str = None) -> int:
        """
        Create a new tracking session.

        Args:
            source: Video file path or stream URL
            strategy: Tracking strategy name
            date: Session date (YYYY-MM-DD format), defaults to today
            fps: Input frame rate
            frame_size: (width, height) of the processing resolution
            output_file: Annotated video path
            notes: Optional session notes

        Returns:
            session_id: ID of created session
        """
        if date is None:
            date = datetime.now().strftime("%Y-%m-%d")

        width, height = frame_size if frame_size else (None, None)

        self.cursor.execute("""
            INSERT INTO sessions (date, source, strategy, fps, frame_width,
                                  frame_height, output_file, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (date, source, strategy, fps, width, height, output_file, notes))

        self.conn.commit()
        return self.cursor.lastrowid

    def add_pose(self, session_id: int, frame_number: int, found: bool,
                 position: Tuple[float, float] = None, heading_deg: float = None,
                 size: float = None, area: float = None,
                 axis: Tuple[Tuple[float, float], Tuple[float, float]] = None,
                 commit: bool = True) -> int:
        """
        Add one frame's pose to the database.

        Args:
            session_id: ID of the session
            frame_number: Frame index within the session
            found: Whether the vehicle was located
            position: (x, y) position
            heading_deg: Principal axis heading in degrees
            size: Pose size in pixels
            area: Blob or tracking box area in pixels
            axis: ((x1, y1), (x2, y2)) principal axis endpoints
            commit: Commit immediately (disable for batched inserts)

        Returns:
            pose_id: ID of created row
        """
        x, y = position if position else (None, None)
        (ax1, ay1), (ax2, ay2) = axis if axis else ((None, None), (None, None))

        self.cursor.execute("""
            INSERT INTO poses (
                session_id, frame_number, found, x, y, heading_deg, size, area,
                axis_x1, axis_y1, axis_x2, axis_y2
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (session_id, frame_number, found, x, y, heading_deg, size, area,
              ax1, ay1, ax2, ay2))

        if commit:
            self.conn.commit()
        return self.cursor.lastrowid

    def commit(self):
        self.conn.commit()

    def get_session_poses(self, session_id: int, found_only: bool = False) -> List[Dict]:
        """
        Get all poses for a specific session.

        Args:
            session_id: ID of the session
            found_only: Skip frames where the vehicle was not found

        Returns:
            List of pose dictionaries ordered by frame
        """
        query = "SELECT * FROM poses WHERE session_id = ?"
        if found_only:
            query += " AND found = 1"
        query += " ORDER BY frame_number"

        self.cursor.execute(query, (session_id,))
        return [dict(row) for row in self.cursor.fetchall()]

    def get_all_sessions(self) -> List[Dict]:
        """
        Get all tracking sessions.

        Returns:
            List of session dictionaries with frame and detection counts
        """
        self.cursor.execute("""
            SELECT s.*, COUNT(p.pose_id) as total_frames,
                   SUM(CASE WHEN p.found THEN 1 ELSE 0 END) as frames_found
            FROM sessions s
            LEFT JOIN poses p ON s.session_id = p.session_id
            GROUP BY s.session_id
            ORDER BY s.created_at DESC, s.session_id DESC
        """)

        return [dict(row) for row in self.cursor.fetchall()]

    def get_detection_stats(self, session_id: int = None) -> Dict:
        """
        Get detection statistics.

        Args:
            session_id: Optional session ID to filter by

        Returns:
            Dictionary with frame counts and mean size
        """
        query = """
            SELECT
                COUNT(*) as total_frames,
                SUM(CASE WHEN found THEN 1 ELSE 0 END) as frames_found,
                AVG(size) as avg_size
            FROM poses
        """

        if session_id:
            query += " WHERE session_id = ?"
            self.cursor.execute(query, (session_id,))
        else:
            self.cursor.execute(query)

        row = self.cursor.fetchone()
        return dict(row) if row else {}

    def close(self):
        """Close database connection."""
        self.conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
