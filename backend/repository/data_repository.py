"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Iterable, List, Optional, Sequence

from backend.domain.models import (
    AuditEntry,
    BookingStatus,
    Notification,
    Occurrence,
    Resource,
    ResourceStatus,
    ResourceType,
    Role,
    TimeInterval,
    UserProfile,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class PersistenceError(RuntimeError):
    """Raised when the document store rejects a read or write."""


_DEMO_USERS = [
    ("admin-001", "admin@campus.edu", "Campus Admin", "admin", "Facilities", None),
    ("lect-001", "smith@campus.edu", "Dr. Smith", "lecturer", "Computer Science", None),
    ("lect-002", "johnson@campus.edu", "Prof. Johnson", "lecturer", "Physics", None),
    ("stud-001", "brown@campus.edu", "Alex Brown", "student", "Computer Science", None),
]

_DEMO_RESOURCES = [
    ("res-lab-a", "Computer Lab A", "lab", "Block 1", 40, "available",
     "Workstations with dual monitors", ["projector", "whiteboard", "40 PCs"]),
    ("res-room-b", "Conference Room B", "room", "Block 2", 20, "available",
     "Boardroom table and video conferencing", ["video conferencing", "whiteboard"]),
    ("res-room-c", "Lecture Hall C", "room", "Block 3", 120, "available",
     "Tiered seating", ["projector", "microphone"]),
    ("res-proj-1", "Portable Projector 1", "equipment", "AV Store", 1, "available",
     "", ["HDMI", "VGA"]),
    ("res-van-1", "Campus Van 1", "vehicle", "Car Park North", 12, "maintenance",
     "Twelve-seat minibus", ["air conditioning"]),
]


def _to_text(value: datetime) -> str:
    # fixed precision keeps stored timestamps comparable as text
    return value.isoformat(timespec="microseconds")


def _to_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._retry_lock = Lock()
        self._retry_queue: dict[str, Occurrence] = {}

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        uid TEXT PRIMARY KEY,
                        email TEXT NOT NULL UNIQUE,
                        display_name TEXT NOT NULL,
                        role TEXT NOT NULL CHECK (role IN ('admin','lecturer','student')),
                        department TEXT,
                        phone TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Resources (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        resource_type TEXT NOT NULL,
                        location TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        status TEXT NOT NULL DEFAULT 'available',
                        description TEXT NOT NULL DEFAULT '',
                        features TEXT NOT NULL DEFAULT '[]',
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Occurrences (
                        id TEXT PRIMARY KEY,
                        booking_group_id TEXT NOT NULL,
                        resource_id TEXT NOT NULL,
                        requester_id TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        status TEXT NOT NULL
                            CHECK (status IN ('pending','approved','rejected','cancelled')),
                        purpose TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Notifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        message TEXT NOT NULL,
                        notification_type TEXT NOT NULL,
                        read INTEGER NOT NULL DEFAULT 0 CHECK (read IN (0,1)),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AuditLogs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        action TEXT NOT NULL,
                        resource TEXT NOT NULL,
                        details TEXT NOT NULL DEFAULT '{}',
                        timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_occurrences_resource_status
                    ON Occurrences(resource_id, status, start_time);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_occurrences_requester
                    ON Occurrences(requester_id, start_time);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_notifications_user
                    ON Notifications(user_id, read);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed demo users and resources only when the catalog is empty."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Resources;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                cursor.executemany(
                    """
                    INSERT OR IGNORE INTO Users (uid, email, display_name, role, department, phone)
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    _DEMO_USERS,
                )
                cursor.executemany(
                    """
                    INSERT INTO Resources (
                        id, name, resource_type, location, capacity, status, description, features
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (*row[:7], json.dumps(row[7]))
                        for row in _DEMO_RESOURCES
                    ],
                )
                conn.commit()
            logger.info(
                "Demo seed completed | users=%s | resources=%s",
                len(_DEMO_USERS),
                len(_DEMO_RESOURCES),
            )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Demo data seeding failed: {exc}") from exc

    # --- Users ---

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            uid=str(row["uid"]),
            email=str(row["email"]),
            display_name=str(row["display_name"]),
            role=Role(str(row["role"])),
            department=row["department"],
            phone=row["phone"],
        )

    def create_user(self, user: UserProfile) -> UserProfile:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO Users (uid, email, display_name, role, department, phone)
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    (
                        user.uid,
                        user.email,
                        user.display_name,
                        user.role.value,
                        user.department,
                        user.phone,
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as exc:
            raise PersistenceError(f"User {user.uid} or email {user.email} already exists") from exc
        return user

    def get_user(self, uid: str) -> Optional[UserProfile]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM Users WHERE uid = ?;", (uid,)).fetchone()
            if row is None:
                return None
            return self._row_to_user(row)

    def list_users(self) -> List[UserProfile]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Users ORDER BY created_at DESC, uid ASC;").fetchall()
            return [self._row_to_user(row) for row in rows]

    def update_user(self, user: UserProfile) -> UserProfile:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE Users
                SET display_name = ?, department = ?, phone = ?, updated_at = CURRENT_TIMESTAMP
                WHERE uid = ?;
                """,
                (user.display_name, user.department, user.phone, user.uid),
            )
            conn.commit()
        return user

    # --- Resources ---

    @staticmethod
    def _row_to_resource(row: sqlite3.Row) -> Resource:
        return Resource(
            resource_id=str(row["id"]),
            name=str(row["name"]),
            resource_type=ResourceType(str(row["resource_type"])),
            location=str(row["location"]),
            capacity=int(row["capacity"]),
            status=ResourceStatus(str(row["status"])),
            description=str(row["description"]),
            features=tuple(json.loads(row["features"])),
        )

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM Resources WHERE id = ?;", (resource_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_resource(row)

    def list_resources(self) -> List[Resource]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Resources ORDER BY created_at DESC, id ASC;").fetchall()
            return [self._row_to_resource(row) for row in rows]

    def save_resource(self, resource: Resource) -> Resource:
        """Insert or update a catalog entry."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Resources (
                    id, name, resource_type, location, capacity, status, description, features
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    resource_type = excluded.resource_type,
                    location = excluded.location,
                    capacity = excluded.capacity,
                    status = excluded.status,
                    description = excluded.description,
                    features = excluded.features,
                    updated_at = CURRENT_TIMESTAMP;
                """,
                (
                    resource.resource_id,
                    resource.name,
                    resource.resource_type.value,
                    resource.location,
                    resource.capacity,
                    resource.status.value,
                    resource.description,
                    json.dumps(list(resource.features)),
                ),
            )
            conn.commit()
        return resource

    def delete_resource(self, resource_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM Resources WHERE id = ?;", (resource_id,))
            conn.commit()
            return cursor.rowcount > 0

    # --- Occurrences ---

    @staticmethod
    def _row_to_occurrence(row: sqlite3.Row) -> Occurrence:
        return Occurrence(
            occurrence_id=str(row["id"]),
            booking_group_id=str(row["booking_group_id"]),
            resource_id=str(row["resource_id"]),
            requester_id=str(row["requester_id"]),
            interval=TimeInterval(
                start=_to_datetime(row["start_time"]),
                end=_to_datetime(row["end_time"]),
            ),
            status=BookingStatus(str(row["status"])),
            purpose=str(row["purpose"]),
            created_at=_to_datetime(row["created_at"]),
            updated_at=_to_datetime(row["updated_at"]),
        )

    @staticmethod
    def _occurrence_params(occurrence: Occurrence) -> tuple:
        return (
            occurrence.occurrence_id,
            occurrence.booking_group_id,
            occurrence.resource_id,
            occurrence.requester_id,
            _to_text(occurrence.interval.start),
            _to_text(occurrence.interval.end),
            occurrence.status.value,
            occurrence.purpose,
            _to_text(occurrence.created_at),
            _to_text(occurrence.updated_at),
        )

    def persist(self, occurrence: Occurrence) -> None:
        self.persist_batch([occurrence])

    def persist_batch(self, occurrences: Sequence[Occurrence]) -> None:
        """Upsert occurrences.

        A stored row is only overwritten by a version with an equal or later
        ``updated_at``, so replaying an older queued write cannot roll a
        status back. Queued retries superseded by this batch are dropped.
        """
        if not occurrences:
            return
        try:
            with self._connect() as conn:
                conn.executemany(
                    """
                    INSERT INTO Occurrences (
                        id, booking_group_id, resource_id, requester_id,
                        start_time, end_time, status, purpose, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        status = excluded.status,
                        updated_at = excluded.updated_at
                    WHERE excluded.updated_at >= Occurrences.updated_at;
                    """,
                    [self._occurrence_params(item) for item in occurrences],
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Persisting {len(occurrences)} occurrence(s) failed: {exc}") from exc
        self._discard_superseded(occurrences)

    def _discard_superseded(self, written: Sequence[Occurrence]) -> None:
        with self._retry_lock:
            for occurrence in written:
                queued = self._retry_queue.get(occurrence.occurrence_id)
                if queued is not None and queued.updated_at <= occurrence.updated_at:
                    del self._retry_queue[occurrence.occurrence_id]

    def enqueue_retry(self, occurrences: Iterable[Occurrence]) -> int:
        """Remember failed writes; only the newest version of each id is kept."""
        with self._retry_lock:
            for occurrence in occurrences:
                self._queue_newest(occurrence)
            return len(self._retry_queue)

    def _queue_newest(self, occurrence: Occurrence) -> None:
        queued = self._retry_queue.get(occurrence.occurrence_id)
        if queued is None or queued.updated_at <= occurrence.updated_at:
            self._retry_queue[occurrence.occurrence_id] = occurrence

    def pending_retry_count(self) -> int:
        with self._retry_lock:
            return len(self._retry_queue)

    def flush_retry_queue(self) -> int:
        """Retry queued writes once; returns how many were written."""
        with self._retry_lock:
            if not self._retry_queue:
                return 0
            queued = list(self._retry_queue.values())
            self._retry_queue.clear()
        try:
            self.persist_batch(queued)
        except PersistenceError:
            with self._retry_lock:
                for occurrence in queued:
                    self._queue_newest(occurrence)
            raise
        logger.info("Flushed %s queued occurrence write(s)", len(queued))
        return len(queued)

    def get_occurrence(self, occurrence_id: str) -> Optional[Occurrence]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM Occurrences WHERE id = ?;",
                (occurrence_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_occurrence(row)

    def list_active_occurrences(self, resource_id: str) -> List[Occurrence]:
        """Return pending/approved occurrences used to rebuild the conflict index."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM Occurrences
                WHERE resource_id = ?
                  AND status IN ('pending', 'approved')
                ORDER BY start_time ASC, id ASC;
                """,
                (resource_id,),
            ).fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    def list_occurrences(
        self,
        requester_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        resource_id: Optional[str] = None,
        booking_group_id: Optional[str] = None,
    ) -> List[Occurrence]:
        clauses: list[str] = []
        params: list[str] = []
        if requester_id is not None:
            clauses.append("requester_id = ?")
            params.append(requester_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if resource_id is not None:
            clauses.append("resource_id = ?")
            params.append(resource_id)
        if booking_group_id is not None:
            clauses.append("booking_group_id = ?")
            params.append(booking_group_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM Occurrences {where} ORDER BY start_time ASC, id ASC;",
                tuple(params),
            ).fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    def list_recent_occurrences(self, limit: int) -> List[Occurrence]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM Occurrences ORDER BY created_at DESC, id ASC LIMIT ?;",
                (limit,),
            ).fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    def count_occurrences(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) AS count FROM Occurrences;").fetchone()["count"])

    # --- Notifications & audit ---

    def save_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Notifications (user_id, title, message, notification_type)
                VALUES (?, ?, ?, ?);
                """,
                (user_id, title, message, notification_type),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_notifications(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        query = "SELECT * FROM Notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY id DESC;"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
            return [
                Notification(
                    notification_id=int(row["id"]),
                    user_id=str(row["user_id"]),
                    title=str(row["title"]),
                    message=str(row["message"]),
                    notification_type=str(row["notification_type"]),
                    read=bool(row["read"]),
                    created_at=str(row["created_at"]),
                )
                for row in rows
            ]

    def mark_notification_read(self, user_id: str, notification_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE Notifications SET read = 1 WHERE id = ? AND user_id = ?;",
                (notification_id, user_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def save_audit_entry(self, user_id: str, action: str, resource: str, details: dict) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO AuditLogs (user_id, action, resource, details)
                    VALUES (?, ?, ?, ?);
                    """,
                    (user_id, action, resource, json.dumps(details, default=str, sort_keys=True)),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Audit write failed: {exc}") from exc

    def list_audit_entries(self, limit: int = 100) -> List[AuditEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM AuditLogs ORDER BY id DESC LIMIT ?;",
                (limit,),
            ).fetchall()
            return [
                AuditEntry(
                    audit_id=int(row["id"]),
                    user_id=str(row["user_id"]),
                    action=str(row["action"]),
                    resource=str(row["resource"]),
                    details=str(row["details"]),
                    timestamp=str(row["timestamp"]),
                )
                for row in rows
            ]
