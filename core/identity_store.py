"""
Identity Store Module

Persists identities (email + face embedding) in SQLite.

Tables:
- users: one row per identity, email is UNIQUE, the face descriptor is a
  JSON array of floats
- auth_logs: authentication attempt history (for analysis)

A unique-constraint violation on email surfaces as EmailAlreadyExists.
Uniqueness is enforced by the database, not checked beforehand.

Usage:
    from core.identity_store import IdentityStore

    store = IdentityStore(db_path="storage/pwd_manager.sqlite")
    identity = store.create_identity("alice@example.com", embedding)
    store.find_identity_by_email("alice@example.com")
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class EmailAlreadyExists(Exception):
    """An identity with this email is already stored."""

    def __init__(self, email: str):
        super().__init__(f"A user with email {email} already exists")
        self.email = email


@dataclass
class Identity:
    """
    A registered user.

    Attributes:
        id: Unique numeric identifier.
        email: Unique email, case-sensitive as stored.
        face_descriptor: Stored embedding, or None if the identity has
                         no registered face.
        created_at: ISO timestamp of creation.
    """

    id: int
    email: str
    face_descriptor: Optional[List[float]] = None
    created_at: Optional[str] = None

    @property
    def has_face(self) -> bool:
        return bool(self.face_descriptor)

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view without the embedding."""
        return {
            "id": self.id,
            "email": self.email,
            "created_at": self.created_at,
            "has_face": self.has_face,
        }


class IdentityStore:
    """
    SQLite-backed persistence for identities.

    One connection is shared across threads; a lock serializes access.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        """
        Initialize the store, creating the database and schema if needed.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()
        logger.info(f"IdentityStore initialized: db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    face_descriptor TEXT,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS auth_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    distance REAL,
                    is_match BOOLEAN,
                    processing_time_ms INTEGER
                )
            """)

            conn.commit()
            logger.debug("Database schema initialized")

    @staticmethod
    def _row_to_identity(row: sqlite3.Row) -> Identity:
        descriptor = row["face_descriptor"]
        return Identity(
            id=row["id"],
            email=row["email"],
            face_descriptor=json.loads(descriptor) if descriptor else None,
            created_at=row["created_at"],
        )

    def find_identity_by_email(self, email: str) -> Optional[Identity]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM users WHERE email = ?", (email,)
            ).fetchone()
        return self._row_to_identity(row) if row else None

    def find_identity_by_id(self, identity_id: int) -> Optional[Identity]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM users WHERE id = ?", (identity_id,)
            ).fetchone()
        return self._row_to_identity(row) if row else None

    def create_identity(self, email: str, embedding: Optional[Sequence[float]] = None) -> Identity:
        """
        Insert a new identity.

        Args:
            email: Email address (must be unique).
            embedding: Face embedding to store, or None.

        Returns:
            The created Identity.

        Raises:
            EmailAlreadyExists: If the email is already taken.
        """
        descriptor = None
        if embedding is not None:
            descriptor = json.dumps([float(v) for v in np.asarray(embedding).ravel()])
        created_at = datetime.now().isoformat()

        with self._lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    "INSERT INTO users (email, face_descriptor, created_at) VALUES (?, ?, ?)",
                    (email, descriptor, created_at),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "users.email" in str(e):
                    raise EmailAlreadyExists(email) from e
                raise
            identity_id = cursor.lastrowid

        logger.info(f"Created identity {identity_id}")
        return Identity(
            id=identity_id,
            email=email,
            face_descriptor=json.loads(descriptor) if descriptor else None,
            created_at=created_at,
        )

    def delete_identity(self, identity_id: int) -> bool:
        """
        Delete an identity and its authentication history.

        Returns:
            True if a row was deleted, False if the id was unknown.
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (identity_id,))
            conn.execute("DELETE FROM auth_logs WHERE user_id = ?", (identity_id,))
            conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted identity {identity_id}")
        return deleted

    def list_identities(self) -> List[Identity]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM users ORDER BY id"
            ).fetchall()
        return [self._row_to_identity(row) for row in rows]

    def log_authentication(
        self,
        identity_id: Optional[int],
        distance: Optional[float],
        is_match: bool,
        processing_time_ms: int,
    ) -> None:
        """Record an authentication attempt."""
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO auth_logs (user_id, distance, is_match, processing_time_ms)
                VALUES (?, ?, ?, ?)
                """,
                (identity_id, distance, is_match, processing_time_ms),
            )
            conn.commit()

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            conn = self._get_connection()
            total_users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            total_auth = conn.execute("SELECT COUNT(*) FROM auth_logs").fetchone()[0]
            successful = conn.execute(
                "SELECT COUNT(*) FROM auth_logs WHERE is_match = 1"
            ).fetchone()[0]

        return {
            "total_users": total_users,
            "total_auth_attempts": total_auth,
            "successful_auths": successful,
        }

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("Database connection closed")


_store_instance: Optional[IdentityStore] = None
_store_lock = threading.Lock()


def get_identity_store(db_path: Optional[str] = None) -> IdentityStore:
    """
    Get or create the singleton IdentityStore.

    Args:
        db_path: Optional database path (only used on first call).
                 If not provided, uses storage.db_path from config.yaml.
    """
    global _store_instance

    with _store_lock:
        if _store_instance is None:
            if db_path is None:
                from core.config import get_storage_config, resolve_path

                storage = get_storage_config()
                db_path = str(resolve_path(storage.get("db_path", "storage/pwd_manager.sqlite")))
            _store_instance = IdentityStore(db_path)

    return _store_instance
