"""
Profile Store

Persistence for per (user, mode) profiles and each user's active mode.

get_or_create_profile reads, and on a miss seeds from the mode preset and
writes. Two concurrent first reads may both seed; the second write simply
replaces the first (last writer wins) and both callers get a valid profile.

JSON file backend:
    {"version": 1, "profiles": [...], "active_modes": {user_id: mode}}

Tables (SQLite backend):
    orb_profiles: (user_id, mode) -> preferences JSON, constraints JSON
    orb_active_modes: user_id -> mode
"""

from __future__ import annotations

import copy
import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from orb.constraints import Constraint
from orb.identity import Mode
from orb.preferences import Profile
from orb.preferences.presets import create_profile_from_preset

if TYPE_CHECKING:
    from orb.config_models import StorageConfig

logger = logging.getLogger(__name__)


class ProfileStore(ABC):
    @abstractmethod
    def get_profile(self, user_id: str, mode: Mode) -> Profile | None:
        pass

    @abstractmethod
    def save_profile(self, profile: Profile) -> None:
        pass

    @abstractmethod
    def get_active_mode(self, user_id: str) -> Mode:
        """The user's active mode, Mode.DEFAULT if never set."""

    @abstractmethod
    def set_active_mode(self, user_id: str, mode: Mode) -> None:
        pass

    @abstractmethod
    def list_modes(self, user_id: str) -> list[Mode]:
        """Modes the user has a stored profile for."""

    def get_or_create_profile(self, user_id: str, mode: Mode) -> Profile:
        profile = self.get_profile(user_id, mode)
        if profile is not None:
            return profile
        profile = create_profile_from_preset(user_id, mode)
        self.save_profile(profile)
        logger.info(f"Seeded {Mode(mode).value} profile for {user_id} from preset")
        return profile


class InMemoryProfileStore(ProfileStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._profiles: dict[tuple[str, Mode], Profile] = {}
        self._active: dict[str, Mode] = {}

    def get_profile(self, user_id: str, mode: Mode) -> Profile | None:
        with self._lock:
            profile = self._profiles.get((user_id, Mode(mode)))
            return copy.deepcopy(profile) if profile else None

    def save_profile(self, profile: Profile) -> None:
        with self._lock:
            self._profiles[(profile.user_id, profile.mode)] = copy.deepcopy(profile)
            self._persist()

    def get_active_mode(self, user_id: str) -> Mode:
        with self._lock:
            return self._active.get(user_id, Mode.DEFAULT)

    def set_active_mode(self, user_id: str, mode: Mode) -> None:
        with self._lock:
            self._active[user_id] = Mode(mode)
            self._persist()

    def list_modes(self, user_id: str) -> list[Mode]:
        with self._lock:
            return sorted((m for (u, m) in self._profiles if u == user_id), key=lambda m: m.value)

    def _persist(self) -> None:
        """Called with the lock held after every write."""


class JsonFileProfileStore(InMemoryProfileStore):
    """
    Keeps all profiles and active modes in one JSON document, rewritten
    through a temp file and os.replace on every write.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path) as f:
            raw = json.load(f)
        for item in raw.get("profiles", []):
            profile = Profile.from_dict(item)
            self._profiles[(profile.user_id, profile.mode)] = profile
        self._active = {user_id: Mode(mode) for user_id, mode in raw.get("active_modes", {}).items()}

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": 1,
            "profiles": [
                p.to_dict() for _, p in sorted(self._profiles.items(), key=lambda kv: (kv[0][0], kv[0][1].value))
            ],
            "active_modes": {user_id: mode.value for user_id, mode in sorted(self._active.items())},
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)


class SqliteProfileStore(ProfileStore):
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        conn = self.get_connection()
        conn.close()

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orb_profiles (
                user_id TEXT NOT NULL,
                mode TEXT NOT NULL,
                preferences TEXT NOT NULL DEFAULT '[]',
                constraints TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, mode)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orb_active_modes (
                user_id TEXT PRIMARY KEY,
                mode TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
        return conn

    def get_profile(self, user_id: str, mode: Mode) -> Profile | None:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM orb_profiles WHERE user_id = ? AND mode = ?",
                (user_id, Mode(mode).value),
            )
            row = cursor.fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return Profile(
            user_id=row["user_id"],
            mode=row["mode"],
            preferences=json.loads(row["preferences"]),
            constraints=[Constraint.from_dict(c) for c in json.loads(row["constraints"])],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def save_profile(self, profile: Profile) -> None:
        conn = self.get_connection()
        try:
            conn.execute(
                """
                INSERT INTO orb_profiles (user_id, mode, preferences, constraints, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, mode) DO UPDATE SET
                    preferences = excluded.preferences,
                    constraints = excluded.constraints,
                    updated_at = excluded.updated_at
            """,
                (
                    profile.user_id,
                    profile.mode.value,
                    json.dumps(profile.preferences),
                    json.dumps([c.to_dict() for c in profile.constraints]),
                    profile.updated_at.isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get_active_mode(self, user_id: str) -> Mode:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT mode FROM orb_active_modes WHERE user_id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        return Mode(row["mode"]) if row else Mode.DEFAULT

    def set_active_mode(self, user_id: str, mode: Mode) -> None:
        conn = self.get_connection()
        try:
            conn.execute(
                """
                INSERT INTO orb_active_modes (user_id, mode, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    mode = excluded.mode,
                    updated_at = excluded.updated_at
            """,
                (user_id, Mode(mode).value, datetime.now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def list_modes(self, user_id: str) -> list[Mode]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT mode FROM orb_profiles WHERE user_id = ? ORDER BY mode",
                (user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [Mode(row["mode"]) for row in rows]


def create_profile_store(config: StorageConfig | None = None) -> ProfileStore:
    """
    Build the configured profile store backend.

    Raises:
        ValueError: Unknown backend name
    """
    if config is None or config.backend == "memory":
        return InMemoryProfileStore()
    if config.backend == "sqlite":
        return SqliteProfileStore(config.resolve(config.database_path))
    if config.backend == "file":
        return JsonFileProfileStore(config.resolve(config.profiles_file_path))
    raise ValueError(f"Unknown profile store backend: {config.backend}")


__all__ = [
    "ProfileStore",
    "InMemoryProfileStore",
    "JsonFileProfileStore",
    "SqliteProfileStore",
    "create_profile_store",
]
