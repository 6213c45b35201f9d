"""
Constraint Store

Abstract persistence interface for constraint sets plus the in-memory and
JSON-file backends. The relational backend lives in sqlite_store.py.

Every backend returns the same sets in the same order for the same query:
    - owner is None (system) or the requesting user
    - applies_to.modes unset or containing the mode
    - applies_to.personas unset, persona unset, or containing the persona
    - sorted by priority descending, then set id

Usage:
    from orb.constraints.store import InMemoryConstraintStore

    store = InMemoryConstraintStore()
    store.save_constraint_set(my_set)
    sets = store.get_constraint_sets("alice", Mode.SOL)
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from orb.constraints import Constraint, ConstraintSet, filter_applicable, set_sort_key
from orb.errors import ConstraintNotFoundError
from orb.identity import Mode, Persona

if TYPE_CHECKING:
    from orb.config_models import StorageConfig

logger = logging.getLogger(__name__)


class ConstraintStore(ABC):
    """Persistence contract for constraint sets."""

    @abstractmethod
    def get_constraint_sets(
        self,
        user_id: str | None,
        mode: Mode,
        persona: Persona | None = None,
    ) -> list[ConstraintSet]:
        """Return applicable sets for (user, mode, persona), highest priority first."""

    @abstractmethod
    def save_constraint_set(self, constraint_set: ConstraintSet) -> None:
        """Insert or replace a set and all of its constraints."""

    @abstractmethod
    def get_constraint(self, constraint_id: str) -> Constraint | None:
        pass

    @abstractmethod
    def update_constraint(self, constraint: Constraint) -> None:
        """
        Replace a stored constraint in place.

        Raises:
            ConstraintNotFoundError: No stored constraint has this id
        """

    @abstractmethod
    def delete_constraint_set(self, set_id: str) -> None:
        """Delete a set. Its constraints go first; deleting an unknown id is a no-op."""

    @abstractmethod
    def list_constraint_sets(self, user_id: str | None = None) -> list[ConstraintSet]:
        """All sets visible to a user, ignoring mode/persona applicability."""


class InMemoryConstraintStore(ConstraintStore):
    """Process-local store. Returned sets are copies; mutate them through the store."""

    def __init__(self, sets: list[ConstraintSet] | None = None):
        self._lock = threading.Lock()
        self._sets: dict[str, ConstraintSet] = {}
        for s in sets or []:
            self._sets[s.id] = copy.deepcopy(s)

    def get_constraint_sets(
        self,
        user_id: str | None,
        mode: Mode,
        persona: Persona | None = None,
    ) -> list[ConstraintSet]:
        with self._lock:
            selected = filter_applicable(list(self._sets.values()), user_id, Mode(mode), persona)
            return copy.deepcopy(selected)

    def save_constraint_set(self, constraint_set: ConstraintSet) -> None:
        with self._lock:
            stored = copy.deepcopy(constraint_set)
            stored.updated_at = datetime.now()
            self._sets[stored.id] = stored
            self._persist()
        logger.debug(f"Saved constraint set {constraint_set.id} ({len(constraint_set.constraints)} constraints)")

    def get_constraint(self, constraint_id: str) -> Constraint | None:
        with self._lock:
            for s in sorted(self._sets.values(), key=set_sort_key):
                for c in s.constraints:
                    if c.id == constraint_id:
                        return copy.deepcopy(c)
        return None

    def update_constraint(self, constraint: Constraint) -> None:
        with self._lock:
            for s in sorted(self._sets.values(), key=set_sort_key):
                for i, c in enumerate(s.constraints):
                    if c.id == constraint.id:
                        updated = copy.deepcopy(constraint)
                        updated.updated_at = datetime.now()
                        s.constraints[i] = updated
                        s.updated_at = updated.updated_at
                        self._persist()
                        return
        raise ConstraintNotFoundError(constraint.id)

    def delete_constraint_set(self, set_id: str) -> None:
        with self._lock:
            removed = self._sets.pop(set_id, None)
            if removed is not None:
                self._persist()
        if removed is not None:
            logger.info(f"Deleted constraint set {set_id}")

    def list_constraint_sets(self, user_id: str | None = None) -> list[ConstraintSet]:
        with self._lock:
            visible = [s for s in self._sets.values() if s.user_id is None or s.user_id == user_id]
            return copy.deepcopy(sorted(visible, key=set_sort_key))

    def _persist(self) -> None:
        """Hook for subclasses that mirror the sets somewhere durable. Called with the lock held."""


class JsonFileConstraintStore(InMemoryConstraintStore):
    """
    Keeps every set in one JSON document.

    The whole document is rewritten on each mutation through a temp file and
    os.replace, so a crash mid-write leaves the previous version intact.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> list[ConstraintSet]:
        if not self.path.exists():
            return []
        with open(self.path) as f:
            raw = json.load(f)
        return [ConstraintSet.from_dict(item) for item in raw.get("constraint_sets", [])]

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": 1,
            "constraint_sets": [s.to_dict() for s in sorted(self._sets.values(), key=set_sort_key)],
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)


def create_constraint_store(config: StorageConfig | None = None) -> ConstraintStore:
    """
    Build the configured constraint store backend.

    Args:
        config: Storage section of EngineConfig (defaults to in-memory)

    Returns:
        ConstraintStore instance

    Raises:
        ValueError: Unknown backend name
    """
    if config is None or config.backend == "memory":
        return InMemoryConstraintStore()

    if config.backend == "sqlite":
        from orb.constraints.sqlite_store import SqliteConstraintStore

        return SqliteConstraintStore(config.resolve(config.database_path))

    if config.backend == "file":
        return JsonFileConstraintStore(config.resolve(config.file_path))

    raise ValueError(f"Unknown constraint store backend: {config.backend}")


__all__ = [
    "ConstraintStore",
    "InMemoryConstraintStore",
    "JsonFileConstraintStore",
    "create_constraint_store",
]
