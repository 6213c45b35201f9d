"""
Persona override storage.

An override pins the persona for a user. It can be narrowed to a session,
to a context scope (device / mode / feature), or both, and can expire.

Lookup picks, among the user's live overrides that match the request:
    1. session-specific over user-wide
    2. then the more specific scope (more fields set) over a less specific one
    3. then the most recently created
Expired overrides are dropped when encountered.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from orb.persona import OverrideScope, PersonaContext, PersonaOverride

logger = logging.getLogger(__name__)

OverrideKey = tuple[str, str | None, OverrideScope | None]


class PersonaOverrideStore(ABC):
    @abstractmethod
    def set_override(self, override: PersonaOverride) -> None:
        """Store an override, replacing one with the same (user, session, scope)."""

    @abstractmethod
    def get_override(
        self,
        user_id: str,
        session_id: str | None = None,
        context: PersonaContext | None = None,
        now: datetime | None = None,
    ) -> PersonaOverride | None:
        pass

    @abstractmethod
    def clear_override(
        self,
        user_id: str,
        session_id: str | None = None,
        scope: OverrideScope | None = None,
    ) -> bool:
        """Remove exactly the override stored under (user, session, scope). Returns True if one existed."""


class InMemoryPersonaOverrideStore(PersonaOverrideStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._overrides: dict[OverrideKey, PersonaOverride] = {}

    def set_override(self, override: PersonaOverride) -> None:
        with self._lock:
            self._overrides[(override.user_id, override.session_id, override.scope)] = override

    def get_override(
        self,
        user_id: str,
        session_id: str | None = None,
        context: PersonaContext | None = None,
        now: datetime | None = None,
    ) -> PersonaOverride | None:
        now = now or datetime.now()
        with self._lock:
            candidates = []
            for key, override in list(self._overrides.items()):
                if override.user_id != user_id:
                    continue
                if override.is_expired(now):
                    del self._overrides[key]
                    logger.debug(f"Dropped expired persona override for {user_id}")
                    continue
                if override.session_id is not None and override.session_id != session_id:
                    continue
                if override.scope is not None and not override.scope.matches(context):
                    continue
                candidates.append(override)

        if not candidates:
            return None
        return max(
            candidates,
            key=lambda o: (
                o.session_id is not None,
                o.scope.specificity if o.scope else 0,
                o.created_at,
            ),
        )

    def clear_override(
        self,
        user_id: str,
        session_id: str | None = None,
        scope: OverrideScope | None = None,
    ) -> bool:
        with self._lock:
            return self._overrides.pop((user_id, session_id, scope), None) is not None

    def list_overrides(self, user_id: str) -> list[PersonaOverride]:
        with self._lock:
            return [o for o in self._overrides.values() if o.user_id == user_id]


__all__ = ["PersonaOverrideStore", "InMemoryPersonaOverrideStore"]
