"""Preferences - per (user, mode) profiles

A profile is created lazily the first time a (user, mode) pair is read,
seeded from that mode's preset, and is only ever overwritten in place.

Preference entries are strings. "key: value" entries carry a value; a bare
"key" entry is a boolean flag that is simply present.

Components:
    __init__.py: Profile, preference list helpers
    presets.py: Mode presets used to seed new profiles
    store.py: ProfileStore interface, in-memory and SQLite backends
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from orb.constraints import AppliesTo, Constraint, ConstraintSet
from orb.identity import Mode


def parse_preferences(preferences: list[str]) -> dict[str, Any]:
    """["a: 1", "flag"] -> {"a": "1", "flag": True}, keeping order."""
    parsed: dict[str, Any] = {}
    for entry in preferences:
        if ":" in entry:
            key, value = entry.split(":", 1)
            parsed[key.strip()] = value.strip()
        else:
            parsed[entry.strip()] = True
    return parsed


def format_preferences(parsed: dict[str, Any]) -> list[str]:
    return [key if value is True else f"{key}: {value}" for key, value in parsed.items()]


def set_preference(preferences: list[str], key: str, value: Any) -> list[str]:
    """Rewrite one key. An existing key keeps its position; a new key is appended."""
    parsed = parse_preferences(preferences)
    parsed[key] = value
    return format_preferences(parsed)


@dataclass
class Profile:
    user_id: str
    mode: Mode
    preferences: list[str] = field(default_factory=list)
    constraints: list[Constraint] = field(default_factory=list)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.mode = Mode(self.mode)

    def get_preference(self, key: str, default: Any = None) -> Any:
        return parse_preferences(self.preferences).get(key, default)

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def to_constraint_set(self) -> ConstraintSet:
        """The profile's constraints as a set scoped to this user and mode."""
        return ConstraintSet(
            id=f"profile:{self.user_id}:{self.mode.value}",
            name=f"{self.mode.value} profile for {self.user_id}",
            constraints=list(self.constraints),
            applies_to=AppliesTo(modes=[self.mode]),
            user_id=self.user_id,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "mode": self.mode.value,
            "preferences": list(self.preferences),
            "constraints": [c.to_dict() for c in self.constraints],
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Profile:
        updated_at = data.get("updated_at")
        return cls(
            user_id=data["user_id"],
            mode=data["mode"],
            preferences=list(data.get("preferences", [])),
            constraints=[Constraint.from_dict(c) for c in data.get("constraints", [])],
            updated_at=datetime.fromisoformat(updated_at) if updated_at else datetime.now(),
        )


__all__ = ["Profile", "parse_preferences", "format_preferences", "set_preference"]
