"""Persona Classification - who is the user acting as right now?

Philosophy:
    Infer, don't interrogate. The persona is read from ambient signals the
    system already has (device, mode, the feature in use, time of day,
    location) and the user can always override it explicitly.

Precedence (first match wins):
    1. Explicit persona on the context, or a stored override that matches it
    2. Sticky recency: the last persona seen within the sticky window
    3. Weighted rule scoring over the rule tables in rules.py

Components:
    __init__.py: Context, history, override and result types
    rules.py: Weighted rule tables keyed by Device / Mode / TimeOfDay
    overrides.py: PersonaOverrideStore interface and in-memory backend
    classifier.py: PersonaClassifier
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from orb.identity import Device, Mode, Persona


class TimeOfDay(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @classmethod
    def from_hour(cls, hour: int) -> TimeOfDay:
        if 5 <= hour < 12:
            return cls.MORNING
        if 12 <= hour < 17:
            return cls.AFTERNOON
        if 17 <= hour < 21:
            return cls.EVENING
        return cls.NIGHT


class ClassificationSource(StrEnum):
    EXPLICIT = "explicit"
    INFERRED = "inferred"
    DEFAULT = "default"


@dataclass(frozen=True)
class PersonaHistoryEntry:
    persona: Persona
    timestamp: datetime


@dataclass
class PersonaContext:
    """Ambient signals available at classification time. Every field is optional."""

    user_id: str | None = None
    session_id: str | None = None
    device_id: Device | None = None
    current_mode: Mode | None = None
    active_feature: str | None = None
    # A TimeOfDay, its string value, or an hour 0-23
    time_of_day: TimeOfDay | str | int | None = None
    location_hint: str | None = None
    explicit_persona: Persona | None = None
    # Most recent first
    recent_personas: list[PersonaHistoryEntry] = field(default_factory=list)
    now: datetime | None = None

    def __post_init__(self) -> None:
        if self.device_id is not None:
            self.device_id = Device(self.device_id)
        if self.current_mode is not None:
            self.current_mode = Mode(self.current_mode)
        if self.explicit_persona is not None:
            self.explicit_persona = Persona(self.explicit_persona)
        if isinstance(self.time_of_day, int):
            self.time_of_day = TimeOfDay.from_hour(self.time_of_day)
        elif self.time_of_day is not None:
            self.time_of_day = TimeOfDay(self.time_of_day)


@dataclass(frozen=True)
class OverrideScope:
    """Restricts an override to contexts whose device / mode / feature match every set field."""

    device_id: Device | None = None
    mode: Mode | None = None
    feature: str | None = None

    def __post_init__(self) -> None:
        if self.device_id is None and self.mode is None and not self.feature:
            raise ValueError("OverrideScope needs at least one of device_id, mode, feature")
        if self.device_id is not None:
            object.__setattr__(self, "device_id", Device(self.device_id))
        if self.mode is not None:
            object.__setattr__(self, "mode", Mode(self.mode))
        if self.feature:
            object.__setattr__(self, "feature", self.feature.lower())

    @property
    def specificity(self) -> int:
        return sum(v is not None for v in (self.device_id, self.mode, self.feature))

    def matches(self, ctx: PersonaContext | None) -> bool:
        if ctx is None:
            return False
        if self.device_id is not None and ctx.device_id != self.device_id:
            return False
        if self.mode is not None and ctx.current_mode != self.mode:
            return False
        if self.feature is not None and (ctx.active_feature or "").lower() != self.feature:
            return False
        return True


@dataclass
class PersonaOverride:
    user_id: str
    persona: Persona
    session_id: str | None = None
    scope: OverrideScope | None = None
    expires_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "persona": self.persona.value,
            "session_id": self.session_id,
            "scope": {
                "device_id": self.scope.device_id.value if self.scope.device_id else None,
                "mode": self.scope.mode.value if self.scope.mode else None,
                "feature": self.scope.feature,
            }
            if self.scope
            else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class PersonaClassificationResult:
    persona: Persona
    confidence: float
    source: ClassificationSource
    distribution: dict[Persona, float]
    reasons: list[str] = field(default_factory=list)
    signals: list[str] = field(default_factory=list)
    overridden: bool = False
    classified_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "persona": self.persona.value,
            "confidence": round(self.confidence, 4),
            "source": self.source.value,
            "distribution": {p.value: round(w, 4) for p, w in self.distribution.items()},
            "reasons": list(self.reasons),
            "signals": list(self.signals),
            "overridden": self.overridden,
            "classified_at": self.classified_at.isoformat(),
        }


__all__ = [
    "TimeOfDay",
    "ClassificationSource",
    "PersonaHistoryEntry",
    "PersonaContext",
    "OverrideScope",
    "PersonaOverride",
    "PersonaClassificationResult",
]
