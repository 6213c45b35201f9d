"""Learning - turn detected usage patterns into preference changes

Philosophy:
    Learn from behavior, not configuration forms. A pattern detector
    (outside this package) notices regularities; this package proposes
    concrete changes and applies only the ones it is confident about.

Confidence bands:
    >= AUTO_APPLY (0.9)   applied without asking
    >= SUGGEST (0.7)      kept pending until the user confirms
    <  SUGGEST            rejected by batch application
    LOG_ONLY (0.5)        floor for recording a suggestion at all

Lifecycle:
    LearningAction.status moves pending -> applied or pending -> rejected,
    exactly once. It never reverts.

Components:
    __init__.py: Pattern, LearningAction, thresholds
    preference_learning.py: Pattern -> LearningAction generators, profile mutation
    adaptive.py: AdaptivePreferences (auto-apply, confirmation, batch)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from orb.errors import LearningActionStateError


class PatternType(StrEnum):
    FREQUENT_ACTION = "frequent_action"
    MODE_PREFERENCE = "mode_preference"
    RISK_THRESHOLD = "risk_threshold"
    TIME_BASED_ROUTINE = "time_based_routine"
    ERROR_PATTERN = "error_pattern"
    EFFICIENCY_GAIN = "efficiency_gain"


class LearningActionType(StrEnum):
    UPDATE_PREFERENCE = "update_preference"
    ADJUST_CONSTRAINT = "adjust_constraint"
    ADJUST_RISK_THRESHOLD = "adjust_risk_threshold"
    SUGGEST_AUTOMATION = "suggest_automation"
    RECOMMEND_MODE = "recommend_mode"
    CREATE_SHORTCUT = "create_shortcut"


# Types that only produce a suggestion for something outside the profile
ADVISORY_ACTION_TYPES = frozenset(
    {
        LearningActionType.SUGGEST_AUTOMATION,
        LearningActionType.RECOMMEND_MODE,
        LearningActionType.CREATE_SHORTCUT,
    }
)


class LearningActionStatus(StrEnum):
    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"


class ConfidenceThreshold:
    AUTO_APPLY = 0.9
    SUGGEST = 0.7
    LOG_ONLY = 0.5


@dataclass(frozen=True)
class Thresholds:
    auto_apply: float = ConfidenceThreshold.AUTO_APPLY
    suggest: float = ConfidenceThreshold.SUGGEST
    log_only: float = ConfidenceThreshold.LOG_ONLY

    @classmethod
    def from_config(cls, config: Any) -> Thresholds:
        return cls(auto_apply=config.auto_apply, suggest=config.suggest, log_only=config.log_only)


@dataclass
class Pattern:
    """A usage regularity reported by the external pattern detector."""

    type: PatternType
    confidence: float
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"pattern-{uuid.uuid4().hex[:12]}")
    user_id: str | None = None
    event_ids: list[str] = field(default_factory=list)
    event_count: int = 0
    detected_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.type = PatternType(self.type)
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Pattern confidence must be within [0, 1], got {self.confidence}")
        if not self.event_count:
            self.event_count = len(self.event_ids)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pattern:
        detected_at = data.get("detected_at")
        return cls(
            type=data["type"],
            confidence=float(data["confidence"]),
            data=data.get("data", {}),
            id=data.get("id") or f"pattern-{uuid.uuid4().hex[:12]}",
            user_id=data.get("user_id"),
            event_ids=data.get("event_ids", []),
            event_count=data.get("event_count", 0),
            detected_at=datetime.fromisoformat(detected_at) if detected_at else datetime.now(),
        )


@dataclass
class LearningAction:
    type: LearningActionType
    confidence: float
    target: str
    reason: str
    current_value: Any = None
    suggested_value: Any = None
    id: str = field(default_factory=lambda: f"action-{uuid.uuid4().hex[:12]}")
    pattern_id: str | None = None
    user_id: str | None = None
    status: LearningActionStatus = LearningActionStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    applied_at: datetime | None = None

    def __post_init__(self) -> None:
        self.type = LearningActionType(self.type)
        self.status = LearningActionStatus(self.status)

    @property
    def is_pending(self) -> bool:
        return self.status == LearningActionStatus.PENDING

    @property
    def is_advisory(self) -> bool:
        return self.type in ADVISORY_ACTION_TYPES

    def _leave_pending(self, status: LearningActionStatus) -> None:
        if not self.is_pending:
            raise LearningActionStateError(
                f"Learning action {self.id} is already {self.status.value}, cannot mark {status.value}"
            )
        self.status = status

    def mark_applied(self, when: datetime | None = None) -> None:
        self._leave_pending(LearningActionStatus.APPLIED)
        self.applied_at = when or datetime.now()

    def mark_rejected(self) -> None:
        self._leave_pending(LearningActionStatus.REJECTED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "confidence": self.confidence,
            "target": self.target,
            "current_value": self.current_value,
            "suggested_value": self.suggested_value,
            "reason": self.reason,
            "pattern_id": self.pattern_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }


__all__ = [
    "PatternType",
    "LearningActionType",
    "LearningActionStatus",
    "ADVISORY_ACTION_TYPES",
    "ConfidenceThreshold",
    "Thresholds",
    "Pattern",
    "LearningAction",
]
