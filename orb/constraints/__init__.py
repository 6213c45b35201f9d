"""Constraint Model - rules that can block or flag actions and mode transitions

Philosophy:
    A constraint is data, not code. Each constraint type is its own small
    dataclass carrying only the fields that type needs, so a max-risk rule
    can never carry a tool id by accident. The evaluator dispatches on the
    type tag through a table of pure predicate functions.

Components:
    __init__.py: Constraint variants, ConstraintSet, contexts and results
    store.py: ConstraintStore interface, in-memory and JSON-file backends
    sqlite_store.py: Relational backend (orb_constraint_sets / orb_constraints)
    builder.py: Convenience constructors and preset-string parsing
    defaults.py: System-wide default constraint sets (opt-in seeding)
    evaluator.py: ConstraintEvaluator (actions, mode transitions)

Severity:
    hard     - always denies when triggered
    soft     - denies under the default fail-closed policy, otherwise asks for confirmation
    warning  - same as soft; intended for messaging

Ownership:
    ConstraintSet.user_id is None for system-wide defaults. Stores merge
    system sets with the requesting user's own sets.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, time
from enum import StrEnum
from typing import Any, ClassVar

from orb.errors import ConstraintConfigurationError
from orb.identity import ActionKind, Device, Mode, Persona, RiskLevel, Role


class ConstraintType(StrEnum):
    BLOCK_TOOL = "block-tool"
    MAX_RISK = "max-risk"
    REQUIRE_CONFIRMATION = "require-confirmation"
    BLOCK_MODE = "block-mode"
    DEVICE_RESTRICTION = "device-restriction"
    TIME_WINDOW = "time-window"
    OTHER = "other"

    @classmethod
    def values(cls) -> list[str]:
        return [m.value for m in cls]


class ConstraintSeverity(StrEnum):
    HARD = "hard"
    SOFT = "soft"
    WARNING = "warning"


class ConstraintSource(StrEnum):
    """Who created a constraint."""

    USER = "user"
    SYSTEM = "system"
    ADMIN = "admin"
    LEARNING = "learning"


class Decision(StrEnum):
    ALLOW = "allow"
    DENY = "deny"


def generate_id(prefix: str = "constraint") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _coerce(enum_cls: type[StrEnum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ConstraintConfigurationError(
            f"Invalid {field_name}: {value!r} (expected one of {[m.value for m in enum_cls]})"
        ) from e


def _coerce_list(enum_cls: type[StrEnum], values: Any, field_name: str) -> list | None:
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    return [_coerce(enum_cls, v, field_name) for v in values]


def _parse_datetime(value: Any) -> datetime:
    if value is None:
        return datetime.now()
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _encode(value: Any) -> Any:
    if isinstance(value, StrEnum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, TimeWindow):
        return value.to_dict()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_encode(v) for v in value]
    return value


# =============================================================================
# Time windows
# =============================================================================


def _parse_hhmm(value: str) -> time:
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ConstraintConfigurationError(f"Invalid time {value!r}, expected HH:MM") from e


@dataclass(frozen=True)
class TimeWindow:
    """Daily window in local time, "HH:MM" bounds, inclusive. May wrap past midnight."""

    start: str
    end: str

    def __post_init__(self) -> None:
        _parse_hhmm(self.start)
        _parse_hhmm(self.end)

    def contains(self, moment: datetime) -> bool:
        current = time(moment.hour, moment.minute)
        start, end = _parse_hhmm(self.start), _parse_hhmm(self.end)
        if start <= end:
            return start <= current <= end
        return current >= start or current <= end

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | TimeWindow) -> TimeWindow:
        if isinstance(data, TimeWindow):
            return data
        try:
            return cls(start=data["start"], end=data["end"])
        except (KeyError, TypeError) as e:
            raise ConstraintConfigurationError(f"time_window needs start and end, got {data!r}") from e


# =============================================================================
# Constraint variants
# =============================================================================


@dataclass(kw_only=True)
class Constraint:
    """
    Fields shared by every constraint type.

    Subclasses set ``type`` and add their own parameters. Enum-valued fields
    accept plain strings and are coerced on construction.
    """

    type: ClassVar[ConstraintType]

    id: str = field(default_factory=generate_id)
    severity: ConstraintSeverity = ConstraintSeverity.HARD
    active: bool = True
    description: str = ""
    # None means the constraint applies to every role
    applies_to_roles: list[Role] | None = None
    created_by: ConstraintSource = ConstraintSource.USER
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not self.id:
            raise ConstraintConfigurationError(f"{self.type} constraint requires an id")
        self.severity = _coerce(ConstraintSeverity, self.severity, "severity")
        self.created_by = _coerce(ConstraintSource, self.created_by, "created_by")
        self.applies_to_roles = _coerce_list(Role, self.applies_to_roles, "applies_to_roles")
        self.created_at = _parse_datetime(self.created_at)
        self.updated_at = _parse_datetime(self.updated_at)

    def applies_to_role(self, role: Role) -> bool:
        return self.applies_to_roles is None or role in self.applies_to_roles

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        for f in fields(self):
            data[f.name] = _encode(getattr(self, f.name))
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Constraint:
        """Build the right variant from a serialized dict, dispatching on ``type``."""
        if not isinstance(data, dict):
            raise ConstraintConfigurationError(f"Constraint must be a mapping, got {type(data).__name__}")

        tag = data.get("type")
        if tag is None:
            raise ConstraintConfigurationError(f"Constraint {data.get('id')!r} has no type")
        variant = CONSTRAINT_TYPES.get(_coerce(ConstraintType, tag, "constraint type"))

        known = {f.name for f in fields(variant)}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}
        if "time_window" in kwargs:
            kwargs["time_window"] = TimeWindow.from_dict(kwargs["time_window"])

        try:
            return variant(**kwargs)
        except TypeError as e:
            raise ConstraintConfigurationError(f"Invalid {tag} constraint {data.get('id')!r}: {e}") from e


@dataclass(kw_only=True)
class BlockToolConstraint(Constraint):
    type: ClassVar[ConstraintType] = ConstraintType.BLOCK_TOOL
    tool_id: str

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.tool_id:
            raise ConstraintConfigurationError(f"block-tool constraint {self.id} requires tool_id")


@dataclass(kw_only=True)
class MaxRiskConstraint(Constraint):
    type: ClassVar[ConstraintType] = ConstraintType.MAX_RISK
    max_risk: RiskLevel

    def __post_init__(self) -> None:
        super().__post_init__()
        self.max_risk = _coerce(RiskLevel, self.max_risk, "max_risk")


@dataclass(kw_only=True)
class RequireConfirmationConstraint(Constraint):
    type: ClassVar[ConstraintType] = ConstraintType.REQUIRE_CONFIRMATION
    severity: ConstraintSeverity = ConstraintSeverity.SOFT
    # When set, only actions riskier than this need confirmation
    max_risk: RiskLevel | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.max_risk is not None:
            self.max_risk = _coerce(RiskLevel, self.max_risk, "max_risk")


@dataclass(kw_only=True)
class BlockModeConstraint(Constraint):
    type: ClassVar[ConstraintType] = ConstraintType.BLOCK_MODE
    blocked_modes: list[Mode]
    blocked_personas: list[Persona] | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self.blocked_modes = _coerce_list(Mode, self.blocked_modes, "blocked_modes") or []
        self.blocked_personas = _coerce_list(Persona, self.blocked_personas, "blocked_personas")
        if not self.blocked_modes and not self.blocked_personas:
            raise ConstraintConfigurationError(
                f"block-mode constraint {self.id} requires blocked_modes or blocked_personas"
            )


@dataclass(kw_only=True)
class DeviceRestrictionConstraint(Constraint):
    type: ClassVar[ConstraintType] = ConstraintType.DEVICE_RESTRICTION
    allowed_devices: list[Device]

    def __post_init__(self) -> None:
        super().__post_init__()
        self.allowed_devices = _coerce_list(Device, self.allowed_devices, "allowed_devices") or []


@dataclass(kw_only=True)
class TimeWindowConstraint(Constraint):
    type: ClassVar[ConstraintType] = ConstraintType.TIME_WINDOW
    time_window: TimeWindow

    def __post_init__(self) -> None:
        super().__post_init__()
        self.time_window = TimeWindow.from_dict(self.time_window)


@dataclass(kw_only=True)
class OtherConstraint(Constraint):
    """
    Free-form rule. Without a persona predicate it always triggers while
    applicable, which makes it a blanket nudge for its mode/persona scope.
    """

    type: ClassVar[ConstraintType] = ConstraintType.OTHER
    severity: ConstraintSeverity = ConstraintSeverity.WARNING
    required_persona: Persona | None = None
    blocked_personas: list[Persona] | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.required_persona is not None:
            self.required_persona = _coerce(Persona, self.required_persona, "required_persona")
        self.blocked_personas = _coerce_list(Persona, self.blocked_personas, "blocked_personas")


CONSTRAINT_TYPES: dict[ConstraintType, type[Constraint]] = {
    ConstraintType.BLOCK_TOOL: BlockToolConstraint,
    ConstraintType.MAX_RISK: MaxRiskConstraint,
    ConstraintType.REQUIRE_CONFIRMATION: RequireConfirmationConstraint,
    ConstraintType.BLOCK_MODE: BlockModeConstraint,
    ConstraintType.DEVICE_RESTRICTION: DeviceRestrictionConstraint,
    ConstraintType.TIME_WINDOW: TimeWindowConstraint,
    ConstraintType.OTHER: OtherConstraint,
}


# =============================================================================
# Constraint sets
# =============================================================================


@dataclass
class AppliesTo:
    """Applicability filter. None on either axis means "any"."""

    modes: list[Mode] | None = None
    personas: list[Persona] | None = None

    def __post_init__(self) -> None:
        self.modes = _coerce_list(Mode, self.modes, "applies_to.modes")
        self.personas = _coerce_list(Persona, self.personas, "applies_to.personas")

    def matches(self, mode: Mode, persona: Persona | None = None) -> bool:
        if self.modes is not None and mode not in self.modes:
            return False
        if self.personas is not None and persona is not None and persona not in self.personas:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"modes": _encode(self.modes), "personas": _encode(self.personas)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AppliesTo:
        data = data or {}
        return cls(modes=data.get("modes"), personas=data.get("personas"))


@dataclass
class ConstraintSet:
    """Named, prioritized bundle of constraints. Higher priority is evaluated first."""

    id: str
    name: str
    constraints: list[Constraint] = field(default_factory=list)
    description: str = ""
    applies_to: AppliesTo = field(default_factory=AppliesTo)
    priority: int = 0
    user_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not self.id:
            raise ConstraintConfigurationError("ConstraintSet requires an id")
        if isinstance(self.applies_to, dict):
            self.applies_to = AppliesTo.from_dict(self.applies_to)
        seen: set[str] = set()
        for c in self.constraints:
            if c.id in seen:
                raise ConstraintConfigurationError(f"Duplicate constraint id {c.id!r} in set {self.id!r}")
            seen.add(c.id)

    def applies(self, mode: Mode, persona: Persona | None = None) -> bool:
        return self.applies_to.matches(mode, persona)

    def active_constraints(self) -> list[Constraint]:
        return [c for c in self.constraints if c.active]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "constraints": [c.to_dict() for c in self.constraints],
            "applies_to": self.applies_to.to_dict(),
            "priority": self.priority,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConstraintSet:
        try:
            return cls(
                id=data["id"],
                name=data.get("name", data["id"]),
                description=data.get("description", ""),
                constraints=[Constraint.from_dict(c) for c in data.get("constraints", [])],
                applies_to=AppliesTo.from_dict(data.get("applies_to")),
                priority=int(data.get("priority", 0)),
                user_id=data.get("user_id"),
                created_at=_parse_datetime(data.get("created_at")),
                updated_at=_parse_datetime(data.get("updated_at")),
            )
        except KeyError as e:
            raise ConstraintConfigurationError(f"ConstraintSet missing field {e}") from e


def set_sort_key(constraint_set: ConstraintSet) -> tuple[int, str]:
    """Priority descending, then id, so every backend orders identically."""
    return (-constraint_set.priority, constraint_set.id)


def filter_applicable(
    sets: list[ConstraintSet],
    user_id: str | None,
    mode: Mode,
    persona: Persona | None = None,
) -> list[ConstraintSet]:
    selected = [
        s
        for s in sets
        if (s.user_id is None or s.user_id == user_id) and s.applies(mode, persona)
    ]
    return sorted(selected, key=set_sort_key)


# =============================================================================
# Contexts
# =============================================================================


@dataclass
class ActionContext:
    """One proposed action. Ephemeral; call validate() before evaluating."""

    action_id: str
    current_mode: Mode
    role: Role = Role.MAV
    kind: ActionKind = ActionKind.OTHER
    tool_id: str | None = None
    estimated_risk: RiskLevel = RiskLevel.LOW
    description: str = ""
    user_id: str | None = None
    session_id: str | None = None
    device_id: Device | None = None
    persona: Persona | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> ActionContext:
        if not self.action_id:
            raise ConstraintConfigurationError("ActionContext requires action_id")
        if self.current_mode is None:
            raise ConstraintConfigurationError("ActionContext requires current_mode")
        self.current_mode = _coerce(Mode, self.current_mode, "current_mode")
        self.role = _coerce(Role, self.role, "role")
        self.kind = _coerce(ActionKind, self.kind, "kind")
        self.estimated_risk = _coerce(RiskLevel, self.estimated_risk or RiskLevel.LOW, "estimated_risk")
        if self.device_id is not None:
            self.device_id = _coerce(Device, self.device_id, "device_id")
        if self.persona is not None:
            self.persona = _coerce(Persona, self.persona, "persona")
        return self


@dataclass
class ModeTransitionContext:
    from_mode: Mode
    to_mode: Mode
    user_id: str | None = None
    session_id: str | None = None
    persona: Persona | None = None
    device_id: Device | None = None
    reason: str | None = None
    triggered_by: Role = Role.LUNA

    def validate(self) -> ModeTransitionContext:
        if self.from_mode is None or self.to_mode is None:
            raise ConstraintConfigurationError("ModeTransitionContext requires from_mode and to_mode")
        self.from_mode = _coerce(Mode, self.from_mode, "from_mode")
        self.to_mode = _coerce(Mode, self.to_mode, "to_mode")
        self.triggered_by = _coerce(Role, self.triggered_by, "triggered_by")
        if self.persona is not None:
            self.persona = _coerce(Persona, self.persona, "persona")
        if self.device_id is not None:
            self.device_id = _coerce(Device, self.device_id, "device_id")
        return self


# =============================================================================
# Results
# =============================================================================


@dataclass
class TriggeredConstraint:
    constraint_id: str
    severity: ConstraintSeverity
    reason: str
    type: ConstraintType | None = None
    recommendation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "constraint_id": self.constraint_id,
            "severity": self.severity.value,
            "reason": self.reason,
            "type": self.type.value if self.type else None,
            "recommendation": self.recommendation,
        }


@dataclass
class ConstraintEvaluationResult:
    allowed: bool
    decision: Decision
    triggered_constraints: list[TriggeredConstraint] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)
    requires_confirmation: bool = False
    risk_factors: list[str] = field(default_factory=list)
    # Estimated risk raised one level per two risk factors
    effective_risk: RiskLevel = RiskLevel.LOW
    evaluated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.allowed != (self.decision == Decision.ALLOW):
            raise ValueError(f"allowed={self.allowed} contradicts decision={self.decision}")

    @property
    def primary_reason(self) -> str | None:
        return self.reasons[0] if self.reasons else None

    @property
    def triggered_ids(self) -> list[str]:
        return [t.constraint_id for t in self.triggered_constraints]

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "decision": self.decision.value,
            "triggered_constraints": [t.to_dict() for t in self.triggered_constraints],
            "reasons": list(self.reasons),
            "requires_confirmation": self.requires_confirmation,
            "risk_factors": list(self.risk_factors),
            "effective_risk": self.effective_risk.value,
            "evaluated_at": self.evaluated_at.isoformat(),
        }


@dataclass
class ModeTransitionResult:
    success: bool
    from_mode: Mode
    to_mode: Mode
    blocked_by: list[TriggeredConstraint] = field(default_factory=list)
    requires_confirmation: list[TriggeredConstraint] = field(default_factory=list)
    applied_constraints: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def needs_confirmation(self) -> bool:
        return self.success and bool(self.requires_confirmation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "from_mode": self.from_mode.value,
            "to_mode": self.to_mode.value,
            "blocked_by": [b.to_dict() for b in self.blocked_by],
            "requires_confirmation": [r.to_dict() for r in self.requires_confirmation],
            "applied_constraints": list(self.applied_constraints),
            "message": self.message,
        }


__all__ = [
    "ConstraintType",
    "ConstraintSeverity",
    "ConstraintSource",
    "Decision",
    "TimeWindow",
    "Constraint",
    "BlockToolConstraint",
    "MaxRiskConstraint",
    "RequireConfirmationConstraint",
    "BlockModeConstraint",
    "DeviceRestrictionConstraint",
    "TimeWindowConstraint",
    "OtherConstraint",
    "CONSTRAINT_TYPES",
    "AppliesTo",
    "ConstraintSet",
    "ActionContext",
    "ModeTransitionContext",
    "TriggeredConstraint",
    "ConstraintEvaluationResult",
    "ModeTransitionResult",
    "filter_applicable",
    "set_sort_key",
    "generate_id",
]
