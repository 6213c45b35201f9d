"""
Identity types: modes, personas, devices and roles.

Every lookup table keyed by these enums covers all members, so adding a new
mode or persona means revisiting MODE_DESCRIPTORS and PERSONA_PROFILES (and
the classifier rule tables) before anything imports cleanly;
_check_tables() enforces this at import time.

Modes describe *what kind of work* is happening. Personas describe *who* the
user is acting as. Each mode has one home persona and, for some modes, a
set of home devices the mode must be entered from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class _ValuesMixin:
    @classmethod
    def values(cls) -> list[str]:
        return [m.value for m in cls]  # type: ignore[attr-defined]


class Mode(_ValuesMixin, StrEnum):
    """Operating modes."""

    DEFAULT = "default"
    SOL = "sol"
    MARS = "mars"
    EARTH = "earth"
    EXPLORER = "explorer"
    FORGE = "forge"
    RESTAURANT = "restaurant"
    REAL_ESTATE = "real_estate"
    BUILDER = "builder"


class Persona(_ValuesMixin, StrEnum):
    """Semantic personas. Declaration order is the classifier's tie-break order."""

    PERSONAL = "personal"
    SWL = "swl"
    REAL_ESTATE = "real_estate"
    OPEN_PEOPLE = "open_people"


class Device(_ValuesMixin, StrEnum):
    """Devices Orb runs on. MARS is the operations terminal."""

    SOL = "sol"
    LUNA = "luna"
    MARS = "mars"
    EARTH = "earth"


OPERATIONS_DEVICE = Device.MARS


class Role(_ValuesMixin, StrEnum):
    """Agent roles an action can be requested by."""

    ORB = "orb"
    SOL = "sol"
    TE = "te"
    MAV = "mav"
    LUNA = "luna"
    FORGE = "forge"


class RiskLevel(_ValuesMixin, StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def exceeds(self, other: RiskLevel) -> bool:
        return self.rank > RiskLevel(other).rank


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class ActionKind(_ValuesMixin, StrEnum):
    TOOL_CALL = "tool_call"
    FILE_WRITE = "file_write"
    FILE_DELETE = "file_delete"
    NETWORK = "network"
    MESSAGE = "message"
    MODE_CHANGE = "mode_change"
    OTHER = "other"


# =============================================================================
# Descriptors
# =============================================================================


@dataclass(frozen=True)
class ModeDescriptor:
    """Static description of a mode."""

    mode: Mode
    label: str
    intent: str
    home_persona: Persona
    compatible_personas: frozenset[Persona]
    default_devices: tuple[Device, ...]
    default_preferences: tuple[str, ...] = ()
    default_constraints: tuple[str, ...] = ()
    # None means the mode can be entered from any device
    home_devices: frozenset[Device] | None = None

    def allows_persona(self, persona: Persona) -> bool:
        return persona in self.compatible_personas

    def allows_device(self, device: Device) -> bool:
        return self.home_devices is None or device in self.home_devices

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "label": self.label,
            "intent": self.intent,
            "home_persona": self.home_persona.value,
            "compatible_personas": sorted(p.value for p in self.compatible_personas),
            "home_devices": sorted(d.value for d in self.home_devices) if self.home_devices else None,
            "default_devices": [d.value for d in self.default_devices],
            "default_preferences": list(self.default_preferences),
            "default_constraints": list(self.default_constraints),
        }


_ALL_PERSONAS = frozenset(Persona)

MODE_DESCRIPTORS: dict[Mode, ModeDescriptor] = {
    Mode.DEFAULT: ModeDescriptor(
        mode=Mode.DEFAULT,
        label="Default · Auto",
        intent="Baseline context before personalization kicks in.",
        home_persona=Persona.PERSONAL,
        compatible_personas=_ALL_PERSONAS,
        default_devices=(Device.SOL, Device.LUNA, Device.EARTH),
        default_preferences=("balanced-ui",),
    ),
    Mode.SOL: ModeDescriptor(
        mode=Mode.SOL,
        label="Sol · Exploration",
        intent="Deep exploration, design work, and system building.",
        home_persona=Persona.PERSONAL,
        compatible_personas=_ALL_PERSONAS,
        default_devices=(Device.SOL, Device.LUNA),
        default_preferences=("clarity-first", "deep-focus", "command-palette"),
        default_constraints=("no-destructive-actions", "require-confirmation"),
    ),
    Mode.MARS: ModeDescriptor(
        mode=Mode.MARS,
        label="Mars · Operations",
        intent="Restaurant operations and time-sensitive coordination.",
        home_persona=Persona.SWL,
        compatible_personas=frozenset({Persona.SWL}),
        default_devices=(Device.MARS,),
        default_preferences=("task-speed", "notification-priority", "finance-visibility"),
        default_constraints=("no-personal-notifications", "fast-confirmations"),
        home_devices=frozenset({Device.MARS}),
    ),
    Mode.EARTH: ModeDescriptor(
        mode=Mode.EARTH,
        label="Earth · Personal",
        intent="Personal life, relationships, reflection, and rest.",
        home_persona=Persona.PERSONAL,
        compatible_personas=frozenset({Persona.PERSONAL, Persona.OPEN_PEOPLE}),
        default_devices=(Device.EARTH,),
        default_preferences=("calm-ui", "relationship-focus", "reflection-prompts"),
        default_constraints=("no-work-alerts", "limit-task-creation"),
    ),
    Mode.EXPLORER: ModeDescriptor(
        mode=Mode.EXPLORER,
        label="Explorer",
        intent="Curiosity-driven research sessions.",
        home_persona=Persona.OPEN_PEOPLE,
        compatible_personas=_ALL_PERSONAS,
        default_devices=(Device.SOL, Device.EARTH),
        default_preferences=("graph-visibility", "instant-search"),
        default_constraints=("suppress-non-research",),
    ),
    Mode.FORGE: ModeDescriptor(
        mode=Mode.FORGE,
        label="Forge",
        intent="Multi-agent building sessions and automation.",
        home_persona=Persona.PERSONAL,
        compatible_personas=_ALL_PERSONAS,
        default_devices=(Device.LUNA,),
        default_preferences=("code-quality", "guard-rails"),
        default_constraints=("require-review",),
        home_devices=frozenset({Device.LUNA}),
    ),
    Mode.RESTAURANT: ModeDescriptor(
        mode=Mode.RESTAURANT,
        label="Restaurant Focus",
        intent="Task view specialized for service operations.",
        home_persona=Persona.SWL,
        compatible_personas=_ALL_PERSONAS,
        default_devices=(Device.MARS,),
        default_preferences=("staff-priority", "fast-task-switch"),
        default_constraints=("mute-personal",),
    ),
    Mode.REAL_ESTATE: ModeDescriptor(
        mode=Mode.REAL_ESTATE,
        label="Real Estate",
        intent="Deal + relationship tracking for transactions.",
        home_persona=Persona.REAL_ESTATE,
        compatible_personas=frozenset({Persona.REAL_ESTATE}),
        default_devices=(Device.MARS, Device.EARTH),
        default_preferences=("pipeline-clarity", "document-tracking"),
        default_constraints=("require-deal-links",),
    ),
    Mode.BUILDER: ModeDescriptor(
        mode=Mode.BUILDER,
        label="Builder",
        intent="Heads-down implementation with strong guard rails.",
        home_persona=Persona.PERSONAL,
        compatible_personas=_ALL_PERSONAS,
        default_devices=(Device.SOL, Device.LUNA),
        default_preferences=("test-first", "code-review"),
        default_constraints=("no-prod-writes",),
    ),
}


@dataclass(frozen=True)
class PersonaProfile:
    persona: Persona
    label: str
    intent: str
    preferred_modes: tuple[Mode, ...]


PERSONA_PROFILES: dict[Persona, PersonaProfile] = {
    Persona.PERSONAL: PersonaProfile(
        Persona.PERSONAL,
        "Architect / Designer",
        "Design and architect complex systems with clarity.",
        (Mode.SOL, Mode.EXPLORER, Mode.FORGE),
    ),
    Persona.SWL: PersonaProfile(
        Persona.SWL,
        "Restaurateur / Operator",
        "Coordinate high-tempo operations with zero friction.",
        (Mode.MARS, Mode.RESTAURANT),
    ),
    Persona.REAL_ESTATE: PersonaProfile(
        Persona.REAL_ESTATE,
        "Real Estate Operator",
        "Manage listings, clients, and multi-step pipelines.",
        (Mode.REAL_ESTATE, Mode.MARS, Mode.EARTH),
    ),
    Persona.OPEN_PEOPLE: PersonaProfile(
        Persona.OPEN_PEOPLE,
        "Researcher / Writer",
        "Gather, synthesize, and reflect on information calmly.",
        (Mode.EARTH, Mode.SOL, Mode.DEFAULT),
    ),
}

DEVICE_DEFAULT_MODES: dict[Device, Mode] = {
    Device.SOL: Mode.SOL,
    Device.LUNA: Mode.FORGE,
    Device.MARS: Mode.MARS,
    Device.EARTH: Mode.EARTH,
}


def _check_tables() -> None:
    for table, enum in ((MODE_DESCRIPTORS, Mode), (PERSONA_PROFILES, Persona), (DEVICE_DEFAULT_MODES, Device)):
        missing = set(enum) - set(table)
        if missing:
            raise RuntimeError(f"{enum.__name__} table missing entries: {sorted(missing)}")
    for descriptor in MODE_DESCRIPTORS.values():
        if descriptor.home_persona not in descriptor.compatible_personas:
            raise RuntimeError(f"{descriptor.mode} home persona is not in its compatible personas")


_check_tables()


def get_mode_descriptor(mode: Mode | str) -> ModeDescriptor:
    return MODE_DESCRIPTORS[Mode(mode)]


def get_persona_profile(persona: Persona | str) -> PersonaProfile:
    return PERSONA_PROFILES[Persona(persona)]


def display_name(value: StrEnum) -> str:
    """'real_estate' -> 'Real Estate'."""
    return value.value.replace("_", " ").title()


@dataclass
class SessionContext:
    """The caller's session, passed to mode changes."""

    user_id: str | None = None
    session_id: str = ""
    device_id: Device | None = None
    role: Role = Role.LUNA

    def __post_init__(self) -> None:
        if self.device_id is not None:
            self.device_id = Device(self.device_id)
        self.role = Role(self.role)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "device_id": self.device_id.value if self.device_id else None,
            "role": self.role.value,
        }


__all__ = [
    "Mode",
    "Persona",
    "Device",
    "Role",
    "RiskLevel",
    "ActionKind",
    "OPERATIONS_DEVICE",
    "ModeDescriptor",
    "MODE_DESCRIPTORS",
    "PersonaProfile",
    "PERSONA_PROFILES",
    "DEVICE_DEFAULT_MODES",
    "SessionContext",
    "get_mode_descriptor",
    "get_persona_profile",
    "display_name",
]
