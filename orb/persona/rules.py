"""
Persona rule tables.

Each rule adds fixed weights to one or more personas and contributes a
human-readable signal line. Tables keyed by an enum cover every member;
None marks "no signal" so a new Device or Mode cannot be added without a
decision here.

Relative weights:
    feature keywords (5 / 3) > mode (4 / 2) > device (3 / 2 / 1)
    location (3 / 2 / 1) and time of day (1 / 0.5) nudge rather than decide
"""

from __future__ import annotations

from dataclasses import dataclass

from orb.identity import Device, Mode, Persona
from orb.persona import TimeOfDay


@dataclass(frozen=True)
class Rule:
    signal: str
    weights: dict[Persona, float]

    @property
    def weight(self) -> float:
        return max(self.weights.values())


@dataclass(frozen=True)
class KeywordRule:
    """Matches when any keyword group is fully contained in the lowercased text."""

    groups: tuple[tuple[str, ...], ...]
    persona: Persona
    weight: float
    label: str

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(all(word in lowered for word in group) for group in self.groups)


DEVICE_RULES: dict[Device, Rule | None] = {
    Device.MARS: Rule("Mars device -> SWL persona (operations)", {Persona.SWL: 3}),
    Device.EARTH: Rule("Earth device -> Personal/OpenPeople personas", {Persona.PERSONAL: 2, Persona.OPEN_PEOPLE: 2}),
    Device.SOL: Rule("Sol device -> Personal persona (creative work)", {Persona.PERSONAL: 2}),
    Device.LUNA: Rule("Luna device -> Personal persona (build work)", {Persona.PERSONAL: 1}),
}

_WORK_MODE = "{mode} mode -> Personal persona (work context)"

MODE_RULES: dict[Mode, Rule | None] = {
    Mode.MARS: Rule("mars mode -> SWL persona", {Persona.SWL: 4}),
    Mode.RESTAURANT: Rule("restaurant mode -> SWL persona", {Persona.SWL: 4}),
    Mode.REAL_ESTATE: Rule("Real Estate mode -> RealEstate persona", {Persona.REAL_ESTATE: 4}),
    Mode.EARTH: Rule("Earth mode -> Personal/OpenPeople personas", {Persona.PERSONAL: 2, Persona.OPEN_PEOPLE: 2}),
    Mode.SOL: Rule(_WORK_MODE.format(mode="sol"), {Persona.PERSONAL: 2}),
    Mode.EXPLORER: Rule(_WORK_MODE.format(mode="explorer"), {Persona.PERSONAL: 2}),
    Mode.FORGE: Rule(_WORK_MODE.format(mode="forge"), {Persona.PERSONAL: 2}),
    Mode.BUILDER: Rule(_WORK_MODE.format(mode="builder"), {Persona.PERSONAL: 2}),
    Mode.DEFAULT: None,
}

# Checked in order; the first matching rule wins
FEATURE_RULES: tuple[KeywordRule, ...] = (
    KeywordRule((("swl",), ("restaurant",), ("laundry",)), Persona.SWL, 5, "SWL"),
    KeywordRule((("real", "estate"), ("property",), ("listing",)), Persona.REAL_ESTATE, 5, "RealEstate"),
    KeywordRule((("open", "people"), ("research",)), Persona.OPEN_PEOPLE, 5, "OpenPeople"),
    KeywordRule((("personal",), ("design",), ("code",)), Persona.PERSONAL, 3, "Personal"),
)

TIME_OF_DAY_RULES: dict[TimeOfDay, Rule | None] = {
    TimeOfDay.MORNING: Rule("Morning -> slight Personal bias", {Persona.PERSONAL: 0.5}),
    TimeOfDay.AFTERNOON: Rule("Afternoon -> slight SWL bias (operations)", {Persona.SWL: 0.5}),
    TimeOfDay.EVENING: Rule("Evening -> Personal/OpenPeople bias", {Persona.PERSONAL: 1, Persona.OPEN_PEOPLE: 1}),
    TimeOfDay.NIGHT: Rule("Night -> OpenPeople bias (reflection)", {Persona.OPEN_PEOPLE: 1}),
}

# (keywords, weights, label); first match wins
LOCATION_RULES: tuple[tuple[tuple[str, ...], dict[Persona, float], str], ...] = (
    (("restaurant", "work", "shop"), {Persona.SWL: 3}, "SWL persona"),
    (("home", "personal"), {Persona.PERSONAL: 2}, "Personal persona"),
    (("office", "studio"), {Persona.PERSONAL: 1, Persona.REAL_ESTATE: 1}, "work-related persona"),
)


def _check_tables() -> None:
    for table, enum in ((DEVICE_RULES, Device), (MODE_RULES, Mode), (TIME_OF_DAY_RULES, TimeOfDay)):
        missing = set(enum) - set(table)
        if missing:
            raise RuntimeError(f"persona rule table for {enum.__name__} missing {sorted(missing)}")


_check_tables()


def device_rule(device: Device) -> Rule | None:
    return DEVICE_RULES[device]


def mode_rule(mode: Mode) -> Rule | None:
    return MODE_RULES[mode]


def feature_rule(feature: str) -> Rule | None:
    if not feature or not feature.strip():
        return None
    for rule in FEATURE_RULES:
        if rule.matches(feature):
            return Rule(f'Feature "{feature}" -> {rule.label} persona', {rule.persona: rule.weight})
    return None


def time_of_day_rule(time_of_day: TimeOfDay) -> Rule | None:
    return TIME_OF_DAY_RULES[time_of_day]


def location_rule(location: str) -> Rule | None:
    lowered = (location or "").lower()
    for keywords, weights, label in LOCATION_RULES:
        if any(word in lowered for word in keywords):
            return Rule(f'Location "{location}" -> {label}', weights)
    return None


__all__ = [
    "Rule",
    "KeywordRule",
    "DEVICE_RULES",
    "MODE_RULES",
    "FEATURE_RULES",
    "TIME_OF_DAY_RULES",
    "LOCATION_RULES",
    "device_rule",
    "mode_rule",
    "feature_rule",
    "time_of_day_rule",
    "location_rule",
]
