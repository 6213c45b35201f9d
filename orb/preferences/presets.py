"""
Mode presets.

New profiles are seeded from the mode descriptor's default preferences and
default constraints. Constraint strings go through parse_constraint_string,
so "require-confirmation" becomes a real RequireConfirmationConstraint and
descriptive names like "no-prod-writes" become warning-level notes.
"""

from __future__ import annotations

from dataclasses import dataclass

from orb.constraints import Constraint
from orb.constraints.builder import parse_constraint_string
from orb.identity import Mode, get_mode_descriptor
from orb.preferences import Profile


@dataclass(frozen=True)
class ProfilePreset:
    preferences: tuple[str, ...]
    constraints: tuple[str, ...]

    def build_constraints(self, mode: Mode) -> list[Constraint]:
        return [parse_constraint_string(text, id_prefix=f"preset:{mode.value}") for text in self.constraints]


def get_mode_preset(mode: Mode | str) -> ProfilePreset:
    descriptor = get_mode_descriptor(mode)
    return ProfilePreset(
        preferences=descriptor.default_preferences,
        constraints=descriptor.default_constraints,
    )


def create_profile_from_preset(user_id: str, mode: Mode | str) -> Profile:
    mode = Mode(mode)
    preset = get_mode_preset(mode)
    return Profile(
        user_id=user_id,
        mode=mode,
        preferences=list(preset.preferences),
        constraints=preset.build_constraints(mode),
    )


__all__ = ["ProfilePreset", "get_mode_preset", "create_profile_from_preset"]
