"""
Constraint builders.

Small keyword-only constructors so call sites read like the rule they add:

    from orb.constraints import builder

    rules = builder.create_constraint_set(
        "user:alice:sol",
        "Alice in Sol",
        [
            builder.block_tool("delete-file", id="block-delete"),
            builder.max_risk("medium", severity="soft"),
        ],
        modes=["sol"],
        user_id="alice",
    )

parse_constraint_string() turns the short preset strings used in mode
descriptors ("require-confirmation", "max-risk:medium", "no-prod-writes")
into constraints.
"""

from __future__ import annotations

from typing import Any

from orb.constraints import (
    AppliesTo,
    BlockModeConstraint,
    BlockToolConstraint,
    Constraint,
    ConstraintSet,
    ConstraintSeverity,
    ConstraintSource,
    ConstraintType,
    DeviceRestrictionConstraint,
    MaxRiskConstraint,
    OtherConstraint,
    RequireConfirmationConstraint,
    TimeWindow,
    TimeWindowConstraint,
    generate_id,
)
from orb.errors import ConstraintConfigurationError
from orb.identity import Device, Mode, Persona, RiskLevel


def _id(kwargs: dict[str, Any]) -> dict[str, Any]:
    if not kwargs.get("id"):
        kwargs["id"] = generate_id()
    return kwargs


def block_tool(tool_id: str, **kwargs: Any) -> BlockToolConstraint:
    kwargs.setdefault("description", f"Block tool {tool_id}")
    return BlockToolConstraint(tool_id=tool_id, **_id(kwargs))


def max_risk(level: RiskLevel | str, **kwargs: Any) -> MaxRiskConstraint:
    kwargs.setdefault("description", f"Maximum risk {level}")
    return MaxRiskConstraint(max_risk=level, **_id(kwargs))


def require_confirmation(above: RiskLevel | str | None = None, **kwargs: Any) -> RequireConfirmationConstraint:
    return RequireConfirmationConstraint(max_risk=above, **_id(kwargs))


def block_mode(
    modes: list[Mode | str],
    personas: list[Persona | str] | None = None,
    **kwargs: Any,
) -> BlockModeConstraint:
    return BlockModeConstraint(blocked_modes=modes, blocked_personas=personas, **_id(kwargs))


def device_restriction(devices: list[Device | str], **kwargs: Any) -> DeviceRestrictionConstraint:
    return DeviceRestrictionConstraint(allowed_devices=devices, **_id(kwargs))


def time_window(start: str, end: str, **kwargs: Any) -> TimeWindowConstraint:
    return TimeWindowConstraint(time_window=TimeWindow(start, end), **_id(kwargs))


def other(
    description: str,
    required_persona: Persona | str | None = None,
    blocked_personas: list[Persona | str] | None = None,
    **kwargs: Any,
) -> OtherConstraint:
    return OtherConstraint(
        description=description,
        required_persona=required_persona,
        blocked_personas=blocked_personas,
        **_id(kwargs),
    )


def create_constraint_set(
    set_id: str,
    name: str,
    constraints: list[Constraint],
    modes: list[Mode | str] | None = None,
    personas: list[Persona | str] | None = None,
    priority: int = 0,
    user_id: str | None = None,
    description: str = "",
) -> ConstraintSet:
    return ConstraintSet(
        id=set_id,
        name=name,
        description=description,
        constraints=list(constraints),
        applies_to=AppliesTo(modes=modes, personas=personas),
        priority=priority,
        user_id=user_id,
    )


def parse_constraint_string(
    text: str,
    id_prefix: str = "preset",
    created_by: ConstraintSource = ConstraintSource.SYSTEM,
) -> Constraint:
    """
    Parse a short "<type>[:<argument>]" preset string.

    Known type tags build the matching variant; anything else becomes a
    warning-severity OtherConstraint named after the text.

    Examples:
        "require-confirmation"  -> RequireConfirmationConstraint
        "max-risk:medium"       -> MaxRiskConstraint(max_risk=medium)
        "block-tool:rm"         -> BlockToolConstraint(tool_id="rm")
        "block-mode:mars,earth" -> BlockModeConstraint
        "no-prod-writes"        -> OtherConstraint(description="no-prod-writes")
    """
    text = (text or "").strip()
    if not text:
        raise ConstraintConfigurationError("Empty constraint string")

    tag, _, argument = text.partition(":")
    argument = argument.strip()
    items = [a.strip() for a in argument.split(",") if a.strip()]
    common: dict[str, Any] = {
        "id": f"{id_prefix}:{text.replace(':', '-').replace(',', '-')}",
        "created_by": created_by,
    }

    if tag not in ConstraintType.values():
        return OtherConstraint(description=text, severity=ConstraintSeverity.WARNING, **common)

    needs_argument = {
        ConstraintType.BLOCK_TOOL,
        ConstraintType.MAX_RISK,
        ConstraintType.BLOCK_MODE,
        ConstraintType.DEVICE_RESTRICTION,
        ConstraintType.TIME_WINDOW,
    }
    constraint_type = ConstraintType(tag)
    if constraint_type in needs_argument and not argument:
        raise ConstraintConfigurationError(f"Constraint string {text!r} needs an argument")

    if constraint_type == ConstraintType.BLOCK_TOOL:
        return block_tool(argument, **common)
    elif constraint_type == ConstraintType.MAX_RISK:
        return max_risk(argument, **common)
    elif constraint_type == ConstraintType.REQUIRE_CONFIRMATION:
        return require_confirmation(argument or None, description="Action requires user confirmation", **common)
    elif constraint_type == ConstraintType.BLOCK_MODE:
        return block_mode(items, **common)
    elif constraint_type == ConstraintType.DEVICE_RESTRICTION:
        return device_restriction(items, **common)
    elif constraint_type == ConstraintType.TIME_WINDOW:
        start, _, end = argument.partition("-")
        return time_window(start, end, **common)
    return other(argument or text, **common)


__all__ = [
    "block_tool",
    "max_risk",
    "require_confirmation",
    "block_mode",
    "device_restriction",
    "time_window",
    "other",
    "create_constraint_set",
    "parse_constraint_string",
]
