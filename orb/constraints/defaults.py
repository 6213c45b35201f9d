"""
Default constraint sets that ship with Orb.

Nothing here is loaded automatically: a fresh store is empty and callers opt
in with initialize_with_defaults(). The system set applies in every mode at
priority 1000; mode sets sit at priority 100 so a user's own sets can be
ordered around them.
"""

from __future__ import annotations

import logging

from orb.constraints import ConstraintSet, ConstraintSeverity, ConstraintSource
from orb.constraints import builder
from orb.constraints.store import ConstraintStore
from orb.identity import Mode, Persona, Role

logger = logging.getLogger(__name__)

SYSTEM_SET_ID = "default:system"
SYSTEM_PRIORITY = 1000
MODE_PRIORITY = 100

# Tools treated as destructive by the system set
DESTRUCTIVE_TOOLS = ("system-shutdown", "git-force-push", "drop-database")

_SYSTEM = {"created_by": ConstraintSource.SYSTEM}


def get_system_default_set() -> ConstraintSet:
    constraints = [
        builder.block_tool(
            tool,
            id=f"default:no-destructive:{tool}",
            description=f"Block destructive tool {tool} unless explicitly allowed",
            **_SYSTEM,
        )
        for tool in DESTRUCTIVE_TOOLS
    ]
    constraints.append(
        builder.require_confirmation(
            "medium",
            id="default:confirm-high-risk",
            description="Require confirmation for high risk actions",
            **_SYSTEM,
        )
    )
    return builder.create_constraint_set(
        SYSTEM_SET_ID,
        "System Defaults",
        constraints,
        priority=SYSTEM_PRIORITY,
        description="Baseline guard rails for every mode",
    )


def get_mode_default_sets() -> list[ConstraintSet]:
    return [
        builder.create_constraint_set(
            "default:earth-mode",
            "Earth Mode Defaults",
            [
                builder.other(
                    "Minimize work-related actions in Earth mode",
                    blocked_personas=[Persona.SWL, Persona.REAL_ESTATE],
                    id="default:no-work-in-earth",
                    severity=ConstraintSeverity.SOFT,
                    **_SYSTEM,
                ),
            ],
            modes=[Mode.EARTH],
            priority=MODE_PRIORITY,
            description="Constraints for personal/downtime mode",
        ),
        builder.create_constraint_set(
            "default:mars-mode",
            "Mars Mode Defaults",
            [
                builder.other(
                    "Minimize personal actions in Mars mode",
                    blocked_personas=[Persona.PERSONAL, Persona.OPEN_PEOPLE],
                    id="default:no-personal-in-mars",
                    severity=ConstraintSeverity.SOFT,
                    **_SYSTEM,
                ),
            ],
            modes=[Mode.MARS, Mode.RESTAURANT],
            priority=MODE_PRIORITY,
            description="Constraints for operations/restaurant mode",
        ),
        builder.create_constraint_set(
            "default:forge-mode",
            "Forge Mode Defaults",
            [
                builder.require_confirmation(
                    id="default:forge-require-review",
                    severity=ConstraintSeverity.HARD,
                    description="Require review/approval for code changes in Forge mode",
                    applies_to_roles=[Role.MAV],
                    **_SYSTEM,
                ),
                builder.block_tool(
                    "deploy-production",
                    id="default:forge-no-prod-writes",
                    description="Block writes to production systems in Forge mode",
                    **_SYSTEM,
                ),
            ],
            modes=[Mode.FORGE],
            priority=MODE_PRIORITY,
            description="Constraints for multi-agent build sessions",
        ),
        builder.create_constraint_set(
            "default:sol-mode",
            "Sol Mode Defaults",
            [
                builder.max_risk(
                    "medium",
                    id="default:sol-deep-focus",
                    severity=ConstraintSeverity.SOFT,
                    description="Keep deep-focus sessions free of high risk operations",
                    **_SYSTEM,
                ),
            ],
            modes=[Mode.SOL],
            priority=MODE_PRIORITY,
            description="Deep focus, minimal interruptions",
        ),
    ]


def get_default_constraint_sets() -> list[ConstraintSet]:
    return [get_system_default_set(), *get_mode_default_sets()]


def initialize_with_defaults(store: ConstraintStore) -> int:
    """
    Seed a store with the default sets. Existing sets with the same ids are replaced.

    Returns:
        Number of sets written
    """
    sets = get_default_constraint_sets()
    for constraint_set in sets:
        store.save_constraint_set(constraint_set)
    logger.info(f"Seeded {len(sets)} default constraint sets")
    return len(sets)


__all__ = [
    "SYSTEM_SET_ID",
    "DESTRUCTIVE_TOOLS",
    "get_system_default_set",
    "get_mode_default_sets",
    "get_default_constraint_sets",
    "initialize_with_defaults",
]
