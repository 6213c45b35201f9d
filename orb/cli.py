#!/usr/bin/env python3
"""
Orb CLI - command-line access to the decision engine

Usage:
    orb evaluate --action-id a1 --mode forge --tool deploy-production --risk high
    orb transition --from sol --to mars --persona swl --device mars
    orb classify --device mars --hour 14
    orb constraints --mode earth --persona swl
    orb seed-defaults

Every command prints JSON on stdout. Logs go to stderr (ORB_LOG_LEVEL,
ORB_LOG_FORMAT). With the in-memory backend nothing persists between runs;
pass --with-defaults to evaluate against the default constraint sets.
"""

from __future__ import annotations

import argparse
import json
import sys

from orb import __version__
from orb.constraints import ActionContext, ModeTransitionContext
from orb.engine import OrbEngine, build_engine
from orb.errors import OrbError
from orb.identity import ActionKind, Device, Mode, Persona, RiskLevel, Role
from orb.logging_config import setup_logging
from orb.persona import PersonaContext


def _print(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _engine(args: argparse.Namespace) -> OrbEngine:
    engine = build_engine()
    if getattr(args, "with_defaults", False):
        engine.seed_defaults()
    return engine


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


def cmd_evaluate(args: argparse.Namespace) -> int:
    engine = _engine(args)
    result = engine.evaluate_action(
        ActionContext(
            action_id=args.action_id,
            current_mode=args.mode,
            role=args.role,
            kind=args.kind,
            tool_id=args.tool,
            estimated_risk=args.risk,
            user_id=args.user,
            device_id=args.device,
            persona=args.persona,
        )
    )
    _print(result.to_dict())
    return 0 if result.allowed else 1


def cmd_transition(args: argparse.Namespace) -> int:
    engine = _engine(args)
    result = engine.validate_mode_transition(
        ModeTransitionContext(
            from_mode=args.from_mode,
            to_mode=args.to_mode,
            user_id=args.user,
            persona=args.persona,
            device_id=args.device,
            triggered_by=args.role,
        )
    )
    _print(result.to_dict())
    return 0 if result.success else 1


def cmd_classify(args: argparse.Namespace) -> int:
    engine = build_engine()
    result = engine.classify_persona(
        PersonaContext(
            user_id=args.user,
            device_id=args.device,
            current_mode=args.mode,
            active_feature=args.feature,
            time_of_day=args.hour,
            location_hint=args.location,
        )
    )
    _print(result.to_dict())
    return 0


def cmd_constraints(args: argparse.Namespace) -> int:
    engine = _engine(args)
    constraints = engine.get_active_constraints(args.user, args.mode, args.persona)
    _print([c.to_dict() for c in constraints])
    return 0


def cmd_seed_defaults(args: argparse.Namespace) -> int:
    engine = build_engine()
    count = engine.seed_defaults()
    _print({"seeded_sets": count, "backend": engine.config.storage.backend})
    return 0


# ─────────────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="orb", description="Orb policy and persona decision engine")
    parser.add_argument("--version", "-V", action="version", version=f"orb {__version__}")
    parser.add_argument("--log-level", default=None, help="Override ORB_LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # evaluate
    evaluate = subparsers.add_parser("evaluate", help="Evaluate a proposed action")
    evaluate.add_argument("--action-id", required=True, help="Identifier of the action")
    evaluate.add_argument("--mode", required=True, choices=Mode.values(), help="Current mode")
    evaluate.add_argument("--role", default=Role.MAV.value, choices=Role.values())
    evaluate.add_argument("--kind", default=ActionKind.OTHER.value, choices=ActionKind.values())
    evaluate.add_argument("--tool", default=None, help="Tool id the action invokes")
    evaluate.add_argument("--risk", default=RiskLevel.LOW.value, choices=RiskLevel.values())
    evaluate.add_argument("--user", default=None, help="User id")
    evaluate.add_argument("--device", default=None, choices=Device.values())
    evaluate.add_argument("--persona", default=None, choices=Persona.values())
    evaluate.add_argument("--with-defaults", action="store_true", help="Seed default constraint sets first")
    evaluate.set_defaults(func=cmd_evaluate)

    # transition
    transition = subparsers.add_parser("transition", help="Validate a mode transition")
    transition.add_argument("--from", dest="from_mode", required=True, choices=Mode.values())
    transition.add_argument("--to", dest="to_mode", required=True, choices=Mode.values())
    transition.add_argument("--user", default=None, help="User id")
    transition.add_argument("--persona", default=None, choices=Persona.values())
    transition.add_argument("--device", default=None, choices=Device.values())
    transition.add_argument("--role", default=Role.LUNA.value, choices=Role.values())
    transition.add_argument("--with-defaults", action="store_true", help="Seed default constraint sets first")
    transition.set_defaults(func=cmd_transition)

    # classify
    classify = subparsers.add_parser("classify", help="Classify the active persona from signals")
    classify.add_argument("--user", default=None, help="User id")
    classify.add_argument("--device", default=None, choices=Device.values())
    classify.add_argument("--mode", default=None, choices=Mode.values())
    classify.add_argument("--feature", default=None, help="Active feature name")
    classify.add_argument("--hour", type=int, default=None, help="Hour of day (0-23)")
    classify.add_argument("--location", default=None, help="Location hint")
    classify.set_defaults(func=cmd_classify)

    # constraints
    constraints = subparsers.add_parser("constraints", help="List active constraints for a mode")
    constraints.add_argument("--mode", required=True, choices=Mode.values())
    constraints.add_argument("--persona", default=None, choices=Persona.values())
    constraints.add_argument("--user", default=None, help="User id")
    constraints.add_argument("--with-defaults", action="store_true", help="Seed default constraint sets first")
    constraints.set_defaults(func=cmd_constraints)

    # seed-defaults
    seed = subparsers.add_parser("seed-defaults", help="Install default constraint sets into the store")
    seed.set_defaults(func=cmd_seed_defaults)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, json_output=True if args.json_logs else None)

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except OrbError as e:
        _print({"error": type(e).__name__, "message": str(e)})
        return 2


if __name__ == "__main__":
    sys.exit(main())
