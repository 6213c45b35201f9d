"""
Tool: Constraint Evaluator
Purpose: Decide whether an action or mode transition is allowed

Evaluation steps for an action:
1. Validate the context (fails fast, before any store access)
2. Collect applicable constraint sets for the current mode/persona
3. Flatten to active constraints: set priority desc, then declaration order
4. Run each constraint's predicate from ACTION_PREDICATES
5. Deny if any hard constraint triggered; with deny_on_any_trigger (the
   default) deny if anything triggered at all

Mode transitions are checked against the *current* mode's constraint sets
plus two built-in compatibility checks (persona and device vs target mode).

Usage:
    from orb.constraints.evaluator import ConstraintEvaluator
    from orb.constraints.store import InMemoryConstraintStore

    evaluator = ConstraintEvaluator(InMemoryConstraintStore())
    result = evaluator.evaluate_action(ctx)
    if not result.allowed:
        print(result.primary_reason)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, NamedTuple

from orb.config_models import EvaluatorConfig
from orb.constraints import (
    ActionContext,
    BlockModeConstraint,
    BlockToolConstraint,
    Constraint,
    ConstraintEvaluationResult,
    ConstraintSet,
    ConstraintSeverity,
    ConstraintType,
    Decision,
    DeviceRestrictionConstraint,
    MaxRiskConstraint,
    ModeTransitionContext,
    ModeTransitionResult,
    OtherConstraint,
    RequireConfirmationConstraint,
    TimeWindowConstraint,
    TriggeredConstraint,
    set_sort_key,
)
from orb.constraints.store import ConstraintStore
from orb.identity import Mode, Persona, RiskLevel, display_name, get_mode_descriptor

if TYPE_CHECKING:
    from orb.preferences import Profile

logger = logging.getLogger(__name__)

NO_CONSTRAINTS_TRIGGERED = "No constraints triggered"
PERSONA_MISMATCH_ID = "system:persona-mode-mismatch"
DEVICE_MISMATCH_ID = "system:device-mode-mismatch"


class Trigger(NamedTuple):
    reason: str
    recommendation: str | None = None


Predicate = Callable[[Constraint, ActionContext, datetime], Trigger | None]


# =============================================================================
# Action predicates, one per constraint type
# =============================================================================


def _block_tool(c: BlockToolConstraint, ctx: ActionContext, now: datetime) -> Trigger | None:
    if ctx.tool_id is not None and ctx.tool_id == c.tool_id:
        return Trigger(
            f"Tool {ctx.tool_id} is blocked by constraint {c.id}",
            c.description or "Try using an alternative tool",
        )
    return None


def _max_risk(c: MaxRiskConstraint, ctx: ActionContext, now: datetime) -> Trigger | None:
    if ctx.estimated_risk.exceeds(c.max_risk):
        return Trigger(
            f"Action risk ({ctx.estimated_risk.value}) exceeds maximum ({c.max_risk.value})",
            "Consider a lower-risk approach or request approval",
        )
    return None


def _require_confirmation(c: RequireConfirmationConstraint, ctx: ActionContext, now: datetime) -> Trigger | None:
    if c.max_risk is not None and not ctx.estimated_risk.exceeds(c.max_risk):
        return None
    return Trigger(c.description or "Action requires user confirmation", "Review and confirm before proceeding")


def _block_mode(c: BlockModeConstraint, ctx: ActionContext, now: datetime) -> Trigger | None:
    # Only meaningful for mode transitions
    return None


def _device_restriction(c: DeviceRestrictionConstraint, ctx: ActionContext, now: datetime) -> Trigger | None:
    if ctx.device_id is not None and ctx.device_id not in c.allowed_devices:
        allowed = ", ".join(d.value for d in c.allowed_devices) or "no devices"
        return Trigger(
            f"Action not allowed on device {ctx.device_id.value}",
            f"This action is only allowed on: {allowed}",
        )
    return None


def _time_window(c: TimeWindowConstraint, ctx: ActionContext, now: datetime) -> Trigger | None:
    if not c.time_window.contains(now):
        return Trigger(f"Action only allowed during {c.time_window.start} - {c.time_window.end}")
    return None


def _other(c: OtherConstraint, ctx: ActionContext, now: datetime) -> Trigger | None:
    if c.required_persona is None and c.blocked_personas is None:
        return Trigger(c.description or f"Constraint {c.id} triggered")

    if c.required_persona is not None and ctx.persona != c.required_persona:
        current = ctx.persona.value if ctx.persona else "unknown"
        return Trigger(
            f"Action requires persona {c.required_persona.value}, but current persona is {current}",
            f"Switch to {c.required_persona.value} persona to perform this action",
        )
    if c.blocked_personas and ctx.persona in c.blocked_personas:
        return Trigger(c.description or f"Action not allowed for persona {ctx.persona.value}")
    return None


ACTION_PREDICATES: dict[ConstraintType, Predicate] = {
    ConstraintType.BLOCK_TOOL: _block_tool,
    ConstraintType.MAX_RISK: _max_risk,
    ConstraintType.REQUIRE_CONFIRMATION: _require_confirmation,
    ConstraintType.BLOCK_MODE: _block_mode,
    ConstraintType.DEVICE_RESTRICTION: _device_restriction,
    ConstraintType.TIME_WINDOW: _time_window,
    ConstraintType.OTHER: _other,
}

if set(ACTION_PREDICATES) != set(ConstraintType):
    raise RuntimeError("every constraint type needs an action predicate")

# Triggered constraints of these types count toward the effective risk
RISK_FACTORS: dict[ConstraintType, str] = {
    ConstraintType.BLOCK_TOOL: "blocked_tool",
    ConstraintType.MAX_RISK: "risk_exceeded",
    ConstraintType.DEVICE_RESTRICTION: "device_mismatch",
    ConstraintType.TIME_WINDOW: "outside_time_window",
}


def flatten_active(sets: list[ConstraintSet]) -> list[Constraint]:
    """Active constraints from already-ordered sets, keeping declaration order within each set."""
    return [c for s in sets for c in s.constraints if c.active]


def _applicable(sets: list[ConstraintSet], mode: Mode, persona: Persona | None) -> list[ConstraintSet]:
    return sorted((s for s in sets if s.applies(mode, persona)), key=set_sort_key)


def escalate_risk(base: RiskLevel, factor_count: int) -> RiskLevel:
    """Every two risk factors raise the effective risk one level, capped at the highest."""
    levels = list(RiskLevel)
    return levels[min(RiskLevel(base).rank + factor_count // 2, len(levels) - 1)]


# =============================================================================
# Evaluator
# =============================================================================


class ConstraintEvaluator:
    """
    Evaluates actions and mode transitions against a ConstraintStore.

    Store errors are not caught: an unreachable store fails the evaluation
    instead of silently allowing the action.
    """

    def __init__(
        self,
        store: ConstraintStore,
        config: EvaluatorConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config or EvaluatorConfig()
        self.clock = clock or datetime.now

    # ─────────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────────

    def evaluate_action(
        self,
        ctx: ActionContext,
        constraint_sets: list[ConstraintSet] | None = None,
        extra_sets: list[ConstraintSet] | None = None,
    ) -> ConstraintEvaluationResult:
        """
        Evaluate one proposed action.

        Args:
            ctx: Action context; validated before the store is touched
            constraint_sets: Use these sets instead of querying the store.
                Applicability filtering and ordering still apply.
            extra_sets: Sets evaluated alongside the store's (or the given)
                sets, e.g. a user's profile constraints

        Returns:
            ConstraintEvaluationResult with decision and ordered reasons

        Raises:
            ConstraintConfigurationError: The context is malformed
        """
        ctx.validate()

        if constraint_sets is None:
            sets = self.store.get_constraint_sets(ctx.user_id, ctx.current_mode, ctx.persona)
        else:
            sets = _applicable(constraint_sets, ctx.current_mode, ctx.persona)
        if extra_sets:
            sets = _applicable([*sets, *extra_sets], ctx.current_mode, ctx.persona)

        now = self.clock()
        triggered: list[TriggeredConstraint] = []
        risk_factors: list[str] = []
        for constraint in flatten_active(sets):
            if not constraint.applies_to_role(ctx.role):
                continue
            hit = ACTION_PREDICATES[constraint.type](constraint, ctx, now)
            if hit is None:
                continue
            triggered.append(
                TriggeredConstraint(
                    constraint_id=constraint.id,
                    severity=constraint.severity,
                    reason=hit.reason,
                    type=constraint.type,
                    recommendation=hit.recommendation,
                )
            )
            if constraint.type in RISK_FACTORS:
                risk_factors.append(RISK_FACTORS[constraint.type])

        return self._decide(ctx, triggered, risk_factors)

    def evaluate_action_with_profile(self, ctx: ActionContext, profile: Profile) -> ConstraintEvaluationResult:
        """Evaluate against the store's sets plus the constraints kept on one profile."""
        return self.evaluate_action(ctx, extra_sets=[profile.to_constraint_set()])

    def _decide(
        self,
        ctx: ActionContext,
        triggered: list[TriggeredConstraint],
        risk_factors: list[str],
    ) -> ConstraintEvaluationResult:
        if not triggered:
            return ConstraintEvaluationResult(
                allowed=True,
                decision=Decision.ALLOW,
                reasons=[NO_CONSTRAINTS_TRIGGERED],
                effective_risk=ctx.estimated_risk,
            )

        any_hard = any(t.severity == ConstraintSeverity.HARD for t in triggered)
        deny = any_hard or self.config.deny_on_any_trigger
        reasons = [t.reason for t in triggered]

        result = ConstraintEvaluationResult(
            allowed=not deny,
            decision=Decision.DENY if deny else Decision.ALLOW,
            triggered_constraints=triggered,
            reasons=reasons,
            requires_confirmation=not any_hard,
            risk_factors=risk_factors,
            effective_risk=escalate_risk(ctx.estimated_risk, len(risk_factors)),
        )

        if deny:
            logger.info(
                f"Action {ctx.action_id} denied in mode {ctx.current_mode.value}: "
                f"{reasons[0]} (constraints: {', '.join(result.triggered_ids)})"
            )
        else:
            logger.warning(f"Action {ctx.action_id} allowed pending confirmation: {reasons[0]}")
        return result

    def get_active_constraints(
        self,
        user_id: str | None,
        mode: Mode,
        persona: Persona | None = None,
        extra_sets: list[ConstraintSet] | None = None,
    ) -> list[Constraint]:
        mode = Mode(mode)
        persona = Persona(persona) if persona else None
        sets = self.store.get_constraint_sets(user_id, mode, persona)
        if extra_sets:
            sets = _applicable([*sets, *extra_sets], mode, persona)
        return flatten_active(sets)

    # ─────────────────────────────────────────────────────────────────────
    # Mode transitions
    # ─────────────────────────────────────────────────────────────────────

    def validate_mode_transition(self, ctx: ModeTransitionContext) -> ModeTransitionResult:
        """
        Check a transition against the current mode's constraints and the
        built-in persona/device compatibility tables.

        A block-mode constraint blocks when it lists the target mode, or
        when it lists the explicit persona. Applicable require-confirmation
        constraints never block; they are returned in requires_confirmation.
        """
        ctx.validate()

        sets = self.store.get_constraint_sets(ctx.user_id, ctx.from_mode, ctx.persona)
        active = flatten_active(sets)

        blocked_by: list[TriggeredConstraint] = []
        confirmations: list[TriggeredConstraint] = []
        for constraint in active:
            if isinstance(constraint, BlockModeConstraint):
                reason = self._block_mode_reason(constraint, ctx)
                if reason:
                    blocked_by.append(
                        TriggeredConstraint(constraint.id, constraint.severity, reason, constraint.type)
                    )
            elif isinstance(constraint, RequireConfirmationConstraint):
                if constraint.applies_to_role(ctx.triggered_by):
                    confirmations.append(
                        TriggeredConstraint(
                            constraint.id,
                            constraint.severity,
                            constraint.description or f"Transition to {ctx.to_mode.value} requires confirmation",
                            constraint.type,
                        )
                    )

        blocked_by.extend(self._system_checks(ctx))

        success = not blocked_by
        applied: list[str] = []
        if success:
            target_sets = self.store.get_constraint_sets(ctx.user_id, ctx.to_mode, ctx.persona)
            applied = [c.id for c in flatten_active(target_sets)]
            message = f"Transition from {ctx.from_mode.value} to {ctx.to_mode.value} allowed"
        else:
            message = f"Transition to {ctx.to_mode.value} blocked: {blocked_by[0].reason}"
            logger.info(
                f"Mode transition {ctx.from_mode.value} -> {ctx.to_mode.value} blocked by "
                f"{', '.join(b.constraint_id for b in blocked_by)}"
            )

        return ModeTransitionResult(
            success=success,
            from_mode=ctx.from_mode,
            to_mode=ctx.to_mode,
            blocked_by=blocked_by,
            requires_confirmation=confirmations,
            applied_constraints=applied,
            message=message,
        )

    @staticmethod
    def _block_mode_reason(c: BlockModeConstraint, ctx: ModeTransitionContext) -> str | None:
        if ctx.to_mode in c.blocked_modes:
            return c.description or f"Transition to {ctx.to_mode.value} is blocked"
        if ctx.persona is not None and c.blocked_personas and ctx.persona in c.blocked_personas:
            return c.description or f"Transition is blocked for persona {ctx.persona.value}"
        return None

    @staticmethod
    def _system_checks(ctx: ModeTransitionContext) -> list[TriggeredConstraint]:
        descriptor = get_mode_descriptor(ctx.to_mode)
        checks = []

        if ctx.persona is not None and not descriptor.allows_persona(ctx.persona):
            allowed = ", ".join(sorted(p.value for p in descriptor.compatible_personas))
            checks.append(
                TriggeredConstraint(
                    PERSONA_MISMATCH_ID,
                    ConstraintSeverity.HARD,
                    f"{display_name(ctx.to_mode)} mode requires one of personas: {allowed}",
                )
            )

        if ctx.device_id is not None and not descriptor.allows_device(ctx.device_id):
            allowed = ", ".join(sorted(d.value for d in descriptor.home_devices or ()))
            checks.append(
                TriggeredConstraint(
                    DEVICE_MISMATCH_ID,
                    ConstraintSeverity.HARD,
                    f"{display_name(ctx.to_mode)} mode requires device(s): {allowed}",
                )
            )

        return checks


__all__ = [
    "ConstraintEvaluator",
    "ACTION_PREDICATES",
    "RISK_FACTORS",
    "escalate_risk",
    "NO_CONSTRAINTS_TRIGGERED",
    "PERSONA_MISMATCH_ID",
    "DEVICE_MISMATCH_ID",
    "flatten_active",
]
