"""
Tool: Preference Learning
Purpose: Turn detected patterns into candidate LearningActions and apply them to profiles

Each pattern type has one generator and its own minimum confidence. Below the
cutoff the generator emits nothing.

    frequent_action     0.75  -> suggest_automation
    mode_preference     0.85  -> update_preference (default_mode)
    risk_threshold      0.90  -> adjust_risk_threshold (risk_tolerance medium -> high)
    time_based_routine  0.80  -> suggest_automation (scheduled)
    error_pattern       0.70  -> adjust_constraint (soft constraint)
    efficiency_gain     0.75  -> recommend_mode, or create_shortcut without a mode

Usage:
    learning = PreferenceLearning()
    actions = learning.generate_learning_actions(pattern)
    profile = learning.apply_learning_action(actions[0], profile)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

from orb.config_models import PatternCutoffsConfig
from orb.constraints import ConstraintSeverity, ConstraintSource, OtherConstraint
from orb.errors import LearningActionStateError
from orb.learning import LearningAction, LearningActionType, Pattern, PatternType
from orb.preferences import Profile, set_preference

logger = logging.getLogger(__name__)

DEFAULT_MODE_KEY = "default_mode"
RISK_TOLERANCE_KEY = "risk_tolerance"


def _pick(data: dict, single: str, plural: str) -> object:
    """data[single], else the first entry of data[plural]."""
    if data.get(single) is not None:
        return data[single]
    values = data.get(plural)
    if isinstance(values, (list, tuple)) and values:
        return values[0]
    return None


def _percent(value: object) -> str:
    try:
        return f"{float(value) * 100:.0f}%"
    except (TypeError, ValueError):
        return "an unknown share"


class PreferenceLearning:
    def __init__(self, cutoffs: PatternCutoffsConfig | None = None):
        self.cutoffs = cutoffs or PatternCutoffsConfig()
        self._generators: dict[PatternType, Callable[[Pattern], list[LearningAction]]] = {
            PatternType.FREQUENT_ACTION: self._from_frequent_action,
            PatternType.MODE_PREFERENCE: self._from_mode_preference,
            PatternType.RISK_THRESHOLD: self._from_risk_threshold,
            PatternType.TIME_BASED_ROUTINE: self._from_time_based_routine,
            PatternType.ERROR_PATTERN: self._from_error_pattern,
            PatternType.EFFICIENCY_GAIN: self._from_efficiency_gain,
        }

    def cutoff_for(self, pattern_type: PatternType) -> float:
        return getattr(self.cutoffs, PatternType(pattern_type).value)

    def generate_learning_actions(self, pattern: Pattern) -> list[LearningAction]:
        if pattern.confidence < self.cutoff_for(pattern.type):
            logger.debug(
                f"Pattern {pattern.id} ({pattern.type.value}) below cutoff: {pattern.confidence:.2f}"
            )
            return []
        return self._generators[pattern.type](pattern)

    def _action(self, pattern: Pattern, **kwargs: object) -> LearningAction:
        return LearningAction(
            id=f"action-{pattern.id}",
            confidence=pattern.confidence,
            pattern_id=pattern.id,
            user_id=pattern.user_id,
            **kwargs,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Generators
    # ─────────────────────────────────────────────────────────────────────

    def _from_frequent_action(self, pattern: Pattern) -> list[LearningAction]:
        return [
            self._action(
                pattern,
                type=LearningActionType.SUGGEST_AUTOMATION,
                target="automation",
                suggested_value={"action": _pick(pattern.data, "action", "actions"), "trigger": "shortcut"},
                reason=f"Action performed {pattern.data.get('frequency', pattern.event_count)} times",
            )
        ]

    def _from_mode_preference(self, pattern: Pattern) -> list[LearningAction]:
        mode = _pick(pattern.data, "mode", "modes")
        if mode is None:
            return []
        return [
            self._action(
                pattern,
                type=LearningActionType.UPDATE_PREFERENCE,
                target=DEFAULT_MODE_KEY,
                current_value="default",
                suggested_value=mode,
                reason=f"Mode used {_percent(pattern.data.get('usage_rate', 0))} of time",
            )
        ]

    def _from_risk_threshold(self, pattern: Pattern) -> list[LearningAction]:
        return [
            self._action(
                pattern,
                type=LearningActionType.ADJUST_RISK_THRESHOLD,
                target=RISK_TOLERANCE_KEY,
                current_value="medium",
                suggested_value="high",
                reason=f"Always approves high-risk actions ({pattern.event_count} times)",
            )
        ]

    def _from_time_based_routine(self, pattern: Pattern) -> list[LearningAction]:
        window = pattern.data.get("time_window")
        return [
            self._action(
                pattern,
                type=LearningActionType.SUGGEST_AUTOMATION,
                target="scheduled_action",
                suggested_value={"action": _pick(pattern.data, "action", "actions"), "schedule": window},
                reason=f"Action performed regularly during {json.dumps(window)}",
            )
        ]

    def _from_error_pattern(self, pattern: Pattern) -> list[LearningAction]:
        action = _pick(pattern.data, "action", "actions")
        return [
            self._action(
                pattern,
                type=LearningActionType.ADJUST_CONSTRAINT,
                target="error_prevention",
                suggested_value={
                    "block_action": action,
                    "reason": f"Action fails frequently ({_percent(pattern.data.get('error_rate'))} error rate)",
                },
                reason=f"Action {action or 'unknown'} fails {pattern.event_count} times",
            )
        ]

    def _from_efficiency_gain(self, pattern: Pattern) -> list[LearningAction]:
        mode = _pick(pattern.data, "mode", "modes")
        avg_duration = pattern.data.get("avg_duration")
        if mode is None:
            return [
                self._action(
                    pattern,
                    type=LearningActionType.CREATE_SHORTCUT,
                    target="workflow_shortcut",
                    suggested_value={"actions": pattern.data.get("actions", [])},
                    reason="Repeated workflow could be a single shortcut",
                )
            ]
        try:
            faster = f"{(1 - float(avg_duration)) * 100:.0f}% faster"
        except (TypeError, ValueError):
            faster = "faster"
        return [
            self._action(
                pattern,
                type=LearningActionType.RECOMMEND_MODE,
                target="workflow_optimization",
                current_value=avg_duration,
                suggested_value=mode,
                reason=f"Workflow in {mode} mode is {faster}",
            )
        ]

    # ─────────────────────────────────────────────────────────────────────
    # Application
    # ─────────────────────────────────────────────────────────────────────

    def apply_learning_action(self, action: LearningAction, profile: Profile) -> Profile:
        """Apply an action to a profile in place and mark it applied."""
        self.apply_to_profile(action, profile)
        self.mark_applied(action, profile)
        return profile

    def apply_to_profile(self, action: LearningAction, profile: Profile) -> Profile:
        """
        Apply an action to a profile in place, leaving the action pending.

        Callers that persist the profile mark the action applied once the
        save succeeds.

        update_preference / adjust_risk_threshold rewrite one preference key,
        adjust_constraint appends a soft constraint, and the advisory types
        leave the profile untouched.

        Raises:
            LearningActionStateError: The action is no longer pending
        """
        if not action.is_pending:
            raise LearningActionStateError(f"Learning action {action.id} is already {action.status.value}")

        if action.type == LearningActionType.UPDATE_PREFERENCE:
            profile.preferences = set_preference(profile.preferences, action.target, action.suggested_value)
        elif action.type == LearningActionType.ADJUST_RISK_THRESHOLD:
            profile.preferences = set_preference(profile.preferences, RISK_TOLERANCE_KEY, action.suggested_value)
        elif action.type == LearningActionType.ADJUST_CONSTRAINT:
            profile.constraints.append(
                OtherConstraint(
                    id=f"learned-{action.id}",
                    severity=ConstraintSeverity.SOFT,
                    description=action.reason,
                    created_by=ConstraintSource.LEARNING,
                )
            )
        else:
            logger.info(f"Learning action {action.id} ({action.type.value}) requires external handling")

        profile.touch()
        return profile

    def mark_applied(self, action: LearningAction, profile: Profile) -> None:
        action.mark_applied()
        logger.info(
            f"Applied learning action {action.id} ({action.type.value}) to "
            f"{profile.user_id}/{profile.mode.value}: {action.target} -> {action.suggested_value}"
        )


__all__ = ["PreferenceLearning", "DEFAULT_MODE_KEY", "RISK_TOLERANCE_KEY"]
