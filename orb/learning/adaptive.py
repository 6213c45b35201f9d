"""
Tool: Adaptive Preferences
Purpose: Confidence-gated application of LearningActions to stored profiles

Usage:
    adaptive = AdaptivePreferences(profile_store)
    adaptive.auto_apply_if_high_confidence(action, "alice", Mode.SOL)
    adaptive.apply_with_confirmation(action, "alice", Mode.SOL, confirmed=True)
    result = adaptive.batch_apply(actions, "alice", Mode.SOL)

Profiles are looked up with get_profile, not get_or_create_profile: learning
never seeds a profile the user has not opened yet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from orb.identity import Mode
from orb.learning import LearningAction, Thresholds
from orb.learning.preference_learning import PreferenceLearning
from orb.preferences.store import ProfileStore

logger = logging.getLogger(__name__)


@dataclass
class BatchApplyResult:
    applied: list[LearningAction] = field(default_factory=list)
    rejected: list[LearningAction] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "applied": [a.id for a in self.applied],
            "rejected": [a.id for a in self.rejected],
        }


class AdaptivePreferences:
    def __init__(
        self,
        profile_store: ProfileStore,
        learning: PreferenceLearning | None = None,
        thresholds: Thresholds | None = None,
    ):
        self.profile_store = profile_store
        self.learning = learning or PreferenceLearning()
        self.thresholds = thresholds or Thresholds()

    def _apply(self, action: LearningAction, user_id: str, mode: Mode) -> bool:
        mode = Mode(mode)
        profile = self.profile_store.get_profile(user_id, mode)
        if profile is None:
            logger.warning(f"No {mode.value} profile for {user_id}, skipping learning action {action.id}")
            return False
        self.learning.apply_to_profile(action, profile)
        # A failed save propagates and leaves the action pending
        self.profile_store.save_profile(profile)
        self.learning.mark_applied(action, profile)
        return True

    def auto_apply_if_high_confidence(self, action: LearningAction, user_id: str, mode: Mode) -> bool:
        """Apply only when confidence reaches the auto-apply threshold. No side effects otherwise."""
        if action.confidence < self.thresholds.auto_apply:
            return False
        return self._apply(action, user_id, mode)

    def apply_with_confirmation(
        self, action: LearningAction, user_id: str, mode: Mode, confirmed: bool
    ) -> bool:
        """Apply a confirmed action regardless of confidence; reject a declined one."""
        if not confirmed:
            action.mark_rejected()
            logger.info(f"Learning action {action.id} rejected by {user_id}")
            return False
        return self._apply(action, user_id, mode)

    def batch_apply(self, actions: list[LearningAction], user_id: str, mode: Mode) -> BatchApplyResult:
        """
        Apply the high-confidence band and reject the low one.

        Actions between SUGGEST and AUTO_APPLY stay pending for the user to
        confirm. Actions that are no longer pending are skipped.
        """
        result = BatchApplyResult()
        for action in actions:
            if not action.is_pending:
                continue
            if action.confidence >= self.thresholds.auto_apply:
                if self._apply(action, user_id, mode):
                    result.applied.append(action)
            elif action.confidence < self.thresholds.suggest:
                action.mark_rejected()
                result.rejected.append(action)

        logger.info(
            f"Batch apply for {user_id}/{Mode(mode).value}: "
            f"{len(result.applied)} applied, {len(result.rejected)} rejected, "
            f"{len(actions) - len(result.applied) - len(result.rejected)} untouched"
        )
        return result

    def get_suggested_actions(self, actions: list[LearningAction]) -> list[LearningAction]:
        return [
            a
            for a in actions
            if a.is_pending and self.thresholds.suggest <= a.confidence < self.thresholds.auto_apply
        ]

    def get_auto_applicable_actions(self, actions: list[LearningAction]) -> list[LearningAction]:
        return [a for a in actions if a.is_pending and a.confidence >= self.thresholds.auto_apply]


__all__ = ["AdaptivePreferences", "BatchApplyResult"]
