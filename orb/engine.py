"""
Orb Engine - one object wiring the decision components together

Builds the constraint store, profile store, evaluator, mode service, persona
classifier and learning components from an EngineConfig, and exposes the
public entry points as methods.

Usage:
    from orb.engine import build_engine

    engine = build_engine()
    result = engine.evaluate_action(ActionContext(action_id="a1", current_mode=Mode.SOL))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from orb.config_models import EngineConfig, load_engine_config
from orb.constraints import (
    ActionContext,
    Constraint,
    ConstraintEvaluationResult,
    ConstraintSet,
    ModeTransitionContext,
    ModeTransitionResult,
)
from orb.constraints.defaults import initialize_with_defaults
from orb.constraints.evaluator import ConstraintEvaluator
from orb.constraints.store import ConstraintStore, create_constraint_store
from orb.identity import Device, Mode, Persona, SessionContext
from orb.learning import LearningAction, Pattern, Thresholds
from orb.learning.adaptive import AdaptivePreferences, BatchApplyResult
from orb.learning.preference_learning import PreferenceLearning
from orb.logging_config import decision_context
from orb.modes import ConfirmCallback, ModeService
from orb.persona import OverrideScope, PersonaClassificationResult, PersonaContext, PersonaOverride
from orb.persona.classifier import PersonaClassifier
from orb.preferences import Profile
from orb.preferences.store import ProfileStore, create_profile_store

logger = logging.getLogger(__name__)


@dataclass
class OrbEngine:
    config: EngineConfig
    constraint_store: ConstraintStore
    profile_store: ProfileStore
    evaluator: ConstraintEvaluator
    modes: ModeService
    classifier: PersonaClassifier
    learning: PreferenceLearning
    adaptive: AdaptivePreferences

    # =========================================================================
    # Constraints
    # =========================================================================

    def _profile_sets(self, user_id: str | None, mode: Mode) -> list[ConstraintSet]:
        # Existing profiles only; evaluation never creates one
        if not user_id:
            return []
        profile = self.profile_store.get_profile(user_id, Mode(mode))
        return [profile.to_constraint_set()] if profile is not None else []

    def evaluate_action(self, ctx: ActionContext) -> ConstraintEvaluationResult:
        """Evaluate against the constraint store plus the user's stored profile for the mode."""
        with decision_context(user_id=ctx.user_id, session_id=ctx.session_id, action_id=ctx.action_id):
            return self.evaluator.evaluate_action(
                ctx, extra_sets=self._profile_sets(ctx.user_id, ctx.current_mode)
            )

    def evaluate_action_with_profile(self, ctx: ActionContext, profile: Profile) -> ConstraintEvaluationResult:
        with decision_context(user_id=ctx.user_id, session_id=ctx.session_id, action_id=ctx.action_id):
            return self.evaluator.evaluate_action_with_profile(ctx, profile)

    def validate_mode_transition(self, ctx: ModeTransitionContext) -> ModeTransitionResult:
        return self.evaluator.validate_mode_transition(ctx)

    def get_active_constraints(
        self, user_id: str | None, mode: Mode, persona: Persona | None = None
    ) -> list[Constraint]:
        return self.evaluator.get_active_constraints(
            user_id, mode, persona, extra_sets=self._profile_sets(user_id, mode)
        )

    def seed_defaults(self) -> int:
        """Install the default constraint sets into the constraint store."""
        return initialize_with_defaults(self.constraint_store)

    # =========================================================================
    # Modes
    # =========================================================================

    @property
    def current_mode(self) -> Mode:
        return self.modes.current_mode

    def set_mode(
        self,
        session: SessionContext,
        to_mode: Mode,
        persona: Persona | None = None,
        *,
        skip_validation: bool = False,
        reason: str | None = None,
        confirm: ConfirmCallback | None = None,
        confirmed: bool = False,
    ) -> ModeTransitionResult:
        with decision_context(user_id=session.user_id, session_id=session.session_id, to_mode=to_mode):
            return self.modes.set_mode(
                session,
                to_mode,
                persona,
                skip_validation=skip_validation,
                reason=reason,
                confirm=confirm,
                confirmed=confirmed,
            )

    def get_recommended_mode(self, device: Device | None = None, persona: Persona | None = None) -> Mode:
        return self.modes.get_recommended_mode(device, persona)

    # =========================================================================
    # Personas
    # =========================================================================

    def classify_persona(self, ctx: PersonaContext) -> PersonaClassificationResult:
        return self.classifier.classify_persona(ctx)

    def set_persona_override(
        self,
        user_id: str,
        persona: Persona | str,
        session_id: str | None = None,
        scope: OverrideScope | None = None,
        expires_at: datetime | None = None,
    ) -> PersonaOverride:
        return self.classifier.set_persona_override(user_id, persona, session_id, scope, expires_at)

    def get_persona_override(
        self, user_id: str, session_id: str | None = None, context: PersonaContext | None = None
    ) -> Persona | None:
        return self.classifier.get_persona_override(user_id, session_id, context)

    def clear_persona_override(
        self, user_id: str, session_id: str | None = None, scope: OverrideScope | None = None
    ) -> bool:
        return self.classifier.clear_persona_override(user_id, session_id, scope)

    # =========================================================================
    # Learning
    # =========================================================================

    def generate_learning_actions(self, pattern: Pattern) -> list[LearningAction]:
        return self.learning.generate_learning_actions(pattern)

    def auto_apply_if_high_confidence(self, action: LearningAction, user_id: str, mode: Mode) -> bool:
        return self.adaptive.auto_apply_if_high_confidence(action, user_id, mode)

    def apply_with_confirmation(
        self, action: LearningAction, user_id: str, mode: Mode, confirmed: bool
    ) -> bool:
        return self.adaptive.apply_with_confirmation(action, user_id, mode, confirmed)

    def batch_apply(self, actions: list[LearningAction], user_id: str, mode: Mode) -> BatchApplyResult:
        return self.adaptive.batch_apply(actions, user_id, mode)


def build_engine(
    config: EngineConfig | None = None,
    constraint_store: ConstraintStore | None = None,
    profile_store: ProfileStore | None = None,
) -> OrbEngine:
    """
    Build an engine from configuration.

    Args:
        config: Engine configuration; args/engine.yaml when omitted
        constraint_store: Use this store instead of the configured backend
        profile_store: Use this store instead of the configured backend
    """
    if config is None:
        config = load_engine_config()
    if constraint_store is None:
        constraint_store = create_constraint_store(config.storage)
    if profile_store is None:
        profile_store = create_profile_store(config.storage)

    evaluator = ConstraintEvaluator(constraint_store, config.evaluator)
    learning = PreferenceLearning(config.learning.pattern_cutoffs)
    engine = OrbEngine(
        config=config,
        constraint_store=constraint_store,
        profile_store=profile_store,
        evaluator=evaluator,
        modes=ModeService(evaluator, profile_store=profile_store),
        classifier=PersonaClassifier(config=config.persona),
        learning=learning,
        adaptive=AdaptivePreferences(
            profile_store,
            learning=learning,
            thresholds=Thresholds.from_config(config.learning.thresholds),
        ),
    )
    logger.info(
        f"Orb engine ready: storage={config.storage.backend}, "
        f"deny_on_any_trigger={config.evaluator.deny_on_any_trigger}"
    )
    return engine


__all__ = ["OrbEngine", "build_engine"]
