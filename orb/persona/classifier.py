"""
Tool: Persona Classifier
Purpose: Infer the active persona from ambient context signals

Scoring:
    Every matching rule adds its weights to the target personas. Scores are
    normalized into a distribution over all four personas. The top persona
    wins (ties go to the earlier persona in declaration order) with

        confidence = min(1, (top - runner_up) / total + 0.5)

    If no rule fires the distribution is uniform (0.25 each) and the
    configured default persona is returned at the configured low confidence.

Usage:
    from orb.persona.classifier import PersonaClassifier
    from orb.persona import PersonaContext

    classifier = PersonaClassifier()
    result = classifier.classify_persona(PersonaContext(device_id="mars"))
    result.persona      # Persona.SWL
    result.confidence   # 1.0
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from orb.config_models import PersonaConfig
from orb.errors import InvalidPersonaError
from orb.identity import Persona
from orb.persona import (
    ClassificationSource,
    OverrideScope,
    PersonaClassificationResult,
    PersonaContext,
    PersonaOverride,
)
from orb.persona import rules
from orb.persona.overrides import InMemoryPersonaOverrideStore, PersonaOverrideStore

logger = logging.getLogger(__name__)

NO_SIGNALS_REASON = "No strong signals, defaulting to balanced distribution"
STICKY_REASON = "Recently active persona (sticky behavior)"


def _one_hot(persona: Persona) -> dict[Persona, float]:
    return {p: (1.0 if p == persona else 0.0) for p in Persona}


def _validate_persona(persona: Persona | str) -> Persona:
    try:
        return Persona(persona)
    except ValueError as e:
        raise InvalidPersonaError(f"Invalid persona: {persona}") from e


class PersonaClassifier:
    def __init__(
        self,
        override_store: PersonaOverrideStore | None = None,
        config: PersonaConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.override_store = override_store or InMemoryPersonaOverrideStore()
        self.config = config or PersonaConfig()
        self.clock = clock or datetime.now

    # ─────────────────────────────────────────────────────────────────────
    # Classification
    # ─────────────────────────────────────────────────────────────────────

    def classify_persona(self, ctx: PersonaContext) -> PersonaClassificationResult:
        now = ctx.now or self.clock()

        explicit = self._explicit(ctx, now)
        if explicit is not None:
            return explicit

        sticky = self._sticky(ctx, now)
        if sticky is not None:
            return sticky

        return self._score(ctx, now)

    def _explicit(self, ctx: PersonaContext, now: datetime) -> PersonaClassificationResult | None:
        if ctx.explicit_persona is not None:
            return PersonaClassificationResult(
                persona=ctx.explicit_persona,
                confidence=1.0,
                source=ClassificationSource.EXPLICIT,
                distribution=_one_hot(ctx.explicit_persona),
                reasons=["Explicitly set by user"],
                signals=[f"Explicit persona {ctx.explicit_persona.value}"],
                overridden=True,
                classified_at=now,
            )

        if not ctx.user_id:
            return None

        override = self.override_store.get_override(ctx.user_id, ctx.session_id, ctx, now)
        if override is None:
            return None
        return PersonaClassificationResult(
            persona=override.persona,
            confidence=1.0,
            source=ClassificationSource.EXPLICIT,
            distribution=_one_hot(override.persona),
            reasons=["User override active"],
            signals=[f"User explicitly set persona to {override.persona.value}"],
            overridden=True,
            classified_at=now,
        )

    def _sticky(self, ctx: PersonaContext, now: datetime) -> PersonaClassificationResult | None:
        if not ctx.recent_personas:
            return None
        latest = max(ctx.recent_personas, key=lambda entry: entry.timestamp)
        age = now - latest.timestamp
        if not (timedelta(0) <= age < timedelta(seconds=self.config.sticky_window_seconds)):
            return None
        persona = Persona(latest.persona)
        return PersonaClassificationResult(
            persona=persona,
            confidence=self.config.sticky_confidence,
            source=ClassificationSource.INFERRED,
            distribution=_one_hot(persona),
            reasons=[STICKY_REASON],
            signals=[f"{persona.value} active {int(age.total_seconds())}s ago"],
            classified_at=now,
        )

    def _score(self, ctx: PersonaContext, now: datetime) -> PersonaClassificationResult:
        scores: dict[Persona, float] = {p: 0.0 for p in Persona}
        reasons: list[str] = []
        signals: list[str] = []

        def apply(rule: rules.Rule | None, reason: str) -> None:
            if rule is None:
                return
            for persona, weight in rule.weights.items():
                scores[persona] += weight
            signals.append(rule.signal)
            reasons.append(reason)

        if ctx.device_id is not None:
            apply(rules.device_rule(ctx.device_id), f"Device {ctx.device_id.value} suggests persona")
        if ctx.current_mode is not None:
            apply(rules.mode_rule(ctx.current_mode), f"Mode {ctx.current_mode.value} correlates with persona")
        if ctx.active_feature:
            apply(rules.feature_rule(ctx.active_feature), f"Active feature {ctx.active_feature} indicates persona")
        if ctx.time_of_day is not None:
            apply(rules.time_of_day_rule(ctx.time_of_day), f"Time of day {ctx.time_of_day.value} suggests context")
        if ctx.location_hint:
            apply(rules.location_rule(ctx.location_hint), "Location hint suggests persona")

        total = sum(scores.values())
        if total <= 0:
            default = Persona(self.config.default_persona)
            return PersonaClassificationResult(
                persona=default,
                confidence=self.config.default_confidence,
                source=ClassificationSource.DEFAULT,
                distribution={p: 1.0 / len(Persona) for p in Persona},
                reasons=[NO_SIGNALS_REASON],
                signals=signals,
                classified_at=now,
            )

        # sorted() is stable, so equal scores keep Persona declaration order
        ranked = sorted(Persona, key=lambda p: scores[p], reverse=True)
        top, runner_up = ranked[0], ranked[1]
        confidence = min(1.0, (scores[top] - scores[runner_up]) / total + 0.5)

        return PersonaClassificationResult(
            persona=top,
            confidence=confidence,
            source=ClassificationSource.INFERRED,
            distribution={p: scores[p] / total for p in Persona},
            reasons=reasons,
            signals=signals,
            classified_at=now,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Overrides
    # ─────────────────────────────────────────────────────────────────────

    def set_persona_override(
        self,
        user_id: str,
        persona: Persona | str,
        session_id: str | None = None,
        scope: OverrideScope | None = None,
        expires_at: datetime | None = None,
    ) -> PersonaOverride:
        """
        Pin a persona for a user.

        Raises:
            InvalidPersonaError: persona is not a known Persona
        """
        override = PersonaOverride(
            user_id=user_id,
            persona=_validate_persona(persona),
            session_id=session_id,
            scope=scope,
            expires_at=expires_at,
            created_at=self.clock(),
        )
        self.override_store.set_override(override)
        logger.info(
            f"Persona override set for {user_id}: {override.persona.value}"
            + (f" session={session_id}" if session_id else "")
            + (" (scoped)" if scope else "")
        )
        return override

    def get_persona_override(
        self,
        user_id: str,
        session_id: str | None = None,
        context: PersonaContext | None = None,
    ) -> Persona | None:
        override = self.override_store.get_override(user_id, session_id, context, self.clock())
        return override.persona if override else None

    def clear_persona_override(
        self,
        user_id: str,
        session_id: str | None = None,
        scope: OverrideScope | None = None,
    ) -> bool:
        cleared = self.override_store.clear_override(user_id, session_id, scope)
        if cleared:
            logger.info(f"Persona override cleared for {user_id}")
        return cleared


__all__ = ["PersonaClassifier", "NO_SIGNALS_REASON", "STICKY_REASON"]
