"""
Exception hierarchy for the decision engine.

A policy denial is never an exception: evaluate_action returns a structured
ConstraintEvaluationResult. Exceptions are reserved for malformed input,
refused mode transitions, and illegal learning-action state changes.
Backend failures (sqlite3.Error, OSError, json.JSONDecodeError) are not
wrapped and reach the caller unchanged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from orb.constraints import ModeTransitionResult


class OrbError(Exception):
    """Base class for engine errors."""


class ConstraintConfigurationError(OrbError, ValueError):
    """A constraint, constraint set, or context is missing required fields or has invalid values."""


class InvalidPersonaError(ConstraintConfigurationError):
    """An unknown persona value was supplied."""


class ConstraintNotFoundError(OrbError, KeyError):
    """update_constraint was called for an id the store does not hold."""


class ModeTransitionDeniedError(OrbError):
    """
    Raised by ModeService.set_mode when validation refuses a transition.

    Attributes:
        result: The ModeTransitionResult that caused the refusal
        reason: First blocking reason, suitable for showing to the user
    """

    def __init__(self, result: ModeTransitionResult, reason: str | None = None):
        self.result = result
        if reason is None:
            reason = result.blocked_by[0].reason if result.blocked_by else result.message
        self.reason = reason
        super().__init__(reason)


class ModeConfirmationRequiredError(ModeTransitionDeniedError):
    """The transition is allowed only after the user confirms it."""


class LearningActionStateError(OrbError):
    """A learning action was applied or rejected after it had already left pending."""


__all__ = [
    "OrbError",
    "ConstraintConfigurationError",
    "InvalidPersonaError",
    "ConstraintNotFoundError",
    "ModeTransitionDeniedError",
    "ModeConfirmationRequiredError",
    "LearningActionStateError",
]
