"""
Mode Service

Owns the current mode and guards every change to it with validation.

State machine:
    States are the Mode enum; the initial state is Mode.DEFAULT. Any mode
    can move to any other mode, any number of times, as long as validation
    passes (or is explicitly skipped). A refused transition leaves the
    current mode untouched.

Confirmation:
    When validation passes but applicable require-confirmation constraints
    were found, set_mode stops and raises ModeConfirmationRequiredError
    unless the caller passed confirmed=True or a confirm callback that
    approves the transition.

One instance is created per engine and passed to whoever needs it. The
current mode is guarded by a re-entrant lock so concurrent set_mode calls
from different sessions serialize.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from orb.constraints import ModeTransitionContext, ModeTransitionResult
from orb.constraints.evaluator import ConstraintEvaluator
from orb.errors import ModeConfirmationRequiredError, ModeTransitionDeniedError
from orb.identity import (
    DEVICE_DEFAULT_MODES,
    Device,
    Mode,
    ModeDescriptor,
    Persona,
    PersonaProfile,
    Role,
    SessionContext,
    get_mode_descriptor,
    get_persona_profile,
)

if TYPE_CHECKING:
    from orb.preferences.store import ProfileStore

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[ModeTransitionResult], bool]


class ModeService:
    def __init__(
        self,
        evaluator: ConstraintEvaluator,
        initial_mode: Mode = Mode.DEFAULT,
        profile_store: ProfileStore | None = None,
    ):
        self.evaluator = evaluator
        self.profile_store = profile_store
        self._current_mode = Mode(initial_mode)
        self._lock = threading.RLock()

    @property
    def current_mode(self) -> Mode:
        with self._lock:
            return self._current_mode

    def get_mode_descriptor(self, mode: Mode | None = None) -> ModeDescriptor:
        return get_mode_descriptor(mode if mode is not None else self.current_mode)

    def get_persona_profile(self, persona: Persona) -> PersonaProfile:
        return get_persona_profile(persona)

    def validate_transition(
        self,
        session: SessionContext,
        to_mode: Mode,
        persona: Persona | None = None,
        reason: str | None = None,
    ) -> ModeTransitionResult:
        """Validate moving from the current mode to ``to_mode`` without changing anything."""
        with self._lock:
            from_mode = self._current_mode
        return self.evaluator.validate_mode_transition(
            ModeTransitionContext(
                from_mode=from_mode,
                to_mode=to_mode,
                user_id=session.user_id,
                session_id=session.session_id,
                persona=persona,
                device_id=session.device_id,
                reason=reason,
                triggered_by=session.role,
            )
        )

    def can_transition(self, session: SessionContext, to_mode: Mode, persona: Persona | None = None) -> bool:
        return self.validate_transition(session, to_mode, persona).success

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
        """
        Change the current mode.

        Args:
            session: Caller's session (user, device, role)
            to_mode: Target mode
            persona: Explicit persona for the persona/mode compatibility check
            skip_validation: Bypass constraint checks entirely
            reason: Free-text reason, recorded in logs
            confirm: Called with the validation result when confirmation is
                required; return True to proceed
            confirmed: The user already confirmed this transition

        Returns:
            The ModeTransitionResult that allowed the change

        Raises:
            ModeTransitionDeniedError: Validation failed or confirmation was declined
            ModeConfirmationRequiredError: Confirmation needed and none supplied
        """
        to_mode = Mode(to_mode)
        if session.role != Role.LUNA:
            logger.warning(f"set_mode called with role {session.role.value}, expected luna")

        with self._lock:
            from_mode = self._current_mode

            if skip_validation:
                result = ModeTransitionResult(
                    success=True,
                    from_mode=from_mode,
                    to_mode=to_mode,
                    message="Validation skipped",
                )
                logger.warning(f"Mode transition {from_mode.value} -> {to_mode.value} with validation skipped")
            else:
                result = self.validate_transition(session, to_mode, persona, reason)
                if not result.success:
                    raise ModeTransitionDeniedError(result)

                if result.needs_confirmation and not confirmed:
                    if confirm is None:
                        logger.info(
                            f"Mode transition to {to_mode.value} awaiting confirmation: "
                            f"{result.requires_confirmation[0].reason}"
                        )
                        raise ModeConfirmationRequiredError(result, result.requires_confirmation[0].reason)
                    if not confirm(result):
                        raise ModeTransitionDeniedError(result, f"Transition to {to_mode.value} was not confirmed")

            self._current_mode = to_mode

        descriptor = get_mode_descriptor(to_mode)
        logger.info(
            f"Mode changed {from_mode.value} -> {to_mode.value} ({descriptor.intent})"
            + (f" persona={persona}" if persona else "")
            + (f" reason={reason}" if reason else "")
        )

        if self.profile_store is not None and session.user_id:
            self.profile_store.set_active_mode(session.user_id, to_mode)

        return result

    @staticmethod
    def get_recommended_mode(device: Device | None = None, persona: Persona | None = None) -> Mode:
        """Persona's first preferred mode, else the device's default mode, else DEFAULT."""
        if persona is not None:
            return get_persona_profile(persona).preferred_modes[0]
        if device is not None:
            return DEVICE_DEFAULT_MODES[Device(device)]
        return Mode.DEFAULT


__all__ = ["ModeService", "ConfirmCallback"]
