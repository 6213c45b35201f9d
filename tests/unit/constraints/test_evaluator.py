"""Tests for orb/constraints/evaluator.py"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from orb.config_models import EvaluatorConfig
from orb.constraints import (
    ActionContext,
    ConstraintSeverity,
    Decision,
    ModeTransitionContext,
)
from orb.constraints import builder
from orb.constraints.defaults import initialize_with_defaults
from orb.constraints.evaluator import (
    ACTION_PREDICATES,
    DEVICE_MISMATCH_ID,
    NO_CONSTRAINTS_TRIGGERED,
    PERSONA_MISMATCH_ID,
    ConstraintEvaluator,
    escalate_risk,
)
from orb.constraints.store import InMemoryConstraintStore
from orb.errors import ConstraintConfigurationError
from orb.identity import Device, Mode, Persona, RiskLevel, Role
from orb.preferences import Profile


def _store_with(*constraints, modes=None, priority=0, set_id="test-set"):
    store = InMemoryConstraintStore()
    store.save_constraint_set(
        builder.create_constraint_set(set_id, "Test", list(constraints), modes=modes, priority=priority)
    )
    return store


def _action(**kwargs):
    kwargs.setdefault("action_id", "action-1")
    kwargs.setdefault("current_mode", Mode.SOL)
    return ActionContext(**kwargs)


class TestPredicateTable:
    def test_covers_every_constraint_type(self):
        from orb.constraints import ConstraintType

        assert set(ACTION_PREDICATES) == set(ConstraintType)


# ─────────────────────────────────────────────────────────────────────────────
# evaluate_action
# ─────────────────────────────────────────────────────────────────────────────


class TestEvaluateAction:
    def test_no_constraints_allows(self, evaluator):
        result = evaluator.evaluate_action(_action(estimated_risk=RiskLevel.LOW))

        assert result.allowed is True
        assert result.decision is Decision.ALLOW
        assert result.reasons == [NO_CONSTRAINTS_TRIGGERED]
        assert result.triggered_constraints == []

    def test_blocked_tool_denies(self, fixed_now):
        store = _store_with(builder.block_tool("delete-file", id="block-delete"), modes=[Mode.SOL])
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(tool_id="delete-file", current_mode=Mode.SOL))

        assert result.decision is Decision.DENY
        assert result.triggered_ids == ["block-delete"]
        assert result.primary_reason == "Tool delete-file is blocked by constraint block-delete"

    def test_other_tool_not_blocked(self, fixed_now):
        store = _store_with(builder.block_tool("delete-file", id="block-delete"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        assert evaluator.evaluate_action(_action(tool_id="read-file")).allowed is True

    def test_set_for_other_mode_contributes_nothing(self, fixed_now):
        store = _store_with(builder.block_tool("delete-file", id="block-delete"), modes=[Mode.MARS])
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(tool_id="delete-file", current_mode=Mode.SOL))
        assert result.allowed is True

    def test_inactive_constraint_never_triggers(self, fixed_now):
        store = _store_with(builder.block_tool("delete-file", id="block-delete", active=False))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        assert evaluator.evaluate_action(_action(tool_id="delete-file")).allowed is True

    @pytest.mark.parametrize(
        "risk,triggers",
        [(RiskLevel.LOW, False), (RiskLevel.MEDIUM, False), (RiskLevel.HIGH, True)],
    )
    def test_max_risk(self, fixed_now, risk, triggers):
        store = _store_with(builder.max_risk("medium", id="cap"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(estimated_risk=risk))

        assert (not result.allowed) is triggers
        if triggers:
            assert result.primary_reason == "Action risk (high) exceeds maximum (medium)"

    def test_device_restriction(self, fixed_now):
        store = _store_with(builder.device_restriction([Device.SOL], id="sol-only"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        on_mars = evaluator.evaluate_action(_action(device_id=Device.MARS))
        on_sol = evaluator.evaluate_action(_action(device_id=Device.SOL))
        unknown = evaluator.evaluate_action(_action())

        assert on_mars.primary_reason == "Action not allowed on device mars"
        assert on_sol.allowed is True
        assert unknown.allowed is True

    def test_time_window_uses_clock(self):
        store = _store_with(builder.time_window("09:00", "17:00", id="office"))

        inside = ConstraintEvaluator(store, clock=lambda: datetime(2025, 6, 11, 10, 0))
        outside = ConstraintEvaluator(store, clock=lambda: datetime(2025, 6, 11, 20, 0))

        assert inside.evaluate_action(_action()).allowed is True
        result = outside.evaluate_action(_action())
        assert result.primary_reason == "Action only allowed during 09:00 - 17:00"

    def test_require_confirmation_threshold(self, fixed_now):
        store = _store_with(builder.require_confirmation("medium", id="confirm-high"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        assert evaluator.evaluate_action(_action(estimated_risk=RiskLevel.MEDIUM)).allowed is True
        result = evaluator.evaluate_action(_action(estimated_risk=RiskLevel.HIGH))
        assert result.triggered_ids == ["confirm-high"]
        assert result.primary_reason == "Action requires user confirmation"

    def test_other_without_predicate_always_triggers(self, fixed_now):
        store = _store_with(builder.other("Be careful", id="note"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        assert evaluator.evaluate_action(_action()).primary_reason == "Be careful"

    def test_other_required_persona(self, fixed_now):
        store = _store_with(builder.other("Ops only", required_persona=Persona.SWL, id="ops"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        denied = evaluator.evaluate_action(_action(persona=Persona.PERSONAL))
        allowed = evaluator.evaluate_action(_action(persona=Persona.SWL))

        assert denied.primary_reason == "Action requires persona swl, but current persona is personal"
        assert allowed.allowed is True

    def test_role_scoped_constraint_skipped_for_other_roles(self, fixed_now):
        store = _store_with(builder.block_tool("deploy", id="no-deploy", applies_to_roles=[Role.MAV]))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        assert evaluator.evaluate_action(_action(tool_id="deploy", role=Role.MAV)).allowed is False
        assert evaluator.evaluate_action(_action(tool_id="deploy", role=Role.FORGE)).allowed is True

    def test_reasons_follow_priority_then_declaration_order(self, fixed_now):
        store = InMemoryConstraintStore()
        store.save_constraint_set(
            builder.create_constraint_set("low", "Low", [builder.other("third", id="c3")], priority=1)
        )
        store.save_constraint_set(
            builder.create_constraint_set(
                "high",
                "High",
                [builder.other("first", id="c1"), builder.other("second", id="c2")],
                priority=10,
            )
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action())
        assert result.reasons == ["first", "second", "third"]
        assert result.triggered_ids == ["c1", "c2", "c3"]

    def test_caller_supplied_sets_still_filtered(self, evaluator):
        sets = [
            builder.create_constraint_set(
                "mars", "Mars", [builder.block_tool("x", id="mars-x")], modes=[Mode.MARS]
            ),
            builder.create_constraint_set("any", "Any", [builder.block_tool("x", id="any-x")]),
        ]
        result = evaluator.evaluate_action(_action(tool_id="x"), constraint_sets=sets)
        assert result.triggered_ids == ["any-x"]


class TestDecisionPolicy:
    def test_soft_trigger_denies_by_default(self, fixed_now):
        store = _store_with(builder.max_risk("low", id="soft-cap", severity=ConstraintSeverity.SOFT))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(estimated_risk=RiskLevel.HIGH))

        assert result.allowed is False
        assert result.requires_confirmation is True

    def test_soft_trigger_allows_with_confirmation_when_lenient(self, fixed_now):
        store = _store_with(builder.max_risk("low", id="soft-cap", severity=ConstraintSeverity.SOFT))
        evaluator = ConstraintEvaluator(
            store, EvaluatorConfig(deny_on_any_trigger=False), clock=lambda: fixed_now
        )

        result = evaluator.evaluate_action(_action(estimated_risk=RiskLevel.HIGH))

        assert result.allowed is True
        assert result.decision is Decision.ALLOW
        assert result.requires_confirmation is True
        assert result.triggered_ids == ["soft-cap"]

    def test_hard_trigger_denies_when_lenient(self, fixed_now):
        store = _store_with(builder.block_tool("rm", id="no-rm"))
        evaluator = ConstraintEvaluator(
            store, EvaluatorConfig(deny_on_any_trigger=False), clock=lambda: fixed_now
        )

        result = evaluator.evaluate_action(_action(tool_id="rm"))

        assert result.allowed is False
        assert result.requires_confirmation is False


class TestValidationBeforeStoreAccess:
    def test_invalid_context_never_reaches_store(self):
        store = MagicMock()
        evaluator = ConstraintEvaluator(store)

        with pytest.raises(ConstraintConfigurationError):
            evaluator.evaluate_action(ActionContext(action_id="", current_mode=Mode.SOL))

        store.get_constraint_sets.assert_not_called()

    def test_store_errors_propagate(self):
        store = MagicMock()
        store.get_constraint_sets.side_effect = OSError("disk gone")
        evaluator = ConstraintEvaluator(store)

        with pytest.raises(OSError):
            evaluator.evaluate_action(_action())


# ─────────────────────────────────────────────────────────────────────────────
# Risk factors
# ─────────────────────────────────────────────────────────────────────────────


class TestRiskFactors:
    def test_no_triggers_keeps_estimated_risk(self, evaluator):
        result = evaluator.evaluate_action(_action(estimated_risk=RiskLevel.MEDIUM))

        assert result.risk_factors == []
        assert result.effective_risk is RiskLevel.MEDIUM

    def test_single_factor_does_not_escalate(self, fixed_now):
        store = _store_with(builder.block_tool("delete-file", id="block-delete"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(tool_id="delete-file"))

        assert result.risk_factors == ["blocked_tool"]
        assert result.effective_risk is RiskLevel.LOW

    def test_two_factors_escalate_one_level(self, fixed_now):
        store = _store_with(
            builder.block_tool("delete-file", id="block-delete"),
            builder.device_restriction([Device.SOL], id="sol-only"),
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(tool_id="delete-file", device_id=Device.MARS))

        assert result.risk_factors == ["blocked_tool", "device_mismatch"]
        assert result.effective_risk is RiskLevel.MEDIUM
        assert result.to_dict()["risk_factors"] == ["blocked_tool", "device_mismatch"]
        assert result.to_dict()["effective_risk"] == "medium"

    def test_escalation_capped_at_high(self, fixed_now):
        store = _store_with(
            builder.max_risk("medium", id="cap"),
            builder.block_tool("delete-file", id="block-delete"),
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(tool_id="delete-file", estimated_risk=RiskLevel.HIGH))

        assert result.risk_factors == ["risk_exceeded", "blocked_tool"]
        assert result.effective_risk is RiskLevel.HIGH

    def test_confirmation_and_other_are_not_factors(self, fixed_now):
        store = _store_with(
            builder.require_confirmation("low", id="confirm"),
            builder.other("Always nudge", id="nudge"),
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.evaluate_action(_action(estimated_risk=RiskLevel.MEDIUM))

        assert set(result.triggered_ids) == {"confirm", "nudge"}
        assert result.risk_factors == []
        assert result.effective_risk is RiskLevel.MEDIUM

    @pytest.mark.parametrize(
        "base,count,expected",
        [
            (RiskLevel.LOW, 0, RiskLevel.LOW),
            (RiskLevel.LOW, 3, RiskLevel.MEDIUM),
            (RiskLevel.LOW, 4, RiskLevel.HIGH),
            (RiskLevel.MEDIUM, 2, RiskLevel.HIGH),
            (RiskLevel.HIGH, 6, RiskLevel.HIGH),
        ],
    )
    def test_escalate_risk(self, base, count, expected):
        assert escalate_risk(base, count) is expected


# ─────────────────────────────────────────────────────────────────────────────
# Profile constraints
# ─────────────────────────────────────────────────────────────────────────────


class TestProfileConstraints:
    def test_profile_constraint_denies(self, evaluator, mock_user_id):
        profile = Profile(
            user_id=mock_user_id,
            mode=Mode.SOL,
            constraints=[builder.block_tool("send-email", id="no-email")],
        )
        ctx = _action(tool_id="send-email", user_id=mock_user_id)

        assert evaluator.evaluate_action(ctx).allowed is True
        result = evaluator.evaluate_action_with_profile(ctx, profile)
        assert result.allowed is False
        assert result.triggered_ids == ["no-email"]

    def test_profile_scoped_to_its_mode(self, evaluator, mock_user_id):
        profile = Profile(
            user_id=mock_user_id,
            mode=Mode.MARS,
            constraints=[builder.block_tool("send-email", id="no-email")],
        )

        result = evaluator.evaluate_action_with_profile(
            _action(tool_id="send-email", current_mode=Mode.SOL, user_id=mock_user_id), profile
        )
        assert result.allowed is True

    def test_profile_set_shape(self, mock_user_id):
        constraint_set = Profile(user_id=mock_user_id, mode=Mode.FORGE).to_constraint_set()

        assert constraint_set.id == f"profile:{mock_user_id}:forge"
        assert constraint_set.applies_to.modes == [Mode.FORGE]
        assert constraint_set.user_id == mock_user_id

    def test_active_constraints_include_extra_sets(self, fixed_now, mock_user_id):
        store = _store_with(builder.block_tool("a", id="stored"))
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)
        profile = Profile(user_id=mock_user_id, mode=Mode.SOL, constraints=[builder.block_tool("b", id="mine")])

        active = evaluator.get_active_constraints(
            mock_user_id, Mode.SOL, extra_sets=[profile.to_constraint_set()]
        )
        assert {c.id for c in active} == {"stored", "mine"}


class TestGetActiveConstraints:
    def test_flattened_active_only(self, fixed_now):
        store = _store_with(
            builder.block_tool("a", id="on"),
            builder.block_tool("b", id="off", active=False),
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        assert [c.id for c in evaluator.get_active_constraints("alice", Mode.SOL)] == ["on"]


# ─────────────────────────────────────────────────────────────────────────────
# validate_mode_transition
# ─────────────────────────────────────────────────────────────────────────────


class TestValidateModeTransition:
    def test_unconstrained_transition_allowed(self, evaluator):
        result = evaluator.validate_mode_transition(ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.FORGE))

        assert result.success is True
        assert result.message == "Transition from sol to forge allowed"
        assert result.blocked_by == []

    def test_block_mode_uses_from_mode_sets(self, fixed_now):
        store = _store_with(builder.block_mode([Mode.MARS], id="no-mars-from-sol"), modes=[Mode.SOL])
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        from_sol = evaluator.validate_mode_transition(ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.MARS))
        from_earth = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.EARTH, to_mode=Mode.MARS)
        )

        assert from_sol.success is False
        assert from_sol.blocked_by[0].constraint_id == "no-mars-from-sol"
        assert from_sol.message == "Transition to mars blocked: Transition to mars is blocked"
        assert from_earth.success is True

    def test_block_mode_by_persona(self, fixed_now):
        store = _store_with(
            builder.block_mode([], personas=[Persona.SWL], id="no-swl", description="Not as SWL")
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.EXPLORER, persona=Persona.SWL)
        )
        assert result.blocked_by[0].reason == "Not as SWL"

    @pytest.mark.parametrize(
        "to_mode,persona,allowed",
        [
            (Mode.MARS, Persona.SWL, True),
            (Mode.MARS, Persona.PERSONAL, False),
            (Mode.RESTAURANT, Persona.OPEN_PEOPLE, True),
            (Mode.RESTAURANT, Persona.PERSONAL, True),
            (Mode.EARTH, Persona.OPEN_PEOPLE, True),
            (Mode.EARTH, Persona.SWL, False),
            (Mode.REAL_ESTATE, Persona.REAL_ESTATE, True),
            (Mode.SOL, Persona.SWL, True),
        ],
    )
    def test_persona_compatibility(self, evaluator, to_mode, persona, allowed):
        result = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.DEFAULT, to_mode=to_mode, persona=persona)
        )
        assert result.success is allowed
        if not allowed:
            assert result.blocked_by[0].constraint_id == PERSONA_MISMATCH_ID

    def test_persona_mismatch_message(self, evaluator):
        result = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.DEFAULT, to_mode=Mode.REAL_ESTATE, persona=Persona.SWL)
        )
        assert result.blocked_by[0].reason == "Real Estate mode requires one of personas: real_estate"

    def test_device_compatibility(self, evaluator):
        result = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.FORGE, device_id=Device.MARS)
        )
        assert result.success is False
        assert result.blocked_by[0].constraint_id == DEVICE_MISMATCH_ID
        assert result.blocked_by[0].reason == "Forge mode requires device(s): luna"

        on_luna = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.FORGE, device_id=Device.LUNA)
        )
        assert on_luna.success is True

    def test_system_checks_skipped_without_persona_or_device(self, evaluator):
        result = evaluator.validate_mode_transition(ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.MARS))
        assert result.success is True

    def test_require_confirmation_does_not_block(self, fixed_now):
        store = _store_with(
            builder.require_confirmation(id="confirm-leave", description="Confirm leaving Sol"),
            modes=[Mode.SOL],
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.validate_mode_transition(ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.EARTH))

        assert result.success is True
        assert [c.constraint_id for c in result.requires_confirmation] == ["confirm-leave"]
        # Nothing constrains the target mode
        assert result.applied_constraints == []

    def test_applied_constraints_come_from_target_mode(self, fixed_now):
        store = InMemoryConstraintStore()
        initialize_with_defaults(store)
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.validate_mode_transition(ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.EARTH))

        assert result.success is True
        assert "default:no-work-in-earth" in result.applied_constraints
        assert "default:confirm-high-risk" in result.applied_constraints
        assert "default:sol-deep-focus" not in result.applied_constraints

    def test_blocked_transition_applies_nothing(self, fixed_now):
        store = _store_with(builder.block_mode([Mode.MARS], id="no-mars"), modes=[Mode.SOL])
        store.save_constraint_set(
            builder.create_constraint_set("mars-set", "Mars", [builder.block_tool("x", id="mars-x")], modes=[Mode.MARS])
        )
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        result = evaluator.validate_mode_transition(ModeTransitionContext(from_mode=Mode.SOL, to_mode=Mode.MARS))

        assert result.success is False
        assert result.applied_constraints == []

    def test_forge_review_applies_only_to_mav(self, fixed_now):
        store = InMemoryConstraintStore()
        initialize_with_defaults(store)
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        by_luna = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.FORGE, to_mode=Mode.SOL, triggered_by=Role.LUNA)
        )
        by_mav = evaluator.validate_mode_transition(
            ModeTransitionContext(from_mode=Mode.FORGE, to_mode=Mode.SOL, triggered_by=Role.MAV)
        )

        assert "default:forge-require-review" not in [c.constraint_id for c in by_luna.requires_confirmation]
        assert "default:forge-require-review" in [c.constraint_id for c in by_mav.requires_confirmation]


class TestDefaultSetsEndToEnd:
    def test_destructive_tool_denied_everywhere(self, fixed_now):
        store = InMemoryConstraintStore()
        initialize_with_defaults(store)
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        for mode in Mode:
            result = evaluator.evaluate_action(_action(current_mode=mode, tool_id="system-shutdown", role=Role.SOL))
            assert result.allowed is False, mode

    def test_work_persona_flagged_in_earth(self, fixed_now):
        store = InMemoryConstraintStore()
        initialize_with_defaults(store)
        evaluator = ConstraintEvaluator(store, clock=lambda: fixed_now)

        swl = evaluator.evaluate_action(_action(current_mode=Mode.EARTH, persona=Persona.SWL))
        personal = evaluator.evaluate_action(_action(current_mode=Mode.EARTH, persona=Persona.PERSONAL))

        assert swl.triggered_ids == ["default:no-work-in-earth"]
        assert personal.allowed is True
