"""Tests for orb/constraints/__init__.py and orb/constraints/builder.py"""

from datetime import datetime

import pytest

from orb.constraints import (
    ActionContext,
    AppliesTo,
    BlockModeConstraint,
    BlockToolConstraint,
    Constraint,
    ConstraintEvaluationResult,
    ConstraintSet,
    ConstraintSeverity,
    ConstraintSource,
    Decision,
    MaxRiskConstraint,
    OtherConstraint,
    RequireConfirmationConstraint,
    TimeWindow,
    TimeWindowConstraint,
    filter_applicable,
)
from orb.constraints import builder
from orb.errors import ConstraintConfigurationError
from orb.identity import Mode, Persona, RiskLevel, Role


# ─────────────────────────────────────────────────────────────────────────────
# Constraint variants
# ─────────────────────────────────────────────────────────────────────────────


class TestConstraintVariants:
    """Construction and coercion of the individual constraint dataclasses."""

    def test_strings_are_coerced_to_enums(self):
        c = MaxRiskConstraint(id="r1", max_risk="medium", severity="soft", applies_to_roles=["mav"])
        assert c.max_risk is RiskLevel.MEDIUM
        assert c.severity is ConstraintSeverity.SOFT
        assert c.applies_to_roles == [Role.MAV]

    def test_invalid_enum_value_raises_configuration_error(self):
        with pytest.raises(ConstraintConfigurationError):
            MaxRiskConstraint(id="r1", max_risk="extreme")

    def test_block_tool_requires_tool_id(self):
        with pytest.raises(ConstraintConfigurationError):
            BlockToolConstraint(id="b1", tool_id="")

    def test_block_mode_requires_modes_or_personas(self):
        with pytest.raises(ConstraintConfigurationError):
            BlockModeConstraint(id="bm", blocked_modes=[])

    def test_block_mode_accepts_personas_only(self):
        c = BlockModeConstraint(id="bm", blocked_modes=[], blocked_personas=["swl"])
        assert c.blocked_personas == [Persona.SWL]

    def test_variant_defaults(self):
        assert RequireConfirmationConstraint(id="rc").severity is ConstraintSeverity.SOFT
        assert OtherConstraint(id="o").severity is ConstraintSeverity.WARNING
        assert BlockToolConstraint(id="b", tool_id="x").severity is ConstraintSeverity.HARD

    def test_applies_to_role(self):
        c = BlockToolConstraint(id="b", tool_id="x", applies_to_roles=[Role.FORGE])
        assert c.applies_to_role(Role.FORGE)
        assert not c.applies_to_role(Role.MAV)
        assert BlockToolConstraint(id="b2", tool_id="x").applies_to_role(Role.MAV)


class TestConstraintSerialization:
    def test_round_trip_preserves_variant(self):
        original = TimeWindowConstraint(
            id="tw",
            time_window=TimeWindow("22:00", "06:00"),
            created_by=ConstraintSource.ADMIN,
        )
        restored = Constraint.from_dict(original.to_dict())

        assert isinstance(restored, TimeWindowConstraint)
        assert restored.time_window == TimeWindow("22:00", "06:00")
        assert restored.created_by is ConstraintSource.ADMIN

    def test_to_dict_includes_type_tag(self):
        data = BlockToolConstraint(id="block-delete", tool_id="delete-file").to_dict()
        assert data["type"] == "block-tool"
        assert data["tool_id"] == "delete-file"
        assert data["severity"] == "hard"

    def test_unknown_type_rejected(self):
        with pytest.raises(ConstraintConfigurationError):
            Constraint.from_dict({"id": "x", "type": "teleport"})

    def test_missing_type_rejected(self):
        with pytest.raises(ConstraintConfigurationError):
            Constraint.from_dict({"id": "x"})

    def test_missing_required_field_rejected(self):
        with pytest.raises(ConstraintConfigurationError):
            Constraint.from_dict({"id": "x", "type": "block-tool"})


# ─────────────────────────────────────────────────────────────────────────────
# Time windows
# ─────────────────────────────────────────────────────────────────────────────


class TestTimeWindow:
    @pytest.mark.parametrize(
        "hour,minute,expected",
        [
            (9, 0, True),
            (12, 30, True),
            (17, 0, True),
            (17, 1, False),
            (8, 59, False),
        ],
    )
    def test_daytime_window(self, hour, minute, expected):
        window = TimeWindow("09:00", "17:00")
        assert window.contains(datetime(2025, 1, 1, hour, minute)) is expected

    @pytest.mark.parametrize(
        "hour,expected",
        [(23, True), (2, True), (6, True), (7, False), (12, False)],
    )
    def test_window_wrapping_midnight(self, hour, expected):
        window = TimeWindow("22:00", "06:00")
        assert window.contains(datetime(2025, 1, 1, hour, 0)) is expected

    def test_invalid_time_rejected(self):
        with pytest.raises(ConstraintConfigurationError):
            TimeWindow("9am", "17:00")


# ─────────────────────────────────────────────────────────────────────────────
# Constraint sets
# ─────────────────────────────────────────────────────────────────────────────


class TestConstraintSet:
    def test_duplicate_constraint_ids_rejected(self):
        with pytest.raises(ConstraintConfigurationError):
            ConstraintSet(
                id="s",
                name="S",
                constraints=[
                    BlockToolConstraint(id="dup", tool_id="a"),
                    BlockToolConstraint(id="dup", tool_id="b"),
                ],
            )

    def test_applies_to_dict_is_coerced(self):
        s = ConstraintSet(id="s", name="S", applies_to={"modes": ["sol"]})
        assert isinstance(s.applies_to, AppliesTo)
        assert s.applies(Mode.SOL)
        assert not s.applies(Mode.MARS)

    def test_persona_filter_ignored_without_persona(self):
        applies = AppliesTo(personas=[Persona.SWL])
        assert applies.matches(Mode.MARS, None)
        assert applies.matches(Mode.MARS, Persona.SWL)
        assert not applies.matches(Mode.MARS, Persona.PERSONAL)

    def test_active_constraints_skips_inactive(self):
        s = ConstraintSet(
            id="s",
            name="S",
            constraints=[
                BlockToolConstraint(id="on", tool_id="a"),
                BlockToolConstraint(id="off", tool_id="b", active=False),
            ],
        )
        assert [c.id for c in s.active_constraints()] == ["on"]

    def test_round_trip(self):
        s = builder.create_constraint_set(
            "user:alice:sol",
            "Alice Sol",
            [builder.block_tool("rm", id="no-rm")],
            modes=["sol"],
            priority=5,
            user_id="alice",
        )
        restored = ConstraintSet.from_dict(s.to_dict())
        assert restored.id == "user:alice:sol"
        assert restored.priority == 5
        assert restored.user_id == "alice"
        assert restored.applies_to.modes == [Mode.SOL]
        assert isinstance(restored.constraints[0], BlockToolConstraint)

    def test_filter_applicable_orders_by_priority_then_id(self):
        sets = [
            ConstraintSet(id="b", name="B", priority=10),
            ConstraintSet(id="a", name="A", priority=10),
            ConstraintSet(id="z", name="Z", priority=100),
            ConstraintSet(id="other-user", name="O", priority=500, user_id="bob"),
            ConstraintSet(id="mars-only", name="M", priority=900, applies_to=AppliesTo(modes=[Mode.MARS])),
        ]
        selected = filter_applicable(sets, "alice", Mode.SOL)
        assert [s.id for s in selected] == ["z", "a", "b"]


# ─────────────────────────────────────────────────────────────────────────────
# Contexts and results
# ─────────────────────────────────────────────────────────────────────────────


class TestActionContext:
    def test_validate_requires_action_id(self):
        with pytest.raises(ConstraintConfigurationError):
            ActionContext(action_id="", current_mode=Mode.SOL).validate()

    def test_validate_rejects_unknown_risk(self):
        with pytest.raises(ConstraintConfigurationError):
            ActionContext(action_id="a", current_mode=Mode.SOL, estimated_risk="catastrophic").validate()

    def test_validate_coerces_strings(self):
        ctx = ActionContext(action_id="a", current_mode="forge", role="forge", persona="swl").validate()
        assert ctx.current_mode is Mode.FORGE
        assert ctx.role is Role.FORGE
        assert ctx.persona is Persona.SWL


class TestEvaluationResult:
    def test_allowed_must_match_decision(self):
        with pytest.raises(ValueError):
            ConstraintEvaluationResult(allowed=True, decision=Decision.DENY)

    def test_primary_reason(self):
        result = ConstraintEvaluationResult(allowed=False, decision=Decision.DENY, reasons=["first", "second"])
        assert result.primary_reason == "first"


# ─────────────────────────────────────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────────────────────────────────────


class TestBuilder:
    def test_generates_ids(self):
        a = builder.block_tool("rm")
        b = builder.block_tool("rm")
        assert a.id and b.id and a.id != b.id

    def test_max_risk_rejects_invalid_level(self):
        with pytest.raises(ConstraintConfigurationError):
            builder.max_risk("extreme")

    @pytest.mark.parametrize(
        "text,expected_type",
        [
            ("require-confirmation", RequireConfirmationConstraint),
            ("max-risk:medium", MaxRiskConstraint),
            ("block-tool:rm", BlockToolConstraint),
            ("block-mode:mars,earth", BlockModeConstraint),
            ("time-window:09:00-17:00", TimeWindowConstraint),
            ("no-prod-writes", OtherConstraint),
        ],
    )
    def test_parse_constraint_string(self, text, expected_type):
        assert isinstance(builder.parse_constraint_string(text), expected_type)

    def test_parse_constraint_string_details(self):
        c = builder.parse_constraint_string("max-risk:medium", id_prefix="preset:sol")
        assert c.id == "preset:sol:max-risk-medium"
        assert c.max_risk is RiskLevel.MEDIUM
        assert c.created_by is ConstraintSource.SYSTEM

        modes = builder.parse_constraint_string("block-mode:mars,earth")
        assert modes.blocked_modes == [Mode.MARS, Mode.EARTH]

        note = builder.parse_constraint_string("no-prod-writes")
        assert note.severity is ConstraintSeverity.WARNING
        assert note.description == "no-prod-writes"

    def test_parse_constraint_string_needs_argument(self):
        with pytest.raises(ConstraintConfigurationError):
            builder.parse_constraint_string("max-risk")

    def test_parse_empty_string(self):
        with pytest.raises(ConstraintConfigurationError):
            builder.parse_constraint_string("  ")
