"""Tests for orb/persona/classifier.py, rules.py and overrides.py"""

from datetime import timedelta

import pytest

from orb.config_models import PersonaConfig
from orb.errors import InvalidPersonaError
from orb.identity import OPERATIONS_DEVICE, Device, Mode, Persona
from orb.persona import (
    ClassificationSource,
    OverrideScope,
    PersonaContext,
    PersonaHistoryEntry,
    TimeOfDay,
)
from orb.persona import rules
from orb.persona.classifier import NO_SIGNALS_REASON, STICKY_REASON, PersonaClassifier
from orb.persona.overrides import InMemoryPersonaOverrideStore


@pytest.fixture
def classifier(fixed_now):
    return PersonaClassifier(clock=lambda: fixed_now)


# ─────────────────────────────────────────────────────────────────────────────
# Rule tables
# ─────────────────────────────────────────────────────────────────────────────


class TestRuleTables:
    @pytest.mark.parametrize("device", list(Device))
    def test_every_device_has_rule(self, device):
        assert device in rules.DEVICE_RULES

    @pytest.mark.parametrize("mode", list(Mode))
    def test_every_mode_has_entry(self, mode):
        assert mode in rules.MODE_RULES

    def test_default_mode_gives_no_signal(self):
        assert rules.mode_rule(Mode.DEFAULT) is None

    @pytest.mark.parametrize(
        "feature,persona",
        [
            ("SWL inventory", Persona.SWL),
            ("laundry pickup", Persona.SWL),
            ("real estate pipeline", Persona.REAL_ESTATE),
            ("property search", Persona.REAL_ESTATE),
            ("Open People notes", Persona.OPEN_PEOPLE),
            ("research board", Persona.OPEN_PEOPLE),
            ("design system", Persona.PERSONAL),
        ],
    )
    def test_feature_keywords(self, feature, persona):
        rule = rules.feature_rule(feature)
        assert rule is not None
        assert persona in rule.weights

    def test_feature_without_keyword(self):
        assert rules.feature_rule("calendar") is None
        assert rules.feature_rule("   ") is None

    @pytest.mark.parametrize(
        "hour,expected",
        [(5, TimeOfDay.MORNING), (11, TimeOfDay.MORNING), (12, TimeOfDay.AFTERNOON),
         (17, TimeOfDay.EVENING), (20, TimeOfDay.EVENING), (21, TimeOfDay.NIGHT), (3, TimeOfDay.NIGHT)],
    )
    def test_time_of_day_from_hour(self, hour, expected):
        assert TimeOfDay.from_hour(hour) is expected

    def test_location_rule(self):
        assert Persona.SWL in rules.location_rule("At the restaurant").weights
        assert rules.location_rule("beach") is None


# ─────────────────────────────────────────────────────────────────────────────
# Scoring
# ─────────────────────────────────────────────────────────────────────────────


class TestScoring:
    def test_operations_device_resolves_to_operations_persona(self, classifier):
        result = classifier.classify_persona(PersonaContext(device_id=OPERATIONS_DEVICE))

        assert result.persona is Persona.SWL
        assert result.confidence > 0.5
        assert any("Device mars" in reason for reason in result.reasons)
        assert result.source is ClassificationSource.INFERRED

    def test_no_signals_returns_default(self, classifier):
        result = classifier.classify_persona(PersonaContext())

        assert result.persona is Persona.PERSONAL
        assert result.confidence == 0.25
        assert result.reasons == [NO_SIGNALS_REASON]
        assert result.source is ClassificationSource.DEFAULT
        assert all(v == 0.25 for v in result.distribution.values())

    def test_distribution_covers_all_personas_and_sums_to_one(self, classifier):
        result = classifier.classify_persona(
            PersonaContext(device_id=Device.SOL, current_mode=Mode.MARS, time_of_day=TimeOfDay.EVENING)
        )

        assert set(result.distribution) == set(Persona)
        assert sum(result.distribution.values()) == pytest.approx(1.0)

    def test_mode_outweighs_device(self, classifier):
        result = classifier.classify_persona(PersonaContext(device_id=Device.SOL, current_mode=Mode.MARS))

        # swl 4 vs personal 2
        assert result.persona is Persona.SWL
        assert result.confidence == pytest.approx(2 / 6 + 0.5)

    def test_tie_breaks_by_declaration_order(self, classifier):
        result = classifier.classify_persona(PersonaContext(device_id=Device.EARTH))

        # personal 2 vs open_people 2
        assert result.persona is Persona.PERSONAL
        assert result.confidence == pytest.approx(0.5)

    def test_feature_dominates(self, classifier):
        result = classifier.classify_persona(
            PersonaContext(device_id=Device.MARS, active_feature="research notes")
        )
        assert result.persona is Persona.OPEN_PEOPLE

    def test_hour_is_converted(self, classifier):
        result = classifier.classify_persona(PersonaContext(time_of_day=23))
        assert result.persona is Persona.OPEN_PEOPLE

    def test_confidence_capped_at_one(self, classifier):
        result = classifier.classify_persona(
            PersonaContext(device_id=Device.MARS, current_mode=Mode.MARS, location_hint="restaurant")
        )
        assert result.confidence == 1.0

    def test_configured_default(self, fixed_now):
        classifier = PersonaClassifier(
            config=PersonaConfig(default_persona="open_people", default_confidence=0.1),
            clock=lambda: fixed_now,
        )
        result = classifier.classify_persona(PersonaContext())
        assert result.persona is Persona.OPEN_PEOPLE
        assert result.confidence == 0.1


# ─────────────────────────────────────────────────────────────────────────────
# Precedence: explicit > override > sticky > scoring
# ─────────────────────────────────────────────────────────────────────────────


class TestPrecedence:
    def test_explicit_persona_wins(self, classifier):
        result = classifier.classify_persona(
            PersonaContext(device_id=Device.MARS, explicit_persona=Persona.REAL_ESTATE)
        )

        assert result.persona is Persona.REAL_ESTATE
        assert result.confidence == 1.0
        assert result.overridden is True
        assert result.reasons == ["Explicitly set by user"]
        assert result.distribution[Persona.REAL_ESTATE] == 1.0
        assert result.distribution[Persona.SWL] == 0.0

    def test_sticky_recent_persona(self, classifier, fixed_now):
        ctx = PersonaContext(
            device_id=Device.MARS,
            recent_personas=[PersonaHistoryEntry(Persona.OPEN_PEOPLE, fixed_now - timedelta(seconds=60))],
        )
        result = classifier.classify_persona(ctx)

        assert result.persona is Persona.OPEN_PEOPLE
        assert result.confidence == 0.9
        assert result.reasons == [STICKY_REASON]

    def test_sticky_expires_after_window(self, classifier, fixed_now):
        ctx = PersonaContext(
            device_id=Device.MARS,
            recent_personas=[PersonaHistoryEntry(Persona.OPEN_PEOPLE, fixed_now - timedelta(seconds=300))],
        )
        assert classifier.classify_persona(ctx).persona is Persona.SWL

    def test_sticky_uses_latest_entry(self, classifier, fixed_now):
        ctx = PersonaContext(
            recent_personas=[
                PersonaHistoryEntry(Persona.SWL, fixed_now - timedelta(seconds=200)),
                PersonaHistoryEntry(Persona.REAL_ESTATE, fixed_now - timedelta(seconds=10)),
            ],
        )
        assert classifier.classify_persona(ctx).persona is Persona.REAL_ESTATE

    def test_override_beats_sticky(self, classifier, fixed_now, mock_user_id):
        classifier.set_persona_override(mock_user_id, Persona.SWL)
        ctx = PersonaContext(
            user_id=mock_user_id,
            recent_personas=[PersonaHistoryEntry(Persona.PERSONAL, fixed_now - timedelta(seconds=5))],
        )
        result = classifier.classify_persona(ctx)

        assert result.persona is Persona.SWL
        assert result.reasons == ["User override active"]
        assert result.overridden is True


# ─────────────────────────────────────────────────────────────────────────────
# Repeat classification
# ─────────────────────────────────────────────────────────────────────────────


def _same_outcome(first, second):
    assert second.persona is first.persona
    assert second.confidence == first.confidence
    assert second.source is first.source
    assert second.distribution == first.distribution
    assert second.reasons == first.reasons


class TestRepeatClassification:
    def test_override_and_history_stable(self, fixed_now, mock_user_id):
        store = InMemoryPersonaOverrideStore()
        classifier = PersonaClassifier(override_store=store, clock=lambda: fixed_now)
        classifier.set_persona_override(mock_user_id, Persona.REAL_ESTATE)
        ctx = PersonaContext(
            user_id=mock_user_id,
            device_id=Device.MARS,
            recent_personas=[PersonaHistoryEntry(Persona.PERSONAL, fixed_now - timedelta(seconds=5))],
        )
        overrides_before = [o.to_dict() for o in store.list_overrides(mock_user_id)]

        first = classifier.classify_persona(ctx)
        second = classifier.classify_persona(ctx)

        assert first.persona is Persona.REAL_ESTATE
        _same_outcome(first, second)
        assert [o.to_dict() for o in store.list_overrides(mock_user_id)] == overrides_before
        assert len(ctx.recent_personas) == 1

    def test_scored_signals_stable(self, fixed_now, mock_user_id):
        store = InMemoryPersonaOverrideStore()
        classifier = PersonaClassifier(override_store=store, clock=lambda: fixed_now)
        ctx = PersonaContext(
            user_id=mock_user_id,
            device_id=Device.MARS,
            current_mode=Mode.SOL,
            active_feature="research board",
            time_of_day=9,
        )

        first = classifier.classify_persona(ctx)
        second = classifier.classify_persona(ctx)

        _same_outcome(first, second)
        assert store.list_overrides(mock_user_id) == []

    def test_sticky_history_stable(self, classifier, fixed_now):
        ctx = PersonaContext(
            device_id=Device.MARS,
            recent_personas=[PersonaHistoryEntry(Persona.OPEN_PEOPLE, fixed_now - timedelta(seconds=60))],
        )

        first = classifier.classify_persona(ctx)
        second = classifier.classify_persona(ctx)

        assert first.persona is Persona.OPEN_PEOPLE
        _same_outcome(first, second)


# ─────────────────────────────────────────────────────────────────────────────
# Overrides
# ─────────────────────────────────────────────────────────────────────────────


class TestOverrides:
    def test_invalid_persona_rejected(self, classifier, mock_user_id):
        with pytest.raises(InvalidPersonaError):
            classifier.set_persona_override(mock_user_id, "astronaut")

    def test_invalid_persona_is_value_error(self):
        assert issubclass(InvalidPersonaError, ValueError)

    def test_set_get_clear(self, classifier, mock_user_id):
        classifier.set_persona_override(mock_user_id, "real_estate")
        assert classifier.get_persona_override(mock_user_id) is Persona.REAL_ESTATE

        assert classifier.clear_persona_override(mock_user_id) is True
        assert classifier.get_persona_override(mock_user_id) is None
        assert classifier.clear_persona_override(mock_user_id) is False

    def test_session_override_beats_user_override(self, classifier, mock_user_id, mock_session_id):
        classifier.set_persona_override(mock_user_id, Persona.PERSONAL)
        classifier.set_persona_override(mock_user_id, Persona.SWL, session_id=mock_session_id)

        assert classifier.get_persona_override(mock_user_id, mock_session_id) is Persona.SWL
        assert classifier.get_persona_override(mock_user_id, "other-session") is Persona.PERSONAL

    def test_scoped_override_matches_context(self, classifier, mock_user_id):
        classifier.set_persona_override(mock_user_id, Persona.SWL, scope=OverrideScope(device_id=Device.MARS))

        on_mars = PersonaContext(user_id=mock_user_id, device_id=Device.MARS)
        on_sol = PersonaContext(user_id=mock_user_id, device_id=Device.SOL)

        assert classifier.get_persona_override(mock_user_id, context=on_mars) is Persona.SWL
        assert classifier.get_persona_override(mock_user_id, context=on_sol) is None

    def test_more_specific_scope_wins(self, classifier, mock_user_id):
        classifier.set_persona_override(mock_user_id, Persona.SWL, scope=OverrideScope(mode=Mode.SOL))
        classifier.set_persona_override(
            mock_user_id,
            Persona.OPEN_PEOPLE,
            scope=OverrideScope(mode=Mode.SOL, feature="Research"),
        )

        ctx = PersonaContext(user_id=mock_user_id, current_mode=Mode.SOL, active_feature="research")
        assert classifier.get_persona_override(mock_user_id, context=ctx) is Persona.OPEN_PEOPLE

    def test_expired_override_ignored_and_pruned(self, fixed_now, mock_user_id):
        store = InMemoryPersonaOverrideStore()
        classifier = PersonaClassifier(override_store=store, clock=lambda: fixed_now)
        classifier.set_persona_override(
            mock_user_id, Persona.SWL, expires_at=fixed_now - timedelta(minutes=1)
        )

        assert classifier.get_persona_override(mock_user_id) is None
        assert store.list_overrides(mock_user_id) == []

    def test_empty_scope_rejected(self):
        with pytest.raises(ValueError):
            OverrideScope()
