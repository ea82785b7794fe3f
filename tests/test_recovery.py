"""Unit tests for the RecoveryCoordinator."""

from datetime import datetime, timedelta, timezone
from unittest import TestCase

import pytest

from savannah.relationship.engine import ActionRecord, ConflictEntry, PatronRelationship
from savannah.relationship.recovery import RECOVERY_MECHANICS, RecoveryContext, RecoveryCoordinator

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
APOLOGY = {"acknowledges_wrong": True, "makes_excuses": False, "sincerity": 0.9}


def _rel(**kw):
    return PatronRelationship(user_id="u1", first_met=NOW, last_seen=NOW, last_decay_at=NOW, **kw)


class TestSincereApology(TestCase):
    def setUp(self):
        self.coordinator = RecoveryCoordinator()
        self.rel = _rel(relationship_level=-0.6)

    def test_apology_then_cooldown(self):
        first = self.coordinator.attempt(self.rel, "sincere_apology", APOLOGY, NOW)
        assert first.success
        assert first.recovery_amount == pytest.approx(0.24)
        assert first.new_relationship_level == pytest.approx(-0.36)

        second = self.coordinator.attempt(self.rel, "sincere_apology", APOLOGY, NOW + timedelta(minutes=5))
        assert not second.success
        assert second.reason == "Recovery method on cooldown"
        assert self.rel.relationship_level == pytest.approx(-0.36)
        assert len(self.rel.recovery_history) == 1

    def test_failed_precondition_leaves_no_trace(self):
        result = self.coordinator.attempt(self.rel, "sincere_apology", {**APOLOGY, "makes_excuses": True}, NOW)
        assert not result.success
        assert result.reason == "Cannot make excuses"
        assert self.rel.recovery_history == []
        assert self.rel.relationship_level == pytest.approx(-0.6)

        # no cooldown consumed: a proper apology right after still works
        assert self.coordinator.attempt(self.rel, "sincere_apology", APOLOGY, NOW).success

    def test_low_sincerity_rejected(self):
        result = self.coordinator.attempt(self.rel, "sincere_apology", {**APOLOGY, "sincerity": 0.5}, NOW)
        assert result.reason == "Must show genuine remorse"

    def test_effectiveness_diminishes(self):
        self.coordinator.attempt(self.rel, "sincere_apology", APOLOGY, NOW)
        later = NOW + timedelta(hours=1)
        result = self.coordinator.attempt(self.rel, "sincere_apology", APOLOGY, later)
        assert result.effectiveness == pytest.approx(0.4 * 0.8)
        assert result.effectiveness_reduction == pytest.approx(0.2)

    def test_camel_case_context(self):
        ctx = {"acknowledgesWrong": True, "makesExcuses": False, "sincerity": 0.8}
        assert self.coordinator.attempt(self.rel, "sincere_apology", ctx, NOW).success


class TestRecoveryBounds:
    def test_unknown_type(self):
        result = RecoveryCoordinator().attempt(_rel(relationship_level=-0.5), "flowers", {}, NOW)
        assert not result.success
        assert result.reason == "Unknown recovery type"

    def test_cannot_push_above_neutral(self):
        rel = _rel(relationship_level=0.3)
        result = RecoveryCoordinator().attempt(rel, "sincere_apology", APOLOGY, NOW)
        assert result.recovery_amount == 0.0
        assert rel.relationship_level == pytest.approx(0.3)

    def test_negligible_effect_still_consumes_cooldown(self):
        rel = _rel(relationship_level=-0.1)
        coordinator = RecoveryCoordinator()
        result = coordinator.attempt(rel, "sincere_apology", APOLOGY, NOW)
        assert not result.success
        assert result.reason == "insufficient_effect"
        assert rel.recovery_history[-1].outcome == "insufficient_effect"
        assert coordinator.is_on_cooldown(rel, "sincere_apology", NOW + timedelta(minutes=30))
        assert not coordinator.is_on_cooldown(rel, "sincere_apology", NOW + timedelta(hours=1))

    def test_every_type_has_a_cooldown(self):
        for name, method in RECOVERY_MECHANICS.items():
            assert method.cooldown > timedelta(0), name


class TestLongTermRecovery:
    def test_consistent_kindness_needs_streak(self):
        rel = _rel(relationship_level=-0.9)
        coordinator = RecoveryCoordinator()
        for i in range(9):
            rel.action_history.append(ActionRecord(NOW - timedelta(minutes=i), "genuine_thanks", "appreciation", 10))
        assert coordinator.attempt(rel, "consistent_kindness", {}, NOW).reason == "Need more positive interactions"

        rel.action_history.append(ActionRecord(NOW - timedelta(minutes=20), "genuine_thanks", "appreciation", 10))
        assert coordinator.attempt(rel, "consistent_kindness", {}, NOW).recovery_type == "consistent_kindness"
        assert len(rel.recovery_history) == 1

    def test_proving_change_needs_a_quiet_week(self):
        rel = _rel(relationship_level=-0.9)
        rel.conflict_history.append(ConflictEntry(NOW - timedelta(days=3), "rudeness", 0.6))
        coordinator = RecoveryCoordinator()
        assert not coordinator.attempt(rel, "proving_change", {}, NOW).success
        assert coordinator.attempt(rel, "proving_change", {}, NOW + timedelta(days=5)).success

    def test_available_methods_hide_cooldowns(self):
        rel = _rel(relationship_level=-0.6)
        coordinator = RecoveryCoordinator()
        coordinator.attempt(rel, "sincere_apology", APOLOGY, NOW)
        names = [m["method"] for m in coordinator.available_methods(rel, NOW)]
        assert "sincere_apology" not in names
        assert "grand_gesture" in names


def test_context_ignores_non_boolean_flags():
    ctx = RecoveryContext.from_mapping({"acknowledges_wrong": "yes", "sincerity": "high"})
    assert ctx.acknowledges_wrong is False
    assert ctx.sincerity == 0.0
