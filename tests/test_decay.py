"""Unit tests for inactivity decay."""

from datetime import datetime, timedelta, timezone

import pytest

from savannah.relationship.engine import ConflictEntry, MemoryEntry, PatronRelationship
from savannah.relationship.inactivity import apply_decay, apply_inactivity_decay

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _rel(**kw):
    return PatronRelationship(user_id="u1", first_met=NOW, last_seen=NOW, last_decay_at=NOW, **kw)


def test_grudges_fade_faster_than_affection():
    fond = apply_decay(_rel(relationship_level=0.8), 30)
    sore = apply_decay(_rel(relationship_level=-0.8), 30)
    assert fond.relationship_level == pytest.approx(0.8 * 0.995 ** 30)
    assert sore.relationship_level == pytest.approx(-0.8 * 0.99 ** 30)
    assert abs(fond.relationship_level) > abs(sore.relationship_level)


def test_decay_does_not_touch_input():
    rel = _rel(relationship_level=0.5)
    rel.memory_bank.append(MemoryEntry(NOW, "positive", 0.5, 0.5))
    apply_decay(rel, 100)
    assert rel.relationship_level == 0.5
    assert rel.memory_bank[0].impact == 0.5


def test_significant_memories_last_longer():
    rel = _rel()
    rel.memory_bank = [
        MemoryEntry(NOW, "positive", 0.9, 0.9, ["compliments"]),
        MemoryEntry(NOW, "negative", 0.5, 0.5, ["rudeness"]),
    ]
    out = apply_decay(rel, 60)
    big, small = out.memory_bank
    assert big.impact == pytest.approx(0.9 * 0.998 ** 60)
    assert small.impact == pytest.approx(0.5 * 0.99 ** 60)


def test_faded_memories_are_pruned():
    rel = _rel()
    rel.memory_bank = [MemoryEntry(NOW, "positive", 0.35, 0.35)]
    assert apply_decay(rel, 200).memory_bank == []


def test_audit_trails_are_not_pruned():
    rel = _rel(relationship_level=-0.5)
    rel.memory_bank = [MemoryEntry(NOW, "negative", 0.31, 0.31)]
    rel.conflict_history.append(ConflictEntry(NOW, "rudeness", 0.5))
    out = apply_decay(rel, 365)
    assert out.memory_bank == []
    assert len(out.conflict_history) == 1


class TestInactivityDecay:
    def test_under_a_day_is_a_no_op(self):
        rel = _rel(relationship_level=0.5)
        out, days = apply_inactivity_decay(rel, NOW + timedelta(hours=20))
        assert out is rel
        assert out.relationship_level == 0.5
        assert days < 1

    def test_elapsed_since_last_decay_not_since_creation(self):
        rel = _rel(relationship_level=0.5)
        once, _ = apply_inactivity_decay(rel, NOW + timedelta(days=10))
        assert once.last_decay_at == NOW + timedelta(days=10)

        # reloading at the same instant must not decay the same ten days again
        again, days = apply_inactivity_decay(once, NOW + timedelta(days=10))
        assert days == 0
        assert again.relationship_level == pytest.approx(once.relationship_level)
        assert once.relationship_level == pytest.approx(0.5 * 0.995 ** 10)
