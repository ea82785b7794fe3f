"""End-to-end tests for the per-user EmotionalEngine."""

import asyncio
import dataclasses
from unittest.mock import AsyncMock, MagicMock

import pytest

from savannah.core.config import Settings
from savannah.core.errors import (
    ClassifierNotConfiguredError,
    NoActiveSessionError,
    PersistenceError,
    SavannahError,
    SessionAlreadyActiveError,
)
from savannah.relationship.processor import EmotionalEngine
from savannah.relationship.signals import BehaviorVector
from savannah.services.memory_store import MemoryStore

APOLOGY = {"acknowledges_wrong": True, "makes_excuses": False, "sincerity": 0.9}


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_per_session_calls_need_a_session(self, engine):
        with pytest.raises(NoActiveSessionError):
            await engine.record_action("u1", {"appreciation": 0.5})
        with pytest.raises(NoActiveSessionError):
            await engine.score_action("u1", "genuine_thanks")
        with pytest.raises(NoActiveSessionError):
            await engine.end_session("u1")

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, engine):
        await engine.start_session("u1")
        with pytest.raises(SessionAlreadyActiveError):
            await engine.start_session("u1")

    @pytest.mark.asyncio
    async def test_new_user_thanked_three_times(self, engine):
        ctx = await engine.start_session("u1")
        assert ctx.relationship.special_status == "new"
        assert ctx.relationship.level == 0

        for _ in range(3):
            await engine.score_action("u1", "genuine_thanks", {"sincerity": 0.9})

        rel = await engine.get_or_create("u1")
        assert rel.total_interactions == 3
        assert rel.special_status != "new"
        assert rel.relationship_level > 0

    @pytest.mark.asyncio
    async def test_end_session_summary(self, engine, clock):
        await engine.start_session("u1")
        await engine.record_action("u1", {"appreciation": 0.8})
        clock.advance(seconds=90)
        summary = await engine.end_session("u1", tip=10)

        assert summary.duration_seconds == 90
        assert summary.interaction_count == 1
        assert summary.tip_amount == 10
        assert summary.warnings == ()
        with pytest.raises(dataclasses.FrozenInstanceError):
            summary.final_mood = "hurt"

        rel = await engine.get_or_create("u1")
        assert rel.tip_history[0].amount == 10
        assert len(rel.favorite_interactions) == 1
        assert rel.total_time_spent == 90
        # the session is gone, the relationship is not
        with pytest.raises(NoActiveSessionError):
            await engine.record_action("u1", {"appreciation": 0.1})

    @pytest.mark.asyncio
    async def test_tip_appreciation_is_capped(self, engine):
        await engine.start_session("u1")
        before = (await engine.get_or_create("u1")).relationship_level
        await engine.end_session("u1", tip=100)
        after = (await engine.get_or_create("u1")).relationship_level
        assert after - before == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_short_session_is_not_a_favorite(self, engine, clock):
        await engine.start_session("u1")
        clock.advance(seconds=30)
        await engine.end_session("u1")
        assert (await engine.get_or_create("u1")).favorite_interactions == []

    @pytest.mark.asyncio
    async def test_feedback_applied_as_an_action(self, engine):
        await engine.start_session("u1")
        await engine.end_session("u1", feedback={"rudeness": 0.6})
        rel = await engine.get_or_create("u1")
        assert rel.relationship_level < 0
        assert rel.conflict_history


class TestRecordAction:
    @pytest.mark.asyncio
    async def test_warm_vector(self, engine):
        await engine.start_session("u1")
        consequences = await engine.record_action("u1", BehaviorVector(appreciation=0.8, compliments=0.4))
        rel = await engine.get_or_create("u1")
        ctx = await engine.emotional_context("u1")

        assert rel.relationship_level > 0
        assert len(rel.memory_bank) == 1
        assert ctx.mood_value > 0
        assert consequences.service_quality == "standard"

    @pytest.mark.asyncio
    async def test_rudeness_is_remembered_next_session(self, engine):
        await engine.start_session("u1")
        await engine.record_action("u1", {"rudeness": 0.9})
        await engine.end_session("u1")

        ctx = await engine.start_session("u1")
        rel = await engine.get_or_create("u1")
        assert rel.conflict_history[-1].type == "rudeness"
        assert ctx.mood_value < 0

    @pytest.mark.asyncio
    async def test_utterance_features_raise_quality(self, engine):
        await engine.start_session("u1")
        await engine.record_action(
            "u1", {"interest": 0.3},
            metadata={"utterance_features": {"question_count": 2, "exclamation_count": 0, "length": 25}},
        )
        ctx = await engine.emotional_context("u1")
        assert ctx.session.conversation_quality == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_process_utterance_uses_classifier(self, store, cfg, clock):
        classifier = MagicMock()
        classifier.classify = AsyncMock(return_value={"compliments": 0.7})
        engine = EmotionalEngine(store=store, classifier=classifier, cfg=cfg, clock=clock)

        await engine.start_session("u1")
        await engine.process_utterance("u1", "you make the best old fashioned", {"channel": "bar"})
        classifier.classify.assert_awaited_once_with("you make the best old fashioned", {"channel": "bar"})
        assert (await engine.get_or_create("u1")).relationship_level > 0

    @pytest.mark.asyncio
    async def test_process_utterance_checks_session_first(self, store, cfg, clock):
        classifier = MagicMock()
        classifier.classify = AsyncMock()
        engine = EmotionalEngine(store=store, classifier=classifier, cfg=cfg, clock=clock)
        with pytest.raises(NoActiveSessionError):
            await engine.process_utterance("u1", "hi")
        classifier.classify.assert_not_awaited()


class TestRecovery:
    @pytest.mark.asyncio
    async def test_problematic_patron_apologises(self, engine):
        rel = await engine.get_or_create("u1")
        rel.relationship_level = -0.6
        assert rel.special_status == "problematic"

        first = await engine.attempt_recovery("u1", "sincere_apology", APOLOGY)
        assert first.success
        assert first.new_relationship_level > -0.6

        second = await engine.attempt_recovery("u1", "sincere_apology", APOLOGY)
        assert not second.success
        assert second.new_relationship_level == pytest.approx(first.new_relationship_level)

    @pytest.mark.asyncio
    async def test_recovery_lifts_mood_and_is_remembered(self, engine):
        rel = await engine.get_or_create("u1")
        rel.relationship_level = -1.0
        before = (await engine.emotional_context("u1")).mood_value
        result = await engine.attempt_recovery("u1", "defending_her", {"public": True, "against_criticism": True})
        assert result.success
        assert (await engine.emotional_context("u1")).mood_value > before
        assert any("recovery" in m.tags for m in rel.memory_bank)


class TestPersistence:
    @pytest.mark.asyncio
    async def test_relationship_survives_restart_with_decay(self, store, cfg, clock):
        engine = EmotionalEngine(store=store, cfg=cfg, clock=clock)
        await engine.start_session("u1")
        for _ in range(5):
            await engine.score_action("u1", "remembering_details")
        await engine.end_session("u1")
        saved = (await engine.get_or_create("u1")).relationship_level

        clock.advance(days=10)
        reborn = EmotionalEngine(store=store, cfg=cfg, clock=clock)
        rel = await reborn.get_or_create("u1")
        assert rel.total_interactions == 5
        assert rel.relationship_level == pytest.approx(saved * 0.995 ** 10)
        assert rel.last_decay_at == clock()

    @pytest.mark.asyncio
    async def test_failed_save_surfaces_as_warning(self, cfg, clock):
        failing = MagicMock()
        failing.get = AsyncMock(return_value=None)
        failing.set = AsyncMock(side_effect=PersistenceError("disk full"))
        failing.keys = AsyncMock(return_value=[])
        engine = EmotionalEngine(store=MemoryStore(failing, clock=clock), cfg=cfg, clock=clock)

        await engine.start_session("u1")
        await engine.record_action("u1", {"appreciation": 0.5})
        summary = await engine.end_session("u1")

        assert "relationship not saved" in summary.warnings
        # in-memory state is kept
        assert (await engine.get_or_create("u1")).relationship_level > 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_same_user_is_serialised(self, engine):
        await engine.start_session("u1")
        await asyncio.gather(*(engine.record_action("u1", {"interest": 0.1}) for _ in range(25)))
        ctx = await engine.emotional_context("u1")
        assert ctx.session.interaction_count == 25
        assert ctx.relationship.total_interactions == 25

    @pytest.mark.asyncio
    async def test_users_are_independent(self, engine):
        await asyncio.gather(engine.start_session("nice"), engine.start_session("rude"))
        await asyncio.gather(
            *(engine.record_action("nice", {"appreciation": 0.6}) for _ in range(5)),
            *(engine.record_action("rude", {"rudeness": 0.6}) for _ in range(5)),
        )
        nice = await engine.emotional_context("nice")
        rude = await engine.emotional_context("rude")
        assert nice.mood_value > 0 > rude.mood_value
        assert nice.relationship.level > 0 > rude.relationship.level


class TestTick:
    @pytest.mark.asyncio
    async def test_neglect_during_session(self, engine):
        await engine.start_session("u1")
        await engine.tick("u1", 40)
        ctx = await engine.emotional_context("u1")
        assert ctx.attention == pytest.approx(0.78)

        for _ in range(3):
            await engine.tick("u1", 40)
        ctx = await engine.emotional_context("u1")
        assert ctx.mood_value < 0
        assert "neglected" in ctx.emotional_cues

    @pytest.mark.asyncio
    async def test_action_resets_neglect(self, engine):
        await engine.start_session("u1")
        await engine.tick("u1", 100)
        await engine.record_action("u1", {"interest": 0.2})
        assert (await engine.emotional_context("u1")).session.neglect_seconds == 0

    @pytest.mark.asyncio
    async def test_tick_unknown_user_is_a_no_op(self, engine):
        assert await engine.tick("ghost", 30) is None

    @pytest.mark.asyncio
    async def test_tick_all(self, engine):
        await engine.start_session("a")
        await engine.get_or_create("b")
        assert await engine.tick_all(30) == 2
        assert engine.active_users() == ["a"]


class TestSummaries:
    @pytest.mark.asyncio
    async def test_engagement_summary(self, engine):
        await engine.start_session("u1")
        for _ in range(3):
            await engine.score_action("u1", "defending_savannah")
        summary = await engine.engagement_summary("u1")
        assert summary.favor_level == "recognized"
        assert summary.engagement_points == pytest.approx(75)
        assert len(summary.recent_actions) == 3
        assert summary.next_favor_threshold["level"] == "regular"
        assert summary.recovery_needed is False

    @pytest.mark.asyncio
    async def test_relationship_summary(self, engine):
        await engine.start_session("u1")
        await engine.record_action("u1", {"rudeness": 0.8})
        summary = await engine.relationship_summary("u1")
        assert summary.recovery_needed
        assert summary.recent_conflicts[0]["type"] == "rudeness"
        assert summary.significant_memories[0]["polarity"] == "negative"
        assert summary.total_sessions == 1

    def test_adjust_balance(self, engine):
        assert engine.adjust_balance("damage_sensitivity", "high")
        assert not engine.adjust_balance("damage_sensitivity", "extreme")


class TestInactivityDecay:
    @pytest.mark.asyncio
    async def test_grudge_fades_between_sessions(self, engine, clock):
        await engine.start_session("u1")
        await engine.record_action("u1", {"rudeness": 0.8})
        await engine.end_session("u1")
        grudge = (await engine.relationship_summary("u1")).relationship_level
        assert grudge < 0

        clock.advance(days=60)
        await engine.start_session("u1")
        rel = await engine.get_or_create("u1")
        assert rel.relationship_level == pytest.approx(grudge * 0.99 ** 60)

    @pytest.mark.asyncio
    async def test_affection_fades_slower_than_grudge(self, engine, clock):
        await engine.start_session("u1")
        for _ in range(3):
            await engine.score_action("u1", "remembering_details")
        await engine.end_session("u1")
        fondness = (await engine.get_or_create("u1")).relationship_level
        assert fondness > 0

        clock.advance(days=20)
        ctx = await engine.start_session("u1")
        assert ctx.relationship.level == pytest.approx(fondness * 0.995 ** 20)

    @pytest.mark.asyncio
    async def test_cached_actor_is_decayed_on_access(self, engine, clock):
        rel = await engine.get_or_create("u1")
        rel.relationship_level = -0.8
        assert "u1" in engine.cached_users()

        clock.advance(days=60)
        assert (await engine.get_or_create("u1")).relationship_level == pytest.approx(-0.8 * 0.99 ** 60)

    @pytest.mark.asyncio
    async def test_same_day_access_does_not_decay(self, engine, clock):
        rel = await engine.get_or_create("u1")
        rel.relationship_level = 0.5
        clock.advance(hours=23)
        assert (await engine.get_or_create("u1")).relationship_level == 0.5


class TestActorCache:
    @pytest.mark.asyncio
    async def test_ended_sessions_release_actors_and_locks(self, engine):
        for i in range(50):
            await engine.start_session(f"u{i}")
            await engine.end_session(f"u{i}")
        assert engine.cached_users() == []
        assert engine._locks == {}
        assert engine._lock_holders == {}

    @pytest.mark.asyncio
    async def test_unsaved_actor_is_kept(self, cfg, clock):
        failing = MagicMock()
        failing.get = AsyncMock(return_value=None)
        failing.set = AsyncMock(side_effect=PersistenceError("disk full"))
        failing.keys = AsyncMock(return_value=[])
        engine = EmotionalEngine(store=MemoryStore(failing, clock=clock), cfg=cfg, clock=clock)

        await engine.start_session("u1")
        await engine.end_session("u1")
        assert engine.cached_users() == ["u1"]

    @pytest.mark.asyncio
    async def test_read_only_lookups_are_bounded(self, store, clock):
        cfg = Settings(_env_file=None, ACTOR_CACHE_SIZE=3)
        engine = EmotionalEngine(store=store, cfg=cfg, clock=clock)
        await engine.start_session("live")

        for i in range(10):
            await engine.emotional_context(f"reader{i}")

        cached = engine.cached_users()
        assert len(cached) == 3
        assert "live" in cached
        assert cached[-1] == "reader9"
        assert set(engine._locks) == set(cached)

    @pytest.mark.asyncio
    async def test_evicted_user_reloads_from_store(self, store, clock):
        cfg = Settings(_env_file=None, ACTOR_CACHE_SIZE=1)
        engine = EmotionalEngine(store=store, cfg=cfg, clock=clock)
        await engine.start_session("u1")
        await engine.score_action("u1", "genuine_thanks")
        await engine.end_session("u1")
        saved = (await engine.get_or_create("u1")).relationship_level

        await engine.get_or_create("u2")
        assert engine.cached_users() == ["u2"]
        assert (await engine.get_or_create("u1")).relationship_level == pytest.approx(saved)


class TestPreferences:
    @pytest.mark.asyncio
    async def test_preferences_merge_and_persist(self, engine, store):
        assert await engine.preferences("u1") == {}
        assert await engine.update_preferences("u1", {"drink": "negroni"})
        assert await engine.update_preferences("u1", {"seat": "corner"})

        assert await engine.preferences("u1") == {"drink": "negroni", "seat": "corner"}
        assert await store.load("u1", "preferences") == {"drink": "negroni", "seat": "corner"}
        assert engine.cached_users() == []

    @pytest.mark.asyncio
    async def test_failed_preference_save(self, cfg, clock):
        failing = MagicMock()
        failing.get = AsyncMock(return_value=None)
        failing.set = AsyncMock(side_effect=PersistenceError("down"))
        engine = EmotionalEngine(store=MemoryStore(failing, clock=clock), cfg=cfg, clock=clock)
        assert await engine.update_preferences("u1", {"drink": "negroni"}) is False


@pytest.mark.asyncio
async def test_process_utterance_without_classifier(engine):
    await engine.start_session("u1")
    with pytest.raises(ClassifierNotConfiguredError) as exc:
        await engine.process_utterance("u1", "hi")
    assert isinstance(exc.value, SavannahError)
