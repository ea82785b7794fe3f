"""
Per-user emotional engine.

Every user gets a PatronActor: relationship, mood and an optional live
session, guarded by a per-user asyncio.Lock. Public operations take that lock,
run the arithmetic synchronously and only suspend on the persistence gateway.
Different users never share mutable state.

Actors are a cache over the store. A cleanly ended session drops its actor;
beyond ACTOR_CACHE_SIZE the oldest idle actors go too. Inactivity decay runs
whenever an actor is touched.
"""

import asyncio
import dataclasses
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from savannah.core.config import Settings, settings as default_settings
from savannah.core.errors import (
    ClassifierNotConfiguredError,
    NoActiveSessionError,
    SessionAlreadyActiveError,
)
from savannah.relationship.context import build_emotional_context
from savannah.relationship.engine import (
    PatronRelationship,
    Session,
    SessionSummary,
    TipRecord,
    clamp_relationship,
    remember,
    update_conversation_quality,
    update_emotional_state,
    update_relationship,
)
from savannah.relationship.mood import ATTENTION_FLOOR, MoodState
from savannah.relationship.recovery import RecoveryCoordinator, RecoveryResult
from savannah.relationship.repo import (
    decay_relationship,
    get_or_create_relationship,
    load_mood,
    load_preferences,
    log_conversation,
    log_engagement,
    save_mood,
    save_preferences,
    save_relationship,
)
from savannah.relationship.scoring import (
    ConsequenceTable,
    EngagementScorer,
    ScoreResult,
    behavioral_consequences,
    escalation_tier,
)
from savannah.relationship.signals import BehaviorClassifier, BehaviorVector, coerce_vector
from savannah.schemas.emotion import EmotionalContext, EngagementSummary, RelationshipSummary
from savannah.services.memory_store import MemoryStore, build_store

log = logging.getLogger("savannah-relationship")

Clock = Callable[[], datetime]

# in-session neglect, separate from the loneliness threshold on MoodState
NEGLECT_ATTENTION_AFTER = 30.0
NEGLECT_MOOD_AFTER = 120.0
NEGLECT_ATTENTION_STEP = 0.02
NEGLECT_MOOD_STEP = 0.05
NEGLECT_MOOD_FLOOR = -0.5

FAVORITE_SESSION_SECONDS = 60.0
TIP_APPRECIATION_CAP = 0.4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PatronActor:
    relationship: PatronRelationship
    mood: MoodState
    session: Optional[Session] = None
    # last persist failed; the in-memory copy is the only good one
    unsaved: bool = False

    @property
    def user_id(self) -> str:
        return self.relationship.user_id


class EmotionalEngine:
    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        classifier: Optional[BehaviorClassifier] = None,
        cfg: Optional[Settings] = None,
        clock: Clock = _utcnow,
    ):
        self.cfg = cfg or default_settings
        self.clock = clock
        self.store = store if store is not None else build_store(self.cfg, clock=clock)
        self.classifier = classifier
        self.scorer = EngagementScorer(self.cfg.FAVOR_DIFFICULTY, self.cfg.DAMAGE_SENSITIVITY)
        self.recovery = RecoveryCoordinator(self.cfg.RECOVERY_SUCCESS_THRESHOLD)
        self._actors: Dict[str, PatronActor] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    # ---- actor plumbing ----

    @asynccontextmanager
    async def _hold(self, user_id: str):
        """Serialise work on one user. The lock entry lives while held, awaited or cached."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._lock_holders[user_id] = self._lock_holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_holders[user_id] - 1
            if remaining:
                self._lock_holders[user_id] = remaining
            else:
                del self._lock_holders[user_id]
                if user_id not in self._actors:
                    del self._locks[user_id]

    async def _load_actor(self, user_id: str) -> PatronActor:
        # caller holds the user's lock
        now = self.clock()
        actor = self._actors.pop(user_id, None)
        if actor is not None:
            actor.relationship = decay_relationship(actor.relationship, now, self.cfg.DECAY_PRUNE_FLOOR)
            self._actors[user_id] = actor
            return actor

        rel = await get_or_create_relationship(self.store, user_id, now, self.cfg.DECAY_PRUNE_FLOOR)
        mood = await load_mood(self.store, user_id) or MoodState(last_change=now)
        actor = self._actors[user_id] = PatronActor(relationship=rel, mood=mood)
        self._trim_actors()
        return actor

    def _evictable(self, user_id: str, actor: PatronActor) -> bool:
        return actor.session is None and not actor.unsaved and user_id not in self._lock_holders

    def _trim_actors(self) -> None:
        # least recently used first; open sessions and unsaved state stay
        excess = len(self._actors) - self.cfg.ACTOR_CACHE_SIZE
        if excess <= 0:
            return
        for uid, actor in list(self._actors.items()):
            if excess <= 0:
                break
            if self._evictable(uid, actor):
                del self._actors[uid]
                self._locks.pop(uid, None)
                excess -= 1
                log.debug("[REL %s] evicted idle actor", uid)

    def _session(self, actor: PatronActor) -> Session:
        if actor.session is None:
            raise NoActiveSessionError(actor.user_id)
        return actor.session

    async def _persist(self, actor: PatronActor) -> List[str]:
        warnings = []
        if not await save_relationship(self.store, actor.relationship):
            warnings.append("relationship not saved")
        if not await save_mood(self.store, actor.user_id, actor.mood):
            warnings.append("emotional state not saved")
        for w in warnings:
            log.warning("[REL %s] %s, keeping in-memory copy", actor.user_id, w)
        actor.unsaved = bool(warnings)
        return warnings

    def active_users(self) -> List[str]:
        return [uid for uid, a in self._actors.items() if a.session is not None]

    def cached_users(self) -> List[str]:
        return list(self._actors)

    # ---- ledger ----

    async def get_or_create(self, user_id: str) -> PatronRelationship:
        async with self._hold(user_id):
            return (await self._load_actor(user_id)).relationship

    async def start_session(self, user_id: str) -> EmotionalContext:
        async with self._hold(user_id):
            actor = await self._load_actor(user_id)
            if actor.session is not None:
                raise SessionAlreadyActiveError(user_id)

            now = self.clock()
            rel = actor.relationship
            actor.session = Session(user_id=user_id, start_time=now)
            rel.total_sessions += 1
            rel.last_seen = now
            self._prime_mood(actor, now)

            log.info(
                "[REL %s] session start status=%s level=%.3f mood=%s",
                user_id, rel.special_status, rel.relationship_level, actor.mood.label,
            )
            return build_emotional_context(user_id, actor.mood, rel, actor.session, now)

    def _prime_mood(self, actor: PatronActor, now: datetime) -> None:
        mood, rel = actor.mood, actor.relationship
        status = rel.special_status
        if status == "favorite":
            mood.set_mood("happy")
            mood.adjust("energy", 0.2)
            mood.attention = 1.0
        elif status == "problematic":
            mood.set_mood("annoyed")
            mood.adjust("attention", -0.3, floor=ATTENTION_FLOOR)
            mood.adjust("stress", 0.3)
        elif rel.relationship_level > 0.5:
            mood.set_mood("content")
            mood.adjust("energy", 0.1)

        recent = rel.recent_conflicts(now)
        if recent:
            mood.shift_mood(-0.3 * sum(c.severity for c in recent))
            mood.erode_stability(0.2)

    def _apply_vector(self, actor: PatronActor, sig: BehaviorVector, now: datetime) -> float:
        rel, session = actor.relationship, actor.session
        delta = update_emotional_state(actor.mood, session, sig, now)
        conflicts = update_relationship(rel, sig, now, self.cfg.CONFLICT_SEVERITY_THRESHOLD)
        if session is not None:
            update_conversation_quality(session, sig)
        remember(
            rel, sig.emotional_impact, sig.tags, now,
            mood=actor.mood.label,
            floor=self.cfg.MEMORY_SIGNIFICANCE_FLOOR,
            max_size=self.cfg.MEMORY_BANK_SIZE,
        )
        for c in conflicts:
            log.info("[REL %s] conflict %s severity=%.2f", rel.user_id, c.type, c.severity)
        return delta

    def _touch(self, actor: PatronActor, now: datetime) -> None:
        session = self._session(actor)
        session.interaction_count += 1
        session.neglect_seconds = 0.0
        actor.relationship.total_interactions += 1
        actor.relationship.last_seen = now

    async def record_action(
        self,
        user_id: str,
        vector: "BehaviorVector | Mapping[str, Any]",
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ConsequenceTable:
        """Fold one classified behavior vector into mood and relationship."""
        sig = coerce_vector(vector)
        if metadata and sig.features is None and isinstance(metadata.get("utterance_features"), Mapping):
            sig = coerce_vector({**dataclasses.asdict(sig), "features": metadata["utterance_features"]})

        async with self._hold(user_id):
            actor = await self._load_actor(user_id)
            self._session(actor)
            now = self.clock()

            delta = self._apply_vector(actor, sig, now)
            self._touch(actor, now)

            rel = actor.relationship
            log.info(
                "[REL %s] action tags=%s impact=%.2f mood_delta=%.3f mood=%s level=%.3f status=%s",
                user_id, sig.tags, sig.emotional_impact, delta, actor.mood.label,
                rel.relationship_level, rel.special_status,
            )
            await log_conversation(self.store, user_id, {
                "tags": sig.tags,
                "impact": sig.emotional_impact,
                "mood": actor.mood.label,
            })
            return behavioral_consequences(rel)

    async def process_utterance(
        self,
        user_id: str,
        text: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ConsequenceTable:
        if self.classifier is None:
            raise ClassifierNotConfiguredError("No behavior classifier configured")
        async with self._hold(user_id):
            # fail fast before paying for classification
            self._session(await self._load_actor(user_id))
        vector = await self.classifier.classify(text, metadata or {})
        return await self.record_action(user_id, vector, metadata)

    async def end_session(
        self,
        user_id: str,
        tip: float = 0.0,
        feedback: "BehaviorVector | Mapping[str, Any] | None" = None,
    ) -> SessionSummary:
        async with self._hold(user_id):
            actor = await self._load_actor(user_id)
            session = self._session(actor)
            rel, mood = actor.relationship, actor.mood
            now = self.clock()

            if tip and tip > 0:
                rel.tip_history.append(TipRecord(tip, now, session.conversation_quality))
                appreciation = min(TIP_APPRECIATION_CAP, tip * 0.1)
                rel.relationship_level += appreciation
                clamp_relationship(rel)
                mood.shift_mood(appreciation)

            if feedback:
                self._apply_vector(actor, coerce_vector(feedback), now)

            duration = max(0.0, (now - session.start_time).total_seconds())
            rel.total_time_spent += duration
            rel.last_seen = now

            summary = SessionSummary(
                user_id=user_id,
                started_at=session.start_time,
                ended_at=now,
                duration_seconds=duration,
                interaction_count=session.interaction_count,
                conversation_quality=session.conversation_quality,
                appreciation_shown=session.appreciation_shown,
                rudeness_level=session.rudeness_level,
                flirtation_level=session.flirtation_level,
                final_mood=mood.label,
                final_relationship_level=rel.relationship_level,
                special_status=rel.special_status,
                favor_level=rel.favor_level,
                tip_amount=max(0.0, tip or 0.0),
            )
            if duration > FAVORITE_SESSION_SECONDS:
                rel.favorite_interactions.append(summary)
            actor.session = None

            log.info(
                "[REL %s] session end duration=%.0fs interactions=%d mood=%s level=%.3f",
                user_id, duration, summary.interaction_count, summary.final_mood, rel.relationship_level,
            )
            warnings = await self._persist(actor)
            if not warnings:
                # next visit reloads through the store, which applies inactivity decay
                del self._actors[user_id]
            return dataclasses.replace(summary, warnings=tuple(warnings))

    # ---- scoring ----

    async def score_action(
        self,
        user_id: str,
        action: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> ScoreResult:
        async with self._hold(user_id):
            actor = await self._load_actor(user_id)
            self._session(actor)
            now = self.clock()

            # the scorer moves the relationship itself; the mood still has to hear about it
            result = self.scorer.score(actor.relationship, action, context, now)
            update_emotional_state(actor.mood, actor.session, result.emotional_impact, now)
            remember(
                actor.relationship, result.emotional_impact.emotional_impact, result.emotional_impact.tags, now,
                mood=actor.mood.label,
                floor=self.cfg.MEMORY_SIGNIFICANCE_FLOOR,
                max_size=self.cfg.MEMORY_BANK_SIZE,
            )
            session = actor.session
            session.interaction_count += 1
            session.neglect_seconds = 0.0
            actor.relationship.last_seen = now

            await log_engagement(self.store, user_id, {
                "action": result.action.value,
                "category": result.category,
                "points": result.points_earned,
                "favor_level": result.new_level,
            })
            return result

    def adjust_balance(self, setting: str, value: str) -> bool:
        ok = self.scorer.adjust_balance(setting, value)
        if not ok:
            log.warning("[REL] unknown balance setting %s=%s", setting, value)
        return ok

    # ---- preferences ----

    async def preferences(self, user_id: str) -> Dict[str, Any]:
        async with self._hold(user_id):
            return await load_preferences(self.store, user_id)

    async def update_preferences(self, user_id: str, changes: Mapping[str, Any]) -> bool:
        """Merge `changes` into the stored preferences. Returns False if the save failed."""
        async with self._hold(user_id):
            merged = await load_preferences(self.store, user_id)
            merged.update(changes)
            ok = await save_preferences(self.store, user_id, merged)
            if not ok:
                log.warning("[REL %s] preferences not saved", user_id)
            return ok

    # ---- recovery ----

    async def attempt_recovery(
        self,
        user_id: str,
        recovery_type: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> RecoveryResult:
        async with self._hold(user_id):
            actor = await self._load_actor(user_id)
            rel = actor.relationship
            now = self.clock()
            attempts_before = len(rel.recovery_history)

            result = self.recovery.attempt(rel, recovery_type, context, now)
            if len(rel.recovery_history) == attempts_before:
                return result

            if result.recovery_amount > 0:
                actor.mood.shift_mood(result.recovery_amount * 0.5)
                remember(
                    rel, result.recovery_amount, ["recovery", recovery_type], now,
                    mood=actor.mood.label,
                    floor=self.cfg.MEMORY_SIGNIFICANCE_FLOOR,
                    max_size=self.cfg.MEMORY_BANK_SIZE,
                )
            warnings = await self._persist(actor)
            return dataclasses.replace(result, warnings=tuple(warnings)) if warnings else result

    # ---- time ----

    async def tick(self, user_id: str, elapsed_seconds: float) -> Optional[MoodState]:
        """Advance one user's clock by `elapsed_seconds`. No-op for unknown users."""
        if user_id not in self._actors:
            return None
        async with self._hold(user_id):
            actor = self._actors.get(user_id)
            if actor is None:
                return None
            mood = actor.mood
            mood.natural_decay_tick(
                elapsed_seconds,
                neglect_seconds=self.cfg.NEGLECT_SECONDS,
                step=self.cfg.MOOD_DECAY_STEP,
                stress_floor=self.cfg.STRESS_FLOOR,
                stress_step=self.cfg.STRESS_DECAY_STEP,
            )

            session = actor.session
            if session is not None:
                session.neglect_seconds += max(0.0, elapsed_seconds)
                if session.neglect_seconds > NEGLECT_ATTENTION_AFTER:
                    mood.adjust("attention", -NEGLECT_ATTENTION_STEP, floor=ATTENTION_FLOOR)
                if session.neglect_seconds > NEGLECT_MOOD_AFTER and mood.mood_value > NEGLECT_MOOD_FLOOR:
                    mood.mood_value = max(NEGLECT_MOOD_FLOOR, mood.mood_value - NEGLECT_MOOD_STEP)
            return mood

    async def tick_all(self, elapsed_seconds: float) -> int:
        users = list(self._actors)
        for uid in users:
            await self.tick(uid, elapsed_seconds)
        return len(users)

    # ---- read models ----

    async def emotional_context(self, user_id: str) -> EmotionalContext:
        async with self._hold(user_id):
            actor = await self._load_actor(user_id)
            return build_emotional_context(user_id, actor.mood, actor.relationship, actor.session, self.clock())

    async def engagement_summary(self, user_id: str) -> EngagementSummary:
        async with self._hold(user_id):
            rel = (await self._load_actor(user_id)).relationship
            now = self.clock()
            return EngagementSummary(
                user_id=user_id,
                favor_level=rel.favor_level,
                engagement_points=rel.engagement_points,
                relationship_level=rel.relationship_level,
                special_status=rel.special_status,
                escalation_tier=escalation_tier(rel.relationship_level),
                unlocked_benefits=list(rel.unlocked_benefits),
                recent_actions=[
                    {"action": a.action, "category": a.category, "points": a.points, "timestamp": a.timestamp}
                    for a in rel.recent_actions(now, timedelta(days=1))
                ],
                recovery_needed=rel.relationship_level < -0.3,
                available_recovery_methods=self.recovery.available_methods(rel, now),
                next_favor_threshold=self.scorer.next_threshold(rel.engagement_points),
                favor_progress=self.scorer.favor_progress(rel.engagement_points),
            )

    async def relationship_summary(self, user_id: str) -> RelationshipSummary:
        async with self._hold(user_id):
            rel = (await self._load_actor(user_id)).relationship
            now = self.clock()
            return RelationshipSummary(
                user_id=user_id,
                special_status=rel.special_status,
                relationship_level=rel.relationship_level,
                trust_level=rel.trust_level,
                respect_level=rel.respect_level,
                total_interactions=rel.total_interactions,
                total_sessions=rel.total_sessions,
                average_session_length=rel.average_session_length,
                significant_memories=[
                    dataclasses.asdict(m) for m in rel.memory_bank if m.significance > 0.6
                ],
                recent_conflicts=[dataclasses.asdict(c) for c in rel.recent_conflicts(now)],
                recovery_needed=rel.relationship_level < -0.2,
                favorite_interactions=len(rel.favorite_interactions),
            )
