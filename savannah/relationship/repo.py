import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from savannah.relationship.engine import PatronRelationship
from savannah.relationship.inactivity import apply_inactivity_decay
from savannah.relationship.mood import MoodState
from savannah.schemas.records import mood_adapter, relationship_adapter
from savannah.services.memory_store import MemoryStore

log = logging.getLogger("savannah-relationship")


async def load_relationship(store: MemoryStore, user_id: str) -> Optional[PatronRelationship]:
    payload = await store.load(user_id, "relationships")
    if payload is None:
        return None
    try:
        return relationship_adapter.validate_python(payload)
    except ValidationError as e:
        log.warning("[REL %s] stored relationship is malformed, starting fresh: %s", user_id, e.error_count())
        await store.delete(user_id, "relationships")
        return None


async def get_or_create_relationship(
    store: MemoryStore,
    user_id: str,
    now: datetime,
    prune_floor: float = 0.1,
) -> PatronRelationship:
    rel = await load_relationship(store, user_id)
    if rel is None:
        log.info("[REL %s] first contact, new relationship", user_id)
        return PatronRelationship(user_id=user_id, first_met=now, last_seen=now, last_decay_at=now)

    return decay_relationship(rel, now, prune_floor)


def decay_relationship(rel: PatronRelationship, now: datetime, prune_floor: float = 0.1) -> PatronRelationship:
    """Fade `rel` for the time since its last decay, once at least a day has passed."""
    rel, days_idle = apply_inactivity_decay(rel, now, prune_floor)
    if days_idle >= 1:
        log.info(
            "[REL %s] decayed %.2f idle days level=%.3f memories=%d",
            rel.user_id, days_idle, rel.relationship_level, len(rel.memory_bank),
        )
    return rel


async def save_relationship(store: MemoryStore, rel: PatronRelationship) -> bool:
    ok = await store.save(rel.user_id, "relationships", relationship_adapter.dump_python(rel, mode="json"))
    if ok:
        await store.update_index(rel.user_id, {
            "special_status": rel.special_status,
            "relationship_level": rel.relationship_level,
            "favor_level": rel.favor_level,
            "last_seen": rel.last_seen.isoformat(),
        })
    return ok


async def load_mood(store: MemoryStore, user_id: str) -> Optional[MoodState]:
    payload = await store.load(user_id, "emotional_state")
    if payload is None:
        return None
    try:
        return mood_adapter.validate_python(payload)
    except ValidationError:
        log.warning("[REL %s] stored mood is malformed, using defaults", user_id)
        await store.delete(user_id, "emotional_state")
        return None


async def save_mood(store: MemoryStore, user_id: str, mood: MoodState) -> bool:
    return await store.save(user_id, "emotional_state", mood_adapter.dump_python(mood, mode="json"))


async def log_conversation(store: MemoryStore, user_id: str, entry: Dict[str, Any]) -> bool:
    return await store.append_entry(user_id, "conversations", entry)


async def log_engagement(store: MemoryStore, user_id: str, entry: Dict[str, Any]) -> bool:
    return await store.append_entry(user_id, "engagement_history", entry)


async def load_preferences(store: MemoryStore, user_id: str) -> Dict[str, Any]:
    payload = await store.load(user_id, "preferences")
    if not isinstance(payload, dict):
        return {}
    return payload


async def save_preferences(store: MemoryStore, user_id: str, preferences: Dict[str, Any]) -> bool:
    return await store.save(user_id, "preferences", dict(preferences))
