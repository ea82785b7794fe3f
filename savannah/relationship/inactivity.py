import copy
from datetime import datetime

from savannah.relationship.engine import PatronRelationship

POSITIVE_LEVEL_DECAY = 0.995   # affection fades slowly
NEGATIVE_LEVEL_DECAY = 0.99    # grudges fade faster
SIGNIFICANT_MEMORY_DECAY = 0.998
MEMORY_DECAY = 0.99
SIGNIFICANT = 0.8


def apply_decay(rel: PatronRelationship, elapsed_days: float, prune_floor: float = 0.1) -> PatronRelationship:
    """
    Return a decayed copy of `rel`. The input is not touched.

    `elapsed_days` must be the time since the last decay, not since creation:
    decaying the same interval twice double-counts it. Audit trails
    (conflicts, recoveries, actions) are never pruned here.
    """
    out = copy.deepcopy(rel)
    days = max(0.0, float(elapsed_days or 0.0))
    if days == 0.0:
        return out

    if out.relationship_level > 0:
        out.relationship_level *= POSITIVE_LEVEL_DECAY ** days
    elif out.relationship_level < 0:
        out.relationship_level *= NEGATIVE_LEVEL_DECAY ** days

    kept = []
    for memory in out.memory_bank:
        rate = SIGNIFICANT_MEMORY_DECAY if memory.significance > SIGNIFICANT else MEMORY_DECAY
        memory.impact *= rate ** days
        if memory.impact >= prune_floor:
            kept.append(memory)
    out.memory_bank = kept
    return out


def apply_inactivity_decay(rel: PatronRelationship, now: datetime, prune_floor: float = 0.1) -> "tuple[PatronRelationship, float]":
    # returns (decayed relationship, days decayed) for logging
    last = rel.last_decay_at or rel.last_seen
    if not last:
        return rel, 0.0

    days_idle = (now - last).total_seconds() / 86400.0
    if days_idle < 1:
        return rel, days_idle

    out = apply_decay(rel, days_idle, prune_floor)
    out.last_decay_at = now
    return out, days_idle
