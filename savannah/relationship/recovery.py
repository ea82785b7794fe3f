"""
Relationship repair after conflict.

Per (user, recovery type) the coordinator is a two-state machine:
eligible -> on-cooldown -> eligible once the type's cooldown has elapsed since
its last logged attempt. Failed preconditions are an ordinary outcome, not an
error, and leave no trace.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from savannah.relationship.engine import PatronRelationship, RecoveryAttempt, clamp_relationship

log = logging.getLogger("savannah-recovery")

DIMINISHING_FACTOR = 0.8


@dataclass
class RecoveryContext:
    sincerity: float = 0.0
    acknowledges_wrong: bool = False
    makes_excuses: bool = False
    significant_effort: bool = False
    personal_meaning: bool = False
    only_money: bool = False
    public: bool = False
    against_criticism: bool = False
    prompted: bool = False
    written_thoughtfully: bool = False
    acknowledges_impact: bool = False
    specific_memories: bool = False
    personal_significance: bool = False
    shows_understanding: bool = False
    expensive: bool = False
    acknowledges_skill: bool = False

    @classmethod
    def from_mapping(cls, data: "RecoveryContext | Mapping[str, Any] | None") -> "RecoveryContext":
        if isinstance(data, RecoveryContext):
            return data
        data = dict(data or {})
        # accept the camelCase keys hosts tend to send
        aliases = {
            "acknowledgesWrong": "acknowledges_wrong",
            "makesExcuses": "makes_excuses",
            "significantEffort": "significant_effort",
        }
        for src, dst in aliases.items():
            if src in data and dst not in data:
                data[dst] = data.pop(src)
        kwargs: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            if name not in data:
                continue
            if name == "sincerity":
                try:
                    kwargs[name] = float(data[name] or 0.0)
                except (TypeError, ValueError):
                    kwargs[name] = 0.0
            else:
                kwargs[name] = data[name] is True
        return cls(**kwargs)


Requirement = Tuple[str, Callable[[RecoveryContext, PatronRelationship, datetime], bool]]


def _positive_streak(minimum: int) -> Callable[[RecoveryContext, PatronRelationship, datetime], bool]:
    def check(ctx, rel, now):
        recent = rel.recent_actions(now, timedelta(days=1))
        positives = [a for a in recent if a.points > 0]
        return len(positives) >= minimum and not any(a.points < 0 for a in recent)
    return check


def _quiet_since_conflict(days: int) -> Callable[[RecoveryContext, PatronRelationship, datetime], bool]:
    def check(ctx, rel, now):
        if not rel.conflict_history:
            return True
        last = max(c.timestamp for c in rel.conflict_history)
        return now - last >= timedelta(days=days)
    return check


ACKNOWLEDGES_WRONG: Requirement = ("Must acknowledge wrongdoing", lambda c, r, n: c.acknowledges_wrong)
NO_EXCUSES: Requirement = ("Cannot make excuses", lambda c, r, n: not c.makes_excuses)
GENUINE_REMORSE: Requirement = ("Must show genuine remorse", lambda c, r, n: c.sincerity >= 0.7)


@dataclass
class RecoveryMethod:
    category: str
    effectiveness: float
    cooldown: timedelta
    requirements: List[Requirement] = field(default_factory=list)


RECOVERY_MECHANICS: Dict[str, RecoveryMethod] = {
    # immediate
    "sincere_apology": RecoveryMethod("immediate", 0.4, timedelta(hours=1), [
        ACKNOWLEDGES_WRONG, NO_EXCUSES, GENUINE_REMORSE,
    ]),
    "grand_gesture": RecoveryMethod("immediate", 0.6, timedelta(hours=24), [
        ("Must show significant effort", lambda c, r, n: c.significant_effort),
        ("Must carry personal meaning", lambda c, r, n: c.personal_meaning),
        ("Cannot be just money", lambda c, r, n: not c.only_money),
    ]),
    "defending_her": RecoveryMethod("immediate", 0.8, timedelta(hours=1), [
        ("Must be public support", lambda c, r, n: c.public),
        ("Must be against criticism", lambda c, r, n: c.against_criticism),
        ("Must be unprompted", lambda c, r, n: not c.prompted),
    ]),
    # long term
    "consistent_kindness": RecoveryMethod("longterm", 0.1, timedelta(hours=1), [
        ("Need more positive interactions", _positive_streak(10)),
    ]),
    "proving_change": RecoveryMethod("longterm", 0.3, timedelta(days=1), [
        ("Need sustained different behavior", _quiet_since_conflict(7)),
    ]),
    "earning_trust": RecoveryMethod("longterm", 0.5, timedelta(days=1), [
        ("Need consistent respect over time", _quiet_since_conflict(14)),
        ("Need more reliability", lambda c, r, n: r.trust_level >= 0.5),
    ]),
    # special
    "heartfelt_letter": RecoveryMethod("special", 0.7, timedelta(days=30), [
        ("Must be written thoughtfully", lambda c, r, n: c.written_thoughtfully),
        ("Must acknowledge the impact", lambda c, r, n: c.acknowledges_impact),
        ("Must recall specific memories", lambda c, r, n: c.specific_memories),
    ]),
    "meaningful_gift": RecoveryMethod("special", 0.5, timedelta(days=14), [
        ("Must carry personal significance", lambda c, r, n: c.personal_significance),
        ("Must show understanding", lambda c, r, n: c.shows_understanding),
        ("Cannot be expensive", lambda c, r, n: not c.expensive),
    ]),
    "public_recognition": RecoveryMethod("special", 0.8, timedelta(days=7), [
        ("Must be public praise", lambda c, r, n: c.public),
        ("Must acknowledge skill", lambda c, r, n: c.acknowledges_skill),
        ("Must be unprompted", lambda c, r, n: not c.prompted),
    ]),
}


@dataclass
class RecoveryResult:
    success: bool
    reason: Optional[str] = None
    recovery_type: Optional[str] = None
    recovery_amount: float = 0.0
    effectiveness: float = 0.0
    effectiveness_reduction: float = 0.0
    new_relationship_level: Optional[float] = None
    cooldown_until: Optional[datetime] = None
    warnings: Tuple[str, ...] = ()


class RecoveryCoordinator:
    def __init__(self, success_threshold: float = 0.2, mechanics: Optional[Dict[str, RecoveryMethod]] = None):
        self.success_threshold = success_threshold
        self.mechanics = mechanics if mechanics is not None else RECOVERY_MECHANICS

    def last_attempt(self, rel: PatronRelationship, recovery_type: str) -> Optional[RecoveryAttempt]:
        attempts = [r for r in rel.recovery_history if r.type == recovery_type]
        return max(attempts, key=lambda r: r.timestamp) if attempts else None

    def cooldown_until(self, rel: PatronRelationship, recovery_type: str) -> Optional[datetime]:
        method = self.mechanics.get(recovery_type)
        last = self.last_attempt(rel, recovery_type)
        if method is None or last is None:
            return None
        return last.timestamp + method.cooldown

    def is_on_cooldown(self, rel: PatronRelationship, recovery_type: str, now: datetime) -> bool:
        until = self.cooldown_until(rel, recovery_type)
        return until is not None and now < until

    def check_requirements(self, method: RecoveryMethod, ctx: RecoveryContext, rel: PatronRelationship, now: datetime) -> Optional[str]:
        for reason, check in method.requirements:
            if not check(ctx, rel, now):
                return reason
        return None

    def attempt(self, rel: PatronRelationship, recovery_type: str, context, now: datetime) -> RecoveryResult:
        method = self.mechanics.get(recovery_type)
        if method is None:
            return RecoveryResult(success=False, reason="Unknown recovery type", recovery_type=recovery_type)

        ctx = RecoveryContext.from_mapping(context)
        failed = self.check_requirements(method, ctx, rel, now)
        if failed:
            return RecoveryResult(
                success=False, reason=failed, recovery_type=recovery_type,
                new_relationship_level=rel.relationship_level,
            )

        if self.is_on_cooldown(rel, recovery_type, now):
            return RecoveryResult(
                success=False, reason="Recovery method on cooldown", recovery_type=recovery_type,
                new_relationship_level=rel.relationship_level,
                cooldown_until=self.cooldown_until(rel, recovery_type),
            )

        prior = sum(1 for r in rel.recovery_history if r.type == recovery_type)
        effectiveness = method.effectiveness * DIMINISHING_FACTOR ** prior

        # only claws back an existing deficit
        amount = effectiveness * abs(min(0.0, rel.relationship_level))
        rel.relationship_level += amount
        clamp_relationship(rel)

        success = amount > self.success_threshold
        # a met-but-weak attempt still counts toward cooldown and diminishing returns
        rel.recovery_history.append(RecoveryAttempt(
            type=recovery_type,
            timestamp=now,
            effectiveness=effectiveness,
            outcome="success" if success else "insufficient_effect",
            amount=amount,
        ))

        log.info(
            "[RECOVERY %s] type=%s prior=%d eff=%.3f amount=%.3f success=%s level=%.3f",
            rel.user_id, recovery_type, prior, effectiveness, amount, success, rel.relationship_level,
        )

        return RecoveryResult(
            success=success,
            reason=None if success else "insufficient_effect",
            recovery_type=recovery_type,
            recovery_amount=amount,
            effectiveness=effectiveness,
            effectiveness_reduction=1 - effectiveness / method.effectiveness,
            new_relationship_level=rel.relationship_level,
            cooldown_until=now + method.cooldown,
        )

    def available_methods(self, rel: PatronRelationship, now: datetime) -> List[Dict[str, Any]]:
        out = []
        for name, method in self.mechanics.items():
            if self.is_on_cooldown(rel, name, now):
                continue
            out.append({
                "method": name,
                "category": method.category,
                "effectiveness": method.effectiveness,
                "requirements": [reason for reason, _ in method.requirements],
            })
        return out
