from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Literal, Optional, Tuple

from savannah.relationship.mood import ATTENTION_FLOOR, MoodState, clamp
from savannah.relationship.signals import BehaviorVector

SpecialStatus = Literal["new", "regular", "valued", "favorite", "problematic"]
FavorLevel = Literal["stranger", "recognized", "regular", "valued", "favorite", "beloved"]
Polarity = Literal["positive", "negative"]

# strictly ordered; benefits are cumulative and never revoked
FAVOR_LEVELS: List[Tuple[str, float, List[str]]] = [
    ("stranger", 0.0, []),
    ("recognized", 50.0, ["remembers_name", "basic_small_talk"]),
    ("regular", 150.0, ["drink_preferences", "shares_stories", "faster_service"]),
    ("valued", 300.0, ["personal_recommendations", "insider_knowledge", "priority_service"]),
    ("favorite", 500.0, ["special_drinks", "personal_stories", "flexible_rules", "emotional_support"]),
    ("beloved", 800.0, ["exclusive_access", "deep_friendship", "maximum_flexibility", "protective_loyalty"]),
]
FAVOR_ORDER = [name for name, _, _ in FAVOR_LEVELS]


def _now():
    return datetime.now(timezone.utc)


def favor_level_for(points: float) -> FavorLevel:
    level = "stranger"
    for name, threshold, _ in FAVOR_LEVELS:
        if points >= threshold:
            level = name
    return level


def benefits_up_to(level: str) -> List[str]:
    out: List[str] = []
    for name, _, benefits in FAVOR_LEVELS:
        out.extend(benefits)
        if name == level:
            break
    return out


@dataclass
class MemoryEntry:
    timestamp: datetime
    polarity: Polarity
    impact: float           # magnitude, sign lives in polarity
    significance: float
    tags: List[str] = field(default_factory=list)
    mood: Optional[str] = None


@dataclass
class ConflictEntry:
    timestamp: datetime
    type: str
    severity: float
    context: str = ""


@dataclass
class ActionRecord:
    timestamp: datetime
    action: str
    category: str
    points: float


@dataclass
class RecoveryAttempt:
    type: str
    timestamp: datetime
    effectiveness: float
    outcome: Literal["success", "insufficient_effect"]
    amount: float = 0.0


@dataclass
class TipRecord:
    amount: float
    timestamp: datetime
    session_quality: float


@dataclass
class FavorMilestone:
    level: str
    timestamp: datetime
    engagement_points: float


@dataclass(frozen=True)
class SessionSummary:
    user_id: str
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    interaction_count: int
    conversation_quality: float
    appreciation_shown: float
    rudeness_level: float
    flirtation_level: float
    final_mood: str
    final_relationship_level: float
    special_status: str
    favor_level: str
    tip_amount: float = 0.0
    warnings: Tuple[str, ...] = ()


@dataclass
class Session:
    user_id: str
    start_time: datetime
    interaction_count: int = 0
    neglect_seconds: float = 0.0
    appreciation_shown: float = 0.0
    rudeness_level: float = 0.0
    flirtation_level: float = 0.0
    conversation_quality: float = 0.5


@dataclass
class PatronRelationship:
    user_id: str
    first_met: datetime = field(default_factory=_now)
    relationship_level: float = 0.0
    trust_level: float = 0.3
    interest_level: float = 0.3
    attraction_level: float = 0.1
    respect_level: float = 0.5

    memory_bank: List[MemoryEntry] = field(default_factory=list)
    engagement_points: float = 0.0
    unlocked_benefits: List[str] = field(default_factory=list)
    favor_milestones: List[FavorMilestone] = field(default_factory=list)

    # append-only audit trails
    conflict_history: List[ConflictEntry] = field(default_factory=list)
    recovery_history: List[RecoveryAttempt] = field(default_factory=list)
    action_history: List[ActionRecord] = field(default_factory=list)
    tip_history: List[TipRecord] = field(default_factory=list)
    favorite_interactions: List[SessionSummary] = field(default_factory=list)

    last_seen: datetime = field(default_factory=_now)
    last_decay_at: datetime = field(default_factory=_now)
    total_interactions: int = 0
    total_sessions: int = 0
    total_time_spent: float = 0.0  # seconds

    @property
    def special_status(self) -> SpecialStatus:
        return compute_status(self)

    @property
    def favor_level(self) -> FavorLevel:
        return favor_level_for(self.engagement_points)

    @property
    def average_session_length(self) -> float:
        return self.total_time_spent / self.total_sessions if self.total_sessions else 0.0

    def recent_actions(self, now: datetime, window: timedelta) -> List[ActionRecord]:
        cutoff = now - window
        return [a for a in self.action_history if a.timestamp > cutoff]

    def recent_conflicts(self, now: datetime, window: timedelta = timedelta(days=1)) -> List[ConflictEntry]:
        cutoff = now - window
        return [c for c in self.conflict_history if c.timestamp > cutoff]


def compute_status(rel: PatronRelationship) -> SpecialStatus:
    # priority order matters
    if rel.relationship_level > 0.7 and rel.respect_level > 0.7:
        return "favorite"
    if rel.relationship_level < -0.5:
        return "problematic"
    if rel.total_interactions < 3:
        return "new"
    if rel.relationship_level > 0.4:
        return "valued"
    return "regular"


def clamp_relationship(rel: PatronRelationship) -> None:
    rel.relationship_level = clamp(rel.relationship_level, -1.0, 1.0)
    rel.trust_level = clamp(rel.trust_level, 0.0, 1.0)
    rel.interest_level = clamp(rel.interest_level, 0.0, 1.0)
    rel.attraction_level = clamp(rel.attraction_level, 0.0, 1.0)
    rel.respect_level = clamp(rel.respect_level, 0.0, 1.0)
    rel.engagement_points = max(0.0, rel.engagement_points)


def add_to_memory_bank(rel: PatronRelationship, entry: MemoryEntry, max_size: int = 20) -> None:
    rel.memory_bank.append(entry)
    if len(rel.memory_bank) > max_size:
        # significance, not recency, decides what survives
        rel.memory_bank.sort(key=lambda m: m.significance, reverse=True)
        del rel.memory_bank[max_size:]


def remember(
    rel: PatronRelationship,
    impact: float,
    tags: List[str],
    now: datetime,
    mood: Optional[str] = None,
    floor: float = 0.3,
    max_size: int = 20,
) -> Optional[MemoryEntry]:
    if abs(impact) <= floor:
        return None
    entry = MemoryEntry(
        timestamp=now,
        polarity="positive" if impact > 0 else "negative",
        impact=abs(impact),
        significance=clamp(abs(impact), 0.0, 1.0),
        tags=list(tags),
        mood=mood,
    )
    add_to_memory_bank(rel, entry, max_size)
    return entry


def update_relationship(
    rel: PatronRelationship,
    sig: BehaviorVector,
    now: datetime,
    conflict_threshold: float = 0.3,
) -> List[ConflictEntry]:
    """Weighted per-tag deltas. Returns the conflicts that were logged."""
    conflicts: List[ConflictEntry] = []

    if sig.appreciation > 0:
        rel.relationship_level += sig.appreciation * 0.1
        rel.respect_level += 0.05
        rel.trust_level += sig.appreciation * 0.05

    if sig.compliments > 0:
        rel.relationship_level += sig.compliments * 0.15
        rel.attraction_level = min(0.8, rel.attraction_level + 0.1)
        rel.trust_level += sig.compliments * 0.03

    if sig.interest > 0:
        rel.relationship_level += sig.interest * 0.05
        rel.interest_level += 0.05
        rel.trust_level += sig.interest * 0.02

    if sig.rudeness > 0:
        rel.relationship_level -= sig.rudeness
        rel.respect_level -= 0.1
        rel.trust_level -= sig.rudeness * 0.1
        if sig.rudeness > conflict_threshold:
            conflicts.append(ConflictEntry(now, "rudeness", sig.rudeness, "rude_behavior"))

    if sig.dismissiveness > 0:
        rel.relationship_level -= sig.dismissiveness * 0.5
        rel.trust_level -= sig.dismissiveness * 0.05
        if sig.dismissiveness > conflict_threshold:
            conflicts.append(ConflictEntry(now, "dismissiveness", sig.dismissiveness, "dismissive_behavior"))

    rel.conflict_history.extend(conflicts)
    clamp_relationship(rel)
    return conflicts


def update_emotional_state(
    mood: MoodState,
    session: Optional[Session],
    sig: BehaviorVector,
    now: datetime,
) -> float:
    """Fold a behavior vector into the mood. Returns the applied (momentum-scaled) mood delta."""
    mood_change = 0.0
    energy_change = 0.0
    stress_change = 0.0

    if sig.appreciation > 0:
        mood_change += sig.appreciation * 0.5
        energy_change += sig.appreciation * 0.3
        if session:
            session.appreciation_shown += sig.appreciation

    if sig.compliments > 0:
        mood_change += sig.compliments * 0.6
        energy_change += sig.compliments * 0.2
        mood.adjust("satisfaction", sig.compliments * 0.1)

    if sig.rudeness > 0:
        mood_change -= sig.rudeness
        stress_change += sig.rudeness * 0.4
        mood.erode_stability(0.1)
        if session:
            session.rudeness_level += sig.rudeness

    if sig.dismissiveness > 0:
        mood_change -= sig.dismissiveness
        mood.adjust("attention", -0.1, floor=ATTENTION_FLOOR)

    if sig.interest > 0:
        energy_change += sig.interest * 0.4
        mood.adjust("loneliness", -0.2)

    if sig.flirtation > 0:
        mood_change += sig.flirtation * 0.3
        if session:
            session.flirtation_level += sig.flirtation

    return mood.apply_delta(mood_change, energy_change, stress_change, now=now)


def update_conversation_quality(session: Session, sig: BehaviorVector) -> None:
    f = sig.features
    if f is None:
        return
    inc = 0.0
    if f.question_count > 0:
        inc += 0.3
    if f.exclamation_count > 0:
        inc += 0.2
    if f.length > 50:
        inc += 0.2
    elif f.length > 20:
        inc += 0.1
    session.conversation_quality = clamp(session.conversation_quality + inc, 0.0, 1.0)
