"""
Engagement scoring: how a patron earns (or loses) Savannah's favor.

Actions are an explicit enum. Anything the caller cannot map lands in
``Action.UNCLASSIFIED`` which is worth a small fixed amount instead of being
guessed from its name.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from savannah.relationship.engine import (
    FAVOR_LEVELS,
    FAVOR_ORDER,
    ActionRecord,
    FavorMilestone,
    PatronRelationship,
    clamp_relationship,
    favor_level_for,
)
from savannah.relationship.signals import BehaviorVector, DetectedPattern

log = logging.getLogger("savannah-scoring")

UNCLASSIFIED_POINTS = 2.0


class Action(str, Enum):
    # appreciation
    GENUINE_THANKS = "genuine_thanks"
    SPECIFIC_COMPLIMENT = "specific_compliment"
    REMEMBERING_DETAILS = "remembering_details"
    DEFENDING_SAVANNAH = "defending_savannah"
    THOUGHTFUL_QUESTION = "thoughtful_question"
    PATIENCE_DURING_BUSY = "patience_during_busy"
    UNDERSTANDING_RULES = "understanding_rules"
    APPROPRIATE_TIP = "appropriate_tip"
    # relationship building
    ASKING_ABOUT_HER_DAY = "asking_about_her_day"
    SHOWING_INTEREST_IN_STORIES = "showing_interest_in_stories"
    REMEMBERING_PREVIOUS_CONVERSATION = "remembering_previous_conversation"
    ASKING_FOR_ADVICE = "asking_for_advice"
    SHARING_PERSONAL_STORY = "sharing_personal_story"
    APPROPRIATE_FLIRTATION = "appropriate_flirtation"
    RESPECTING_BOUNDARIES = "respecting_boundaries"
    REGULAR_VISITS = "regular_visits"
    # professional respect
    TRUSTING_RECOMMENDATIONS = "trusting_recommendations"
    ASKING_ABOUT_EXPERTISE = "asking_about_expertise"
    ACKNOWLEDGING_SKILL = "acknowledging_skill"
    PATIENCE_WITH_EXPLANATIONS = "patience_with_explanations"
    FOLLOWING_BAR_ETIQUETTE = "following_bar_etiquette"
    RESPECTING_OTHER_PATRONS = "respecting_other_patrons"
    UNDERSTANDING_BUSY_TIMES = "understanding_busy_times"
    # disrespect
    BEING_RUDE = "being_rude"
    INTERRUPTING = "interrupting"
    DISMISSING_RECOMMENDATIONS = "dismissing_recommendations"
    DEMANDING_BEHAVIOR = "demanding_behavior"
    INAPPROPRIATE_COMMENTS = "inappropriate_comments"
    IGNORING_HER_RESPONSES = "ignoring_her_responses"
    BEING_IMPATIENT = "being_impatient"
    TREATING_LIKE_SERVANT = "treating_like_servant"
    # relationship damage
    BREAKING_PROMISES = "breaking_promises"
    LYING = "lying"
    DISRESPECTING_BOUNDARIES = "disrespecting_boundaries"
    INSULTING_APPEARANCE = "insulting_appearance"
    QUESTIONING_COMPETENCE = "questioning_competence"
    MAKING_HER_UNCOMFORTABLE = "making_her_uncomfortable"
    PUBLIC_EMBARRASSMENT = "public_embarrassment"
    HARASSMENT = "harassment"
    # professional disrespect
    QUESTIONING_KNOWLEDGE = "questioning_knowledge"
    DEMANDING_UNAUTHORIZED_ITEMS = "demanding_unauthorized_items"
    COMPLAINING_ABOUT_PRICES = "complaining_about_prices"
    CAUSING_DISTURBANCE = "causing_disturbance"
    DISRESPECTING_ESTABLISHMENT = "disrespecting_establishment"
    THREATENING_BAD_REVIEW = "threatening_bad_review"
    DEMANDING_MANAGER = "demanding_manager"

    UNCLASSIFIED = "unclassified"

    @classmethod
    def parse(cls, value: "Action | str") -> "Action":
        if isinstance(value, Action):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            log.warning("Unrecognized action %r scored as unclassified", value)
            return cls.UNCLASSIFIED


ENGAGEMENT_METRICS: Dict[str, Dict[Action, float]] = {
    "appreciation": {
        Action.GENUINE_THANKS: 10,
        Action.SPECIFIC_COMPLIMENT: 15,
        Action.REMEMBERING_DETAILS: 20,
        Action.DEFENDING_SAVANNAH: 25,
        Action.THOUGHTFUL_QUESTION: 12,
        Action.PATIENCE_DURING_BUSY: 18,
        Action.UNDERSTANDING_RULES: 15,
        Action.APPROPRIATE_TIP: 20,
    },
    "relationship_building": {
        Action.ASKING_ABOUT_HER_DAY: 15,
        Action.SHOWING_INTEREST_IN_STORIES: 20,
        Action.REMEMBERING_PREVIOUS_CONVERSATION: 25,
        Action.ASKING_FOR_ADVICE: 18,
        Action.SHARING_PERSONAL_STORY: 20,
        Action.APPROPRIATE_FLIRTATION: 12,
        Action.RESPECTING_BOUNDARIES: 15,
        Action.REGULAR_VISITS: 10,
    },
    "professional_respect": {
        Action.TRUSTING_RECOMMENDATIONS: 15,
        Action.ASKING_ABOUT_EXPERTISE: 20,
        Action.ACKNOWLEDGING_SKILL: 18,
        Action.PATIENCE_WITH_EXPLANATIONS: 12,
        Action.FOLLOWING_BAR_ETIQUETTE: 10,
        Action.RESPECTING_OTHER_PATRONS: 15,
        Action.UNDERSTANDING_BUSY_TIMES: 12,
    },
    "disrespect": {
        Action.BEING_RUDE: -25,
        Action.INTERRUPTING: -15,
        Action.DISMISSING_RECOMMENDATIONS: -20,
        Action.DEMANDING_BEHAVIOR: -30,
        Action.INAPPROPRIATE_COMMENTS: -35,
        Action.IGNORING_HER_RESPONSES: -20,
        Action.BEING_IMPATIENT: -15,
        Action.TREATING_LIKE_SERVANT: -40,
    },
    "relationship_damage": {
        Action.BREAKING_PROMISES: -30,
        Action.LYING: -35,
        Action.DISRESPECTING_BOUNDARIES: -40,
        Action.INSULTING_APPEARANCE: -45,
        Action.QUESTIONING_COMPETENCE: -25,
        Action.MAKING_HER_UNCOMFORTABLE: -35,
        Action.PUBLIC_EMBARRASSMENT: -50,
        Action.HARASSMENT: -100,
    },
    "professional_disrespect": {
        Action.QUESTIONING_KNOWLEDGE: -20,
        Action.DEMANDING_UNAUTHORIZED_ITEMS: -25,
        Action.COMPLAINING_ABOUT_PRICES: -15,
        Action.CAUSING_DISTURBANCE: -30,
        Action.DISRESPECTING_ESTABLISHMENT: -35,
        Action.THREATENING_BAD_REVIEW: -40,
        Action.DEMANDING_MANAGER: -25,
    },
}

ACTION_CATEGORY: Dict[Action, str] = {
    action: category
    for category, table in ENGAGEMENT_METRICS.items()
    for action in table
}

# which behavior tag an action category feeds when it reaches the mood
CATEGORY_TAG = {
    "appreciation": "appreciation",
    "professional_respect": "appreciation",
    "relationship_building": "interest",
    "disrespect": "rudeness",
    "relationship_damage": "rudeness",
    "professional_disrespect": "rudeness",
}

FAVOR_DIFFICULTY = {"easy": 1.5, "normal": 1.0, "hard": 0.7, "realistic": 0.8}
DAMAGE_SENSITIVITY = {"low": 0.5, "normal": 1.0, "high": 1.5, "realistic": 1.2}

SERVICE_QUALITY: Dict[str, Dict[str, float]] = {
    "excellent": {"response_time": 0.5, "recommendation_quality": 1.5, "conversation_depth": 1.4, "flexibility": 1.3, "attention_level": 1.5},
    "good": {"response_time": 0.8, "recommendation_quality": 1.2, "conversation_depth": 1.1, "flexibility": 1.1, "attention_level": 1.2},
    "standard": {"response_time": 1.0, "recommendation_quality": 1.0, "conversation_depth": 1.0, "flexibility": 1.0, "attention_level": 1.0},
    "poor": {"response_time": 1.5, "recommendation_quality": 0.7, "conversation_depth": 0.6, "flexibility": 0.7, "attention_level": 0.6},
    "minimal": {"response_time": 2.0, "recommendation_quality": 0.4, "conversation_depth": 0.3, "flexibility": 0.4, "attention_level": 0.3},
}

EMOTIONAL_AVAILABILITY: Dict[str, List[str]] = {
    "open": ["shares_feelings", "seeks_advice", "shows_vulnerability"],
    "guarded": ["polite_but_distant", "professional_only", "limited_personal_sharing"],
    "closed": ["strictly_business", "minimal_interaction", "cold_politeness"],
    "hostile": ["barely_civil", "defensive", "actively_unfriendly"],
}

SPECIAL_PRIVILEGES: Dict[str, List[str]] = {
    "favorite_treatment": ["custom_drinks", "after_hours_chat", "personal_stories", "flexible_rules"],
    "valued_patron": ["priority_service", "insider_knowledge", "special_recommendations"],
    "regular_service": ["standard_service", "friendly_interaction", "basic_recommendations"],
    "problematic_patron": ["minimal_service", "strict_rules", "limited_interaction"],
}

# relationship-level bands for the escalation tier, checked top down
ESCALATION_BANDS = [
    (0.8, "deep_affection"),
    (0.5, "strong_liking"),
    (0.25, "growing_fondness"),
    (0.0, "mild_interest"),
    (-0.25, "mild_annoyance"),
    (-0.5, "growing_irritation"),
    (-0.8, "strong_dislike"),
]


@dataclass
class ActionContext:
    sincerity: float = 0.0
    timing: Optional[str] = None
    public: bool = False
    repeated: bool = False

    @classmethod
    def from_mapping(cls, data: "ActionContext | Mapping[str, Any] | None") -> "ActionContext":
        if isinstance(data, ActionContext):
            return data
        data = data or {}
        try:
            sincerity = float(data.get("sincerity", 0.0) or 0.0)
        except (TypeError, ValueError):
            sincerity = 0.0
        return cls(
            sincerity=sincerity,
            timing=data.get("timing"),
            public=data.get("public") is True,
            repeated=data.get("repeated") is True,
        )


@dataclass
class ConsequenceTable:
    service_quality: str
    service_modifiers: Dict[str, float]
    emotional_availability: str
    behaviors: List[str]
    special_privileges: str
    privileges: List[str]


@dataclass
class ScoreResult:
    action: Action
    category: str
    points_earned: float
    relationship_change: float
    favor_level_changed: bool
    previous_level: str
    new_level: str
    consequences: ConsequenceTable
    emotional_impact: BehaviorVector = field(default_factory=BehaviorVector)


def escalation_tier(level: float) -> str:
    for lower, name in ESCALATION_BANDS:
        if level >= lower:
            return name
    return "active_avoidance"


def behavioral_consequences(rel: PatronRelationship) -> ConsequenceTable:
    favor = rel.favor_level
    level = rel.relationship_level

    if level > 0.75 or favor == "beloved":
        service = "excellent"
    elif level > 0.5 or favor == "favorite":
        service = "good"
    elif level < -0.75:
        service = "minimal"
    elif level < -0.4:
        service = "poor"
    else:
        service = "standard"

    if level > 0.6 and rel.trust_level > 0.8:
        availability = "open"
    elif level < -0.8:
        availability = "hostile"
    elif level < -0.3:
        availability = "closed"
    else:
        availability = "guarded"

    if favor in ("favorite", "beloved"):
        privileges = "favorite_treatment"
    elif favor == "valued":
        privileges = "valued_patron"
    elif rel.special_status == "problematic":
        privileges = "problematic_patron"
    else:
        privileges = "regular_service"

    return ConsequenceTable(
        service_quality=service,
        service_modifiers=dict(SERVICE_QUALITY[service]),
        emotional_availability=availability,
        behaviors=list(EMOTIONAL_AVAILABILITY[availability]),
        special_privileges=privileges,
        privileges=list(SPECIAL_PRIVILEGES[privileges]),
    )


class EngagementScorer:
    def __init__(self, favor_difficulty: str = "normal", damage_sensitivity: str = "normal"):
        self.balance = {
            "favor_difficulty": favor_difficulty,
            "damage_sensitivity": damage_sensitivity,
        }

    def adjust_balance(self, setting: str, value: str) -> bool:
        tables = {"favor_difficulty": FAVOR_DIFFICULTY, "damage_sensitivity": DAMAGE_SENSITIVITY}
        if setting in tables and value in tables[setting]:
            self.balance[setting] = value
            return True
        return False

    def base_points(self, action: Action, ctx: ActionContext) -> float:
        category = ACTION_CATEGORY.get(action)
        if category is None:
            return UNCLASSIFIED_POINTS

        points = float(ENGAGEMENT_METRICS[category][action])
        if ctx.sincerity > 0.8:
            points *= 1.3
        if ctx.timing == "perfect":
            points *= 1.2
        if ctx.public and points > 0:
            points *= 1.4
        if ctx.repeated:
            points *= 0.7
        return points

    def apply_balance(self, points: float) -> float:
        if points > 0:
            return points * FAVOR_DIFFICULTY[self.balance["favor_difficulty"]]
        return points * DAMAGE_SENSITIVITY[self.balance["damage_sensitivity"]]

    def relationship_modifiers(self, points: float, rel: PatronRelationship, now: datetime) -> float:
        level = rel.relationship_level
        status = rel.special_status

        if points > 0:
            # saturating returns
            if level > 1.5:
                points *= 0.6
            elif level > 1.0:
                points *= 0.8
        else:
            # more to lose
            if level > 1.0:
                points *= 1.5
            elif level > 0.5:
                points *= 1.2

        if status == "favorite" and points < 0:
            points *= 1.8
        if status == "problematic" and points > 0:
            points *= 1.3

        recent = rel.recent_actions(now, timedelta(hours=1))
        if recent and points > 0:
            negative_ratio = sum(1 for a in recent if a.points < 0) / len(recent)
            if negative_ratio >= 0.6:
                points *= 1.4
        return points

    def points_for(self, action, context, rel: PatronRelationship, now: datetime) -> float:
        action = Action.parse(action)
        if action is Action.UNCLASSIFIED:
            return UNCLASSIFIED_POINTS
        ctx = ActionContext.from_mapping(context)
        points = self.apply_balance(self.base_points(action, ctx))
        return self.relationship_modifiers(points, rel, now)

    def score(self, rel: PatronRelationship, action, context, now: datetime) -> ScoreResult:
        """Score one action against the relationship and fold the result into it."""
        action = Action.parse(action)
        category = ACTION_CATEGORY.get(action, "unclassified")
        points = self.points_for(action, context, rel, now)

        previous_level = rel.favor_level
        old_rel_level = rel.relationship_level

        rel.relationship_level += points / 100
        rel.engagement_points = max(0.0, rel.engagement_points + points)
        rel.total_interactions += 1
        rel.action_history.append(ActionRecord(now, action.value, category, points))
        clamp_relationship(rel)

        new_level = rel.favor_level
        changed = new_level != previous_level
        if changed and FAVOR_ORDER.index(new_level) > FAVOR_ORDER.index(previous_level):
            self.grant_favor_benefits(rel, new_level, now)

        result = ScoreResult(
            action=action,
            category=category,
            points_earned=points,
            relationship_change=rel.relationship_level - old_rel_level,
            favor_level_changed=changed,
            previous_level=previous_level,
            new_level=new_level,
            consequences=behavioral_consequences(rel),
            emotional_impact=self.to_emotional_impact(action, category, points),
        )

        if abs(points) > 20 or changed:
            log.info(
                "[SCORE %s] significant change action=%s points=%.2f rel_change=%.3f favor %s->%s",
                rel.user_id, action.value, points, result.relationship_change, previous_level, new_level,
            )
        return result

    def grant_favor_benefits(self, rel: PatronRelationship, level: str, now: datetime) -> None:
        # crossing several thresholds at once grants every level in between
        for name, _, benefits in FAVOR_LEVELS:
            for b in benefits:
                if b not in rel.unlocked_benefits:
                    rel.unlocked_benefits.append(b)
            if name == level:
                break
        rel.favor_milestones.append(FavorMilestone(level, now, rel.engagement_points))

    def to_emotional_impact(self, action: Action, category: str, points: float) -> BehaviorVector:
        tag = CATEGORY_TAG.get(category)
        if tag is None:
            return BehaviorVector()
        magnitude = abs(points) / 50
        impact = magnitude if tag != "rudeness" else -magnitude
        return BehaviorVector(
            **{tag: magnitude},
            detected_patterns=[DetectedPattern(category=tag, matches=[action.value], impact=impact)],
        )

    def next_threshold(self, points: float) -> Optional[Dict[str, Any]]:
        for name, threshold, _ in FAVOR_LEVELS:
            if points < threshold:
                return {"level": name, "threshold": threshold, "points_needed": threshold - points}
        return None

    def favor_progress(self, points: float) -> float:
        nxt = self.next_threshold(points)
        if nxt is None:
            return 100.0
        current = favor_level_for(points)
        current_threshold = next(t for n, t, _ in FAVOR_LEVELS if n == current)
        progress = (points - current_threshold) / (nxt["threshold"] - current_threshold)
        return max(0.0, min(100.0, progress * 100))
