"""
Outbound emotional context: everything response generation and the avatar
need to know about how she feels right now, derived fresh from the mood, the
relationship and the live session. Nothing here mutates state.
"""

from datetime import datetime
from typing import Dict, List, Optional

from savannah.relationship.engine import PatronRelationship, Session
from savannah.relationship.mood import MoodState, clamp
from savannah.schemas.emotion import (
    ContextualHints,
    ConversationStyle,
    EmotionalContext,
    RelationshipView,
    ServiceModifiers,
    SessionView,
)

MOOD_CUES: Dict[str, List[str]] = {
    "hurt": ["wounded", "guarded", "disappointed"],
    "annoyed": ["irritated", "impatient", "terse"],
    "content": ["satisfied", "peaceful", "steady"],
    "happy": ["cheerful", "bright", "engaging"],
    "excited": ["energetic", "enthusiastic", "animated"],
    "playful": ["teasing", "flirtatious", "fun"],
}

NEGLECT_CUE_SECONDS = 60.0


def service_modifiers(mood: MoodState, rel: Optional[PatronRelationship]) -> ServiceModifiers:
    m = mood.mood_value
    mods = ServiceModifiers().model_dump()

    if m > 0:
        mods["warmth"] = 1 + m * 0.5
        mods["creativity"] = 1 + m * 0.3
        mods["storytelling"] = 1 + m * 0.4
        mods["conversation_depth"] = 1 + m * 0.3
    else:
        mods["warmth"] = max(0.5, 1 + m * 0.7)
        mods["patience"] = max(0.4, 1 + m * 0.6)
        mods["storytelling"] = max(0.3, 1 + m * 0.5)
        mods["conversation_depth"] = max(0.4, 1 + m * 0.4)

    mods["attentiveness"] = 0.5 + mood.energy * 0.5 + mood.attention * 0.3
    mods["recommendation_quality"] = 0.6 + mood.energy * 0.4

    mods["patience"] = max(0.3, mods["patience"] - mood.stress * 0.4)
    mods["attentiveness"] = max(0.4, mods["attentiveness"] - mood.stress * 0.3)

    if rel is not None:
        bonus = max(0.0, rel.relationship_level) * 0.3
        mods = {k: min(1.5, v + bonus) for k, v in mods.items()}

        status = rel.special_status
        if status == "favorite":
            mods["memory_recall"] = 1.3
            mods["attentiveness"] = 1.4
            mods["warmth"] = min(1.5, mods["warmth"] + 0.2)
        elif status == "problematic":
            mods = {k: max(0.4, v - 0.3) for k, v in mods.items()}

    return ServiceModifiers(**mods)


def conversation_style(mood: MoodState, mods: ServiceModifiers, rel: Optional[PatronRelationship]) -> ConversationStyle:
    m = mood.mood_value
    style = {
        "warmth": mods.warmth,
        "formality": 0.6,
        "playfulness": 0.4,
        "directness": 0.5,
        "storytelling": mods.storytelling,
        "flirtation": 0.2,
    }

    if m > 0.5:
        style["playfulness"] += 0.3
        style["flirtation"] += 0.2
        style["formality"] -= 0.2
    elif m < -0.3:
        style["formality"] += 0.2
        style["directness"] += 0.3
        style["playfulness"] -= 0.3
        style["flirtation"] -= 0.4

    if rel is not None:
        status = rel.special_status
        if status == "favorite":
            style["warmth"] += 0.3
            style["playfulness"] += 0.2
            style["formality"] -= 0.3
        elif status == "problematic":
            style["formality"] += 0.4
            style["directness"] += 0.3
            style["warmth"] -= 0.3
            style["playfulness"] -= 0.4

        if rel.attraction_level > 0.5:
            style["flirtation"] = min(0.7, style["flirtation"] + 0.3)

    return ConversationStyle(**{k: clamp(v, 0.0, 1.0) for k, v in style.items()})


def emotional_cues(mood: MoodState, session: Optional[Session]) -> List[str]:
    cues = list(MOOD_CUES.get(mood.label, []))
    if mood.stress > 0.6:
        cues += ["stressed", "overwhelmed"]
    if mood.attention < 0.5:
        cues += ["distracted", "disinterested"]
    if mood.loneliness > 0.6:
        cues += ["lonely", "seeking_connection"]
    if session is not None and session.neglect_seconds > NEGLECT_CUE_SECONDS:
        cues += ["neglected", "attention_seeking"]
    return cues


def contextual_hints(mood: MoodState, rel: Optional[PatronRelationship], session: Optional[Session]) -> ContextualHints:
    hints = ContextualHints()

    if rel is not None and rel.relationship_level < -0.3:
        hints.suggest_recovery = True
        hints.maintain_boundaries = True

    # hurt, but not spiralling
    if mood.label == "hurt" and mood.momentum > -0.7:
        hints.show_vulnerability = True

    if mood.mood_value > 0.3 and mood.energy > 0.6:
        hints.display_expertise = True
        hints.offer_story = True

    if session is not None:
        if session.appreciation_shown < 0.2 and session.interaction_count > 3:
            hints.seek_validation = True
        if session.appreciation_shown > 1.0:
            hints.show_appreciation = True
        if session.rudeness_level > 0.5:
            hints.express_frustration = True
            hints.maintain_boundaries = True

    return hints


def build_emotional_context(
    user_id: str,
    mood: MoodState,
    rel: Optional[PatronRelationship],
    session: Optional[Session],
    now: datetime,
) -> EmotionalContext:
    mods = service_modifiers(mood, rel)
    relationship = None
    if rel is not None:
        relationship = RelationshipView(
            level=rel.relationship_level,
            special_status=rel.special_status,
            favor_level=rel.favor_level,
            trust_level=rel.trust_level,
            respect_level=rel.respect_level,
            engagement_points=rel.engagement_points,
            total_interactions=rel.total_interactions,
        )
    session_view = None
    if session is not None:
        session_view = SessionView(
            started_at=session.start_time,
            interaction_count=session.interaction_count,
            neglect_seconds=session.neglect_seconds,
            appreciation_shown=session.appreciation_shown,
            rudeness_level=session.rudeness_level,
            flirtation_level=session.flirtation_level,
            conversation_quality=session.conversation_quality,
        )

    return EmotionalContext(
        user_id=user_id,
        mood_label=mood.label,
        mood_value=mood.mood_value,
        energy=mood.energy,
        stress=mood.stress,
        attention=mood.attention,
        loneliness=mood.loneliness,
        satisfaction=mood.satisfaction,
        momentum=mood.momentum,
        service_modifiers=mods,
        conversation_style=conversation_style(mood, mods, rel),
        relationship=relationship,
        contextual_hints=contextual_hints(mood, rel, session),
        emotional_cues=emotional_cues(mood, session),
        session=session_view,
        timestamp=now,
    )
