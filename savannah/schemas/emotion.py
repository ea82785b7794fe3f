from pydantic import BaseModel, field_validator
from typing import Dict, List, Optional
from datetime import datetime


class ServiceModifiers(BaseModel):
    attentiveness: float = 1.0
    warmth: float = 1.0
    creativity: float = 1.0
    patience: float = 1.0
    storytelling: float = 1.0
    flirtation: float = 1.0
    professionalism: float = 1.0
    recommendation_quality: float = 1.0
    conversation_depth: float = 1.0
    memory_recall: float = 1.0

    @field_validator("*")
    @classmethod
    def within_service_range(cls, value: float) -> float:
        return max(0.3, min(1.5, value))


class ConversationStyle(BaseModel):
    warmth: float
    formality: float
    playfulness: float
    directness: float
    storytelling: float
    flirtation: float


class ContextualHints(BaseModel):
    suggest_recovery: bool = False
    show_vulnerability: bool = False
    display_expertise: bool = False
    seek_validation: bool = False
    offer_story: bool = False
    show_appreciation: bool = False
    maintain_boundaries: bool = False
    express_frustration: bool = False


class RelationshipView(BaseModel):
    level: float
    special_status: str
    favor_level: str
    trust_level: float
    respect_level: float
    engagement_points: float
    total_interactions: int


class SessionView(BaseModel):
    started_at: datetime
    interaction_count: int
    neglect_seconds: float
    appreciation_shown: float
    rudeness_level: float
    flirtation_level: float
    conversation_quality: float


class EmotionalContext(BaseModel):
    """Snapshot handed to response generation and avatar gesture triggers."""

    user_id: str
    mood_label: str
    mood_value: float
    energy: float
    stress: float
    attention: float
    loneliness: float
    satisfaction: float
    momentum: float
    service_modifiers: ServiceModifiers
    conversation_style: ConversationStyle
    relationship: Optional[RelationshipView] = None
    contextual_hints: ContextualHints
    emotional_cues: List[str] = []
    session: Optional[SessionView] = None
    timestamp: datetime


class EngagementSummary(BaseModel):
    user_id: str
    favor_level: str
    engagement_points: float
    relationship_level: float
    special_status: str
    escalation_tier: str
    unlocked_benefits: List[str]
    recent_actions: List[Dict[str, object]]
    recovery_needed: bool
    available_recovery_methods: List[Dict[str, object]]
    next_favor_threshold: Optional[Dict[str, object]] = None
    favor_progress: float


class RelationshipSummary(BaseModel):
    user_id: str
    special_status: str
    relationship_level: float
    trust_level: float
    respect_level: float
    total_interactions: int
    total_sessions: int
    average_session_length: float
    significant_memories: List[Dict[str, object]]
    recent_conflicts: List[Dict[str, object]]
    recovery_needed: bool
    favorite_interactions: int
