"""
Emotional relationship engine for Savannah.

This module tracks, per patron:
- Savannah's own mood (value, energy, stress, attention, momentum, stability)
- The durable relationship ledger and its significance-ranked memory bank
- Engagement points, favor levels and their behavioral consequences
- Cooldown-gated recovery after conflict
- Inactivity decay of affection, grudges and memories

Main entry point is `EmotionalEngine` in processor.py.
"""

from .processor import EmotionalEngine, PatronActor
from .repo import get_or_create_relationship, save_relationship
from .engine import PatronRelationship, Session, SessionSummary, compute_status, update_relationship
from .mood import MoodState, mood_label
from .signals import BehaviorClassifier, BehaviorVector, coerce_vector
from .scoring import Action, EngagementScorer, behavioral_consequences
from .recovery import RecoveryCoordinator, RecoveryResult
from .inactivity import apply_decay, apply_inactivity_decay

__all__ = [
    # Main entry point
    "EmotionalEngine",
    "PatronActor",

    # Ledger
    "PatronRelationship",
    "Session",
    "SessionSummary",
    "compute_status",
    "update_relationship",
    "get_or_create_relationship",
    "save_relationship",

    # Mood
    "MoodState",
    "mood_label",

    # Classifier contract
    "BehaviorClassifier",
    "BehaviorVector",
    "coerce_vector",

    # Scoring and recovery
    "Action",
    "EngagementScorer",
    "behavioral_consequences",
    "RecoveryCoordinator",
    "RecoveryResult",

    # Decay
    "apply_decay",
    "apply_inactivity_decay",
]
