from pydantic import BaseModel, TypeAdapter
from typing import Any, Optional
from datetime import datetime

from savannah.relationship.engine import PatronRelationship, SessionSummary
from savannah.relationship.mood import MoodState

RECORD_VERSION = "1.0"


class StoredRecord(BaseModel):
    """Envelope written for every key; `saved_at` drives retention."""

    category: str
    user_id: Optional[str] = None
    saved_at: datetime
    version: str = RECORD_VERSION
    payload: Any = None


class BackupRecord(BaseModel):
    created_at: datetime
    version: str = RECORD_VERSION
    data: dict[str, str]


relationship_adapter = TypeAdapter(PatronRelationship)
mood_adapter = TypeAdapter(MoodState)
session_summary_adapter = TypeAdapter(SessionSummary)
