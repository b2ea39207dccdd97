"""Notification payload models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from bookswap.domain.models import new_id, utcnow
from bookswap.domain.types import NotificationType


class RelatedEntity(BaseModel):
    """Pointer from a notification to the aggregate it is about."""

    model_config = ConfigDict(frozen=True)

    entity_type: str
    entity_id: str


class Notification(BaseModel):
    """A single message addressed to one user."""

    notification_id: str = Field(default_factory=new_id)
    recipient_id: str
    event_type: NotificationType
    message: str
    related_entity: RelatedEntity | None = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
