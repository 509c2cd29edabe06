"""Event model (append-only, immutable once ingested)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import BigIntegerPK, JSONPayload, UTCDateTime, utcnow


class Event(SQLModel, table=True):
    __tablename__ = "events"
    __table_args__ = (
        sa.Index("ix_events_owner_occurred", "owner_id", "occurred_at"),
        sa.Index("ix_events_type_occurred", "type", "occurred_at"),
    )

    # Insertion-ordered key; doubles as the pagination cursor.
    id: Optional[int] = Field(default=None, primary_key=True, sa_type=BigIntegerPK)
    owner_id: uuid.UUID = Field(nullable=False)
    type: str = Field(nullable=False, max_length=50)  # e.g. page_view, signup, purchase
    source: str = Field(nullable=False, max_length=100)
    payload: dict = Field(default_factory=dict, sa_type=JSONPayload, nullable=False)
    occurred_at: datetime = Field(nullable=False, index=True, sa_type=UTCDateTime)
    recorded_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=UTCDateTime,
    )
