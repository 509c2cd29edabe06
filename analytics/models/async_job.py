"""Async query job model.

Status only moves forward: pending -> running -> completed | failed.
"""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UTCDateTime, utcnow


class AsyncJob(SQLModel, table=True):
    __tablename__ = "async_jobs"
    __table_args__ = (
        sa.Index("ix_async_jobs_status_created", "status", "created_at"),
    )

    job_id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, nullable=False)
    query_kind: str = Field(nullable=False, max_length=50)  # EVENTS | AGGREGATE_TYPE | AGGREGATE_HOUR
    query_params: str = Field(nullable=False, sa_type=sa.Text)
    status: str = Field(nullable=False, default="PENDING", max_length=20)
    result: Optional[str] = Field(default=None, sa_type=sa.Text)
    error: Optional[str] = Field(default=None, sa_type=sa.Text)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=UTCDateTime)
    started_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
