"""Async job submission and status schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import JobStatus, QueryKind
from .queries import EventQueryRequest


class JobSubmission(BaseModel):
    """Request body for POST /jobs."""
    query_kind: QueryKind
    request: EventQueryRequest = Field(default_factory=EventQueryRequest)


class JobSubmitted(BaseModel):
    job_id: UUID
    status: JobStatus = JobStatus.PENDING


class JobStatusRead(BaseModel):
    """Full job record as seen by a polling client.

    ``result`` is only present once COMPLETED, ``error`` only once FAILED.
    """
    job_id: UUID
    query_kind: QueryKind
    status: JobStatus
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time_ms: int = 0
