"""
Analytics endpoints: event listing, aggregations, async query jobs.

- Listings and aggregations run synchronously under the query timeout and
  are served through the query cache.
- Heavy queries can be submitted as jobs instead: POST returns 202 with a
  job id right away, GET polls the job record.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from analytics.core.exceptions import QueryValidationError
from analytics.schemas.jobs import JobStatusRead, JobSubmission, JobSubmitted
from analytics.schemas.queries import (
    EventQueryRequest,
    EventQueryResponse,
    HourlyAggregation,
    TimeRange,
    TypeAggregation,
)
from analytics.services.container import AnalyticsServices

router = APIRouter()


def get_services(request: Request) -> AnalyticsServices:
    return request.app.state.services


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(error["msg"] for error in exc.errors())


def event_query(
    owner_id: Optional[uuid.UUID] = None,
    type: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    cursor: Optional[int] = None,
    page_size: Optional[int] = None,
    include_total: bool = False,
) -> EventQueryRequest:
    try:
        return EventQueryRequest(
            owner_id=owner_id,
            type=type,
            start_time=start_time,
            end_time=end_time,
            cursor=cursor,
            page_size=page_size,
            include_total=include_total,
        )
    except ValidationError as exc:
        raise QueryValidationError(_validation_message(exc)) from exc


def time_range(
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> TimeRange:
    try:
        return TimeRange(start_time=start_time, end_time=end_time)
    except ValidationError as exc:
        raise QueryValidationError(_validation_message(exc)) from exc


# ---------------------------------------------------------------------------
# Synchronous queries
# ---------------------------------------------------------------------------


@router.get("/events", response_model=EventQueryResponse)
async def list_events_endpoint(
    query: EventQueryRequest = Depends(event_query),
    services: AnalyticsServices = Depends(get_services),
):
    """One page of events, ascending by id. Pass ``next_cursor`` back to continue."""
    return await services.queries.query_events(query)


@router.get("/aggregate/type", response_model=TypeAggregation)
async def aggregate_by_type_endpoint(
    window: TimeRange = Depends(time_range),
    services: AnalyticsServices = Depends(get_services),
):
    """Event counts per type over the window, most frequent first."""
    return await services.queries.aggregate_by_type(window)


@router.get("/aggregate/hour", response_model=HourlyAggregation)
async def aggregate_by_hour_endpoint(
    window: TimeRange = Depends(time_range),
    services: AnalyticsServices = Depends(get_services),
):
    """Event counts per hour over the window, oldest first."""
    return await services.queries.aggregate_by_hour(window)


# ---------------------------------------------------------------------------
# Async jobs
# ---------------------------------------------------------------------------


@router.post("/jobs", response_model=JobSubmitted, status_code=202)
async def submit_job_endpoint(
    submission: JobSubmission,
    services: AnalyticsServices = Depends(get_services),
):
    """Queue a query for background execution."""
    job_id = await services.jobs.submit(submission.query_kind, submission.request)
    return JobSubmitted(job_id=job_id)


@router.get("/jobs/{job_id}", response_model=JobStatusRead)
async def get_job_endpoint(
    job_id: uuid.UUID,
    services: AnalyticsServices = Depends(get_services),
):
    """Current state of a job; ``result`` once COMPLETED, ``error`` once FAILED."""
    return await services.jobs.get_status(job_id)
