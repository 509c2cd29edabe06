from .common import (  # noqa: F401
    DEFAULT_PAGE_SIZE,
    JOB_TRANSITIONS,
    MAX_PAGE_SIZE,
    TERMINAL_JOB_STATUSES,
    JobStatus,
    QueryKind,
)
from .jobs import JobStatusRead, JobSubmission, JobSubmitted  # noqa: F401
from .queries import (  # noqa: F401
    EventQueryRequest,
    EventQueryResponse,
    EventRead,
    HourlyAggregation,
    HourlyCount,
    TimeRange,
    TypeAggregation,
    TypeCount,
)
