from enum import Enum


class QueryKind(str, Enum):
    EVENTS = "EVENTS"
    AGGREGATE_TYPE = "AGGREGATE_TYPE"
    AGGREGATE_HOUR = "AGGREGATE_HOUR"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Allowed forward transitions; terminal states have none.
JOB_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000
