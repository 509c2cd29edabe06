# Imported here so SQLModel.metadata holds every table before create_all.
from .event import Event  # noqa: F401
from .async_job import AsyncJob  # noqa: F401
