"""Background refresh scheduler."""

from .scheduler import (
    JobScheduler,
    get_scheduler,
    start_scheduler,
    stop_scheduler,
)
from .registry import (
    register_job,
    get_job,
)


__all__ = [
    "JobScheduler",
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
    "register_job",
    "get_job",
]
