"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Optional

from tunegrab.jobs.models import ExtractionRequest, JobRecord


class JobDispatcher(ABC):
    """Abstract interface for accepting and tracking extraction jobs."""

    @abstractmethod
    async def submit(self, request: ExtractionRequest) -> str:
        """Validate and enqueue a request. Returns job_id immediately."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> Optional[JobRecord]:
        """Get current status of a job, or None if it is unknown."""
        ...

    @abstractmethod
    async def cancel(self, job_id: str) -> bool:
        """Stop a running job. Returns False if nothing was running."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher, tearing down every scheduled task."""
        ...
