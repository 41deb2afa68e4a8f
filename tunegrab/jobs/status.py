"""Read-only job lookup for pollers."""

from typing import Optional

from tunegrab.jobs.models import JobRecord
from tunegrab.storage.job_store import JobStore


class JobStatusService:
    """Serves job records from the store, memory first, then disk.

    Works from any process that shares the snapshot directory, including one
    started after the job was submitted. Unknown ids return None.
    """

    def __init__(self, store: JobStore):
        self._store = store

    async def get_status(self, job_id: str) -> Optional[JobRecord]:
        return await self._store.get(job_id)
