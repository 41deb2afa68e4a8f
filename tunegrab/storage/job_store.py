"""Job store: in-memory cache in front of the on-disk snapshots."""

import asyncio
import logging
from typing import Callable, Dict, Optional

from tunegrab.jobs.models import JobRecord
from tunegrab.storage.job_files import JobFileStore

logger = logging.getLogger(__name__)


class JobStore:
    """Memory-first job lookup with disk fallback.

    ``get`` serves from memory and falls back to the snapshot on a miss,
    caching what it loaded so the next read stays in memory. ``put`` writes
    memory then disk, and only returns once both have succeeded; a disk
    failure is raised as ``PersistenceError``.

    All methods must be called from the event loop that owns the store.
    """

    def __init__(self, files: JobFileStore):
        self._files = files
        self._jobs: Dict[str, JobRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    async def _run_io(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def _load_locked(self, job_id: str) -> Optional[JobRecord]:
        # caller holds the job lock, so a concurrent delete cannot be undone
        job = self._jobs.get(job_id)
        if job is not None:
            return job

        job = await self._run_io(self._files.load, job_id)
        if job is None:
            return None
        self._jobs[job_id] = job
        logger.info("Loaded job_id=%s from disk into memory", job_id)
        return job

    async def get(self, job_id: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        if job is None:
            async with self._lock(job_id):
                job = await self._load_locked(job_id)
        return job.model_copy(deep=True) if job is not None else None

    async def put(self, record: JobRecord) -> None:
        snapshot = record.model_copy(deep=True)
        self._jobs[snapshot.id] = snapshot
        await self._run_io(self._files.save, snapshot)

    async def update(
        self, job_id: str, mutate: Callable[[JobRecord], bool]
    ) -> Optional[JobRecord]:
        """Apply ``mutate`` to one record atomically with respect to other updates.

        The record is written back only when ``mutate`` returns True. Returns
        the resulting record, or None when the job does not exist.
        """
        async with self._lock(job_id):
            job = await self._load_locked(job_id)
            if job is None:
                return None
            job = job.model_copy(deep=True)
            if mutate(job):
                await self.put(job)
            return job

    async def delete(self, job_id: str) -> None:
        async with self._lock(job_id):
            self._jobs.pop(job_id, None)
            await self._run_io(self._files.delete, job_id)
        self._locks.pop(job_id, None)
