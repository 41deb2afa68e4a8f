import asyncio
import threading

import pytest

from tunegrab.errors import PersistenceError
from tunegrab.jobs.models import JobRecord
from tunegrab.jobs.status import JobStatusService
from tunegrab.storage.job_files import JobFileStore
from tunegrab.storage.job_store import JobStore


class CountingFiles(JobFileStore):
    def __init__(self, directory):
        super().__init__(directory)
        self.loads = 0
        self.saves = 0

    def load(self, job_id):
        self.loads += 1
        return super().load(job_id)

    def save(self, record):
        self.saves += 1
        super().save(record)


class SlowReadFiles(JobFileStore):
    """Reads the snapshot, then holds it until the test releases it."""

    def __init__(self, directory):
        super().__init__(directory)
        self.started = threading.Event()
        self.release = threading.Event()

    def load(self, job_id):
        record = super().load(job_id)
        self.started.set()
        self.release.wait(5)
        return record


class BrokenDisk(JobFileStore):
    def save(self, record):
        raise PersistenceError(record.id, OSError(28, "No space left on device"))


def _job():
    return JobRecord(source_reference="abc123", target_format="mp3")


async def test_put_converges_with_disk(store, jobs_dir):
    job = _job()
    await store.put(job)
    job.advance_progress(45)
    await store.put(job)

    assert JobFileStore(jobs_dir).load(job.id) == job
    assert await store.get(job.id) == job


async def test_cold_get_falls_back_to_disk_and_repopulates(jobs_dir):
    job = _job()
    JobFileStore(jobs_dir).save(job)

    files = CountingFiles(jobs_dir)
    status = JobStatusService(JobStore(files))

    assert await status.get_status(job.id) == job
    assert files.loads == 1
    assert await status.get_status(job.id) == job
    assert files.loads == 1


async def test_unknown_id_is_not_found(store):
    assert await store.get("missing") is None
    assert await JobStatusService(store).get_status("missing") is None
    assert await store.get("../../etc/passwd") is None


async def test_update_skips_write_when_nothing_changed(jobs_dir):
    files = CountingFiles(jobs_dir)
    store = JobStore(files)
    job = _job()
    await store.put(job)

    await store.update(job.id, lambda j: j.advance_progress(30))
    await store.update(job.id, lambda j: j.advance_progress(20))
    await store.update(job.id, lambda j: j.advance_progress(30))

    assert files.saves == 2
    assert (await store.get(job.id)).progress == 30
    assert await store.update("missing", lambda j: True) is None


async def test_disk_failure_surfaces_to_caller(jobs_dir):
    store = JobStore(BrokenDisk(jobs_dir))
    with pytest.raises(PersistenceError):
        await store.put(_job())


async def test_get_returns_a_copy(store):
    job = _job()
    await store.put(job)

    fetched = await store.get(job.id)
    fetched.advance_progress(99)

    assert (await store.get(job.id)).progress == 0


async def test_delete_removes_memory_and_disk(store, jobs_dir):
    job = _job()
    await store.put(job)
    await store.delete(job.id)

    assert await store.get(job.id) is None
    assert JobFileStore(jobs_dir).load(job.id) is None


async def test_delete_during_cold_read_is_not_undone(jobs_dir):
    job = _job()
    JobFileStore(jobs_dir).save(job)
    files = SlowReadFiles(jobs_dir)
    store = JobStore(files)

    reader = asyncio.create_task(store.get(job.id))
    try:
        while not files.started.is_set():
            await asyncio.sleep(0.01)
        deleter = asyncio.create_task(store.delete(job.id))
        await asyncio.sleep(0.05)
    finally:
        files.release.set()

    assert await reader == job
    await deleter

    assert await store.get(job.id) is None
    assert JobFileStore(jobs_dir).load(job.id) is None
