"""Extraction job lifecycle: submission, execution, completion and cleanup.

Each submitted job runs as its own asyncio task, so the request path that
submitted it never waits on the extractor. A job moves
queued -> processing -> completed | failed, and every change is written
through the JobStore (memory and disk) before the job continues.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

from tunegrab.errors import JobValidationError, PersistenceError
from tunegrab.jobs.discovery import NamingHints, derive_naming, discover_output
from tunegrab.jobs.dispatcher import JobDispatcher
from tunegrab.jobs.models import ExtractionRequest, JobRecord, JobStatus
from tunegrab.jobs.progress import ProgressEstimator, ProgressTracker
from tunegrab.jobs.runner import ProcessRunner, build_extract_command
from tunegrab.jobs.status import JobStatusService
from tunegrab.storage.job_files import JobFileStore
from tunegrab.storage.job_store import JobStore

logger = logging.getLogger(__name__)

PROCESSING_START_PROGRESS = 5

CommandBuilder = Callable[[JobRecord, str], List[str]]


@dataclass
class _JobTasks:
    """Scheduled work belonging to one job."""
    run: Optional[asyncio.Task] = None
    monitor: Optional[asyncio.Task] = None
    cleanup: Optional[asyncio.Task] = None

    @property
    def idle(self) -> bool:
        return self.run is None and self.cleanup is None


async def _cancel_task(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class ExtractionOrchestrator(JobDispatcher):
    """Runs audio extraction jobs in-process with asyncio."""

    def __init__(
        self,
        store: JobStore,
        output_dir: str,
        runner: Optional[ProcessRunner] = None,
        extractor_binary: str = "yt-dlp",
        source_url_template: str = "https://www.youtube.com/watch?v={source}",
        supported_format: str = "mp3",
        retention_seconds: float = 0,
        stall_check_interval: float = 10.0,
        stall_threshold: float = 30.0,
        stall_ceiling: int = 80,
        stall_increment: int = 10,
        recency_window: float = 60.0,
        error_detail_max_chars: int = 2000,
        download_url_prefix: str = "/api/v1/downloads",
        command_builder: Optional[CommandBuilder] = None,
        estimator: Optional[ProgressEstimator] = None,
    ):
        self._store = store
        self._status = JobStatusService(store)
        self._runner = runner or ProcessRunner()
        self._output_dir = output_dir
        self._extractor_binary = extractor_binary
        self._source_url_template = source_url_template
        self._supported_format = supported_format
        self._retention_seconds = retention_seconds
        self._stall_check_interval = stall_check_interval
        self._stall_threshold = stall_threshold
        self._stall_ceiling = stall_ceiling
        self._stall_increment = stall_increment
        self._recency_window = recency_window
        self._error_detail_max_chars = error_detail_max_chars
        self._download_url_prefix = download_url_prefix.rstrip("/")
        self._command_builder = command_builder or self._default_command
        self._estimator = estimator or ProgressEstimator()

        self._tasks: Dict[str, _JobTasks] = {}
        self._cancel_reasons: Dict[str, str] = {}
        self._running = False

    @classmethod
    def from_settings(cls, settings, store: Optional[JobStore] = None) -> "ExtractionOrchestrator":
        if store is None:
            store = JobStore(JobFileStore(settings.jobs_dir))
        return cls(
            store=store,
            output_dir=settings.download_dir,
            extractor_binary=settings.extractor_binary,
            source_url_template=settings.source_url_template,
            supported_format=settings.supported_format,
            retention_seconds=settings.retention_seconds,
            stall_check_interval=settings.stall_check_interval_seconds,
            stall_threshold=settings.stall_threshold_seconds,
            stall_ceiling=settings.stall_ceiling,
            stall_increment=settings.stall_increment,
            recency_window=settings.output_recency_seconds,
            error_detail_max_chars=settings.error_detail_max_chars,
        )

    @property
    def status_service(self) -> JobStatusService:
        return self._status

    def active_job_ids(self) -> List[str]:
        return [job_id for job_id, t in self._tasks.items() if t.run is not None]

    # ------------------------------------------------------------------
    # JobDispatcher
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        logger.info(
            "Orchestrator started output_dir=%s retention_seconds=%s",
            self._output_dir, self._retention_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        runs = []
        for job_id, tasks in list(self._tasks.items()):
            if tasks.run is not None and not tasks.run.done():
                self._cancel_reasons[job_id] = "Interrupted by shutdown"
                tasks.run.cancel()
                runs.append((job_id, tasks.run))
            if tasks.cleanup is not None:
                tasks.cleanup.cancel()

        pending = [t.run for t in self._tasks.values() if t.run] + [
            t.cleanup for t in self._tasks.values() if t.cleanup
        ]
        if pending:
            logger.info("Stopping %d scheduled task(s)", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

        for job_id, _ in runs:
            await self._fail(job_id, self._cancel_reasons.pop(job_id, "Interrupted by shutdown"))
        self._tasks.clear()

    async def submit(self, request: ExtractionRequest) -> str:
        if not self._running:
            raise RuntimeError("Orchestrator is not running")
        target_format = request.target_format
        if target_format != self._supported_format:
            raise JobValidationError(
                f"Invalid format. Only {self._supported_format} is supported"
            )
        if not request.source_reference.strip():
            raise JobValidationError("sourceReference is required")

        job = JobRecord(
            source_reference=request.source_reference.strip(),
            target_format=target_format,
            display_title=request.display_title,
            display_artist=request.display_artist,
            custom_metadata=dict(request.custom_metadata),
        )
        await self._store.put(job)
        logger.info("Created job_id=%s source=%s", job.id, job.source_reference)

        task = asyncio.create_task(self._run_job(job.id), name=f"extract-{job.id}")
        self._tasks.setdefault(job.id, _JobTasks()).run = task
        task.add_done_callback(partial(self._on_run_done, job.id))
        return job.id

    async def get_status(self, job_id: str) -> Optional[JobRecord]:
        return await self._status.get_status(job_id)

    async def cancel(self, job_id: str) -> bool:
        tasks = self._tasks.get(job_id)
        if tasks is None or tasks.run is None or tasks.run.done():
            logger.warning("Attempted to cancel job_id=%s with no running task", job_id)
            return False

        logger.info("Cancelling job_id=%s", job_id)
        reason = "Cancelled by request"
        self._cancel_reasons[job_id] = reason
        await _cancel_task(tasks.run)
        # a task cancelled before its first step never reaches its own handler
        job = await self._fail(job_id, self._cancel_reasons.pop(job_id, reason))
        if job is not None and job.status == JobStatus.COMPLETED:
            logger.info("job_id=%s completed before it could be cancelled", job_id)
            return False
        return True

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[JobRecord]:
        """Wait for a job's task to finish, then return its record."""
        tasks = self._tasks.get(job_id)
        if tasks is not None and tasks.run is not None:
            await asyncio.wait({tasks.run}, timeout=timeout)
        return await self.get_status(job_id)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def _default_command(self, job: JobRecord, output_template: str) -> List[str]:
        source_url = self._source_url_template.format(source=job.source_reference)
        return build_extract_command(
            self._extractor_binary,
            source_url,
            output_template,
            job.target_format,
            job.custom_metadata,
        )

    def _on_run_done(self, job_id: str, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Job task for job_id=%s ended with %r", job_id, task.exception())
        tasks = self._tasks.get(job_id)
        if tasks is None:
            return
        tasks.run = None
        if tasks.idle:
            self._tasks.pop(job_id, None)

    def _on_cleanup_done(self, job_id: str, task: asyncio.Task) -> None:
        tasks = self._tasks.get(job_id)
        if tasks is None:
            return
        tasks.cleanup = None
        if tasks.idle:
            self._tasks.pop(job_id, None)

    async def _run_job(self, job_id: str) -> None:
        try:
            await self._execute(job_id)
        except asyncio.CancelledError:
            reason = self._cancel_reasons.get(job_id, "Cancelled")
            logger.info("job_id=%s cancelled: %s", job_id, reason)
            job = await self._fail(job_id, reason)
            # the completion write may have landed before the cancellation
            if job is not None and job.status == JobStatus.COMPLETED:
                self._after_completed(job)
            raise
        except Exception as e:
            logger.exception("Unexpected error in job_id=%s", job_id)
            try:
                await self._fail(job_id, f"{type(e).__name__}: {e}")
            except PersistenceError:
                logger.error("Could not record failure for job_id=%s", job_id)

    async def _execute(self, job_id: str) -> None:
        job = await self._store.get(job_id)
        if job is None:
            logger.error("Job %s not found.", job_id)
            return

        hints = derive_naming(job.id, job.display_title, job.display_artist)
        try:
            await self._run_io(partial(os.makedirs, self._output_dir, exist_ok=True))
        except OSError as e:
            await self._fail(job_id, f"Cannot create output directory: {e}")
            return

        job = await self._store.update(
            job_id, lambda j: j.mark_processing(PROCESSING_START_PROGRESS)
        )
        if job is None or job.status != JobStatus.PROCESSING:
            return

        tracker = ProgressTracker(
            estimator=self._estimator,
            initial=job.progress,
            stall_threshold=self._stall_threshold,
            stall_ceiling=self._stall_ceiling,
            stall_increment=self._stall_increment,
        )
        output_template = os.path.join(
            self._output_dir, hints.base_name.replace("%", "%%") + ".%(ext)s"
        )
        command = self._command_builder(job, output_template)
        logger.info("job_id=%s running: %s", job_id, " ".join(command))

        monitor = asyncio.create_task(
            self._monitor_stall(job_id, tracker), name=f"stall-{job_id}"
        )
        self._tasks.setdefault(job_id, _JobTasks()).monitor = monitor
        try:
            result = await self._runner.run(
                command, on_line=partial(self._on_output, job_id, tracker)
            )
        except OSError as e:
            logger.error("job_id=%s failed to spawn extractor: %s", job_id, e)
            await self._fail(job_id, f"Failed to start extractor: {e}")
            return
        finally:
            await _cancel_task(monitor)
            tasks = self._tasks.get(job_id)
            if tasks is not None:
                tasks.monitor = None

        if result.exit_code != 0:
            detail = (result.stderr.strip() or result.stdout.strip())
            detail = detail[-self._error_detail_max_chars:]
            logger.error("job_id=%s extractor failed with code %s", job_id, result.exit_code)
            await self._fail(job_id, f"Extractor exited with code {result.exit_code}: {detail}")
            return

        await self._finish(job_id, hints)

    async def _finish(self, job_id: str, hints: NamingHints) -> None:
        file_name = await self._run_io(partial(
            discover_output, self._output_dir, hints, job_id, recency_window=self._recency_window
        ))
        if file_name is None:
            logger.error(
                "job_id=%s output not found in %s (base name %r)",
                job_id, self._output_dir, hints.base_name,
            )
            await self._fail(
                job_id, f"Output file not found in download directory for '{hints.base_name}'"
            )
            return

        reference = f"{self._download_url_prefix}/{quote(file_name)}"
        job = await self._store.update(job_id, lambda j: j.mark_completed(file_name, reference))
        if job is None or job.status != JobStatus.COMPLETED:
            return
        logger.info("job_id=%s completed file=%s", job_id, file_name)
        self._after_completed(job)

    def _after_completed(self, job: JobRecord) -> None:
        if self._retention_seconds <= 0:
            logger.debug("job_id=%s retention disabled, keeping %s", job.id, job.result_file_name)
            return
        if not self._running:
            return
        tasks = self._tasks.get(job.id)
        if tasks is not None and tasks.cleanup is not None:
            return
        self._schedule_cleanup(job.id, job.result_file_name)

    async def _fail(self, job_id: str, detail: str) -> Optional[JobRecord]:
        job = await self._store.update(job_id, lambda j: j.mark_failed(detail))
        if job is not None and job.error_detail == detail:
            logger.warning("job_id=%s failed: %s", job_id, detail)
        return job

    async def _run_io(self, fn):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _set_progress(self, job_id: str, value: int) -> None:
        await self._store.update(job_id, lambda j: j.advance_progress(value))

    async def _on_output(self, job_id: str, tracker: ProgressTracker, stream: str, line: str) -> None:
        logger.debug("job_id=%s %s: %s", job_id, stream, line)
        value = tracker.observe(line)
        if value is not None:
            await self._set_progress(job_id, value)

    async def _monitor_stall(self, job_id: str, tracker: ProgressTracker) -> None:
        """Nudge progress forward while the extractor is silent."""
        while True:
            await asyncio.sleep(self._stall_check_interval)
            job = await self._store.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return
            value = tracker.stall_tick()
            if value is not None:
                logger.info("job_id=%s no progress output, advancing to %d%%", job_id, value)
                await self._set_progress(job_id, value)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _schedule_cleanup(self, job_id: str, file_name: str) -> None:
        path = os.path.join(self._output_dir, file_name)
        task = asyncio.create_task(
            self._cleanup_after(job_id, path, self._retention_seconds),
            name=f"cleanup-{job_id}",
        )
        self._tasks.setdefault(job_id, _JobTasks()).cleanup = task
        task.add_done_callback(partial(self._on_cleanup_done, job_id))
        logger.info("job_id=%s file will be deleted after %.0f seconds", job_id, self._retention_seconds)

    async def _cleanup_after(self, job_id: str, path: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._run_io(partial(os.remove, path))
            logger.info("job_id=%s deleted %s", job_id, path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("job_id=%s failed to delete %s", job_id, path)
            return
        try:
            await self._store.delete(job_id)
        except PersistenceError:
            logger.exception("job_id=%s could not remove job snapshot", job_id)
            return
        logger.info("job_id=%s removed from job store", job_id)
