"""Per-job JSON snapshots on disk, used to recover job state across restarts."""

import logging
import os
import re
import tempfile
from typing import Optional

from pydantic import ValidationError

from tunegrab.errors import InvalidJobIdError, PersistenceError
from tunegrab.jobs.models import JobRecord

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class JobFileStore:
    """Reads and writes one ``<job_id>.json`` file per job.

    Writes go to a temp file in the same directory and are moved into place
    with ``os.replace``, so a reader never observes a half-written snapshot.
    """

    def __init__(self, directory: str):
        self._directory = directory

    def path_for(self, job_id: str) -> str:
        if not _SAFE_ID.match(job_id or ""):
            raise InvalidJobIdError(f"Invalid job id: {job_id!r}")
        return os.path.join(self._directory, f"{job_id}.json")

    def save(self, record: JobRecord) -> None:
        path = self.path_for(record.id)
        tmp_path = None
        try:
            os.makedirs(self._directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._directory, prefix=f".{record.id}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(record.model_dump_json(indent=2))
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceError(record.id, e) from e
        logger.debug("Saved job_id=%s to %s", record.id, path)

    def load(self, job_id: str) -> Optional[JobRecord]:
        """Return the stored record, or None if it is missing or unreadable."""
        try:
            path = self.path_for(job_id)
        except InvalidJobIdError:
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = fh.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read job file job_id=%s: %s", job_id, e)
            return None

        try:
            return JobRecord.model_validate_json(data)
        except ValidationError as e:
            logger.warning("Corrupt job file job_id=%s: %s", job_id, e.errors()[:1])
            return None

    def delete(self, job_id: str) -> bool:
        try:
            os.remove(self.path_for(job_id))
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(job_id, e) from e
        return True
