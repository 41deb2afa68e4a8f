"""Job record data model for async audio extraction."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ExtractionRequest(BaseModel):
    """Submission payload accepted from the HTTP layer."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_reference: str = Field(min_length=1)
    target_format: str = "mp3"
    display_title: str = ""
    display_artist: str = ""
    custom_metadata: Dict[str, Any] = Field(default_factory=dict)


class JobRecord(BaseModel):
    """Tracks the lifecycle of one extraction job.

    The record is the single unit written to both the in-memory cache and the
    on-disk snapshot. Every mutator returns True only when it changed
    something, so callers can skip redundant writes.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_reference: str
    target_format: str
    display_title: str = ""
    display_artist: str = ""
    custom_metadata: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result_reference: Optional[str] = None
    result_file_name: Optional[str] = None
    error_detail: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance_progress(self, value: int) -> bool:
        value = min(100, int(value))
        if self.is_terminal or value <= self.progress:
            return False
        self.progress = value
        return True

    def mark_processing(self, initial_progress: int = 0) -> bool:
        if self.status != JobStatus.QUEUED:
            return False
        self.status = JobStatus.PROCESSING
        self.started_at = utcnow()
        self.advance_progress(initial_progress)
        return True

    def mark_completed(self, file_name: str, reference: str) -> bool:
        if self.is_terminal:
            return False
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.result_file_name = file_name
        self.result_reference = reference
        self.completed_at = utcnow()
        return True

    def mark_failed(self, detail: str) -> bool:
        # progress is left where it was
        if self.is_terminal:
            return False
        self.status = JobStatus.FAILED
        self.error_detail = detail
        self.completed_at = utcnow()
        return True

    def to_public(self) -> dict:
        """External (camelCase, JSON-ready) representation."""
        return self.model_dump(mode="json", by_alias=True)
