"""Exception types raised synchronously to callers of the job service."""


class TunegrabError(Exception):
    """Base class for errors raised by the job service."""


class JobValidationError(TunegrabError, ValueError):
    """A submission was rejected before any job record was created."""


class InvalidJobIdError(JobValidationError):
    """A job id that cannot be used as a storage key."""


class PersistenceError(TunegrabError):
    """A job snapshot could not be written to disk."""

    def __init__(self, job_id: str, cause: Exception):
        super().__init__(f"Failed to persist job {job_id}: {cause}")
        self.job_id = job_id
        self.cause = cause


class MediaInfoError(TunegrabError):
    """Metadata could not be read from a produced file."""
