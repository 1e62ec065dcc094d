"""Exceptions raised by the collection pipeline."""

from typing import List, Optional


class PipelineError(Exception):
    """Base class for pipeline failures."""


class InvalidBatchJobError(PipelineError, ValueError):
    """A batch job is missing the fields needed to run it at all."""


class ArchiveReadError(PipelineError):
    """An archive file could not be opened or decompressed."""

    def __init__(self, path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class ContentFetchError(PipelineError):
    """The forum API could not return a post payload."""


class ExtractionError(PipelineError):
    """The extraction backend failed for one chunk."""


class ExtractionRateLimitError(ExtractionError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class MissingVitalFieldError(ExtractionError):
    def __init__(self, chunk_id: str, missing: List[str]):
        super().__init__(f"Chunk {chunk_id} returned mentions missing vital fields: {', '.join(missing)}")
        self.chunk_id = chunk_id
        self.missing = missing


class PersistenceError(PipelineError):
    """The mention sink rejected a batch."""
