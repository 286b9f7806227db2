"""Exception hierarchy for the aggregation pipeline."""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors that are fatal for one message."""


class CompletionError(PipelineError):
    """The completion service kept failing after all retry attempts."""

    def __init__(self, message: str, *, attempts: int, last_status: int | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_status = last_status


class UnknownClassificationError(PipelineError):
    """A message carries a classification type no extractor handles."""


class MessageNotFoundError(PipelineError):
    """The message id handed to the pipeline does not exist."""
