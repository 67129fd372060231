"""
Error taxonomy for the data update pipeline.

Stage-fatal errors propagate to the orchestrator and fail the run.
FeatureInvalidError and PostProcessingBatchError are absorbed where they
are raised and only surface through logs and result counters.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""
    pass


class SourceExhaustedError(PipelineError):
    """Every candidate URL for a dataset failed."""

    def __init__(self, message: str, attempts: list[str] | None = None, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts or []
        self.last_error = last_error


class ConversionFailedError(PipelineError):
    """The external conversion tool failed or produced no output."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str | None = None):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class FeatureInvalidError(PipelineError):
    """A single feature lacks the attributes needed to identify it."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class RegionalPartFailedError(PipelineError):
    """One or more regional parts of a fanned-out dataset failed."""

    def __init__(self, message: str, failures: dict[str, Exception] | None = None):
        super().__init__(message)
        self.failures = failures or {}


class LockUnavailableError(PipelineError):
    """Another process holds the pipeline lock."""
    pass


class PostProcessingBatchError(PipelineError):
    """A post-processing batch failed and was rolled back."""
    pass


class PipelineCancelledError(PipelineError):
    """The run was cancelled before completion."""
    pass
