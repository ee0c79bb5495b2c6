"""Exception taxonomy for provider calls and analysis runs."""

from typing import Optional


class AnalysisError(Exception):
    """Base class for all analysis engine errors."""


class TransportError(AnalysisError):
    """Network, DNS or timeout failure before a provider produced a response."""

    retryable = True


class ProviderError(AnalysisError):
    """Provider answered with a non-success status."""

    def __init__(self, status: int, message: str = "", provider: str = ""):
        self.status = status
        self.provider = provider
        detail = f"{provider} returned status {status}" if provider else f"Provider returned status {status}"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(detail)

    @property
    def retryable(self) -> bool:
        """Rate limits, request timeouts and server errors may be retried; other 4xx may not."""
        if self.status in (408, 429):
            return True
        return not (400 <= self.status < 500)


class UnparseableResponse(AnalysisError):
    """Provider text did not contain a usable structured object."""

    retryable = False


class ValidationError(AnalysisError):
    """A domain result violated its bounds after sanitization."""

    retryable = False


class TerminalFailure(AnalysisError):
    """Attempt budget exhausted (or a non-retryable failure occurred)."""

    def __init__(self, cause: Optional[BaseException], attempts: int, label: str = ""):
        self.cause = cause
        self.attempts = attempts
        self.label = label
        prefix = f"{label}: " if label else ""
        super().__init__(f"{prefix}gave up after {attempts} attempt(s): {cause}")


class RecordStoreError(AnalysisError):
    """The record store is unreachable or rejected a write; fails the whole run."""


def is_retryable(error: BaseException) -> bool:
    """Classify a failure for the retry controller."""
    return bool(getattr(error, "retryable", False))
