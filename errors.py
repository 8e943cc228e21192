#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Dict, Any, Optional


class SummarizerError(Exception):
    """Base class for every error raised by this application.

    Attributes:
        details: Optional payload for diagnostics.
    """

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(SummarizerError):
    """Raised when required settings are missing or invalid."""


class InvalidPayloadError(SummarizerError):
    """Raised when a JSON document does not have the expected shape."""


class _HTTPFailure(SummarizerError):
    """An outbound HTTP call failed; carries the status and response body when known."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message, details={"status": status, "body": body})
        self.status = status
        self.body = body


class FeedSourceError(_HTTPFailure):
    """Raised when a Miniflux API call fails (transport error or non-2xx status)."""


class SummarizationError(_HTTPFailure):
    """Raised when the chat-completion endpoint fails or returns an unusable reply."""


class BatchUpdateError(SummarizerError):
    """Raised in fail-fast mode once a batch has drained with at least one failed update.

    Attributes:
        report: The BatchReport of the batch that failed.
    """

    def __init__(self, report: Any):
        failed = [result.entry_id for result in report.failed]
        super().__init__(
            f"Failed to update {len(failed)} entr{'y' if len(failed) == 1 else 'ies'}: {failed}",
            details={"failed_ids": failed},
        )
        self.report = report


__all__ = [
    "SummarizerError",
    "ConfigurationError",
    "InvalidPayloadError",
    "FeedSourceError",
    "SummarizationError",
    "BatchUpdateError",
]
