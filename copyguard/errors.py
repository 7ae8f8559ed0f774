"""Exception taxonomy shared by the pipeline stages.

Transient I/O errors are retried through queue backoff. Anything deriving from
``NonRetryableError`` is malformed input: the queue worker dead-letters it
without further attempts.
"""

from typing import Optional


class TransientFetchError(RuntimeError):
    """Raised when a fetch fails in a way worth retrying (timeouts, 5xx, 429)."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentURLError(RuntimeError):
    """Raised when a URL answers with a non-retryable 4xx status."""


class NonRetryableError(Exception):
    """Base class for errors that must not be retried automatically."""


class RecordNotFoundError(NonRetryableError, LookupError):
    """A referenced durable record (work, case, takedown) does not exist."""


class TemplateNotFoundError(NonRetryableError, KeyError):
    """Unknown takedown template id."""

    def __str__(self) -> str:
        return f"Template not found: {self.args[0]}" if self.args else "Template not found"


class MissingTemplateFieldsError(NonRetryableError, ValueError):
    """Template data lacks required fields."""

    def __init__(self, template_id: str, missing: list[str]):
        super().__init__(
            f"Missing required fields for {template_id}: {', '.join(missing)}"
        )
        self.template_id = template_id
        self.missing = missing


class InvalidTransitionError(NonRetryableError, ValueError):
    """A takedown status change outside the state machine."""


class RetryNotAllowedError(InvalidTransitionError):
    """Manual retry requested for a takedown that is not FAILED or REJECTED."""


class DeliveryError(NonRetryableError):
    """A takedown cannot be delivered as configured (e.g. no recipient)."""
