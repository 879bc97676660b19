"""
Exception taxonomy for the adaptive testing engine.

Every exception carries a stable ``reason_code`` so the transport layer that
wraps the engine can map a rejection to a specific client-facing reason
without parsing messages (see ``error_responses``).

Categories:
    - Input errors: caller misuse (invalid state transition, duplicate or
      unexpected item submission, operating on a closed attempt). Reported
      synchronously and never retried.
    - Item parameter errors: malformed 3PL parameters, rejected when an Item
      is constructed so they never reach the likelihood computation.
    - Concurrency conflicts: stale writes detected by an attempt repository
      or an item bank. Retryable.

Numerical degeneracy and item-pool exhaustion are deliberately absent: both
resolve to a completed attempt with a result.
"""

from typing import Any, Dict, Optional


class AdaptiveTestingError(Exception):
    """Base exception for all engine errors."""

    reason_code = "ADAPTIVE_TESTING_ERROR"
    retryable = False

    def __init__(  # noqa: D107
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.context = context or {}
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} (context: {ctx_str})"
        if self.original_error:
            msg = f"{msg} - caused by: {str(self.original_error)}"
        return msg


class InputError(AdaptiveTestingError):
    """Caller misuse. Indicates a client-side logic bug or a stale UI."""

    reason_code = "INPUT_ERROR"


class InvalidStateError(InputError):
    """Operation is not valid in the attempt's current status."""

    reason_code = "INVALID_STATE"


class DuplicateItemError(InputError):
    """An answer was submitted for an item already answered in this attempt."""

    reason_code = "DUPLICATE_ITEM"


class AttemptClosedError(InputError):
    """The attempt is completed and its response history is frozen."""

    reason_code = "ATTEMPT_CLOSED"


class ItemNotPresentedError(InputError):
    """An answer was submitted for an item other than the one presented."""

    reason_code = "ITEM_NOT_PRESENTED"


class UnknownItemError(InputError):
    """The item id does not belong to the attempt's item pool."""

    reason_code = "UNKNOWN_ITEM"


class AttemptNotFoundError(AdaptiveTestingError):
    """No attempt exists with the requested id."""

    reason_code = "ATTEMPT_NOT_FOUND"


class InvalidItemParametersError(AdaptiveTestingError, ValueError):
    """Item parameters violate the 3PL model's domain."""

    reason_code = "INVALID_ITEM_PARAMETERS"


class ConcurrentModificationError(AdaptiveTestingError):
    """The attempt or item was modified by another writer since it was read."""

    reason_code = "CONCURRENT_MODIFICATION"
    retryable = True
