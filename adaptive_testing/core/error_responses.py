"""
Standardized rejection payloads for engine errors.

The engine is a library, so it does not raise transport exceptions. Whatever
request handler wraps it converts an ``AdaptiveTestingError`` into a rejected
request with ``build_error_payload`` and picks the status code it prefers.

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Never leak internal state beyond ids the caller already holds

Usage:
    from adaptive_testing.core.error_responses import build_error_payload

    try:
        service.submit_answer(attempt_id, item_id, raw_answer)
    except AdaptiveTestingError as exc:
        return reject(build_error_payload(exc))
"""

from typing import Any, Dict

from adaptive_testing.core.exceptions import AdaptiveTestingError


class ErrorMessages:
    """Centralized user-facing messages, keyed by reason code."""

    INVALID_STATE = "This action is not valid for the test's current state."
    DUPLICATE_ITEM = "This question has already been answered."
    ATTEMPT_CLOSED = "This test has already been completed."
    ITEM_NOT_PRESENTED = "This question is not the one currently being asked."
    UNKNOWN_ITEM = "Question not found in this test."
    ATTEMPT_NOT_FOUND = "Test attempt not found."
    INVALID_ITEM_PARAMETERS = "This test is misconfigured. Please contact support."
    CONCURRENT_MODIFICATION = "Your answer could not be saved. Please try again."
    GENERIC = "Something went wrong. Please try again later."

    @classmethod
    def for_reason(cls, reason_code: str) -> str:
        """Return the user-facing message for a reason code."""
        return getattr(cls, reason_code, cls.GENERIC)


def build_error_payload(exc: AdaptiveTestingError) -> Dict[str, Any]:
    """
    Build a transport-neutral rejection payload for an engine error.

    Returns:
        Dict with ``reason_code``, user-facing ``message`` and ``retryable``.
    """
    return {
        "reason_code": exc.reason_code,
        "message": ErrorMessages.for_reason(exc.reason_code),
        "retryable": exc.retryable,
    }
