"""
Pydantic schemas for configuration and request/response validation.
"""
from .attempt_config import TestConfig
from .attempts import (
    AttemptStateResponse,
    AttemptStepResponse,
    ItemView,
    StartAttemptRequest,
    SubmitAnswerRequest,
)

__all__ = [
    "AttemptStateResponse",
    "AttemptStepResponse",
    "ItemView",
    "StartAttemptRequest",
    "SubmitAnswerRequest",
    "TestConfig",
]
