"""
Pydantic schemas for the inbound attempt operations.
"""
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from adaptive_testing.domain_types import AttemptStatus, ItemType, TerminationReason
from adaptive_testing.schemas.attempt_config import TestConfig

if TYPE_CHECKING:
    from adaptive_testing.core.cat.engine import Attempt, StepResult
    from adaptive_testing.core.cat.types import Item


def _require_identifier(value: str, field_name: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    return value


class StartAttemptRequest(BaseModel):
    """Schema for starting a new adaptive attempt."""

    subject_id: str = Field(..., description="Test-taker identifier")
    item_pool_id: str = Field(..., description="Item pool the attempt draws from")
    config: Optional[TestConfig] = Field(
        default=None,
        description="Per-test rules; process defaults are used when omitted",
    )

    @field_validator("subject_id")
    @classmethod
    def validate_subject_id(cls, v: str) -> str:
        return _require_identifier(v, "Subject ID")

    @field_validator("item_pool_id")
    @classmethod
    def validate_item_pool_id(cls, v: str) -> str:
        return _require_identifier(v, "Item pool ID")


class SubmitAnswerRequest(BaseModel):
    """Schema for submitting the answer to the presented item."""

    attempt_id: str = Field(..., description="Adaptive attempt ID")
    item_id: str = Field(..., description="ID of the item being answered")
    raw_answer: Any = Field(..., description="Answer as entered by the subject")
    time_spent_seconds: Optional[float] = Field(
        None, ge=0, description="Time spent on this item in seconds"
    )

    @field_validator("attempt_id")
    @classmethod
    def validate_attempt_id(cls, v: str) -> str:
        return _require_identifier(v, "Attempt ID")

    @field_validator("item_id")
    @classmethod
    def validate_item_id(cls, v: str) -> str:
        return _require_identifier(v, "Item ID")


class ItemView(BaseModel):
    """Subject-facing view of an item. IRT parameters are not exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Item ID")
    category: str = Field(..., description="Topical category")
    item_type: ItemType = Field(..., description="Answer format")
    tags: List[str] = Field(default_factory=list, description="Descriptive tags")

    @classmethod
    def from_item(cls, item: "Item") -> "ItemView":
        return cls(
            id=item.id,
            category=item.category,
            item_type=item.item_type,
            tags=list(item.tags),
        )


class AttemptStepResponse(BaseModel):
    """Schema for the result of starting an attempt or submitting an answer.

    When test_complete is False, next_item contains the item to present.
    When test_complete is True, result contains the final result.
    """

    attempt_id: str = Field(..., description="Adaptive attempt ID")
    status: AttemptStatus = Field(..., description="Attempt status after the call")
    next_item: Optional[ItemView] = Field(
        None, description="Next item to present (null when the test is complete)"
    )
    current_theta: float = Field(..., description="Current ability estimate (theta)")
    current_se: float = Field(..., description="Standard error of the ability estimate")
    items_administered: int = Field(
        ..., description="Total number of items administered so far"
    )
    test_complete: bool = Field(False, description="Whether the test has ended")
    recorded: bool = Field(
        True, description="False when the answer arrived after the time limit"
    )
    termination_reason: Optional[TerminationReason] = Field(
        default=None, description="Why the test stopped (only when complete)"
    )
    result: Optional[Dict[str, Any]] = Field(
        default=None, description="Final result (only when complete)"
    )

    @classmethod
    def from_step(cls, step: "StepResult") -> "AttemptStepResponse":
        return cls(
            attempt_id=step.attempt_id,
            status=step.status,
            next_item=ItemView.from_item(step.next_item) if step.next_item else None,
            current_theta=step.estimate.theta,
            current_se=step.estimate.standard_error,
            items_administered=step.items_administered,
            test_complete=step.is_completed,
            recorded=step.recorded,
            termination_reason=step.termination_reason,
            result=step.result.to_dict() if step.result else None,
        )


class AttemptStateResponse(BaseModel):
    """Schema for reading the current state of an attempt."""

    attempt_id: str = Field(..., description="Adaptive attempt ID")
    subject_id: str = Field(..., description="Test-taker identifier")
    item_pool_id: str = Field(..., description="Item pool the attempt draws from")
    status: AttemptStatus = Field(..., description="Attempt status")
    current_theta: Optional[float] = Field(
        None, description="Current ability estimate (null before start)"
    )
    current_se: Optional[float] = Field(
        None, description="Standard error of the estimate (null before start)"
    )
    items_administered: int = Field(..., description="Items answered so far")
    presented_item_id: Optional[str] = Field(
        None, description="Item awaiting an answer, if any"
    )
    theta_history: List[float] = Field(
        default_factory=list, description="Theta after each response, in order"
    )
    started_at: Optional[datetime] = Field(None, description="Start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    termination_reason: Optional[TerminationReason] = Field(
        None, description="Why the test stopped (only when complete)"
    )
    result: Optional[Dict[str, Any]] = Field(
        None, description="Final result (only when complete)"
    )

    @classmethod
    def from_attempt(cls, attempt: "Attempt") -> "AttemptStateResponse":
        estimate = attempt.current_estimate
        return cls(
            attempt_id=attempt.id,
            subject_id=attempt.subject_id,
            item_pool_id=attempt.item_pool_id,
            status=attempt.status,
            current_theta=estimate.theta if estimate else None,
            current_se=estimate.standard_error if estimate else None,
            items_administered=attempt.items_administered,
            presented_item_id=attempt.presented_item_id,
            theta_history=attempt.theta_history,
            started_at=attempt.started_at,
            completed_at=attempt.completed_at,
            termination_reason=attempt.termination_reason,
            result=attempt.result.to_dict() if attempt.result else None,
        )
