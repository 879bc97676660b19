"""
Database models for the adaptive testing engine.

Three tables:
    - items: calibrated (or partially calibrated) test questions per pool
    - attempts: one row per adaptive attempt, optimistic-locked on ``version``
    - attempt_responses: one row per scored answer, with the item parameters
      it was scored under and the ability estimate right after it
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from adaptive_testing.domain_types import (
    AttemptStatus,
    DifficultyLabel,
    ItemType,
    TerminationReason,
)

from .base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ItemRecord(Base):
    """Item model. Missing IRT parameters are filled from defaults on load."""

    __tablename__ = "items"

    id = Column(String(64), primary_key=True)
    item_pool_id = Column(String(64), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    # IRT parameters (null until calibrated)
    difficulty = Column(Float, nullable=True)  # b
    discrimination = Column(Float, nullable=True)  # a
    guessing = Column(Float, nullable=True)  # c

    # Authoring metadata used for fallback parameters
    difficulty_label = Column(Enum(DifficultyLabel), nullable=True)
    option_count = Column(Integer, nullable=True)

    category = Column(String(100), nullable=False, default="general")
    tags = Column(JSON, nullable=False, default=list)
    item_type = Column(Enum(ItemType), nullable=False, default=ItemType.MULTIPLE_CHOICE)
    answer_key = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_items_pool_active", "item_pool_id", "is_active"),
        CheckConstraint("version >= 1", name="ck_items_version_positive"),
    )


class AttemptRecord(Base):
    """Adaptive attempt model.

    ``version`` is SQLAlchemy's version_id_col: every UPDATE is conditioned
    on the version that was read, and a mismatch raises StaleDataError.
    """

    __tablename__ = "attempts"

    id = Column(String(36), primary_key=True)
    subject_id = Column(String(64), nullable=False, index=True)
    item_pool_id = Column(String(64), nullable=False)
    status = Column(
        Enum(AttemptStatus),
        default=AttemptStatus.NOT_STARTED,
        nullable=False,
        index=True,
    )
    config = Column(JSON, nullable=False)  # TestConfig snapshot

    # Cached current estimate (recomputable from responses)
    theta = Column(Float, nullable=True)
    standard_error = Column(Float, nullable=True)
    information = Column(Float, nullable=True)

    presented_item_id = Column(String(64), nullable=True)
    termination_reason = Column(Enum(TerminationReason), nullable=True)

    # Final result (set when status becomes completed)
    score = Column(Float, nullable=True)
    passed = Column(Boolean, nullable=True)
    result = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    version = Column(Integer, nullable=False)

    responses = relationship(
        "ResponseRow",
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="ResponseRow.sequence",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_attempts_subject_status", "subject_id", "status"),)


class ResponseRow(Base):
    """One scored answer within an attempt, in administration order."""

    __tablename__ = "attempt_responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(
        String(36),
        ForeignKey("attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False)  # 0-based administration order
    item_id = Column(String(64), nullable=False)
    item_version = Column(Integer, nullable=False, default=1)
    correct = Column(Boolean, nullable=False)

    # Parameter snapshot at scoring time
    difficulty = Column(Float, nullable=False)
    discrimination = Column(Float, nullable=False)
    guessing = Column(Float, nullable=False)
    category = Column(String(100), nullable=False, default="general")

    answered_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    # Ability estimate immediately after this response
    theta_after = Column(Float, nullable=True)
    standard_error_after = Column(Float, nullable=True)

    attempt = relationship("AttemptRecord", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("attempt_id", "item_id", name="uq_attempt_response_item"),
        UniqueConstraint("attempt_id", "sequence", name="uq_attempt_response_sequence"),
    )
