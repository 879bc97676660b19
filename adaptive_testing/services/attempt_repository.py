"""
Attempt persistence with optimistic concurrency control.

Every stored Attempt carries a ``version``. ``save`` succeeds only if the
stored version still equals the version the caller read; otherwise it raises
ConcurrentModificationError and nothing is written. Two concurrent submissions
for the same attempt therefore serialize: one commits, the other re-reads and
retries (see AttemptService).
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from adaptive_testing.core.cat.engine import Attempt
from adaptive_testing.core.cat.score_conversion import FinalResult
from adaptive_testing.core.cat.types import AbilityEstimate, ResponseRecord
from adaptive_testing.core.datetime_utils import ensure_timezone_aware, utc_now
from adaptive_testing.core.exceptions import (
    AttemptNotFoundError,
    ConcurrentModificationError,
)
from adaptive_testing.models.models import AttemptRecord, ResponseRow
from adaptive_testing.schemas.attempt_config import TestConfig

logger = logging.getLogger(__name__)


class AttemptRepository(ABC):
    """
    Abstract storage interface for attempts.
    """

    @abstractmethod
    def create(self, attempt: Attempt) -> Attempt:
        """
        Store a new attempt.

        Returns:
            The attempt with its initial version assigned
        """
        pass

    @abstractmethod
    def get(self, attempt_id: str) -> Attempt:
        """
        Load an attempt.

        Raises:
            AttemptNotFoundError: If no attempt has this id
        """
        pass

    @abstractmethod
    def save(self, attempt: Attempt) -> Attempt:
        """
        Persist changes to an attempt read earlier from this repository.

        Returns:
            The attempt with its version advanced

        Raises:
            ConcurrentModificationError: If the attempt changed since it was read
            AttemptNotFoundError: If no attempt has this id
        """
        pass


class InMemoryAttemptRepository(AttemptRepository):
    """
    In-memory attempt storage.

    Thread-safe with a lock for the version check and write. Stored attempts
    are deep copies, so callers never share mutable state with the store.
    """

    def __init__(self):
        self._attempts: Dict[str, Attempt] = {}
        self._lock = threading.RLock()

    def create(self, attempt: Attempt) -> Attempt:
        with self._lock:
            if attempt.id in self._attempts:
                raise ConcurrentModificationError(
                    "Attempt already exists", {"attempt_id": attempt.id}
                )
            attempt.version = 1
            attempt.created_at = attempt.created_at or utc_now()
            self._attempts[attempt.id] = copy.deepcopy(attempt)
            return attempt

    def get(self, attempt_id: str) -> Attempt:
        with self._lock:
            stored = self._attempts.get(attempt_id)
            if stored is None:
                raise AttemptNotFoundError(
                    "Attempt not found", {"attempt_id": attempt_id}
                )
            return copy.deepcopy(stored)

    def save(self, attempt: Attempt) -> Attempt:
        with self._lock:
            stored = self._attempts.get(attempt.id)
            if stored is None:
                raise AttemptNotFoundError(
                    "Attempt not found", {"attempt_id": attempt.id}
                )
            if stored.version != attempt.version:
                raise ConcurrentModificationError(
                    "Attempt was modified concurrently",
                    {
                        "attempt_id": attempt.id,
                        "expected_version": attempt.version,
                        "stored_version": stored.version,
                    },
                )
            attempt.version += 1
            self._attempts[attempt.id] = copy.deepcopy(attempt)
            return attempt


class SqlAlchemyAttemptRepository(AttemptRepository):
    """
    Attempt storage backed by the ``attempts`` and ``attempt_responses`` tables.

    Uses the mapper's version_id_col for the optimistic check; a stale UPDATE
    surfaces as StaleDataError and is translated to ConcurrentModificationError.
    Responses are append-only: save inserts rows for responses not yet stored.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(self, attempt: Attempt) -> Attempt:
        with self.session_factory() as db:
            record = AttemptRecord(
                id=attempt.id,
                subject_id=attempt.subject_id,
                item_pool_id=attempt.item_pool_id,
                config=attempt.config.model_dump(mode="json"),
                created_at=attempt.created_at or utc_now(),
            )
            self._apply(record, attempt)
            record.responses = [
                self._to_row(i, r) for i, r in enumerate(attempt.responses)
            ]
            db.add(record)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ConcurrentModificationError(
                    "Attempt already exists", {"attempt_id": attempt.id}, e
                )
            attempt.version = record.version
            attempt.created_at = record.created_at
            return attempt

    def get(self, attempt_id: str) -> Attempt:
        with self.session_factory() as db:
            record = db.get(
                AttemptRecord,
                attempt_id,
                options=[selectinload(AttemptRecord.responses)],
            )
            if record is None:
                raise AttemptNotFoundError(
                    "Attempt not found", {"attempt_id": attempt_id}
                )
            return self._to_attempt(record)

    def save(self, attempt: Attempt) -> Attempt:
        context = {"attempt_id": attempt.id, "expected_version": attempt.version}
        with self.session_factory() as db:
            record = db.get(
                AttemptRecord,
                attempt.id,
                options=[selectinload(AttemptRecord.responses)],
            )
            if record is None:
                raise AttemptNotFoundError("Attempt not found", context)
            if record.version != attempt.version:
                raise ConcurrentModificationError(
                    "Attempt was modified concurrently",
                    {**context, "stored_version": record.version},
                )

            self._apply(record, attempt)
            for sequence in range(len(record.responses), len(attempt.responses)):
                record.responses.append(
                    self._to_row(sequence, attempt.responses[sequence])
                )

            try:
                db.commit()
            except (StaleDataError, IntegrityError) as e:
                db.rollback()
                raise ConcurrentModificationError(
                    "Attempt was modified concurrently", context, e
                )

            attempt.version = record.version
            return attempt

    @staticmethod
    def _apply(record: AttemptRecord, attempt: Attempt) -> None:
        estimate = attempt.current_estimate
        record.status = attempt.status
        record.theta = estimate.theta if estimate else None
        record.standard_error = estimate.standard_error if estimate else None
        record.information = estimate.information if estimate else None
        record.presented_item_id = attempt.presented_item_id
        record.termination_reason = attempt.termination_reason
        record.score = attempt.result.score if attempt.result else None
        record.passed = attempt.result.passed if attempt.result else None
        record.result = attempt.result.to_dict() if attempt.result else None
        record.started_at = attempt.started_at
        record.completed_at = attempt.completed_at
        # Always dirty the row so the versioned UPDATE is issued
        record.updated_at = utc_now()

    @staticmethod
    def _to_row(sequence: int, response: ResponseRecord) -> ResponseRow:
        return ResponseRow(
            sequence=sequence,
            item_id=response.item_id,
            item_version=response.item_version,
            correct=response.correct,
            difficulty=response.difficulty,
            discrimination=response.discrimination,
            guessing=response.guessing,
            category=response.category,
            answered_at=response.timestamp,
            duration_ms=response.duration_ms,
            theta_after=response.theta_after,
            standard_error_after=response.standard_error_after,
        )

    @staticmethod
    def _to_attempt(record: AttemptRecord) -> Attempt:
        estimate = None
        if record.theta is not None and record.standard_error is not None:
            estimate = AbilityEstimate(
                theta=record.theta,
                standard_error=record.standard_error,
                n_responses=len(record.responses),
                information=record.information or 0.0,
            )

        return Attempt(
            id=record.id,
            subject_id=record.subject_id,
            item_pool_id=record.item_pool_id,
            config=TestConfig.model_validate(record.config),
            status=record.status,
            responses=[
                ResponseRecord(
                    item_id=row.item_id,
                    correct=row.correct,
                    difficulty=row.difficulty,
                    discrimination=row.discrimination,
                    guessing=row.guessing,
                    category=row.category,
                    item_version=row.item_version,
                    timestamp=_aware_or_none(row.answered_at),
                    duration_ms=row.duration_ms,
                    theta_after=row.theta_after,
                    standard_error_after=row.standard_error_after,
                )
                for row in record.responses
            ],
            current_estimate=estimate,
            presented_item_id=record.presented_item_id,
            termination_reason=record.termination_reason,
            result=FinalResult.from_dict(record.result) if record.result else None,
            created_at=_aware_or_none(record.created_at),
            started_at=_aware_or_none(record.started_at),
            completed_at=_aware_or_none(record.completed_at),
            version=record.version,
        )


def _aware_or_none(value):
    return ensure_timezone_aware(value) if value is not None else None
