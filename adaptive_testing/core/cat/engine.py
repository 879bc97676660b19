"""
AttemptStateMachine: orchestrator for adaptive test attempts.

Drives one attempt through NOT_STARTED -> IN_PROGRESS -> COMPLETED, wiring the
ability estimator, termination policy, item selector and result finalizer
together. The state machine is stateless between calls: all state lives on the
Attempt object, and the item pool and clock are passed in per call, so a
single instance can serve any number of concurrent attempts.

Each operation validates everything first and mutates the Attempt only after
every computation has succeeded, so a rejected call leaves the Attempt exactly
as it was.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

from adaptive_testing.core.cat import stopping_rules
from adaptive_testing.core.cat.ability_estimation import estimate
from adaptive_testing.core.cat.content_balancing import track_category_coverage
from adaptive_testing.core.cat.item_selection import select_next_item
from adaptive_testing.core.cat.score_conversion import FinalResult, finalize
from adaptive_testing.core.cat.types import (
    AbilityEstimate,
    Item,
    ItemId,
    ResponseRecord,
)
from adaptive_testing.core.datetime_utils import ensure_timezone_aware, utc_now
from adaptive_testing.core.exceptions import (
    AttemptClosedError,
    DuplicateItemError,
    InvalidStateError,
    ItemNotPresentedError,
    UnknownItemError,
)
from adaptive_testing.domain_types import AttemptStatus, TerminationReason
from adaptive_testing.schemas.attempt_config import TestConfig

logger = logging.getLogger(__name__)


@dataclass
class Attempt:
    """Authoritative state of one subject's adaptive test attempt."""

    id: str
    subject_id: str
    item_pool_id: str
    config: TestConfig
    status: AttemptStatus = AttemptStatus.NOT_STARTED
    responses: List[ResponseRecord] = field(default_factory=list)
    current_estimate: Optional[AbilityEstimate] = None
    # Item handed to the subject and awaiting an answer
    presented_item_id: Optional[ItemId] = None
    termination_reason: Optional[TerminationReason] = None
    result: Optional[FinalResult] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    # Optimistic-concurrency token, owned by the repository
    version: int = 0

    @property
    def administered_item_ids(self) -> Set[ItemId]:
        return {r.item_id for r in self.responses}

    @property
    def items_administered(self) -> int:
        return len(self.responses)

    @property
    def correct_count(self) -> int:
        return sum(1 for r in self.responses if r.correct)

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED

    @property
    def theta_history(self) -> List[float]:
        """Theta recorded after each response, in administration order."""
        return [r.theta_after for r in self.responses if r.theta_after is not None]


@dataclass
class StepResult:
    """Outcome of a start or submit call.

    ``next_item`` is set while the attempt is in progress; ``result`` and
    ``termination_reason`` are set once it has completed. ``recorded`` is False
    when a submission arrived too late to count.
    """

    attempt_id: str
    status: AttemptStatus
    estimate: AbilityEstimate
    items_administered: int
    next_item: Optional[Item] = None
    termination_reason: Optional[TerminationReason] = None
    result: Optional[FinalResult] = None
    recorded: bool = True

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED


class AttemptStateMachine:
    """
    Stateless transition logic for adaptive test attempts.

    Manages:
    - Attempt start with the configured prior ability
    - Answer submission: duplicate/presentation checks, re-estimation,
      stopping decision and next-item selection
    - Time-limit expiry
    - Finalization into a FinalResult
    """

    def start(
        self,
        attempt: Attempt,
        item_pool: Sequence[Item],
        now: Optional[datetime] = None,
    ) -> StepResult:
        """
        Start an attempt and select its first item.

        The estimate is initialized to the configured prior. An empty pool
        completes the attempt immediately with NO_MORE_ITEMS.

        Raises:
            InvalidStateError: If the attempt is not NOT_STARTED.
        """
        if attempt.status != AttemptStatus.NOT_STARTED:
            raise InvalidStateError(
                f"Attempt cannot be started from status {attempt.status.value}",
                {"attempt_id": attempt.id, "status": attempt.status.value},
            )

        now = ensure_timezone_aware(now or utc_now())
        config = attempt.config
        prior = self._estimate(config, [])
        first_item = select_next_item(
            item_pool,
            prior.theta,
            excluded_ids=set(),
            category_coverage={},
        )

        attempt.current_estimate = prior
        attempt.status = AttemptStatus.IN_PROGRESS
        attempt.started_at = now

        logger.info(
            f"Started attempt {attempt.id} for subject {attempt.subject_id} "
            f"with prior theta={prior.theta:.3f}, pool size={len(item_pool)}, "
            f"target SE={config.target_precision}, "
            f"items=[{config.min_items}, {config.max_items}]",
            extra={"subject_id": attempt.subject_id, "item_pool_id": attempt.item_pool_id},
        )

        if first_item is None:
            self._complete(attempt, TerminationReason.NO_MORE_ITEMS, now)
            return self._step(attempt)

        attempt.presented_item_id = first_item.id
        return self._step(attempt, next_item=first_item)

    def submit_answer(
        self,
        attempt: Attempt,
        item_pool: Sequence[Item],
        item_id: ItemId,
        correct: bool,
        now: Optional[datetime] = None,
        duration_ms: Optional[int] = None,
    ) -> StepResult:
        """
        Record a scored answer and advance the attempt.

        Steps:
            1. Reject duplicate, unpresented or unknown items.
            2. Append a ResponseRecord carrying the item's parameter snapshot.
            3. Re-estimate ability over the full response history.
            4. Stop if the termination policy says so; otherwise select the
               next item, stopping with NO_MORE_ITEMS if none is left.

        A submission arriving after the time limit is not recorded; the
        attempt completes with TIMED_OUT instead.

        Raises:
            AttemptClosedError: If the attempt is already completed.
            InvalidStateError: If the attempt has not been started.
            DuplicateItemError: If item_id was already answered.
            ItemNotPresentedError: If item_id is not the presented item.
            UnknownItemError: If item_id is not in the item pool.
        """
        self._require_in_progress(attempt)
        now = ensure_timezone_aware(now or utc_now())
        config = attempt.config

        if stopping_rules.is_time_limit_exceeded(
            self._started_at(attempt), now, config.time_limit_minutes
        ):
            logger.warning(
                f"Attempt {attempt.id}: answer for item {item_id} arrived after "
                f"the {config.time_limit_minutes} minute limit, not recorded",
                extra={"item_id": item_id},
            )
            self._complete(attempt, TerminationReason.TIMED_OUT, now)
            return self._step(attempt, recorded=False)

        context = {"attempt_id": attempt.id, "item_id": item_id}
        if item_id in attempt.administered_item_ids:
            raise DuplicateItemError("Item has already been answered", context)
        if item_id != attempt.presented_item_id:
            raise ItemNotPresentedError(
                f"Item is not the presented item ({attempt.presented_item_id})",
                context,
            )
        items_by_id: Dict[ItemId, Item] = {item.id: item for item in item_pool}
        item = items_by_id.get(item_id)
        if item is None:
            raise UnknownItemError("Item is not in the attempt's item pool", context)

        record = ResponseRecord.for_item(
            item, correct, timestamp=now, duration_ms=duration_ms
        )
        responses = attempt.responses + [record]
        new_estimate = self._estimate(config, responses)
        responses[-1] = replace(
            record,
            theta_after=new_estimate.theta,
            standard_error_after=new_estimate.standard_error,
        )

        decision = stopping_rules.evaluate(new_estimate, len(responses), config)
        next_item = None
        if not decision.should_stop:
            next_item = select_next_item(
                item_pool,
                new_estimate.theta,
                excluded_ids={r.item_id for r in responses},
                category_coverage=track_category_coverage(responses),
            )

        attempt.responses = responses
        attempt.current_estimate = new_estimate

        logger.debug(
            f"Attempt {attempt.id}: response #{len(responses)} "
            f"(item {item_id}, correct={correct}) -> "
            f"theta={new_estimate.theta:.3f}, SE={new_estimate.standard_error:.3f}, "
            f"stop={decision.should_stop}",
            extra={
                "item_id": item_id,
                "theta": new_estimate.theta,
                "standard_error": new_estimate.standard_error,
                "items_administered": len(responses),
            },
        )

        if decision.should_stop:
            self._complete(attempt, decision.reason, now)
            return self._step(attempt)

        if next_item is None:
            self._complete(attempt, TerminationReason.NO_MORE_ITEMS, now)
            return self._step(attempt)

        attempt.presented_item_id = next_item.id
        return self._step(attempt, next_item=next_item)

    def expire(self, attempt: Attempt, now: Optional[datetime] = None) -> StepResult:
        """
        Complete an in-progress attempt with TIMED_OUT.

        Whether an attempt is overdue is decided by the caller; see
        ``is_overdue``.

        Raises:
            AttemptClosedError: If the attempt is already completed.
            InvalidStateError: If the attempt has not been started.
        """
        self._require_in_progress(attempt)
        now = ensure_timezone_aware(now or utc_now())
        self._complete(attempt, TerminationReason.TIMED_OUT, now)
        return self._step(attempt)

    def is_overdue(self, attempt: Attempt, now: Optional[datetime] = None) -> bool:
        """Whether an in-progress attempt has run past its time limit."""
        if attempt.status != AttemptStatus.IN_PROGRESS:
            return False
        return stopping_rules.is_time_limit_exceeded(
            self._started_at(attempt),
            ensure_timezone_aware(now or utc_now()),
            attempt.config.time_limit_minutes,
        )

    def _complete(
        self,
        attempt: Attempt,
        reason: TerminationReason,
        now: datetime,
    ) -> None:
        config = attempt.config
        final_estimate = attempt.current_estimate or self._estimate(
            config, attempt.responses
        )
        result = finalize(
            final_estimate,
            attempt.items_administered,
            passing_score=config.passing_score,
            ability_domain=config.ability_domain,
            responses=attempt.responses,
            termination_reason=reason,
        )

        attempt.status = AttemptStatus.COMPLETED
        attempt.termination_reason = reason
        attempt.result = result
        attempt.presented_item_id = None
        attempt.completed_at = now

        logger.info(
            f"Attempt {attempt.id} finalized: "
            f"theta={final_estimate.theta:.3f}, SE={final_estimate.standard_error:.3f}, "
            f"score={result.score}, passed={result.passed}, "
            f"items={attempt.items_administered}, correct={attempt.correct_count}, "
            f"termination_reason={reason.value}",
            extra={
                "subject_id": attempt.subject_id,
                "theta": final_estimate.theta,
                "standard_error": final_estimate.standard_error,
                "items_administered": attempt.items_administered,
                "termination_reason": reason.value,
            },
        )

    @staticmethod
    def _estimate(
        config: TestConfig, responses: Sequence[ResponseRecord]
    ) -> AbilityEstimate:
        return estimate(
            responses,
            ability_domain=config.ability_domain,
            prior_theta=config.prior_theta,
            prior_standard_error=config.prior_standard_error,
        )

    @staticmethod
    def _require_in_progress(attempt: Attempt) -> None:
        context = {"attempt_id": attempt.id, "status": attempt.status.value}
        if attempt.status == AttemptStatus.COMPLETED:
            raise AttemptClosedError("Attempt is already completed", context)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidStateError("Attempt has not been started", context)

    @staticmethod
    def _started_at(attempt: Attempt) -> Optional[datetime]:
        if attempt.started_at is None:
            return None
        return ensure_timezone_aware(attempt.started_at)

    @staticmethod
    def _step(
        attempt: Attempt,
        next_item: Optional[Item] = None,
        recorded: bool = True,
    ) -> StepResult:
        return StepResult(
            attempt_id=attempt.id,
            status=attempt.status,
            estimate=attempt.current_estimate,
            items_administered=attempt.items_administered,
            next_item=next_item,
            termination_reason=attempt.termination_reason,
            result=attempt.result,
            recorded=recorded,
        )
