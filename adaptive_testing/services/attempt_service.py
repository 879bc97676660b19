"""
Attempt service: the inbound operations of the adaptive testing engine.

Wraps the stateless AttemptStateMachine with persistence, answer scoring and
retry on optimistic-lock conflicts. Each operation is one read-modify-write
cycle against the attempt repository; a conflicting concurrent write makes
the cycle start over from a fresh read, so a submission is never applied to
stale state.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Optional, TypeVar

from adaptive_testing.core.answer_scoring import ItemTypeAnswerScorer
from adaptive_testing.core.cat.calibration import revise_item_parameters
from adaptive_testing.core.cat.engine import Attempt, AttemptStateMachine, StepResult
from adaptive_testing.core.cat.types import Item, ItemId
from adaptive_testing.core.config import settings
from adaptive_testing.core.datetime_utils import utc_now
from adaptive_testing.core.exceptions import ConcurrentModificationError
from adaptive_testing.core.logging_config import attempt_id_context
from adaptive_testing.schemas.attempt_config import TestConfig
from adaptive_testing.services.attempt_repository import AttemptRepository
from adaptive_testing.services.item_bank import ItemBank

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def attempt_logging_context(attempt_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``attempt_id``."""
    token = attempt_id_context.set(attempt_id)
    try:
        yield
    finally:
        attempt_id_context.reset(token)


class AttemptService:
    """
    Entry point for creating, starting, answering and expiring attempts.

    Args:
        repository: Attempt storage.
        item_bank: Source of pool items and answer keys.
        state_machine: Transition logic (a fresh AttemptStateMachine by default).
        answer_scorer: Raw-answer scorer (dispatches on item type by default).
        max_retries: Extra attempts after a concurrency conflict.
        revise_items: Apply the online item revision after each recorded
            answer that reports a response time.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: AttemptRepository,
        item_bank: ItemBank,
        state_machine: Optional[AttemptStateMachine] = None,
        answer_scorer: Optional[ItemTypeAnswerScorer] = None,
        max_retries: Optional[int] = None,
        revise_items: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.item_bank = item_bank
        self.state_machine = state_machine or AttemptStateMachine()
        self.answer_scorer = answer_scorer or ItemTypeAnswerScorer(item_bank)
        self.max_retries = (
            settings.CAT_SUBMIT_MAX_RETRIES if max_retries is None else max_retries
        )
        self.revise_items = revise_items
        self.clock = clock

    def create_attempt(
        self,
        subject_id: str,
        item_pool_id: str,
        config: Optional[TestConfig] = None,
        attempt_id: Optional[str] = None,
    ) -> Attempt:
        """Create a NOT_STARTED attempt. ``config`` defaults to process settings."""
        attempt = Attempt(
            id=attempt_id or str(uuid.uuid4()),
            subject_id=subject_id,
            item_pool_id=item_pool_id,
            config=config or TestConfig.from_settings(),
            created_at=self.clock(),
        )
        with attempt_logging_context(attempt.id):
            attempt = self.repository.create(attempt)
            logger.info(
                f"Created attempt {attempt.id} for subject {subject_id} "
                f"on pool {item_pool_id}",
                extra={"subject_id": subject_id, "item_pool_id": item_pool_id},
            )
        return attempt

    def start_attempt(self, attempt_id: str) -> StepResult:
        """
        Start a created attempt and return its first item.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
            InvalidStateError: If the attempt was already started.
        """

        def operation(attempt: Attempt) -> StepResult:
            items = self.item_bank.get_items(attempt.item_pool_id)
            return self.state_machine.start(attempt, items, now=self.clock())

        return self._run(attempt_id, operation)

    def begin_attempt(
        self,
        subject_id: str,
        item_pool_id: str,
        config: Optional[TestConfig] = None,
    ) -> StepResult:
        """Create and immediately start an attempt."""
        attempt = self.create_attempt(subject_id, item_pool_id, config)
        return self.start_attempt(attempt.id)

    def submit_answer(
        self,
        attempt_id: str,
        item_id: ItemId,
        raw_answer: Any,
        time_spent_seconds: Optional[float] = None,
    ) -> StepResult:
        """
        Score a raw answer and submit it.

        The answer is scored by the scorer registered for the item's type.
        Validation of the item against the attempt happens in
        ``submit_scored_answer``.
        """
        item = self._find_item(self.repository.get(attempt_id).item_pool_id, item_id)
        correct = (
            self.answer_scorer.score_answer(item, raw_answer)
            if item is not None
            else False
        )
        return self.submit_scored_answer(
            attempt_id, item_id, correct, time_spent_seconds=time_spent_seconds
        )

    def submit_scored_answer(
        self,
        attempt_id: str,
        item_id: ItemId,
        correct: bool,
        time_spent_seconds: Optional[float] = None,
    ) -> StepResult:
        """
        Submit an already-scored answer for the presented item.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
            AttemptClosedError: If the attempt is completed.
            InvalidStateError: If the attempt was not started.
            DuplicateItemError: If the item was already answered.
            ItemNotPresentedError: If the item is not the presented one.
            UnknownItemError: If the item is not in the attempt's pool.
            ConcurrentModificationError: If conflicts persist after retries.
        """
        duration_ms = (
            int(round(time_spent_seconds * 1000))
            if time_spent_seconds is not None
            else None
        )

        def operation(attempt: Attempt) -> StepResult:
            items = self.item_bank.get_items(attempt.item_pool_id)
            return self.state_machine.submit_answer(
                attempt,
                items,
                item_id,
                correct,
                now=self.clock(),
                duration_ms=duration_ms,
            )

        step = self._run(attempt_id, operation)

        if self.revise_items and step.recorded and time_spent_seconds is not None:
            self._revise_item(attempt_id, item_id, correct, time_spent_seconds)

        return step

    def expire_attempt(self, attempt_id: str) -> StepResult:
        """
        Finalize an in-progress attempt with TIMED_OUT.

        Called by an external session manager that owns the expiry policy.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
            AttemptClosedError: If the attempt is already completed.
            InvalidStateError: If the attempt was not started.
        """
        return self._run(
            attempt_id,
            lambda attempt: self.state_machine.expire(attempt, now=self.clock()),
        )

    def is_overdue(self, attempt_id: str) -> bool:
        """Whether an in-progress attempt has run past its time limit."""
        attempt = self.repository.get(attempt_id)
        return self.state_machine.is_overdue(attempt, now=self.clock())

    def get_attempt_state(self, attempt_id: str) -> Attempt:
        """
        Load the current state of an attempt.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
        """
        return self.repository.get(attempt_id)

    def _run(self, attempt_id: str, operation: Callable[[Attempt], T]) -> T:
        """Read, apply ``operation``, save; start over on a version conflict."""
        with attempt_logging_context(attempt_id):
            retries = 0
            while True:
                attempt = self.repository.get(attempt_id)
                outcome = operation(attempt)
                try:
                    self.repository.save(attempt)
                    return outcome
                except ConcurrentModificationError:
                    if retries >= self.max_retries:
                        logger.error(
                            f"Attempt {attempt_id}: giving up after "
                            f"{retries + 1} conflicting writes"
                        )
                        raise
                    retries += 1
                    logger.warning(
                        f"Attempt {attempt_id}: concurrent modification, "
                        f"retrying ({retries}/{self.max_retries})"
                    )

    def _revise_item(
        self,
        attempt_id: str,
        item_id: ItemId,
        correct: bool,
        time_spent_seconds: float,
    ) -> None:
        """Revise the item from its latest version; re-read on a conflict."""
        item_pool_id = self.repository.get(attempt_id).item_pool_id
        retries = 0
        while True:
            item = self._find_item(item_pool_id, item_id)
            if item is None:
                return
            try:
                self.item_bank.update_item(
                    revise_item_parameters(item, correct, time_spent_seconds)
                )
                return
            except ConcurrentModificationError:
                if retries >= self.max_retries:
                    logger.error(
                        f"Item {item_id}: giving up revision after "
                        f"{retries + 1} conflicting writes"
                    )
                    raise
                retries += 1
                logger.warning(
                    f"Item {item_id}: revised concurrently, "
                    f"retrying ({retries}/{self.max_retries})"
                )

    def _find_item(self, item_pool_id: str, item_id: ItemId) -> Optional[Item]:
        for item in self.item_bank.get_items(item_pool_id):
            if item.id == item_id:
                return item
        return None
