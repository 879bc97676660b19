"""
Tests for AttemptService: the full create/start/answer/expire flow, answer
scoring, retry on concurrency conflicts, and online item revision.
"""
from datetime import timedelta

import pytest

from adaptive_testing.core.cat.calibration import revise_item_parameters
from adaptive_testing.core.cat.types import Item
from adaptive_testing.core.exceptions import (
    AttemptClosedError,
    AttemptNotFoundError,
    ConcurrentModificationError,
    DuplicateItemError,
    InvalidStateError,
)
from adaptive_testing.core.logging_config import attempt_id_context
from adaptive_testing.domain_types import AttemptStatus, ItemType, TerminationReason
from adaptive_testing.schemas.attempt_config import TestConfig
from adaptive_testing.services.attempt_repository import (
    InMemoryAttemptRepository,
    SqlAlchemyAttemptRepository,
)
from adaptive_testing.services.attempt_service import AttemptService
from adaptive_testing.services.item_bank import InMemoryItemBank, SqlAlchemyItemBank


class Clock:
    """Manually advanced clock."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class ConflictingRepository(InMemoryAttemptRepository):
    """Raises a concurrency conflict on the first ``conflicts`` saves."""

    def __init__(self, conflicts):
        super().__init__()
        self.conflicts = conflicts
        self.save_calls = 0

    def save(self, attempt):
        self.save_calls += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrentModificationError("simulated conflict", {"attempt_id": attempt.id})
        return super().save(attempt)


@pytest.fixture
def clock(fixed_now):
    return Clock(fixed_now)


@pytest.fixture
def item_bank(ladder_pool):
    bank = InMemoryItemBank()
    bank.add_items(
        "pool-1",
        ladder_pool,
        {item.id: "B" for item in ladder_pool},
    )
    return bank


@pytest.fixture
def config():
    return TestConfig(target_precision=0.01, min_items=2, max_items=4, time_limit_minutes=30)


@pytest.fixture
def service(item_bank, clock):
    return AttemptService(InMemoryAttemptRepository(), item_bank, clock=clock)


class TestLifecycle:
    def test_create_and_start(self, service, config, fixed_now):
        attempt = service.create_attempt("subject-1", "pool-1", config, attempt_id="a1")
        assert attempt.status == AttemptStatus.NOT_STARTED
        assert attempt.created_at == fixed_now

        step = service.start_attempt("a1")
        assert step.status == AttemptStatus.IN_PROGRESS
        assert step.next_item.id == "item-3"

        state = service.get_attempt_state("a1")
        assert state.started_at == fixed_now
        assert state.presented_item_id == "item-3"

    def test_generated_ids_are_unique(self, service, config):
        first = service.create_attempt("s", "pool-1", config)
        second = service.create_attempt("s", "pool-1", config)
        assert first.id != second.id

    def test_default_config_from_settings(self, service):
        attempt = service.create_attempt("s", "pool-1")
        assert attempt.config == TestConfig.from_settings()

    def test_begin_attempt(self, service, config):
        step = service.begin_attempt("s", "pool-1", config)
        assert step.status == AttemptStatus.IN_PROGRESS
        assert service.get_attempt_state(step.attempt_id).items_administered == 0

    def test_start_twice(self, service, config):
        attempt_id = service.create_attempt("s", "pool-1", config).id
        service.start_attempt(attempt_id)
        with pytest.raises(InvalidStateError):
            service.start_attempt(attempt_id)

    def test_unknown_attempt(self, service):
        with pytest.raises(AttemptNotFoundError):
            service.start_attempt("nope")
        with pytest.raises(AttemptNotFoundError):
            service.get_attempt_state("nope")

    def test_full_run_to_max_items(self, service, config):
        step = service.begin_attempt("s", "pool-1", config)
        answers = ["B", "A", "B", "A"]
        for answer in answers:
            step = service.submit_answer(step.attempt_id, step.next_item.id, answer)

        assert step.is_completed
        assert step.termination_reason == TerminationReason.MAX_ITEMS_REACHED
        state = service.get_attempt_state(step.attempt_id)
        assert [r.correct for r in state.responses] == [True, False, True, False]
        assert state.result.correct_count == 2

    def test_closed_attempt_rejects_answers(self, service, config):
        step = service.begin_attempt("s", "pool-1", config)
        presented = step.next_item.id
        service.expire_attempt(step.attempt_id)
        with pytest.raises(AttemptClosedError):
            service.submit_answer(step.attempt_id, presented, "B")

    def test_duplicate_rejected_without_change(self, service, config):
        step = service.begin_attempt("s", "pool-1", config)
        first = step.next_item.id
        service.submit_answer(step.attempt_id, first, "B")
        before = service.get_attempt_state(step.attempt_id)

        with pytest.raises(DuplicateItemError):
            service.submit_answer(step.attempt_id, first, "B")
        assert service.get_attempt_state(step.attempt_id) == before

    def test_logging_context_reset_after_call(self, service, config):
        service.begin_attempt("s", "pool-1", config)
        assert attempt_id_context.get() is None


class TestAnswerScoring:
    def test_answer_scored_with_item_type(self, clock):
        bank = InMemoryItemBank()
        bank.add_items(
            "pool-1",
            [Item(id="tf", difficulty=0.0, item_type=ItemType.TRUE_FALSE)],
            {"tf": True},
        )
        service = AttemptService(InMemoryAttemptRepository(), bank, clock=clock)
        config = TestConfig(target_precision=0.3, min_items=1, max_items=5)
        step = service.begin_attempt("s", "pool-1", config)

        step = service.submit_answer(step.attempt_id, "tf", "yes")
        state = service.get_attempt_state(step.attempt_id)
        assert state.responses[0].correct is True
        assert step.termination_reason == TerminationReason.NO_MORE_ITEMS

    def test_scored_submission_records_duration(self, service, config):
        step = service.begin_attempt("s", "pool-1", config)
        service.submit_scored_answer(
            step.attempt_id, step.next_item.id, True, time_spent_seconds=12.34
        )
        state = service.get_attempt_state(step.attempt_id)
        assert state.responses[0].duration_ms == 12340


class TestTimeLimit:
    def test_overdue_and_expire(self, service, config, clock):
        step = service.begin_attempt("s", "pool-1", config)
        assert service.is_overdue(step.attempt_id) is False

        clock.advance(minutes=30)
        assert service.is_overdue(step.attempt_id) is True

        step = service.expire_attempt(step.attempt_id)
        assert step.termination_reason == TerminationReason.TIMED_OUT
        assert service.is_overdue(step.attempt_id) is False

    def test_late_answer_not_recorded(self, service, config, clock):
        step = service.begin_attempt("s", "pool-1", config)
        clock.advance(minutes=31)

        late = service.submit_answer(step.attempt_id, step.next_item.id, "B")
        assert late.recorded is False
        assert late.termination_reason == TerminationReason.TIMED_OUT
        assert service.get_attempt_state(step.attempt_id).items_administered == 0


class TestConcurrencyRetry:
    def _service(self, repository, item_bank, clock, max_retries):
        return AttemptService(repository, item_bank, max_retries=max_retries, clock=clock)

    def test_retries_after_conflict(self, item_bank, clock, config):
        repository = ConflictingRepository(conflicts=0)
        service = self._service(repository, item_bank, clock, max_retries=3)
        step = service.begin_attempt("s", "pool-1", config)

        repository.conflicts = 2
        calls_before = repository.save_calls
        step = service.submit_answer(step.attempt_id, step.next_item.id, "B")

        assert step.recorded is True
        assert repository.save_calls - calls_before == 3
        assert service.get_attempt_state(step.attempt_id).items_administered == 1

    def test_gives_up_after_max_retries(self, item_bank, clock, config):
        repository = ConflictingRepository(conflicts=0)
        service = self._service(repository, item_bank, clock, max_retries=1)
        step = service.begin_attempt("s", "pool-1", config)

        repository.conflicts = 5
        with pytest.raises(ConcurrentModificationError):
            service.submit_answer(step.attempt_id, step.next_item.id, "B")
        assert service.get_attempt_state(step.attempt_id).items_administered == 0

    def test_retry_sees_competing_write(self, item_bank, clock, config):
        """A retried submission re-reads state, so a racing duplicate is rejected."""

        class RacingRepository(InMemoryAttemptRepository):
            def __init__(self, bank):
                super().__init__()
                self.bank = bank
                self.race = False

            def save(self, attempt):
                if self.race:
                    self.race = False
                    competitor = self.get(attempt.id)
                    competitor_service.state_machine.submit_answer(
                        competitor,
                        self.bank.get_items("pool-1"),
                        competitor.presented_item_id,
                        True,
                        now=clock(),
                    )
                    super().save(competitor)
                return super().save(attempt)

        repository = RacingRepository(item_bank)
        competitor_service = AttemptService(repository, item_bank, clock=clock)
        service = self._service(repository, item_bank, clock, max_retries=3)
        step = service.begin_attempt("s", "pool-1", config)

        repository.race = True
        with pytest.raises(DuplicateItemError):
            service.submit_answer(step.attempt_id, step.next_item.id, "B")
        assert service.get_attempt_state(step.attempt_id).items_administered == 1


class TestItemRevision:
    def test_revises_item_after_timed_answer(self, item_bank, clock, config):
        service = AttemptService(
            InMemoryAttemptRepository(), item_bank, revise_items=True, clock=clock
        )
        step = service.begin_attempt("s", "pool-1", config)
        item_id = step.next_item.id

        service.submit_answer(step.attempt_id, item_id, "B", time_spent_seconds=15)

        revised = next(i for i in item_bank.get_items("pool-1") if i.id == item_id)
        assert revised.version == 2
        assert revised.difficulty < step.next_item.difficulty
        # The recorded snapshot keeps the parameters the answer was scored under
        response = service.get_attempt_state(step.attempt_id).responses[0]
        assert response.item_version == 1
        assert response.difficulty == step.next_item.difficulty

    def test_concurrent_revision_is_built_on(self, item_bank, clock, config):
        """A revision that loses the race is recomputed from the newer version."""

        class RacingItemBank(InMemoryItemBank):
            def __init__(self, source):
                super().__init__()
                self.add_items("pool-1", source.get_items("pool-1"))
                self.race = True

            def update_item(self, item):
                if self.race:
                    self.race = False
                    stored = next(i for i in self.get_items("pool-1") if i.id == item.id)
                    super().update_item(
                        revise_item_parameters(stored, correct=False, response_time_seconds=60)
                    )
                super().update_item(item)

        bank = RacingItemBank(item_bank)
        service = AttemptService(
            InMemoryAttemptRepository(), bank, revise_items=True, clock=clock
        )
        step = service.begin_attempt("s", "pool-1", config)
        item_id = step.next_item.id
        service.submit_scored_answer(step.attempt_id, item_id, True, time_spent_seconds=10)

        revised = next(i for i in bank.get_items("pool-1") if i.id == item_id)
        assert revised.version == 3
        # Both nudges survive: +0.01 from the competitor, -0.01 from this answer
        assert revised.difficulty == pytest.approx(step.next_item.difficulty)
        assert revised.discrimination == pytest.approx(1.0 - 0.01 + 0.005)

    def test_no_revision_without_time(self, item_bank, clock, config):
        service = AttemptService(
            InMemoryAttemptRepository(), item_bank, revise_items=True, clock=clock
        )
        step = service.begin_attempt("s", "pool-1", config)
        service.submit_answer(step.attempt_id, step.next_item.id, "B")
        assert all(item.version == 1 for item in item_bank.get_items("pool-1"))


class TestWithDatabase:
    def test_end_to_end_on_sqlalchemy(self, session_factory, ladder_pool, clock):
        bank = SqlAlchemyItemBank(session_factory)
        for item in ladder_pool:
            bank.add_item("pool-1", item, answer_key="B", option_count=4)
        service = AttemptService(
            SqlAlchemyAttemptRepository(session_factory), bank, clock=clock
        )
        config = TestConfig(target_precision=0.01, min_items=1, max_items=20)

        step = service.begin_attempt("s", "pool-1", config)
        while not step.is_completed:
            step = service.submit_answer(step.attempt_id, step.next_item.id, "B")

        assert step.termination_reason == TerminationReason.NO_MORE_ITEMS
        state = service.get_attempt_state(step.attempt_id)
        assert state.items_administered == len(ladder_pool)
        assert state.result.correct_count == len(ladder_pool)
        assert state.result.theta == pytest.approx(4.0)
        assert state.version == len(ladder_pool) + 2
