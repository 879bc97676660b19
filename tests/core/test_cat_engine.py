"""
Tests for the attempt state machine.

Covers:
- Start: prior estimate, first item, invalid restarts, empty pools
- Submission: adaptive downward drift, parameter snapshots, theta history
- Termination: max items, precision, pool exhaustion, time limit, expiry
- Input errors: duplicate, unpresented, unknown item, closed and unstarted
  attempts, with the attempt left untouched on rejection
- Property-style checks over random response patterns
"""

import copy
import random
from datetime import datetime, timedelta, timezone

import pytest

from adaptive_testing.core.cat import engine as engine_module
from adaptive_testing.core.cat.engine import StepResult
from adaptive_testing.core.cat.types import Item
from adaptive_testing.core.exceptions import (
    AttemptClosedError,
    DuplicateItemError,
    InvalidStateError,
    ItemNotPresentedError,
    UnknownItemError,
)
from adaptive_testing.domain_types import AttemptStatus, TerminationReason
from adaptive_testing.schemas.attempt_config import TestConfig


def _answer_all(state_machine, attempt, pool, answer, now=None):
    """Answer every presented item with ``answer(item)`` until completion."""
    step = state_machine.start(attempt, pool, now=now)
    while not step.is_completed:
        item = step.next_item
        step = state_machine.submit_answer(attempt, pool, item.id, answer(item), now=now)
    return step


class TestStart:
    """Tests for AttemptStateMachine.start."""

    def test_sets_prior_and_presents_first_item(
        self, state_machine, make_attempt, test_config, ladder_pool, fixed_now
    ):
        attempt = make_attempt(test_config)
        step = state_machine.start(attempt, ladder_pool, now=fixed_now)

        assert isinstance(step, StepResult)
        assert step.status == AttemptStatus.IN_PROGRESS
        assert step.estimate.theta == 0.0
        assert step.estimate.standard_error == test_config.prior_standard_error
        assert step.next_item.id == "item-3"
        assert step.items_administered == 0
        assert attempt.presented_item_id == "item-3"
        assert attempt.started_at == fixed_now

    def test_configured_prior_drives_first_item(
        self, state_machine, make_attempt, ladder_pool
    ):
        config = TestConfig(
            target_precision=0.3, min_items=1, max_items=5, prior_theta=1.0
        )
        step = state_machine.start(make_attempt(config), ladder_pool)
        assert step.next_item.difficulty == 1.0

    def test_cannot_start_twice(self, state_machine, make_attempt, test_config, ladder_pool):
        attempt = make_attempt(test_config)
        state_machine.start(attempt, ladder_pool)
        with pytest.raises(InvalidStateError):
            state_machine.start(attempt, ladder_pool)

    def test_empty_pool_completes_with_no_more_items(
        self, state_machine, make_attempt, test_config
    ):
        attempt = make_attempt(test_config)
        step = state_machine.start(attempt, [])

        assert step.is_completed
        assert step.termination_reason == TerminationReason.NO_MORE_ITEMS
        assert step.result.score == 50.0
        assert step.result.items_administered == 0
        assert attempt.presented_item_id is None


class TestAdaptiveProgression:
    """Estimates and item choices follow the responses."""

    def test_incorrect_answers_drive_theta_down_and_easier_items_next(
        self, state_machine, make_attempt, guessing_ladder_pool
    ):
        config = TestConfig(target_precision=0.3, min_items=5, max_items=5)
        attempt = make_attempt(config)
        step = state_machine.start(attempt, guessing_ladder_pool)

        for _ in range(3):
            step = state_machine.submit_answer(
                attempt, guessing_ladder_pool, step.next_item.id, False
            )

        assert step.estimate.theta < 0
        remaining = [
            item
            for item in guessing_ladder_pool
            if item.id not in attempt.administered_item_ids
        ]
        assert step.next_item.difficulty == min(item.difficulty for item in remaining)

    def test_response_records_snapshot_and_theta_history(
        self, state_machine, make_attempt, test_config, large_pool, fixed_now
    ):
        attempt = make_attempt(test_config)
        step = state_machine.start(attempt, large_pool, now=fixed_now)
        first = step.next_item
        step = state_machine.submit_answer(
            attempt, large_pool, first.id, True, now=fixed_now, duration_ms=4200
        )

        record = attempt.responses[0]
        assert record.item_id == first.id
        assert record.difficulty == first.difficulty
        assert record.discrimination == first.discrimination
        assert record.guessing == first.guessing
        assert record.item_version == first.version
        assert record.duration_ms == 4200
        assert record.timestamp == fixed_now
        assert record.theta_after == step.estimate.theta
        assert record.standard_error_after == step.estimate.standard_error
        assert attempt.theta_history == [step.estimate.theta]

    def test_history_has_one_entry_per_response(
        self, state_machine, make_attempt, test_config, large_pool
    ):
        attempt = make_attempt(test_config)
        rng = random.Random(7)
        _answer_all(state_machine, attempt, large_pool, lambda item: rng.random() < 0.5)
        assert len(attempt.theta_history) == attempt.items_administered


class TestTermination:
    """Each termination reason."""

    def test_max_items_reached_without_a_sixth_selection(
        self, state_machine, make_attempt, large_pool, monkeypatch
    ):
        calls = []
        original = engine_module.select_next_item

        def counting_select(*args, **kwargs):
            calls.append(1)
            return original(*args, **kwargs)

        monkeypatch.setattr(engine_module, "select_next_item", counting_select)

        config = TestConfig(target_precision=0.01, min_items=5, max_items=5)
        attempt = make_attempt(config)
        step = _answer_all(state_machine, attempt, large_pool, lambda item: True)

        assert step.termination_reason == TerminationReason.MAX_ITEMS_REACHED
        assert step.items_administered == 5
        assert step.next_item is None
        # One selection at start plus one after each of the first four answers
        assert len(calls) == 5

    def test_precision_reached(self, state_machine, make_attempt, ladder_pool):
        config = TestConfig(target_precision=2.0, min_items=2, max_items=5)
        attempt = make_attempt(config)
        step = state_machine.start(attempt, ladder_pool)
        assert step.next_item.difficulty == 0.0
        step = state_machine.submit_answer(attempt, ladder_pool, step.next_item.id, True)
        assert step.next_item.difficulty == 2.0
        step = state_machine.submit_answer(attempt, ladder_pool, step.next_item.id, False)

        assert step.termination_reason == TerminationReason.PRECISION_REACHED
        assert step.items_administered == 2
        assert step.estimate.theta == pytest.approx(1.0, abs=1e-3)
        assert step.estimate.standard_error <= 2.0

    def test_pool_exhaustion(self, state_machine, make_attempt):
        pool = [Item(id=f"p{i}", difficulty=float(i - 1)) for i in range(3)]
        config = TestConfig(target_precision=0.01, min_items=1, max_items=20)
        attempt = make_attempt(config)
        step = _answer_all(state_machine, attempt, pool, lambda item: item.difficulty < 0.5)

        assert step.termination_reason == TerminationReason.NO_MORE_ITEMS
        assert step.items_administered == 3
        assert attempt.administered_item_ids == {"p0", "p1", "p2"}

    def test_max_items_wins_when_pool_runs_out_on_the_same_step(
        self, state_machine, make_attempt
    ):
        pool = [Item(id=f"p{i}", difficulty=float(i - 1)) for i in range(3)]
        config = TestConfig(target_precision=0.01, min_items=1, max_items=3)
        attempt = make_attempt(config)
        step = _answer_all(state_machine, attempt, pool, lambda item: item.difficulty < 0.5)

        assert step.termination_reason == TerminationReason.MAX_ITEMS_REACHED
        assert step.items_administered == 3

    def test_completed_attempt_has_result(
        self, state_machine, make_attempt, test_config, large_pool
    ):
        attempt = make_attempt(test_config)
        step = _answer_all(state_machine, attempt, large_pool, lambda item: item.difficulty < 0.4)

        assert attempt.status == AttemptStatus.COMPLETED
        assert attempt.result is step.result
        assert attempt.result.items_administered == attempt.items_administered
        assert attempt.result.correct_count == attempt.correct_count
        assert attempt.result.termination_reason == attempt.termination_reason
        assert attempt.completed_at is not None
        assert attempt.presented_item_id is None


class TestTimeLimit:
    """Late submissions and expiry."""

    @pytest.fixture
    def timed_config(self):
        return TestConfig(
            target_precision=0.3, min_items=5, max_items=20, time_limit_minutes=10
        )

    def test_late_answer_is_not_recorded(
        self, state_machine, make_attempt, timed_config, ladder_pool, fixed_now
    ):
        attempt = make_attempt(timed_config)
        step = state_machine.start(attempt, ladder_pool, now=fixed_now)

        late = fixed_now + timedelta(minutes=11)
        step = state_machine.submit_answer(
            attempt, ladder_pool, step.next_item.id, True, now=late
        )

        assert step.recorded is False
        assert step.termination_reason == TerminationReason.TIMED_OUT
        assert attempt.items_administered == 0
        assert attempt.completed_at == late

    def test_answer_within_limit_is_recorded(
        self, state_machine, make_attempt, timed_config, ladder_pool, fixed_now
    ):
        attempt = make_attempt(timed_config)
        step = state_machine.start(attempt, ladder_pool, now=fixed_now)
        step = state_machine.submit_answer(
            attempt,
            ladder_pool,
            step.next_item.id,
            True,
            now=fixed_now + timedelta(minutes=9),
        )
        assert step.recorded is True
        assert attempt.items_administered == 1

    def test_is_overdue(
        self, state_machine, make_attempt, timed_config, ladder_pool, fixed_now
    ):
        attempt = make_attempt(timed_config)
        assert not state_machine.is_overdue(attempt, fixed_now)
        state_machine.start(attempt, ladder_pool, now=fixed_now)
        assert not state_machine.is_overdue(attempt, fixed_now + timedelta(minutes=5))
        assert state_machine.is_overdue(attempt, fixed_now + timedelta(minutes=10))

    def test_expire(self, state_machine, make_attempt, test_config, ladder_pool):
        attempt = make_attempt(test_config)
        step = state_machine.start(attempt, ladder_pool)
        state_machine.submit_answer(attempt, ladder_pool, step.next_item.id, True)

        step = state_machine.expire(attempt)

        assert step.termination_reason == TerminationReason.TIMED_OUT
        assert step.result.items_administered == 1
        assert attempt.status == AttemptStatus.COMPLETED

    def test_expire_stores_naive_time_as_utc(
        self, state_machine, make_attempt, test_config, ladder_pool, fixed_now
    ):
        attempt = make_attempt(test_config)
        state_machine.start(attempt, ladder_pool, now=fixed_now)

        naive = datetime(2024, 5, 1, 9, 20)
        state_machine.expire(attempt, now=naive)

        assert attempt.completed_at.tzinfo == timezone.utc
        assert attempt.completed_at == fixed_now + timedelta(minutes=20)

    def test_expire_requires_in_progress(
        self, state_machine, make_attempt, test_config, ladder_pool
    ):
        attempt = make_attempt(test_config)
        with pytest.raises(InvalidStateError):
            state_machine.expire(attempt)
        state_machine.start(attempt, ladder_pool)
        state_machine.expire(attempt)
        with pytest.raises(AttemptClosedError):
            state_machine.expire(attempt)


class TestInputErrors:
    """Rejected submissions leave the attempt untouched."""

    @pytest.fixture
    def started(self, state_machine, make_attempt, test_config, ladder_pool):
        attempt = make_attempt(test_config)
        step = state_machine.start(attempt, ladder_pool)
        step = state_machine.submit_answer(attempt, ladder_pool, step.next_item.id, True)
        return attempt, step

    def _assert_rejected(self, state_machine, attempt, pool, item_id, error):
        before = copy.deepcopy(attempt)
        with pytest.raises(error):
            state_machine.submit_answer(attempt, pool, item_id, True)
        assert attempt == before

    def test_duplicate(self, state_machine, started, ladder_pool):
        attempt, _ = started
        answered = attempt.responses[0].item_id
        self._assert_rejected(
            state_machine, attempt, ladder_pool, answered, DuplicateItemError
        )

    def test_not_presented(self, state_machine, started, ladder_pool):
        attempt, step = started
        other = next(
            item.id
            for item in ladder_pool
            if item.id != step.next_item.id
            and item.id not in attempt.administered_item_ids
        )
        self._assert_rejected(
            state_machine, attempt, ladder_pool, other, ItemNotPresentedError
        )

    def test_id_outside_pool_is_not_presented(self, state_machine, started, ladder_pool):
        attempt, _ = started
        self._assert_rejected(
            state_machine, attempt, ladder_pool, "no-such-item", ItemNotPresentedError
        )

    def test_presented_item_missing_from_pool(self, state_machine, started, ladder_pool):
        attempt, step = started
        shrunk = [item for item in ladder_pool if item.id != step.next_item.id]
        self._assert_rejected(
            state_machine, attempt, shrunk, step.next_item.id, UnknownItemError
        )

    def test_not_started(self, state_machine, make_attempt, test_config, ladder_pool):
        attempt = make_attempt(test_config)
        with pytest.raises(InvalidStateError):
            state_machine.submit_answer(attempt, ladder_pool, "item-3", True)

    def test_closed(self, state_machine, started, ladder_pool):
        attempt, step = started
        state_machine.expire(attempt)
        self._assert_rejected(
            state_machine, attempt, ladder_pool, step.next_item.id, AttemptClosedError
        )


class TestProperties:
    """Invariants over random response patterns."""

    @pytest.mark.parametrize("seed", range(10))
    def test_bounds_and_no_repeats(self, seed, state_machine, make_attempt, large_pool):
        rng = random.Random(seed)
        config = TestConfig(target_precision=0.35, min_items=3, max_items=12)
        attempt = make_attempt(config, attempt_id=f"prop-{seed}")
        step = _answer_all(state_machine, attempt, large_pool, lambda item: rng.random() < 0.6)

        assert config.min_items <= step.items_administered <= config.max_items
        ids = [r.item_id for r in attempt.responses]
        assert len(ids) == len(set(ids))
        low, high = config.ability_domain
        assert all(low <= theta <= high for theta in attempt.theta_history)
        assert all(r.standard_error_after > 0 for r in attempt.responses)
        assert 0.0 <= step.result.score <= 100.0
