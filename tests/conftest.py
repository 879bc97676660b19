"""
Pytest configuration and shared fixtures for testing.
"""
from datetime import datetime, timezone
from typing import Callable, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from adaptive_testing.core.cat.engine import Attempt, AttemptStateMachine
from adaptive_testing.core.cat.types import Item
from adaptive_testing.models.base import init_db, make_session_factory
from adaptive_testing.schemas.attempt_config import TestConfig


# Five 2PL items centered on 0, one per difficulty level
def _ladder_items(guessing: float = 0.0, category: str = "general") -> List[Item]:
    return [
        Item(
            id=f"item-{index}",
            difficulty=float(difficulty),
            discrimination=1.0,
            guessing=guessing,
            category=category,
        )
        for index, difficulty in enumerate([-2, -1, 0, 1, 2], start=1)
    ]


@pytest.fixture
def ladder_pool() -> List[Item]:
    """Items with difficulties [-2, -1, 0, 1, 2], a=1.0, c=0.0."""
    return _ladder_items()


@pytest.fixture
def guessing_ladder_pool() -> List[Item]:
    """Items with difficulties [-2, -1, 0, 1, 2], a=1.0, c=0.2."""
    return _ladder_items(guessing=0.2)


@pytest.fixture
def large_pool() -> List[Item]:
    """Forty items spread over [-2.5, 2.5] across four categories."""
    categories = ["algebra", "geometry", "statistics", "reading"]
    items = []
    for i in range(40):
        items.append(
            Item(
                id=f"q{i:03d}",
                difficulty=-2.5 + 5.0 * i / 39,
                discrimination=0.8 + 0.05 * (i % 10),
                guessing=0.1 if i % 3 == 0 else 0.0,
                category=categories[i % 4],
            )
        )
    return items


@pytest.fixture
def test_config() -> TestConfig:
    return TestConfig(target_precision=0.30, min_items=5, max_items=20)


@pytest.fixture
def make_attempt() -> Callable[..., Attempt]:
    def _make(config: TestConfig, attempt_id: str = "attempt-1") -> Attempt:
        return Attempt(
            id=attempt_id,
            subject_id="subject-1",
            item_pool_id="pool-1",
            config=config,
        )

    return _make


@pytest.fixture
def state_machine() -> AttemptStateMachine:
    return AttemptStateMachine()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across sessions via StaticPool."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)
