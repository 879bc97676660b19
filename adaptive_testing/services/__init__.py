"""
Service layer: item banks, attempt repositories and the attempt service.
"""
from .attempt_repository import (
    AttemptRepository,
    InMemoryAttemptRepository,
    SqlAlchemyAttemptRepository,
)
from .attempt_service import AttemptService
from .item_bank import InMemoryItemBank, ItemBank, SqlAlchemyItemBank

__all__ = [
    "AttemptRepository",
    "AttemptService",
    "InMemoryAttemptRepository",
    "InMemoryItemBank",
    "ItemBank",
    "SqlAlchemyAttemptRepository",
    "SqlAlchemyItemBank",
]
