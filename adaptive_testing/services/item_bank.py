"""
Item bank providers.

An item bank supplies the calibrated items of a pool and the answer keys used
to score raw answers. The engine only ever receives validated ``Item`` objects;
answer keys stay behind the bank.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from adaptive_testing.core.cat.item_defaults import (
    DEFAULT_ITEM_PARAMETERS,
    ItemParameterDefaults,
    resolve_item,
)
from adaptive_testing.core.cat.types import Item, ItemId
from adaptive_testing.core.exceptions import (
    ConcurrentModificationError,
    UnknownItemError,
)
from adaptive_testing.models.models import ItemRecord

logger = logging.getLogger(__name__)


class ItemBank(ABC):
    """
    Abstract item source for adaptive attempts.
    """

    @abstractmethod
    def get_items(self, item_pool_id: str) -> List[Item]:
        """
        Get all active items of a pool.

        Args:
            item_pool_id: Pool identifier

        Returns:
            Items sorted by id (empty if the pool is unknown or empty)
        """
        pass

    @abstractmethod
    def get_answer_key(self, item_id: ItemId) -> Any:
        """
        Get the stored correct answer for an item.

        Raises:
            UnknownItemError: If no item has this id
        """
        pass

    @abstractmethod
    def update_item(self, item: Item) -> None:
        """
        Replace the stored parameters of an item with its next version.

        Compare-and-set: the stored item must be at ``item.version - 1``.

        Raises:
            UnknownItemError: If no item has this id
            ConcurrentModificationError: If the stored version is not the
                one ``item`` was derived from
        """
        pass


class InMemoryItemBank(ItemBank):
    """
    In-memory item bank for tests, simulations and embedded use.

    Thread-safe with a lock around pool mutations.
    """

    def __init__(self):
        self._pools: Dict[str, Dict[ItemId, Item]] = {}
        self._pool_of_item: Dict[ItemId, str] = {}
        self._answer_keys: Dict[ItemId, Any] = {}
        self._lock = threading.RLock()

    def add_items(
        self,
        item_pool_id: str,
        items: Iterable[Item],
        answer_keys: Optional[Dict[ItemId, Any]] = None,
    ) -> None:
        """Add items (and optionally their answer keys) to a pool."""
        with self._lock:
            pool = self._pools.setdefault(item_pool_id, {})
            for item in items:
                pool[item.id] = item
                self._pool_of_item[item.id] = item_pool_id
            self._answer_keys.update(answer_keys or {})

    def get_items(self, item_pool_id: str) -> List[Item]:
        with self._lock:
            pool = self._pools.get(item_pool_id, {})
            return sorted(pool.values(), key=lambda item: item.id)

    def get_answer_key(self, item_id: ItemId) -> Any:
        with self._lock:
            if item_id not in self._pool_of_item:
                raise UnknownItemError("Item not found", {"item_id": item_id})
            return self._answer_keys.get(item_id)

    def update_item(self, item: Item) -> None:
        with self._lock:
            pool_id = self._pool_of_item.get(item.id)
            if pool_id is None:
                raise UnknownItemError("Item not found", {"item_id": item.id})
            stored = self._pools[pool_id][item.id]
            if stored.version != item.version - 1:
                raise ConcurrentModificationError(
                    "Item was revised concurrently",
                    {"item_id": item.id, "stored_version": stored.version},
                )
            self._pools[pool_id][item.id] = item


class SqlAlchemyItemBank(ItemBank):
    """
    Item bank backed by the ``items`` table.

    Rows missing IRT parameters get them from ``defaults``. Every row is
    validated as it is loaded, so a malformed row fails here with
    InvalidItemParametersError rather than inside an estimate.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        defaults: ItemParameterDefaults = DEFAULT_ITEM_PARAMETERS,
    ):
        self.session_factory = session_factory
        self.defaults = defaults

    def get_items(self, item_pool_id: str) -> List[Item]:
        with self.session_factory() as db:
            rows = db.scalars(
                select(ItemRecord)
                .where(
                    ItemRecord.item_pool_id == item_pool_id,
                    ItemRecord.is_active.is_(True),
                )
                .order_by(ItemRecord.id)
            ).all()
            items = [self._to_item(row) for row in rows]

        logger.debug(f"Loaded {len(items)} items for pool {item_pool_id}")
        return items

    def get_answer_key(self, item_id: ItemId) -> Any:
        with self.session_factory() as db:
            row = self._get_row(db, item_id)
            return row.answer_key

    def update_item(self, item: Item) -> None:
        with self.session_factory() as db:
            result = db.execute(
                update(ItemRecord)
                .where(
                    ItemRecord.id == item.id,
                    ItemRecord.version == item.version - 1,
                )
                .values(
                    difficulty=item.difficulty,
                    discrimination=item.discrimination,
                    guessing=item.guessing,
                    version=item.version,
                )
            )
            if result.rowcount != 1:
                db.rollback()
                row = self._get_row(db, item.id)
                raise ConcurrentModificationError(
                    "Item was revised concurrently",
                    {"item_id": item.id, "stored_version": row.version},
                )
            db.commit()

        logger.info(f"Item {item.id} updated to version {item.version}")

    def add_item(
        self,
        item_pool_id: str,
        item: Item,
        answer_key: Any = None,
        option_count: Optional[int] = None,
    ) -> None:
        """Insert a fully calibrated item."""
        with self.session_factory() as db:
            db.add(
                ItemRecord(
                    id=item.id,
                    item_pool_id=item_pool_id,
                    version=item.version,
                    difficulty=item.difficulty,
                    discrimination=item.discrimination,
                    guessing=item.guessing,
                    option_count=option_count,
                    category=item.category,
                    tags=list(item.tags),
                    item_type=item.item_type,
                    answer_key=answer_key,
                )
            )
            db.commit()

    @staticmethod
    def _get_row(db: Session, item_id: ItemId) -> ItemRecord:
        row = db.get(ItemRecord, item_id)
        if row is None:
            raise UnknownItemError("Item not found", {"item_id": item_id})
        return row

    def _to_item(self, row: ItemRecord) -> Item:
        return resolve_item(
            row.id,
            difficulty=row.difficulty,
            discrimination=row.discrimination,
            guessing=row.guessing,
            difficulty_label=row.difficulty_label,
            option_count=row.option_count,
            item_type=row.item_type,
            category=row.category,
            tags=row.tags or (),
            version=row.version,
            defaults=self.defaults,
        )
