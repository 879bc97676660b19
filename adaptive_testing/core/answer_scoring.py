"""
Answer correctness scoring per item type.

The CAT engine only ever sees ``correct: bool``. Raw answers are scored here,
outside the engine, by a scorer registered for the item's type. New item types
are supported by registering another scorer; the engine never changes.

Scoring rules:
    - multiple_choice: exact match of the selected option, surrounding
      whitespace ignored
    - true_false: boolean match; "true"/"false" strings are accepted
    - fill_blank: case- and whitespace-insensitive match against one or more
      accepted answers
    - matching: the submitted pairs equal the key's pairs, in any order
    - unknown item types score as incorrect
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, Optional, Protocol, Tuple

from adaptive_testing.core.cat.types import Item, ItemId
from adaptive_testing.domain_types import ItemType

logger = logging.getLogger(__name__)


class AnswerScorer(Protocol):
    """Scores a raw answer against an answer key for one item type."""

    def score(self, answer_key: Any, raw_answer: Any) -> bool:
        """
        Decide whether ``raw_answer`` is correct.

        Args:
            answer_key: Stored correct answer for the item.
            raw_answer: Answer as submitted by the subject.

        Returns:
            True if the answer is correct. Malformed answers are incorrect,
            never an error.
        """
        ...


class AnswerKeyProvider(Protocol):
    """Anything that can look up an item's answer key (e.g. an ItemBank)."""

    def get_answer_key(self, item_id: ItemId) -> Any:
        ...


class MultipleChoiceScorer:
    """Selected option must equal the key."""

    def score(self, answer_key: Any, raw_answer: Any) -> bool:
        if raw_answer is None or answer_key is None:
            return False
        return str(raw_answer).strip() == str(answer_key).strip()


class TrueFalseScorer:
    """Boolean answers; accepts real booleans or "true"/"false" strings."""

    _TRUE = {"true", "t", "yes"}
    _FALSE = {"false", "f", "no"}

    def score(self, answer_key: Any, raw_answer: Any) -> bool:
        key = self._as_bool(answer_key)
        answer = self._as_bool(raw_answer)
        return key is not None and answer is not None and key == answer

    @classmethod
    def _as_bool(cls, value: Any) -> Optional[bool]:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in cls._TRUE:
                return True
            if normalized in cls._FALSE:
                return False
        return None


class FillBlankScorer:
    """Case- and whitespace-insensitive text match.

    The key may be a single string or a list of accepted answers.
    """

    def score(self, answer_key: Any, raw_answer: Any) -> bool:
        if not isinstance(raw_answer, str):
            return False
        accepted = [answer_key] if isinstance(answer_key, str) else answer_key or []
        answer = self._normalize(raw_answer)
        return any(
            isinstance(option, str) and self._normalize(option) == answer
            for option in accepted
        )

    @staticmethod
    def _normalize(text: str) -> str:
        return " ".join(text.split()).casefold()


class MatchingScorer:
    """Set of (left, right) pairs must equal the key's pairs, order-insensitive.

    Pairs may be given as a mapping or as a sequence of two-element sequences.
    """

    def score(self, answer_key: Any, raw_answer: Any) -> bool:
        key_pairs = self._as_pairs(answer_key)
        answer_pairs = self._as_pairs(raw_answer)
        if not key_pairs or answer_pairs is None:
            return False
        return key_pairs == answer_pairs

    @staticmethod
    def _as_pairs(value: Any) -> Optional[FrozenSet[Tuple[str, str]]]:
        if isinstance(value, dict):
            items: Iterable[Any] = value.items()
        elif isinstance(value, (list, tuple)):
            items = value
        else:
            return None

        pairs = set()
        for pair in items:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                return None
            pairs.add((str(pair[0]), str(pair[1])))
        return frozenset(pairs)


DEFAULT_SCORERS: Dict[ItemType, AnswerScorer] = {
    ItemType.MULTIPLE_CHOICE: MultipleChoiceScorer(),
    ItemType.TRUE_FALSE: TrueFalseScorer(),
    ItemType.FILL_BLANK: FillBlankScorer(),
    ItemType.MATCHING: MatchingScorer(),
}


class ItemTypeAnswerScorer:
    """
    Dispatches answer scoring to the scorer registered for an item's type.

    Answer keys are fetched through ``key_provider`` so they never travel with
    the Item objects handed to the engine.
    """

    def __init__(
        self,
        key_provider: AnswerKeyProvider,
        scorers: Optional[Dict[ItemType, AnswerScorer]] = None,
    ):
        self.key_provider = key_provider
        self.scorers = dict(DEFAULT_SCORERS if scorers is None else scorers)

    def register(self, item_type: ItemType, scorer: AnswerScorer) -> None:
        self.scorers[item_type] = scorer

    def score_answer(self, item: Item, raw_answer: Any) -> bool:
        """Return whether ``raw_answer`` is a correct answer to ``item``."""
        scorer = self.scorers.get(item.item_type)
        if scorer is None:
            logger.warning(
                f"No answer scorer registered for item type {item.item_type!r} "
                f"(item {item.id}); scoring as incorrect"
            )
            return False
        return scorer.score(self.key_provider.get_answer_key(item.id), raw_answer)
