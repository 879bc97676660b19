"""
Category coverage tracking for adaptive item selection.

Categories never influence ability estimation. They are used only to break
near-ties in item information so that, among equally informative items, the
test prefers the topic it has probed least.
"""

from typing import Dict, Iterable, List, Sequence

from adaptive_testing.core.cat.types import Item, ResponseRecord


def track_category_coverage(responses: Iterable[ResponseRecord]) -> Dict[str, int]:
    """
    Count administered items per category.

    Args:
        responses: Recorded responses (each carries its item's category).

    Returns:
        Dict mapping category name to the number of items administered in it.
    """
    coverage: Dict[str, int] = {}
    for response in responses:
        coverage[response.category] = coverage.get(response.category, 0) + 1
    return coverage


def least_represented(
    items: Sequence[Item],
    coverage: Dict[str, int],
) -> List[Item]:
    """
    Keep only the items whose category has the lowest administered count.

    Categories absent from ``coverage`` count as zero.

    Returns:
        Subset of ``items`` in their original order (empty if ``items`` is empty).
    """
    if not items:
        return []
    lowest = min(coverage.get(item.category, 0) for item in items)
    return [item for item in items if coverage.get(item.category, 0) == lowest]
