"""Character-budget batching of elements for extraction calls."""

from typing import Sequence

from concept_alignment.models import Element


def total_chars(elements: Sequence[Element]) -> int:
    return sum(el.size for el in elements)


def batch_by_char_budget(elements: Sequence[Element], budget: int) -> list[list[Element]]:
    """Split ``elements`` into ordered, contiguous batches bounded by ``budget`` characters.

    - If everything fits, a single batch is returned.
    - Otherwise elements are accumulated greedily; a batch is closed as soon as the
      next element would push it over budget.
    - An element larger than the budget is never split or dropped: it ends up in a
      batch of its own.

    Concatenating the returned batches always reproduces the input order exactly.

    Args:
        elements: Elements in submission order.
        budget: Maximum characters per batch (must be positive).

    Returns:
        List of batches. Empty input yields an empty list.
    """
    if budget <= 0:
        raise ValueError(f"Batch budget must be positive, got {budget}")
    if not elements:
        return []
    if total_chars(elements) <= budget:
        return [list(elements)]

    batches: list[list[Element]] = []
    current: list[Element] = []
    current_chars = 0

    for element in elements:
        size = element.size
        if current and current_chars + size > budget:
            batches.append(current)
            current = []
            current_chars = 0
        current.append(element)
        current_chars += size

    if current:
        batches.append(current)

    return batches
