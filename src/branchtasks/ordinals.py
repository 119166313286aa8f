"""Ordinal keys for ordering tasks within a status column.

Ordinals are floats. Cards with an ordinal sort first, ascending; cards
without one sort last by id. New ordinals are spaced DEFAULT_STEP apart so
later drops can land between neighbours.
"""

import functools
import math
from typing import Iterable, List, Optional, Sequence

import structlog

from branchtasks.errors import OrdinalExhaustion
from branchtasks.models.task import CardData, OrdinalUpdate, TaskRecord

logger = structlog.get_logger(__name__)

DEFAULT_STEP = 1000.0


def has_ordinal(card: CardData) -> bool:
    return card.ordinal is not None


def cards_from_tasks(tasks: Iterable[TaskRecord]) -> List[CardData]:
    return [CardData(task_id=task.id, ordinal=task.ordinal) for task in tasks]


def compare_by_ordinal(a: CardData, b: CardData) -> int:
    """Comparator: ordinal cards first (ascending), then the rest by id."""
    if has_ordinal(a) and not has_ordinal(b):
        return -1
    if not has_ordinal(a) and has_ordinal(b):
        return 1
    if has_ordinal(a) and has_ordinal(b):
        return (a.ordinal > b.ordinal) - (a.ordinal < b.ordinal)
    return (a.task_id > b.task_id) - (a.task_id < b.task_id)


def sort_cards_by_ordinal(cards: Iterable[CardData]) -> List[CardData]:
    return sorted(cards, key=functools.cmp_to_key(compare_by_ordinal))


def calculate_ordinals_for_drop(
    existing_cards: Sequence[CardData],
    dropped_card: CardData,
    drop_index: int,
) -> List[OrdinalUpdate]:
    """Calculate the ordinal updates for dropping a card into a column.

    The dropped card gets an ordinal between its new neighbours, or one step
    past the neighbour at either edge. Cards above the drop position that
    have no ordinal get one too, otherwise they would jump to the end on
    reload. When no ordinal fits between the neighbours the whole column is
    renumbered.

    Args:
        existing_cards: Cards in the target column, in visual order. May
            include the dropped card for a same-column reorder.
        dropped_card: The card being dropped
        drop_index: Insert position in ``existing_cards`` (0 = top)

    Returns:
        Updates to apply; empty when the drop changes nothing
    """
    original_index = next(
        (i for i, card in enumerate(existing_cards) if card.task_id == dropped_card.task_id), -1
    )
    others = [card for card in existing_cards if card.task_id != dropped_card.task_id]

    index = drop_index
    if original_index != -1 and original_index < drop_index:
        index -= 1
    index = max(0, min(index, len(others)))

    moved = existing_cards[original_index] if original_index != -1 else dropped_card
    new_order = others[:index] + [moved] + others[index:]

    if original_index == index and _is_settled(new_order, index):
        return []

    needing = [i for i in range(index + 1) if i == index or not has_ordinal(new_order[i])]
    if needing != list(range(needing[0], index + 1)):
        # An ordered card sits between cards that need ordinals
        return rebalance(new_order)

    first = needing[0]
    base = new_order[first - 1].ordinal if first > 0 else None
    ceiling = next((card.ordinal for card in new_order[index + 1:] if has_ordinal(card)), None)

    try:
        values = _spread(base, ceiling, len(needing))
    except OrdinalExhaustion as e:
        logger.info("ordinal_rebalance", reason=str(e), cards=len(new_order))
        return rebalance(new_order)

    return [
        OrdinalUpdate(task_id=new_order[i].task_id, ordinal=value) for i, value in zip(needing, values)
    ]


def resolve_ordinal_conflicts(cards: Sequence[CardData]) -> List[OrdinalUpdate]:
    """Repair a column whose ordinals are missing or collide.

    Args:
        cards: Cards in visual order

    Returns:
        No updates for a strictly increasing column, else a sequential
        renumbering of every card whose ordinal changes
    """
    if _strictly_increasing(cards):
        return []
    return rebalance(cards)


def rebalance(cards: Sequence[CardData]) -> List[OrdinalUpdate]:
    """Renumber cards sequentially with the default spacing."""
    updates = []
    for i, card in enumerate(cards):
        ordinal = DEFAULT_STEP * (i + 1)
        if card.ordinal != ordinal:
            updates.append(OrdinalUpdate(task_id=card.task_id, ordinal=ordinal))
    return updates


def _strictly_increasing(cards: Sequence[CardData]) -> bool:
    previous: Optional[float] = None
    for card in cards:
        if card.ordinal is None or not math.isfinite(card.ordinal):
            return False
        if previous is not None and card.ordinal <= previous:
            return False
        previous = card.ordinal
    return True


def _is_settled(new_order: Sequence[CardData], index: int) -> bool:
    if not _strictly_increasing(new_order[: index + 1]):
        return False
    ceiling = next((card.ordinal for card in new_order[index + 1:] if has_ordinal(card)), None)
    return ceiling is None or new_order[index].ordinal < ceiling


def _spread(base: Optional[float], ceiling: Optional[float], count: int) -> List[float]:
    """Return ``count`` increasing ordinals strictly between base and ceiling.

    Raises:
        OrdinalExhaustion: If float precision leaves no room
    """
    if base is None and ceiling is None:
        return [DEFAULT_STEP * (i + 1) for i in range(count)]
    if base is None:
        values = [ceiling - DEFAULT_STEP * (count - i) for i in range(count)]
    elif ceiling is None:
        values = [base + DEFAULT_STEP * (i + 1) for i in range(count)]
    else:
        if not ceiling > base:
            raise OrdinalExhaustion(f"neighbours out of order: {base} >= {ceiling}")
        step = (ceiling - base) / (count + 1)
        values = [base + step * (i + 1) for i in range(count)]

    bounds = [base] if base is not None else []
    bounds += values
    bounds += [ceiling] if ceiling is not None else []
    if not all(math.isfinite(v) for v in bounds) or any(b <= a for a, b in zip(bounds, bounds[1:])):
        raise OrdinalExhaustion(f"no room between {base} and {ceiling}")
    return values
