"""Split a file's entries into size-bounded slices."""

from __future__ import annotations

import logging
from typing import Callable, List, Sequence

from .models import LocalisationEntry, Slice
from .text_utils import estimate_tokens

logger = logging.getLogger(__name__)

SizeFunction = Callable[[str], int]


def entry_size(entry: LocalisationEntry, size_fn: SizeFunction = estimate_tokens) -> int:
    """
    Size of one entry against the slice budget.

    Args:
        entry: Entry to measure; key and value both count
        size_fn: Measure applied to each string

    Returns:
        Estimated size in budget units
    """
    return size_fn(entry.key) + size_fn(entry.value)


def slice_entries(
    entries: Sequence[LocalisationEntry],
    max_unit_budget: int,
    size_fn: SizeFunction = estimate_tokens,
    file_id: str = "",
) -> List[Slice]:
    """
    Greedily group consecutive entries into slices.

    An entry joins the current slice while the running size stays at or
    below ``max_unit_budget``. An entry that alone exceeds the budget gets a
    slice of its own. Entries are never split or dropped.
    """
    if max_unit_budget < 1:
        raise ValueError(f"max_unit_budget must be positive, got {max_unit_budget}")

    groups: List[List[LocalisationEntry]] = []
    current: List[LocalisationEntry] = []
    current_size = 0

    for entry in entries:
        size = entry_size(entry, size_fn)

        if size > max_unit_budget:
            if current:
                groups.append(current)
            logger.warning(
                f"Entry '{entry.key}' in {file_id or 'file'} is larger than the slice budget "
                f"({size} > {max_unit_budget}), translating it alone"
            )
            groups.append([entry])
            current, current_size = [], 0
            continue

        if current and current_size + size > max_unit_budget:
            groups.append(current)
            current, current_size = [], 0

        current.append(entry)
        current_size += size

    if current:
        groups.append(current)

    slices = [Slice(file_id=file_id, index=i, entries=tuple(g)) for i, g in enumerate(groups)]
    logger.debug(f"Split {len(entries)} entries of {file_id or 'file'} into {len(slices)} slices")
    return slices
