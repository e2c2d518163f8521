"""Column sorting for action item tables.

Sorting always works on a copy; the storage order of sub-steps and action
items is never touched. Clicking a column cycles ascending -> descending ->
ascending; a table never returns to "unsorted" once a column was chosen.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import DATE_SENTINEL

ASCENDING = "ascending"
DESCENDING = "descending"

SORT_KEYS: Tuple[str, ...] = ("status", "text", "responsible", "due_date", "completed_date")

_KEY_ALIASES: Dict[str, str] = {
    "dueDate": "due_date",
    "completedDate": "completed_date",
}


def normalize_key(key: str) -> str:
    """Map a column name, in either naming, to its sort key."""
    canonical = _KEY_ALIASES.get(key, key)
    if canonical not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {key}")
    return canonical


@dataclass(frozen=True, slots=True)
class SortConfig:
    key: str
    direction: str = ASCENDING

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "direction": self.direction}


def request_sort(current: Optional[SortConfig], key: str) -> SortConfig:
    """Next sort state after clicking the ``key`` column header."""
    key = normalize_key(key)
    if current is not None and current.key == key and current.direction == ASCENDING:
        return SortConfig(key, DESCENDING)
    return SortConfig(key, ASCENDING)


def sort_value(item: Any, key: str) -> Any:
    """Comparable value of ``item`` for one column.

    Works on anything exposing the action item attributes, plain
    ``ActionItem`` and ``FlatActionItem`` alike.
    """
    if key == "status":
        return bool(item.completed)
    if key in ("due_date", "completed_date"):
        return getattr(item, key) or DATE_SENTINEL
    return (getattr(item, key) or "").lower()


def sort_items(items: Iterable[Any], config: Optional[SortConfig]) -> List[Any]:
    """Stable sort of a copy of ``items``."""
    rows = list(items)
    if config is None:
        return rows
    return sorted(
        rows,
        key=lambda item: sort_value(item, config.key),
        reverse=config.direction == DESCENDING,
    )


class ActionItemTable:
    """Sortable table of action items for one sub-step or for a whole task."""

    def __init__(self, items: Iterable[Any], sub_step_name: str, task_name: str):
        # Restartable views such as FlattenedActionItems are re-walked on every rows() call;
        # one-shot iterators are materialized once
        if iter(items) is items:
            items = tuple(items)
        self._items = items
        self.sub_step_name = sub_step_name
        self.task_name = task_name
        self.sort_config: Optional[SortConfig] = None

    def request_sort(self, key: str) -> SortConfig:
        self.sort_config = request_sort(self.sort_config, key)
        return self.sort_config

    def rows(self) -> List[Any]:
        return sort_items(self._items, self.sort_config)

    def sort_indicator(self, key: str) -> Optional[str]:
        """Direction shown on a column header, None for inactive columns."""
        key = normalize_key(key)
        if self.sort_config is None or self.sort_config.key != key:
            return None
        return self.sort_config.direction

    @property
    def is_empty(self) -> bool:
        return not any(True for _ in self._items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sub_step_name": self.sub_step_name,
            "task_name": self.task_name,
            "sort": self.sort_config.to_dict() if self.sort_config else None,
            "rows": [row.to_dict() for row in self.rows()],
        }
