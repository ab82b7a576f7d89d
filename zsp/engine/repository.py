"""
ZSP Repositories - In-memory stores for specs and generated patterns.

Ids are opaque strings with a kind prefix ("spec_", "pat_"). Repositories
live outside the generation core; the engine is the only writer.
"""

import uuid
from collections import OrderedDict
from threading import Lock
from typing import Generic, List, Optional, Tuple, TypeVar

from zsp.errors import NotFoundError

T = TypeVar("T")


class KeyedRepository(Generic[T]):
    """Thread-safe id -> item store that keeps insertion order."""

    def __init__(self, kind: str, prefix: str, max_items: Optional[int] = None):
        self.kind = kind
        self.prefix = prefix
        self.max_items = max_items
        self._items: "OrderedDict[str, T]" = OrderedDict()
        self._lock = Lock()

    def new_id(self) -> str:
        return f"{self.prefix}_{uuid.uuid4().hex[:12]}"

    def add(self, item: T, item_id: Optional[str] = None) -> str:
        """Store an item and return its id. Oldest items drop past max_items."""
        item_id = item_id or self.new_id()
        with self._lock:
            self._items[item_id] = item
            self._items.move_to_end(item_id)
            while self.max_items is not None and len(self._items) > self.max_items:
                self._items.popitem(last=False)
        return item_id

    def get(self, item_id: str) -> T:
        with self._lock:
            try:
                return self._items[item_id]
            except KeyError:
                raise NotFoundError(f"{self.kind} not found: {item_id}") from None

    def delete(self, item_id: str) -> None:
        with self._lock:
            if self._items.pop(item_id, None) is None:
                raise NotFoundError(f"{self.kind} not found: {item_id}")

    def items(self) -> List[Tuple[str, T]]:
        with self._lock:
            return list(self._items.items())

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._items)

    def __contains__(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
