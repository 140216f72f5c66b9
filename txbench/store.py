"""Multi-version records and the ordered per-table index that holds them."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Optional

from sortedcontainers import SortedDict


@dataclass
class Version:
    """One version of a record in a newest-first chain."""

    read_ts: int = 0
    write_ts: int = 0
    rec: Any = None
    deleted: bool = False
    prev: Optional["Version"] = None

    def update_readts(self, ts: int) -> None:
        """Raise the read timestamp to ``ts`` if it is larger."""
        if ts > self.read_ts:
            self.read_ts = ts


@dataclass(eq=False)
class VersionedValue:
    """Index value holding the head of a version chain and a latch."""

    version: Optional[Version] = None
    _latch: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def lock(self) -> None:
        self._latch.acquire()

    def unlock(self) -> None:
        self._latch.release()

    def is_detached_from_tree(self) -> bool:
        """True once the value has been taken out of the index."""
        return self.version is None

    def is_empty(self) -> bool:
        """True when only a deletion marker is left in the chain."""
        head = self.version
        return head is not None and head.deleted and head.prev is None


class LeafNode:
    """Index node carrying the largest scan timestamp seen, for phantom checks."""

    def __init__(self) -> None:
        self._ts = 0
        self.version = 0
        self._latch = threading.Lock()

    def update_ts(self, ts: int) -> None:
        with self._latch:
            if ts > self._ts:
                self._ts = ts

    def get_ts(self) -> int:
        with self._latch:
            return self._ts

    def _bump(self) -> None:
        with self._latch:
            self.version += 1


class IndexResult(IntEnum):
    OK = 0
    NOT_FOUND = 1
    NOT_INSERTED = 2


PerNodeFunc = Callable[[LeafNode, int], Optional[bool]]
PerKvFunc = Callable[[int, Any], Optional[bool]]


class OrderedIndex:
    """Ordered map from integer keys to values, one map per table.

    Each table has a single leaf node; scans stamp it with their timestamp
    so later inserts into the table can detect phantoms.
    """

    def __init__(self) -> None:
        self._tables: dict[Any, SortedDict] = {}
        self._leaves: dict[Any, LeafNode] = {}
        self._latch = threading.Lock()

    def _table(self, table_id: Any) -> tuple[SortedDict, LeafNode]:
        table = self._tables.get(table_id)
        if table is None:
            table = self._tables[table_id] = SortedDict()
            self._leaves[table_id] = LeafNode()
        return table, self._leaves[table_id]

    def find(self, table_id: Any, key: int) -> tuple[IndexResult, Any]:
        """Return ``(OK, value)`` or ``(NOT_FOUND, None)``."""
        with self._latch:
            table, _ = self._table(table_id)
            if key in table:
                return IndexResult.OK, table[key]
            return IndexResult.NOT_FOUND, None

    def insert(self, table_id: Any, key: int, value: Any) -> tuple[IndexResult, LeafNode]:
        """Insert unless the key exists; returns the result and the leaf holding the key."""
        with self._latch:
            table, leaf = self._table(table_id)
            if key in table:
                return IndexResult.NOT_INSERTED, leaf
            table[key] = value
        leaf._bump()
        return IndexResult.OK, leaf

    def remove(self, table_id: Any, key: int) -> IndexResult:
        with self._latch:
            table, leaf = self._table(table_id)
            if key not in table:
                return IndexResult.NOT_FOUND
            del table[key]
        leaf._bump()
        return IndexResult.OK

    def _scan(
        self,
        table_id: Any,
        lkey: int,
        rkey: int,
        per_node_func: PerNodeFunc,
        per_kv_func: PerKvFunc,
        reverse: bool,
    ) -> IndexResult:
        with self._latch:
            table, leaf = self._table(table_id)
            items = [
                (key, table[key])
                for key in table.irange(lkey, rkey, inclusive=(True, False), reverse=reverse)
            ]
            leaf_version = leaf.version
        if per_node_func(leaf, leaf_version) is False:
            return IndexResult.OK
        for key, value in items:
            if per_kv_func(key, value) is False:
                break
        return IndexResult.OK

    def get_kv_in_range(
        self,
        table_id: Any,
        lkey: int,
        rkey: int,
        per_node_func: PerNodeFunc,
        per_kv_func: PerKvFunc,
    ) -> IndexResult:
        """Visit keys in ``[lkey, rkey)`` in ascending order; a callback returning False stops."""
        return self._scan(table_id, lkey, rkey, per_node_func, per_kv_func, False)

    def get_kv_in_rev_range(
        self,
        table_id: Any,
        lkey: int,
        rkey: int,
        per_node_func: PerNodeFunc,
        per_kv_func: PerKvFunc,
    ) -> IndexResult:
        """Visit keys in ``[lkey, rkey)`` in descending order; a callback returning False stops."""
        return self._scan(table_id, lkey, rkey, per_node_func, per_kv_func, True)