"""Multi-version timestamp ordering concurrency control over an ordered index."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from txbench.store import IndexResult, LeafNode, OrderedIndex, Version, VersionedValue

_log = logging.getLogger(__name__)


class ReadWriteType(Enum):
    """How a transaction has touched a key."""

    READ = "read"
    UPDATE = "update"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(eq=False)
class ReadWriteEntry:
    """Local state of one key in a transaction's read/write set."""

    read_rec: Any
    write_rec: Any
    rwt: ReadWriteType
    is_new: bool
    val: VersionedValue


class MVTO:
    """One transaction under multi-version timestamp ordering.

    Reads pick the newest version written at or before ``start_ts`` and raise
    its read timestamp; writes are buffered locally and installed as new
    versions by :meth:`precommit`.
    """

    def __init__(
        self,
        txid: Any,
        ts: int,
        smallest_ts: int,
        largest_ts: int,
        index: OrderedIndex,
        new_record: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        self.txid = txid
        self.start_ts = ts
        self.smallest_ts = smallest_ts
        self.largest_ts = largest_ts
        self._index = index
        self._new_record = new_record
        self._tables: set[Any] = set()
        self._rws: dict[Any, dict[int, ReadWriteEntry]] = {}
        self._ws: dict[Any, list[tuple[int, ReadWriteEntry]]] = {}
        _log.debug("START tx ts=%s s_ts=%s l_ts=%s", ts, smallest_ts, largest_ts)

    def set_new_ts(self, start_ts: int, smallest_ts: int, largest_ts: int) -> None:
        self.start_ts = start_ts
        self.smallest_ts = smallest_ts
        self.largest_ts = largest_ts

    # ----------------------------------------------------------------- helpers

    def _fresh_record(self, table_id: Any) -> Any:
        """A new record for ``table_id``: from the factory if given, else an empty dict."""
        if self._new_record is None:
            return {}
        return self._new_record(table_id)

    def _rw_table(self, table_id: Any) -> dict[int, ReadWriteEntry]:
        self._tables.add(table_id)
        return self._rws.setdefault(table_id, {})

    def _add_write(self, table_id: Any, key: int, entry: ReadWriteEntry) -> None:
        self._rw_table(table_id)[key] = entry
        self._ws.setdefault(table_id, []).append((key, entry))

    def _ordered_tables(self) -> list[Any]:
        return sorted(self._tables)

    def _new_value(self, rec: Any) -> VersionedValue:
        version = Version(
            read_ts=self.start_ts, write_ts=self.start_ts, rec=rec, deleted=False, prev=None
        )
        return VersionedValue(version=version)

    def _visible(
        self, table_id: Any, key: int, val: VersionedValue
    ) -> Optional[tuple[Optional[Version], Version]]:
        """Return ``(head, visible_version)`` after stamping its read timestamp, or None."""
        val.lock()
        try:
            if val.is_detached_from_tree():
                return None
            if val.is_empty():
                self._delete_from_tree(table_id, key, val)
                return None
            head = val.version
            version = self._correct_version(val)
            self._gc_version_chain(val)
            if version is None:
                return None
            version.update_readts(self.start_ts)
            return head, version
        finally:
            val.unlock()

    def _correct_version(self, val: VersionedValue) -> Optional[Version]:
        version = val.version
        while version is not None and self.start_ts < version.write_ts:
            version = version.prev
        return version

    def _delete_from_tree(self, table_id: Any, key: int, val: VersionedValue) -> None:
        self._index.remove(table_id, key)
        val.version = None

    def _gc_version_chain(self, val: VersionedValue) -> None:
        version = val.version
        while version is not None and self.smallest_ts < version.write_ts:
            version = version.prev
        if version is not None:
            version.prev = None

    def _promote_read(self, table_id: Any, key: int, entry: ReadWriteEntry) -> Any:
        rec = copy.deepcopy(entry.read_rec)
        entry.write_rec = rec
        entry.rwt = ReadWriteType.UPDATE
        self._ws.setdefault(table_id, []).append((key, entry))
        return rec

    # -------------------------------------------------------------- operations

    def read(self, table_id: Any, key: int) -> Any:
        """Visible record for ``key``, or None when the transaction must abort."""
        _log.debug("READ ts=%s t=%s k=%s", self.start_ts, table_id, key)
        rw_table = self._rw_table(table_id)
        entry = rw_table.get(key)
        if entry is None:
            res, val = self._index.find(table_id, key)
            if res == IndexResult.NOT_FOUND:
                return None
            found = self._visible(table_id, key, val)
            if found is None:
                return None
            _, version = found
            if version.deleted:
                return None
            rw_table[key] = ReadWriteEntry(version.rec, None, ReadWriteType.READ, False, val)
            return version.rec
        if entry.rwt is ReadWriteType.READ:
            return entry.read_rec
        if entry.rwt in (ReadWriteType.UPDATE, ReadWriteType.INSERT):
            return entry.write_rec
        return None

    def insert(self, table_id: Any, key: int) -> Any:
        """Fresh record to fill for a new key, or None when the insert is impossible."""
        _log.debug("INSERT ts=%s t=%s k=%s", self.start_ts, table_id, key)
        entry = self._rw_table(table_id).get(key)
        if entry is None:
            res, val = self._index.find(table_id, key)
            if res == IndexResult.OK:
                found = self._visible(table_id, key, val)
                if found is None:
                    return None
                head, version = found
                if not (head is version and version.deleted):
                    return None
                rec = self._fresh_record(table_id)
                self._add_write(
                    table_id, key, ReadWriteEntry(None, rec, ReadWriteType.INSERT, False, val)
                )
                return rec
            rec = self._fresh_record(table_id)
            self._add_write(
                table_id,
                key,
                ReadWriteEntry(None, rec, ReadWriteType.INSERT, True, self._new_value(rec)),
            )
            return rec
        if entry.rwt is ReadWriteType.DELETE:
            entry.rwt = ReadWriteType.UPDATE
            return entry.write_rec
        return None

    def update(self, table_id: Any, key: int) -> Any:
        """Private copy of the visible record to modify, or None to abort."""
        _log.debug("UPDATE ts=%s t=%s k=%s", self.start_ts, table_id, key)
        entry = self._rw_table(table_id).get(key)
        if entry is None:
            res, val = self._index.find(table_id, key)
            if res == IndexResult.NOT_FOUND:
                return None
            found = self._visible(table_id, key, val)
            if found is None:
                return None
            _, version = found
            if version.deleted:
                return None
            rec = copy.deepcopy(version.rec)
            self._add_write(
                table_id, key, ReadWriteEntry(version.rec, rec, ReadWriteType.UPDATE, False, val)
            )
            return rec
        if entry.rwt is ReadWriteType.READ:
            return self._promote_read(table_id, key, entry)
        if entry.rwt in (ReadWriteType.UPDATE, ReadWriteType.INSERT):
            return entry.write_rec
        return None

    def write(self, table_id: Any, key: int) -> Any:
        """Unconditional write; same as :meth:`upsert`."""
        return self.upsert(table_id, key)

    def upsert(self, table_id: Any, key: int) -> Any:
        """Record to write whether or not ``key`` exists, or None to abort."""
        _log.debug("UPSERT ts=%s t=%s k=%s", self.start_ts, table_id, key)
        entry = self._rw_table(table_id).get(key)
        if entry is None:
            res, val = self._index.find(table_id, key)
            if res == IndexResult.NOT_FOUND:
                rec = self._fresh_record(table_id)
                self._add_write(
                    table_id,
                    key,
                    ReadWriteEntry(None, rec, ReadWriteType.INSERT, True, self._new_value(rec)),
                )
                return rec
            found = self._visible(table_id, key, val)
            if found is None:
                return None
            head, version = found
            if head is version and version.deleted:
                rec = self._fresh_record(table_id)
                self._add_write(
                    table_id, key, ReadWriteEntry(None, rec, ReadWriteType.INSERT, False, val)
                )
                return rec
            if not version.deleted:
                rec = copy.deepcopy(version.rec)
                self._add_write(
                    table_id,
                    key,
                    ReadWriteEntry(version.rec, rec, ReadWriteType.UPDATE, False, val),
                )
                return rec
            return None
        if entry.rwt is ReadWriteType.READ:
            return self._promote_read(table_id, key, entry)
        if entry.rwt in (ReadWriteType.UPDATE, ReadWriteType.INSERT):
            return entry.write_rec
        entry.rwt = ReadWriteType.UPDATE
        return entry.write_rec

    def _scan(
        self,
        table_id: Any,
        lkey: int,
        rkey: int,
        count: int,
        rev: bool,
        visit: Callable[[int, VersionedValue, Optional[ReadWriteEntry]], Any],
    ) -> dict[int, Any]:
        rw_table = self._rw_table(table_id)
        kr_map: dict[int, Any] = {}

        def per_node(leaf: LeafNode, version: int) -> None:
            leaf.update_ts(self.start_ts)

        def per_kv(key: int, val: VersionedValue) -> Optional[bool]:
            rec = visit(key, val, rw_table.get(key))
            if rec is _SKIP:
                return None
            kr_map.setdefault(key, rec)
            if count != -1 and len(kr_map) >= count:
                return False
            return None

        if rev:
            self._index.get_kv_in_rev_range(table_id, lkey, rkey, per_node, per_kv)
        else:
            self._index.get_kv_in_range(table_id, lkey, rkey, per_node, per_kv)
        return dict(sorted(kr_map.items()))

    def read_scan(
        self, table_id: Any, lkey: int, rkey: int, count: int, rev: bool
    ) -> dict[int, Any]:
        """Visible records with keys in ``[lkey, rkey)``, at most ``count`` (-1 for all).

        The result is ordered by key; with ``rev`` the scan starts from the top.
        """
        _log.debug("READ_SCAN ts=%s t=%s [%s, %s) c=%s", self.start_ts, table_id, lkey, rkey, count)
        rw_table = self._rw_table(table_id)

        def visit(key: int, val: VersionedValue, entry: Optional[ReadWriteEntry]) -> Any:
            if entry is None:
                found = self._visible(table_id, key, val)
                if found is None or found[1].deleted:
                    return _SKIP
                version = found[1]
                rw_table[key] = ReadWriteEntry(version.rec, None, ReadWriteType.READ, False, val)
                return version.rec
            if entry.rwt is ReadWriteType.READ:
                return entry.read_rec
            if entry.rwt in (ReadWriteType.UPDATE, ReadWriteType.INSERT):
                return entry.write_rec
            raise RuntimeError("deleted value")

        return self._scan(table_id, lkey, rkey, count, rev, visit)

    def update_scan(
        self, table_id: Any, lkey: int, rkey: int, count: int, rev: bool
    ) -> dict[int, Any]:
        """Like :meth:`read_scan` but returns private copies registered for update."""
        _log.debug(
            "UPDATE_SCAN ts=%s t=%s [%s, %s) c=%s", self.start_ts, table_id, lkey, rkey, count
        )

        def visit(key: int, val: VersionedValue, entry: Optional[ReadWriteEntry]) -> Any:
            if entry is None:
                found = self._visible(table_id, key, val)
                if found is None or found[1].deleted:
                    return _SKIP
                version = found[1]
                rec = copy.deepcopy(version.rec)
                self._add_write(
                    table_id,
                    key,
                    ReadWriteEntry(version.rec, rec, ReadWriteType.UPDATE, False, val),
                )
                return rec
            if entry.rwt is ReadWriteType.READ:
                return self._promote_read(table_id, key, entry)
            if entry.rwt in (ReadWriteType.UPDATE, ReadWriteType.INSERT):
                return entry.write_rec
            raise RuntimeError("deleted value")

        return self._scan(table_id, lkey, rkey, count, rev, visit)

    def remove(self, table_id: Any, key: int) -> Any:
        """Mark ``key`` deleted; returns the record removed, or None to abort."""
        _log.debug("REMOVE ts=%s t=%s k=%s", self.start_ts, table_id, key)
        rw_table = self._rw_table(table_id)
        entry = rw_table.get(key)
        if entry is None:
            res, val = self._index.find(table_id, key)
            if res == IndexResult.NOT_FOUND:
                return None
            found = self._visible(table_id, key, val)
            if found is None:
                return None
            _, version = found
            if version.deleted:
                return None
            self._add_write(
                table_id, key, ReadWriteEntry(version.rec, None, ReadWriteType.DELETE, False, val)
            )
            return version.rec
        if entry.rwt is ReadWriteType.READ:
            entry.rwt = ReadWriteType.DELETE
            self._ws.setdefault(table_id, []).append((key, entry))
            return entry.read_rec
        if entry.rwt is ReadWriteType.UPDATE:
            entry.write_rec = None
            return entry.read_rec
        if entry.rwt is ReadWriteType.INSERT:
            del rw_table[key]
            return None
        raise RuntimeError("invalid state")

    # ------------------------------------------------------------------ commit

    def precommit(self) -> bool:
        """Lock the write set, validate it and install new versions; False on conflict."""
        _log.debug("PRECOMMIT ts=%s", self.start_ts)
        for table_id in self._ordered_tables():
            w_table = self._ws.get(table_id, [])
            w_table.sort(key=lambda item: item[0])
            for key, entry in w_table:
                val = entry.val
                val.lock()
                if val.is_detached_from_tree():
                    return self._fail(table_id, key, True)
                if entry.rwt is ReadWriteType.INSERT and entry.is_new:
                    res, leaf = self._index.insert(table_id, key, val)
                    if res == IndexResult.NOT_INSERTED:
                        return self._fail(table_id, key, True)
                    if res == IndexResult.OK and leaf.get_ts() > self.start_ts:
                        return self._fail(table_id, key, False)
                elif entry.rwt is ReadWriteType.INSERT:
                    head = val.version
                    if (
                        head.read_ts > self.start_ts
                        or head.write_ts > self.start_ts
                        or not head.deleted
                    ):
                        return self._fail(table_id, key, True)
                elif entry.rwt in (ReadWriteType.UPDATE, ReadWriteType.DELETE):
                    head = val.version
                    if (
                        head.read_ts > self.start_ts
                        or head.write_ts > self.start_ts
                        or head.deleted
                    ):
                        return self._fail(table_id, key, True)

        for table_id in self._ordered_tables():
            for _, entry in self._ws.get(table_id, []):
                val = entry.val
                if not entry.is_new:
                    val.version = Version(
                        read_ts=self.start_ts,
                        write_ts=self.start_ts,
                        rec=entry.write_rec,
                        deleted=entry.rwt is ReadWriteType.DELETE,
                        prev=val.version,
                    )
                self._gc_version_chain(val)
                val.unlock()
        return True

    def _fail(self, table_id: Any, key: int, end_exclusive: bool) -> bool:
        self._remove_already_inserted(table_id, key, end_exclusive)
        self._unlock_writeset(table_id, key)
        return False

    def _remove_already_inserted(self, end_table_id: Any, end_key: int, end_exclusive: bool) -> None:
        for table_id in self._ordered_tables():
            for key, entry in self._ws.get(table_id, []):
                at_end = table_id == end_table_id and key == end_key
                if end_exclusive and at_end:
                    return
                if entry.rwt is ReadWriteType.INSERT and entry.is_new:
                    self._index.remove(table_id, key)
                    entry.val.version = None
                if at_end:
                    return

    def _unlock_writeset(self, end_table_id: Any, end_key: int) -> None:
        for table_id in self._ordered_tables():
            for key, entry in self._ws.get(table_id, []):
                entry.val.unlock()
                if table_id == end_table_id and key == end_key:
                    return

    def abort(self) -> None:
        """Discard every buffered read and write."""
        self._rws.clear()
        self._ws.clear()
        self._tables.clear()


_SKIP = object()