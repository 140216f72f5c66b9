"""Benchmark-facing transaction wrapper over a concurrency-control protocol."""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

from txbench.tx_utils import Result

RecordFunc = Callable[[Any], Any]


class _Protocol(Protocol):
    def read(self, table_id: Any, key: int) -> Any: ...

    def insert(self, table_id: Any, key: int) -> Any: ...

    def update(self, table_id: Any, key: int) -> Any: ...

    def write(self, table_id: Any, key: int) -> Any: ...

    def remove(self, table_id: Any, key: int) -> Any: ...

    def read_scan(
        self, table_id: Any, lkey: int, rkey: int, count: int, rev: bool
    ) -> Optional[dict[int, Any]]: ...

    def update_scan(
        self, table_id: Any, lkey: int, rkey: int, count: int, rev: bool
    ) -> Optional[dict[int, Any]]: ...

    def precommit(self) -> bool: ...

    def abort(self) -> None: ...


def _outcome(rec: Any) -> tuple[Result, Any]:
    return (Result.ABORT, None) if rec is None else (Result.SUCCESS, rec)


class Transaction:
    """Issues record operations through a protocol and maps them to results.

    Every record operation returns ``(result, record)``; a protocol answer
    of None means the transaction has to abort.

    ``renew_ts``, when given, supplies ``(start_ts, smallest_ts, largest_ts)``
    handed to the protocol after every abort, as timestamp-ordered protocols
    retry with a boosted timestamp.  ``history`` is the append-only table
    that keyless inserts go to.
    """

    def __init__(
        self,
        protocol: _Protocol,
        thread_id: int = 0,
        renew_ts: Optional[Callable[[], tuple[int, int, int]]] = None,
        history: Optional[list] = None,
    ) -> None:
        self.thread_id = thread_id
        self.protocol = protocol
        self._renew_ts = renew_ts
        self.history: list = [] if history is None else history

    def abort(self) -> None:
        self.protocol.abort()
        if self._renew_ts is not None:
            self.protocol.set_new_ts(*self._renew_ts())

    def commit(self) -> bool:
        """Try to commit; on failure the transaction is aborted and False returned."""
        if self.protocol.precommit():
            return True
        self.abort()
        return False

    def get_record(self, table_id: Any, key: int) -> tuple[Result, Any]:
        """Read-only access; use :meth:`prepare_record_for_update` to modify."""
        return _outcome(self.protocol.read(table_id, key))

    def prepare_record_for_insert(self, table_id: Any, key: Optional[int]) -> tuple[Result, Any]:
        """Record to fill for a new key; with ``key`` None a row is appended to the history."""
        if key is None:
            rec: dict = {}
            self.history.append(rec)
            return Result.SUCCESS, rec
        return _outcome(self.protocol.insert(table_id, key))

    def finish_insert(self, record: Any) -> Result:
        return Result.SUCCESS

    def prepare_record_for_update(self, table_id: Any, key: int) -> tuple[Result, Any]:
        """Private copy of the record to modify in place."""
        return _outcome(self.protocol.update(table_id, key))

    def finish_update(self, record: Any) -> Result:
        return Result.SUCCESS

    def prepare_record_for_write(self, table_id: Any, key: int) -> tuple[Result, Any]:
        """Unconditional write; the key is not placed in the read set."""
        return _outcome(self.protocol.write(table_id, key))

    def finish_write(self, record: Any) -> Result:
        return Result.SUCCESS

    def prepare_record_for_delete(self, table_id: Any, key: int) -> tuple[Result, Any]:
        return _outcome(self.protocol.remove(table_id, key))

    def finish_delete(self, record: Any) -> Result:
        return Result.SUCCESS

    def range_query(self, table_id: Any, low: int, up: int, func: RecordFunc) -> Result:
        """Call ``func`` on every record with a key in ``[low, up)``, in key order."""
        kr_map = self.protocol.read_scan(table_id, low, up, -1, False)
        if kr_map is None:
            return Result.ABORT
        for rec in kr_map.values():
            func(rec)
        return Result.SUCCESS

    def range_update(self, table_id: Any, low: int, up: int, func: RecordFunc) -> Result:
        """Call ``func`` on a writable copy of every record with a key in ``[low, up)``."""
        kr_map = self.protocol.update_scan(table_id, low, up, -1, False)
        if kr_map is None:
            return Result.ABORT
        for rec in kr_map.values():
            func(rec)
            res = self.finish_update(rec)
            if res != Result.SUCCESS:
                return res
        return Result.SUCCESS