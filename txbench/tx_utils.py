"""Transaction outcome codes, per-profile statistics and commit/abort bookkeeping."""

from __future__ import annotations

import random
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol

UINT64_MAX = 2**64 - 1
ABORT_DETAILS_SIZE = 20
_WORD = 8


class Status(IntEnum):
    """Outcome of one run of a transaction profile."""

    SUCCESS = 0
    USER_ABORT = 1
    SYSTEM_ABORT = 2
    BUG = 3


class Result(IntEnum):
    """Outcome of a single operation issued through a transaction."""

    SUCCESS = 0
    FAIL = 1
    ABORT = 2


class TxProfileID(IntEnum):
    """The five TPC-C transaction profiles."""

    NEWORDER_TX = 0
    PAYMENT_TX = 1
    ORDERSTATUS_TX = 2
    DELIVERY_TX = 3
    STOCKLEVEL_TX = 4


def _encode(value: Any) -> bytes:
    if isinstance(value, bool):
        return bytes([int(value)])
    if isinstance(value, int):
        return (value & UINT64_MAX).to_bytes(_WORD, "little")
    if isinstance(value, float):
        return struct.pack("<d", value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"cannot feed value of type {type(value).__name__}")


class Output:
    """Checksum sink that folds data into a 64-bit running sum of words."""

    def __init__(self) -> None:
        self._out = 0

    @property
    def value(self) -> int:
        return self._out

    def merge(self, data: bytes | bytearray | memoryview) -> None:
        """Add each little-endian 64-bit word of ``data``; a short tail is zero-padded."""
        raw = bytes(data)
        for start in range(0, len(raw), _WORD):
            word = int.from_bytes(raw[start : start + _WORD], "little")
            self._out = (self._out + word) & UINT64_MAX

    def feed(self, *args: Any) -> "Output":
        """Merge the binary form of every argument and return self for chaining."""
        for arg in args:
            self.merge(_encode(arg))
        return self

    def invalidate(self) -> None:
        self._out = 0


@dataclass
class PerTxType:
    """Counters and latency figures for one transaction profile."""

    num_commits: int = 0
    num_usr_aborts: int = 0
    num_sys_aborts: int = 0
    abort_details: list[int] = field(default_factory=lambda: [0] * ABORT_DETAILS_SIZE)
    total_latency: int = 0
    min_latency: int = UINT64_MAX
    max_latency: int = 0

    def add(self, rhs: "PerTxType", with_abort_details: bool) -> None:
        self.num_commits += rhs.num_commits
        self.num_usr_aborts += rhs.num_usr_aborts
        self.num_sys_aborts += rhs.num_sys_aborts
        if with_abort_details:
            self.abort_details = [a + b for a, b in zip(self.abort_details, rhs.abort_details)]
        self.total_latency += rhs.total_latency
        self.min_latency = min(self.min_latency, rhs.min_latency)
        self.max_latency = max(self.max_latency, rhs.max_latency)


class Stat:
    """Statistics for every transaction profile."""

    def __init__(self) -> None:
        self._per_type = {profile: PerTxType() for profile in TxProfileID}

    def __getitem__(self, tx_type: TxProfileID | int) -> PerTxType:
        return self._per_type[TxProfileID(tx_type)]

    def add(self, rhs: "Stat") -> None:
        for profile, per_type in self._per_type.items():
            per_type.add(rhs[profile], True)

    def aggregate_perf(self) -> PerTxType:
        """Totals over all profiles, without abort details."""
        total = PerTxType()
        for per_type in self._per_type.values():
            total.add(per_type, False)
        return total


@dataclass
class ThreadLocalData:
    """Statistics and checksum owned by one worker thread."""

    stat: Stat = field(default_factory=Stat)
    out: Output = field(default_factory=Output)


class _Committable(Protocol):
    def commit(self) -> bool: ...

    def abort(self) -> None: ...


class TxHelper:
    """Turns operation results into statuses while updating the profile's counters."""

    def __init__(self, tx: _Committable, per_type: PerTxType) -> None:
        self.tx = tx
        self.per_type = per_type

    def kill(self, res: Result, abort_id: int) -> Status:
        if res == Result.FAIL:
            return Status.BUG
        if res == Result.ABORT:
            self.per_type.num_sys_aborts += 1
            self.per_type.abort_details[abort_id] += 1
            return Status.SYSTEM_ABORT
        raise ValueError(f"wrong transaction result: {res!r}")

    def commit(self, abort_id: int, time: int) -> Status:
        if self.tx.commit():
            self.per_type.total_latency += time
            self.per_type.min_latency = min(self.per_type.min_latency, time)
            self.per_type.max_latency = max(self.per_type.max_latency, time)
            self.per_type.num_commits += 1
            return Status.SUCCESS
        self.per_type.num_sys_aborts += 1
        self.per_type.abort_details[abort_id] += 1
        return Status.SYSTEM_ABORT

    def usr_abort(self) -> Status:
        self.per_type.num_usr_aborts += 1
        return Status.USER_ABORT


def not_succeeded(
    tx: _Committable, res: Result, random_abort: bool = False, rng: Any = None
) -> tuple[bool, Result]:
    """Check an operation result, optionally injecting a 1% random abort.

    Aborts ``tx`` when the effective result is ABORT and returns
    ``(failed, effective_result)``.
    """
    source = random if rng is None else rng
    if random_abort and res == Result.SUCCESS and source.randint(1, 100) == 1:
        res = Result.ABORT
    if res == Result.ABORT:
        tx.abort()
    return res != Result.SUCCESS, res