"""Packed 64-bit transaction id word and the value cell that carries it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_UINT64_MAX = 2**64 - 1

# name -> (bit offset, bit width)
_FIELDS = {
    "lock": (0, 1),
    "latest": (1, 1),
    "absent": (2, 1),
    "tid": (3, 29),
    "epoch": (32, 32),
}


@dataclass(frozen=True)
class TidWord:
    """Immutable view of a word holding lock, latest, absent, tid and epoch."""

    obj: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.obj <= _UINT64_MAX:
            raise ValueError(f"tid word out of range: {self.obj}")

    def _field(self, name: str) -> int:
        offset, width = _FIELDS[name]
        return (self.obj >> offset) & ((1 << width) - 1)

    @property
    def lock(self) -> bool:
        return bool(self._field("lock"))

    @property
    def latest(self) -> bool:
        return bool(self._field("latest"))

    @property
    def absent(self) -> bool:
        return bool(self._field("absent"))

    @property
    def tid(self) -> int:
        return self._field("tid")

    @property
    def epoch(self) -> int:
        return self._field("epoch")

    def replace(self, **kwargs: Any) -> "TidWord":
        """Return a copy with the named fields set."""
        unknown = set(kwargs) - set(_FIELDS)
        if unknown:
            raise TypeError(f"unknown tid word fields: {', '.join(sorted(unknown))}")
        obj = self.obj
        for name, value in kwargs.items():
            offset, width = _FIELDS[name]
            number = int(value)
            if not 0 <= number < (1 << width):
                raise ValueError(f"{name} does not fit in {width} bit(s): {value}")
            mask = ((1 << width) - 1) << offset
            obj = (obj & ~mask) | (number << offset)
        return TidWord(obj)


@dataclass
class SiloValue:
    """Index value: a tid word plus the record it guards."""

    tidword: TidWord = field(default_factory=TidWord)
    rec: Any = None
    txid: Any = None