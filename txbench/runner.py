"""Workload mix, retry loop, multi-threaded driver and report of a TPC-C run."""

from __future__ import annotations

import math
import random
import threading
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from txbench.tx_utils import Stat, Status, ThreadLocalData, TxProfileID

# Upper bounds, in percent, of each profile's slice of the 1..100 draw.
_MIX = (
    (4, TxProfileID.STOCKLEVEL_TX),
    (8, TxProfileID.DELIVERY_TX),
    (12, TxProfileID.ORDERSTATUS_TX),
    (12 + 43, TxProfileID.PAYMENT_TX),
    (100, TxProfileID.NEWORDER_TX),
)


class _Abortable(Protocol):
    def abort(self) -> None: ...


def select_profile(x: int) -> TxProfileID:
    """Profile chosen by a uniform draw ``x`` in 1..100 of the standard mix."""
    if not 1 <= x <= 100:
        raise ValueError(f"draw must lie in 1..100: {x}")
    for bound, profile in _MIX:
        if x <= bound:
            return profile
    raise AssertionError("unreachable")


def pick_warehouse(
    thread_id: int, num_warehouses: int, fixed_warehouse: bool, rng: Any = None
) -> int:
    """Home warehouse for a transaction: fixed per thread, or uniformly random."""
    if num_warehouses < 1:
        raise ValueError(f"need at least one warehouse: {num_warehouses}")
    if fixed_warehouse:
        return thread_id % num_warehouses + 1
    source = random if rng is None else rng
    return source.randint(1, num_warehouses)


def run_with_retry(tx: _Abortable, attempt: Callable[[_Abortable], Status]) -> bool:
    """Run ``attempt`` until it commits or the user aborts.

    System aborts are retried; a user abort aborts ``tx`` and gives False.
    """
    while True:
        res = attempt(tx)
        if res == Status.SUCCESS:
            return True
        if res == Status.USER_ABORT:
            tx.abort()
            return False
        if res == Status.SYSTEM_ABORT:
            continue
        if res == Status.BUG:
            raise RuntimeError("unexpected transaction bug")
        raise ValueError(f"unknown transaction status: {res!r}")


def run_workers(
    num_threads: int,
    seconds: float,
    worker: Callable[[int, ThreadLocalData], Any],
) -> list[ThreadLocalData]:
    """Call ``worker(thread_id, data)`` repeatedly on every thread for ``seconds``.

    Returns each thread's data in thread order.  An exception in a worker
    stops the run and is raised again once all threads have finished.
    """
    if seconds <= 0:
        raise ValueError(f"seconds must be positive: {seconds}")
    if num_threads < 0:
        raise ValueError(f"thread count must not be negative: {num_threads}")

    stop = threading.Event()
    t_data = [ThreadLocalData() for _ in range(num_threads)]
    errors: list[BaseException] = []
    errors_latch = threading.Lock()

    def loop(thread_id: int) -> None:
        data = t_data[thread_id]
        try:
            while not stop.is_set():
                worker(thread_id, data)
        except BaseException as exc:  # noqa: BLE001 - re-raised in the caller
            with errors_latch:
                errors.append(exc)
            stop.set()

    threads = [threading.Thread(target=loop, args=(i,), daemon=True) for i in range(num_threads)]
    for thread in threads:
        thread.start()
    stop.wait(seconds)
    stop.set()
    for thread in threads:
        thread.join()

    if errors:
        raise errors[0]
    return t_data


def _div(a: float, b: float) -> float:
    if b:
        return a / b
    if a == 0:
        return math.nan
    return math.inf if a > 0 else -math.inf


def format_report(
    stat: Stat,
    num_warehouses: int,
    num_threads: int,
    seconds: int,
    profile_names: Mapping[TxProfileID, str],
    abort_reasons: Mapping[TxProfileID, Sequence[str]],
) -> str:
    """Summary, per-profile details and system abort breakdown of a run."""
    if seconds <= 0:
        raise ValueError(f"seconds must be positive: {seconds}")
    total = stat.aggregate_perf()
    lines = [
        f"{num_warehouses} warehouse(s), {num_threads} thread(s), {seconds} second(s)",
        f"    commits: {total.num_commits}",
        f"    usr_aborts: {total.num_usr_aborts}",
        f"    sys_aborts: {total.num_sys_aborts}",
        f"Throughput: {total.num_commits // seconds} txns/s",
        "",
        "Details:",
    ]
    for profile in TxProfileID:
        p = stat[profile]
        tries = p.num_commits + p.num_usr_aborts + p.num_sys_aborts
        lines.append(
            "    %-11s c[%.2f%%]:%10d(%.2f%%)   ua:%10d(%.2f%%)  sa:%10d(%.2f%%)"
            "  avgl:%10.0f  minl:%10d  maxl:%10d"
            % (
                profile_names[profile],
                _div(p.num_commits, total.num_commits),
                p.num_commits,
                _div(p.num_commits, tries),
                p.num_usr_aborts,
                _div(p.num_usr_aborts, tries),
                p.num_sys_aborts,
                _div(p.num_sys_aborts, tries),
                _div(p.total_latency, p.num_commits),
                p.min_latency,
                p.max_latency,
            )
        )
    lines.append("")
    lines.append("System Abort Details:")
    for profile in TxProfileID:
        lines.append("    %-11s" % profile_names[profile])
        details = stat[profile].abort_details
        for abort_id, reason in enumerate(abort_reasons.get(profile, ())):
            lines.append("        %-45s: %d" % (reason, details[abort_id]))
    return "\n".join(lines) + "\n"