# txbench

`txbench` is a small library of building blocks for TPC-C style transaction
benchmarks over an in-memory store: outcome codes and per-type statistics, a
multi-version timestamp-ordering (MVTO) protocol over an ordered index, a
record-level `Transaction` interface, a retry loop, a timed multi-threaded
driver and a text report.

## Modules

- `txbench.tx_utils`
  - `Status` (`SUCCESS`, `USER_ABORT`, `SYSTEM_ABORT`, `BUG`) – outcome of one
    run of a transaction profile.
  - `Result` (`SUCCESS`, `FAIL`, `ABORT`) – outcome of one record operation.
  - `TxProfileID` – the five TPC-C profiles.
  - `Output` – a checksum sink. `merge(data)` adds every little-endian 64-bit
    word of `data` (a short tail is zero-padded) to a running sum modulo
    2**64; `feed(*args)` merges ints (as 8 bytes), floats (as doubles), bools
    (one byte), strings (UTF-8) and bytes, and returns the sink for chaining;
    `invalidate()` resets it; `value` reads it.
  - `PerTxType` – commits, user aborts, system aborts, 20 abort-detail
    counters and total/min/max latency; `add(rhs, with_abort_details)`.
  - `Stat` – one `PerTxType` per profile, indexed by `TxProfileID`;
    `add(rhs)` merges another `Stat`, `aggregate_perf()` totals all profiles
    without abort details.
  - `ThreadLocalData` – a `Stat` and an `Output` for one worker.
  - `TxHelper` – `kill(res, abort_id)` turns `FAIL` into `BUG` and `ABORT`
    into a counted `SYSTEM_ABORT` (any other result raises `ValueError`);
    `commit(abort_id, time)` records latency on success or counts a system
    abort; `usr_abort()` counts a user abort.
  - `not_succeeded(tx, res, random_abort=False, rng=None)` – optionally turns
    a success into an abort with 1% probability, aborts `tx` on `ABORT`, and
    returns `(failed, effective_result)`.
- `txbench.tidword`
  - `TidWord` – an immutable 64-bit word with `lock`, `latest`, `absent`
    (one bit each), `tid` (29 bits) and `epoch` (32 bits);
    `replace(**fields)` returns a modified copy and rejects unknown names or
    values that do not fit.
  - `SiloValue` – a `TidWord`, a record and a transaction id.
- `txbench.payment`
  - `PaymentAbortID` and `abort_reason(abort_id)` – the stages of Payment at
    which a system abort can happen, and their names.
  - `format_customer_data(...)` – prepends a payment entry to a customer's
    data, cut to `max_data` characters.
  - `format_history_data(w_name, d_name)` – the history data text.
- `txbench.store`
  - `Version` – one record version (`read_ts`, `write_ts`, `rec`, `deleted`,
    `prev`); `update_readts(ts)` only ever raises the read timestamp.
  - `VersionedValue` – head of a version chain with a latch (`lock`,
    `unlock`, `is_detached_from_tree`, `is_empty`).
  - `LeafNode` – carries the largest scan timestamp of its table
    (`update_ts`, `get_ts`).
  - `IndexResult` and `OrderedIndex` – one sorted map per table with
    `find`, `insert` (returns the result and the table's leaf), `remove`,
    and `get_kv_in_range` / `get_kv_in_rev_range` over `[lkey, rkey)`; a
    callback returning `False` stops the scan.
- `txbench.mvto`
  - `MVTO(txid, ts, smallest_ts, largest_ts, index, new_record=None)` – one
    transaction. `read`, `insert`, `update`, `write`/`upsert`, `remove`,
    `read_scan` and `update_scan` return records (or a key-ordered dict for
    scans) and `None` where the transaction has to abort. Writes are
    buffered as `ReadWriteEntry` items tagged with `ReadWriteType`;
    `precommit()` locks the write set in key order, validates timestamps,
    checks for phantoms on new inserts and installs new versions, returning
    `False` on conflict; `abort()` drops the buffered work. New records come
    from `new_record(table_id)` or are empty dicts; updates work on deep
    copies.
- `txbench.transaction`
  - `Transaction(protocol, thread_id=0, renew_ts=None, history=None)` – every
    record operation returns `(Result, record)`. `commit()` aborts and
    returns `False` when precommit fails; `abort()` also hands the protocol
    fresh timestamps from `renew_ts` when given.
    `prepare_record_for_insert(table_id, None)` appends a row to `history`.
    `range_query` and `range_update` call a function on every record in
    `[low, up)`.
- `txbench.runner`
  - `select_profile(x)` – maps a draw 1..100 onto the mix below.
  - `pick_warehouse(thread_id, num_warehouses, fixed_warehouse, rng=None)`.
  - `run_with_retry(tx, attempt)` – repeats after system aborts, aborts `tx`
    and returns `False` on a user abort, raises `RuntimeError` on `BUG`.
  - `run_workers(num_threads, seconds, worker)` – calls
    `worker(thread_id, data)` in a loop on each thread for `seconds`, then
    returns every thread's `ThreadLocalData`; a worker's exception is raised
    again after all threads stop.
  - `format_report(stat, num_warehouses, num_threads, seconds, profile_names,
    abort_reasons)` – totals, throughput, a line per profile and the
    system-abort count for every abort reason.

## Transaction mix

| draw     | profile        |
|----------|----------------|
| 1 – 4    | STOCKLEVEL_TX  |
| 5 – 8    | DELIVERY_TX    |
| 9 – 12   | ORDERSTATUS_TX |
| 13 – 55  | PAYMENT_TX     |
| 56 – 100 | NEWORDER_TX    |

## Example

```python
from txbench.mvto import MVTO
from txbench.store import OrderedIndex
from txbench.transaction import Transaction

index = OrderedIndex()

loader = Transaction(MVTO(1, 1, 0, 1, index))
res, rec = loader.prepare_record_for_insert("warehouse", 1)
rec["w_ytd"] = 0.0
assert loader.commit()

tx = Transaction(MVTO(2, 2, 1, 2, index))
res, w = tx.prepare_record_for_update("warehouse", 1)
w["w_ytd"] += 10.0
assert tx.commit()

reader = Transaction(MVTO(3, 3, 2, 3, index))
print(reader.get_record("warehouse", 1))  # (<Result.SUCCESS: 0>, {'w_ytd': 10.0})
```

## What the package does not do

- It has no command-line program; a benchmark run is assembled from
  `run_workers`, `run_with_retry` and `format_report`.
- It does not generate or load the TPC-C tables, and apart from the Payment
  abort stages and text helpers it contains no transaction profiles.
- MVTO is the only concurrency-control protocol; `TidWord` and `SiloValue`
  are data types only, with no protocol built on them.
- All data lives in memory; nothing is persisted.