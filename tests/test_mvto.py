import pytest

from txbench.mvto import MVTO, ReadWriteType, ReadWriteEntry
from txbench.store import IndexResult, OrderedIndex, Version, VersionedValue

TABLE = 1


def committed(index, key, rec, write_ts=0, table=TABLE):
    val = VersionedValue(Version(read_ts=write_ts, write_ts=write_ts, rec=rec))
    _, leaf = index.insert(table, key, val)
    return val, leaf


def make_tx(index, ts, smallest=0, largest=None):
    return MVTO(ts, ts, smallest, ts if largest is None else largest, index)


def test_read_returns_record_and_raises_read_ts():
    index = OrderedIndex()
    val, _ = committed(index, 7, {"name": "a"})
    tx = make_tx(index, 5)
    assert tx.read(TABLE, 7) == {"name": "a"}
    assert val.version.read_ts == 5


def test_read_missing_key_is_none():
    index = OrderedIndex()
    assert make_tx(index, 5).read(TABLE, 1) is None


def test_read_skips_versions_newer_than_start():
    index = OrderedIndex()
    old = Version(read_ts=2, write_ts=2, rec={"v": "old"})
    new = Version(read_ts=10, write_ts=10, rec={"v": "new"}, prev=old)
    index.insert(TABLE, 1, VersionedValue(new))
    assert make_tx(index, 5).read(TABLE, 1) == {"v": "old"}
    assert make_tx(index, 11).read(TABLE, 1) == {"v": "new"}


def test_read_with_only_future_version_is_none():
    index = OrderedIndex()
    index.insert(TABLE, 1, VersionedValue(Version(read_ts=10, write_ts=10, rec={})))
    assert make_tx(index, 5).read(TABLE, 1) is None


def test_update_is_private_until_commit():
    index = OrderedIndex()
    original = {"qty": 1}
    val, _ = committed(index, 3, original)
    tx = make_tx(index, 5)
    rec = tx.update(TABLE, 3)
    rec["qty"] = 9
    assert original == {"qty": 1}
    assert tx.read(TABLE, 3) is rec
    assert tx.precommit() is True
    assert val.version.rec == {"qty": 9}
    assert val.version.write_ts == 5
    assert val.version.prev.rec == {"qty": 1}
    assert not val._latch.locked()


def test_older_snapshot_sees_previous_version():
    index = OrderedIndex()
    committed(index, 3, {"qty": 1})
    writer = make_tx(index, 5)
    writer.update(TABLE, 3)["qty"] = 2
    assert writer.precommit()
    assert make_tx(index, 4).read(TABLE, 3) == {"qty": 1}
    assert make_tx(index, 6).read(TABLE, 3) == {"qty": 2}


def test_precommit_fails_after_later_read():
    index = OrderedIndex()
    val, _ = committed(index, 3, {"qty": 1})
    writer = make_tx(index, 5)
    writer.update(TABLE, 3)
    assert make_tx(index, 10).read(TABLE, 3) == {"qty": 1}
    assert writer.precommit() is False
    assert val.version.prev is None
    assert not val._latch.locked()


def test_insert_new_key_visible_after_commit():
    index = OrderedIndex()
    tx = make_tx(index, 5)
    rec = tx.insert(TABLE, 3)
    assert rec == {}
    rec["x"] = 1
    assert tx.precommit() is True
    assert make_tx(index, 6).read(TABLE, 3) == {"x": 1}


def test_insert_existing_key_is_none():
    index = OrderedIndex()
    committed(index, 3, {"x": 1})
    assert make_tx(index, 5).insert(TABLE, 3) is None


def test_insert_after_own_read_is_none():
    index = OrderedIndex()
    committed(index, 3, {"x": 1})
    tx = make_tx(index, 5)
    tx.read(TABLE, 3)
    assert tx.insert(TABLE, 3) is None


def test_insert_phantom_detected_by_scan_timestamp():
    index = OrderedIndex()
    inserter = make_tx(index, 5)
    inserter.insert(TABLE, 3)
    assert make_tx(index, 10).read_scan(TABLE, 0, 100, -1, False) == {}
    assert inserter.precommit() is False
    assert index.find(TABLE, 3)[0] == IndexResult.NOT_FOUND


def test_concurrent_inserts_one_wins():
    index = OrderedIndex()
    first = make_tx(index, 5)
    second = make_tx(index, 6)
    first.insert(TABLE, 3)["who"] = "first"
    second.insert(TABLE, 3)["who"] = "second"
    assert second.precommit() is True
    assert first.precommit() is False
    assert make_tx(index, 7).read(TABLE, 3) == {"who": "second"}


def test_remove_then_later_read_is_none():
    index = OrderedIndex()
    val, _ = committed(index, 3, {"x": 1})
    tx = make_tx(index, 5)
    assert tx.remove(TABLE, 3) == {"x": 1}
    assert tx.precommit() is True
    assert val.version.deleted is True
    assert make_tx(index, 6).read(TABLE, 3) is None
    assert make_tx(index, 4).read(TABLE, 3) == {"x": 1}


def test_fully_deleted_value_leaves_index():
    index = OrderedIndex()
    val, _ = committed(index, 3, {"x": 1})
    tx = make_tx(index, 5)
    tx.remove(TABLE, 3)
    assert tx.precommit()
    assert make_tx(index, 6, smallest=6).read(TABLE, 3) is None
    assert make_tx(index, 7, smallest=6).read(TABLE, 3) is None
    assert index.find(TABLE, 3)[0] == IndexResult.NOT_FOUND
    assert val.is_detached_from_tree()


def test_insert_over_deleted_head():
    index = OrderedIndex()
    val, _ = committed(index, 3, {"x": 1})
    remover = make_tx(index, 5)
    remover.remove(TABLE, 3)
    assert remover.precommit()
    inserter = make_tx(index, 7)
    rec = inserter.insert(TABLE, 3)
    rec["x"] = 2
    assert inserter.precommit() is True
    assert val.version.deleted is False
    assert make_tx(index, 8).read(TABLE, 3) == {"x": 2}


def test_upsert_missing_key_inserts():
    index = OrderedIndex()
    tx = make_tx(index, 5)
    tx.upsert(TABLE, 4)["x"] = 4
    assert tx.precommit()
    assert make_tx(index, 6).read(TABLE, 4) == {"x": 4}


def test_write_existing_key_returns_copy():
    index = OrderedIndex()
    original = {"x": 1}
    committed(index, 4, original)
    tx = make_tx(index, 5)
    rec = tx.write(TABLE, 4)
    assert rec == original
    assert rec is not original
    assert tx.write(TABLE, 4) is rec


def test_remove_of_own_insert_drops_it():
    index = OrderedIndex()
    tx = make_tx(index, 5)
    tx.insert(TABLE, 3)
    assert tx.remove(TABLE, 3) is None
    assert tx.read(TABLE, 3) is None


def test_remove_twice_is_invalid():
    index = OrderedIndex()
    committed(index, 3, {"x": 1})
    tx = make_tx(index, 5)
    tx.remove(TABLE, 3)
    with pytest.raises(RuntimeError):
        tx.remove(TABLE, 3)


def test_read_scan_range_count_and_leaf_stamp():
    index = OrderedIndex()
    leaf = None
    for key in range(1, 6):
        _, leaf = committed(index, key, {"k": key})
    tx = make_tx(index, 5)
    assert list(tx.read_scan(TABLE, 2, 5, -1, False)) == [2, 3, 4]
    assert leaf.get_ts() == 5
    other = make_tx(index, 5)
    result = other.read_scan(TABLE, 2, 5, 2, True)
    assert list(result) == [3, 4]
    assert result[4] == {"k": 4}


def test_read_scan_sees_own_writes():
    index = OrderedIndex()
    committed(index, 1, {"k": 1})
    committed(index, 2, {"k": 2})
    tx = make_tx(index, 5)
    rec = tx.update(TABLE, 2)
    rec["k"] = 20
    assert tx.read_scan(TABLE, 0, 10, -1, False) == {1: {"k": 1}, 2: {"k": 20}}


def test_read_scan_over_own_delete_raises():
    index = OrderedIndex()
    committed(index, 1, {"k": 1})
    tx = make_tx(index, 5)
    tx.remove(TABLE, 1)
    with pytest.raises(RuntimeError):
        tx.read_scan(TABLE, 0, 10, -1, False)


def test_update_scan_applies_on_commit():
    index = OrderedIndex()
    vals = [committed(index, key, {"k": key})[0] for key in (1, 2, 3)]
    tx = make_tx(index, 5)
    recs = tx.update_scan(TABLE, 1, 3, -1, False)
    assert list(recs) == [1, 2]
    for rec in recs.values():
        rec["k"] *= 10
    assert vals[0].version.rec == {"k": 1}
    assert tx.precommit()
    assert [v.version.rec for v in vals] == [{"k": 10}, {"k": 20}, {"k": 3}]


def test_abort_discards_local_writes():
    index = OrderedIndex()
    val, _ = committed(index, 3, {"x": 1})
    tx = make_tx(index, 5)
    tx.update(TABLE, 3)["x"] = 2
    tx.abort()
    assert tx.read(TABLE, 3) == {"x": 1}
    assert tx.precommit() is True
    assert val.version.prev is None


def test_set_new_ts_changes_snapshot():
    index = OrderedIndex()
    index.insert(TABLE, 1, VersionedValue(Version(read_ts=10, write_ts=10, rec={"v": 1})))
    tx = make_tx(index, 5)
    assert tx.read(TABLE, 1) is None
    tx.abort()
    tx.set_new_ts(12, 0, 12)
    assert tx.start_ts == 12
    assert tx.read(TABLE, 1) == {"v": 1}


def test_gc_trims_versions_below_smallest_ts():
    index = OrderedIndex()
    v1 = Version(read_ts=1, write_ts=1, rec={"v": 1})
    v2 = Version(read_ts=2, write_ts=2, rec={"v": 2}, prev=v1)
    v3 = Version(read_ts=3, write_ts=3, rec={"v": 3}, prev=v2)
    val = VersionedValue(v3)
    index.insert(TABLE, 1, val)
    assert make_tx(index, 10, smallest=2).read(TABLE, 1) == {"v": 3}
    assert val.version.prev is v2
    assert v2.prev is None


def test_entry_records_access_kind():
    entry = ReadWriteEntry(None, {}, ReadWriteType.INSERT, True, VersionedValue())
    assert entry.rwt is ReadWriteType.INSERT
    assert entry.is_new is True