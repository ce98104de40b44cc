"""Tests for bittersweet/storage.py — backends and the write batcher."""

from bittersweet import BatchedStorage, FileStorage, MemoryStorage


class FlakyStorage(MemoryStorage):
    """Batch writes always fail; single writes fail for one key."""

    def multi_set(self, items):
        raise OSError("disk full")

    def set_item(self, key, value):
        if key == "bad":
            raise OSError("cannot write bad")
        super().set_item(key, value)


def test_memory_storage_counts_batches_once():
    storage = MemoryStorage()
    storage.multi_set([("a", "1"), ("b", "2")])
    storage.set_item("c", "3")
    assert storage.write_count == 2
    assert storage.get_item("a") == "1"
    storage.remove_item("a")
    assert storage.get_item("a") is None


def test_file_storage_round_trip(tmp_path):
    storage = FileStorage(tmp_path / "storage")
    assert storage.get_item("bittersweet-store") is None

    storage.set_item("bittersweet-store", '{"version":3}')
    assert storage.get_item("bittersweet-store") == '{"version":3}'
    assert (tmp_path / "storage" / "bittersweet-store.json").exists()

    storage.set_item("bittersweet-store:backup", "raw")
    assert storage.path_for("bittersweet-store:backup").name == "bittersweet-store%3Abackup.json"

    storage.remove_item("bittersweet-store")
    storage.remove_item("bittersweet-store")
    assert storage.get_item("bittersweet-store") is None


def test_file_storage_leaves_no_temp_files(tmp_path):
    storage = FileStorage(tmp_path)
    storage.multi_set([("a", "1"), ("b", "2")])
    assert sorted(p.name for p in tmp_path.iterdir()) == ["a.json", "b.json"]


def test_batcher_coalesces_writes(scheduler):
    backend = MemoryStorage()
    batched = BatchedStorage(backend, scheduler, window=0.1)
    batched.set_item("k", "1")
    batched.set_item("k", "2")
    batched.set_item("other", "x")

    assert backend.write_count == 0
    assert batched.get_item("k") == "2"
    assert batched.has_pending

    scheduler.advance(0.1)
    assert backend.write_count == 1
    assert backend.data == {"k": "2", "other": "x"}
    assert not batched.has_pending


def test_batcher_window_restarts_on_each_write(scheduler):
    backend = MemoryStorage()
    batched = BatchedStorage(backend, scheduler, window=0.1)
    batched.set_item("k", "1")
    scheduler.advance(0.05)
    batched.set_item("k", "2")
    scheduler.advance(0.06)
    assert backend.write_count == 0
    scheduler.advance(0.05)
    assert backend.write_count == 1
    assert backend.data["k"] == "2"


def test_batcher_falls_back_to_single_writes(scheduler, caplog):
    backend = FlakyStorage()
    batched = BatchedStorage(backend, scheduler)
    batched.set_item("good", "1")
    batched.set_item("bad", "2")
    batched.flush()

    assert backend.data == {"good": "1"}
    assert batched.failed_keys == ["bad"]
    assert "Batch write failed" in caplog.text


def test_flush_without_pending_does_nothing(scheduler):
    backend = MemoryStorage()
    batched = BatchedStorage(backend, scheduler)
    batched.flush()
    assert backend.write_count == 0


def test_remove_drops_pending_value(scheduler):
    backend = MemoryStorage({"k": "old"})
    batched = BatchedStorage(backend, scheduler)
    batched.set_item("k", "new")
    batched.remove_item("k")
    scheduler.advance(1)
    assert backend.get_item("k") is None
    assert backend.write_count == 0
