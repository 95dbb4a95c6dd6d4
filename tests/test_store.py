"""Unit tests for chunk stores."""

from __future__ import annotations

import json
import threading

import pytest

from chunkget.errors import CacheDirectoryError, ChunkConflictError, StoreGapError
from chunkget.models import DownloadConfig
from chunkget.store import METADATA_NAME, DiskChunkStore, InMemoryChunkStore, create_store


@pytest.fixture(params=["memory", "disk"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryChunkStore()
    return DiskChunkStore(tmp_path, "movie.mp4-abc", "v1", chunk_size=4)


class TestChunkStoreContract:
    """Behaviour shared by both store variants."""

    def test_fresh_store_is_empty(self, store):
        assert store.first_gap() == 0
        assert len(store) == 0
        assert store.get(0) is None
        assert list(store.all_chunks()) == []

    def test_put_then_get(self, store):
        store.put(0, b"abcd")
        assert store.get(0) == b"abcd"
        assert 0 in store
        assert 1 not in store

    def test_put_identical_bytes_is_noop(self, store):
        store.put(2, b"wxyz")
        store.put(2, b"wxyz")
        assert store.get(2) == b"wxyz"
        assert len(store) == 1

    def test_put_conflicting_bytes_raises(self, store):
        store.put(1, b"aaaa")
        with pytest.raises(ChunkConflictError) as excinfo:
            store.put(1, b"bbbb")
        assert excinfo.value.index == 1
        assert store.get(1) == b"aaaa"

    def test_negative_index_rejected(self, store):
        with pytest.raises(ValueError):
            store.put(-1, b"x")

    def test_first_gap_after_contiguous_prefix(self, store):
        for index in range(5):
            store.put(index, bytes([index]) * 4)
        assert store.first_gap() == 5

    def test_first_gap_with_hole(self, store):
        store.put(0, b"aaaa")
        store.put(2, b"cccc")
        assert store.first_gap() == 1

    def test_all_chunks_in_index_order_regardless_of_write_order(self, store):
        for index in (3, 0, 2, 1):
            store.put(index, bytes([index]) * 4)
        assert list(store.all_chunks()) == [bytes([i]) * 4 for i in range(4)]

    def test_all_chunks_with_gap_raises(self, store):
        store.put(0, b"aaaa")
        store.put(2, b"cccc")
        with pytest.raises(StoreGapError) as excinfo:
            list(store.all_chunks())
        assert excinfo.value.missing == 1

    def test_clear(self, store):
        store.put(0, b"aaaa")
        store.clear()
        assert len(store) == 0
        assert store.get(0) is None

    def test_concurrent_puts_for_distinct_indices(self, store):
        threads = [threading.Thread(target=store.put, args=(i, bytes([i]) * 4)) for i in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert store.first_gap() == 16
        assert len(list(store.all_chunks())) == 16


class TestDiskChunkStore:
    """Persistence and validator isolation of the disk store."""

    def test_reopen_with_same_validator_resumes(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        for index in range(5):
            store.put(index, b"data")

        reopened = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        assert reopened.first_gap() == 5
        assert reopened.get(3) == b"data"

    def test_reopen_with_other_validator_discards_chunks(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "A", chunk_size=4)
        store.put(0, b"old!")
        store.put(1, b"old!")

        reopened = DiskChunkStore(tmp_path, "res", "B", chunk_size=4)
        assert reopened.first_gap() == 0
        assert reopened.get(0) is None
        assert len(reopened) == 0
        metadata = json.loads((tmp_path / "res" / METADATA_NAME).read_text())
        assert metadata["validator"] == "B"

    def test_reopen_with_other_chunk_size_discards_chunks(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        store.put(0, b"abcd")

        reopened = DiskChunkStore(tmp_path, "res", "v1", chunk_size=8)
        assert len(reopened) == 0

    def test_corrupt_metadata_starts_fresh(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        store.put(0, b"abcd")
        (tmp_path / "res" / METADATA_NAME).write_text("{not json")

        reopened = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        assert len(reopened) == 0

    def test_stray_temporary_files_removed(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        store.put(0, b"abcd")
        stray = tmp_path / "res" / "tmp1234.tmp"
        stray.write_bytes(b"half")

        reopened = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        assert not stray.exists()
        assert reopened.indices() == {0}

    def test_chunk_written_before_put_returns(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        store.put(7, b"wxyz")
        assert (tmp_path / "res" / "7.chunk").read_bytes() == b"wxyz"

    def test_clear_removes_directory(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        store.put(0, b"abcd")
        store.clear()
        assert not (tmp_path / "res").exists()

    def test_resource_path_taken_by_file(self, tmp_path):
        (tmp_path / "res").write_text("x")
        with pytest.raises(CacheDirectoryError):
            DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)

    def test_size_and_discard(self, tmp_path):
        store = DiskChunkStore(tmp_path, "res", "v1", chunk_size=4)
        store.put(0, b"abcd")
        store.put(1, b"ab")
        assert store.size(1) == 2
        assert store.size(5) is None

        store.discard(1)

        assert 1 not in store
        assert not (tmp_path / "res" / "1.chunk").exists()
        assert DiskChunkStore(tmp_path, "res", "v1", chunk_size=4).indices() == {0}


class TestCreateStore:
    """Store selection from configuration."""

    def test_no_resume_uses_memory_even_with_cache_present(self, tmp_path):
        config = DownloadConfig(resume=False, cache_dir=tmp_path, chunk_size=4)
        cached = create_store(DownloadConfig(cache_dir=tmp_path, chunk_size=4),
                              "https://example.org/file.bin", "v1")
        cached.put(0, b"abcd")

        store = create_store(config, "https://example.org/file.bin", "v1")
        assert isinstance(store, InMemoryChunkStore)
        assert store.first_gap() == 0

    def test_resume_uses_disk_store_keyed_by_url(self, tmp_path):
        config = DownloadConfig(cache_dir=tmp_path, chunk_size=4)
        first = create_store(config, "https://example.org/a/file.bin", "v1")
        second = create_store(config, "https://example.org/b/file.bin", "v1")
        assert isinstance(first, DiskChunkStore)
        assert first.directory != second.directory
        assert first.directory.name.startswith("file.bin-")

    def test_unusable_cache_dir(self, tmp_path):
        not_a_dir = tmp_path / "blocker"
        not_a_dir.write_text("x")
        config = DownloadConfig(cache_dir=not_a_dir / "cache")
        with pytest.raises(CacheDirectoryError):
            create_store(config, "https://example.org/file.bin", "v1")
