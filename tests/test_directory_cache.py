"""Tests for the directory-existence LRU cache."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from blobstore.storage.directory_cache import DirectoryExistenceCache


class TestLru:
    """Tests for capacity and eviction order."""

    def test_add_and_contains(self) -> None:
        cache = DirectoryExistenceCache(capacity=2)
        cache.add("/root/a")

        assert cache.contains("/root/a")
        assert "/root/a" in cache
        assert Path("/root/a") in cache
        assert "/root/b" not in cache

    def test_evicts_least_recently_used(self) -> None:
        cache = DirectoryExistenceCache(capacity=2)
        cache.add("/root/a")
        cache.add("/root/b")
        cache.contains("/root/a")
        cache.add("/root/c")

        assert "/root/a" in cache
        assert "/root/b" not in cache
        assert "/root/c" in cache
        assert len(cache) == 2

    def test_readding_refreshes_entry(self) -> None:
        cache = DirectoryExistenceCache(capacity=2)
        cache.add("/root/a")
        cache.add("/root/b")
        cache.add("/root/a")
        cache.add("/root/c")

        assert "/root/a" in cache
        assert "/root/b" not in cache

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_rejects_non_positive_capacity(self, capacity: int) -> None:
        with pytest.raises(ValueError):
            DirectoryExistenceCache(capacity=capacity)

    def test_non_path_membership_is_false(self) -> None:
        cache = DirectoryExistenceCache()
        cache.add("/root/a")

        assert 42 not in cache


class TestInvalidation:
    """Tests for discarding entries."""

    def test_discard_single_entry(self) -> None:
        cache = DirectoryExistenceCache()
        cache.add("/root/g/r")
        cache.discard("/root/g/r")
        cache.discard("/root/missing")

        assert len(cache) == 0

    def test_discard_tree_removes_nested_entries_only(self) -> None:
        cache = DirectoryExistenceCache()
        cache.add("/root/g")
        cache.add("/root/g/r1")
        cache.add("/root/g/r2")
        cache.add("/root/g2/r1")

        removed = cache.discard_tree("/root/g")

        assert removed == 3
        assert "/root/g2/r1" in cache
        assert "/root/g/r1" not in cache

    def test_clear(self) -> None:
        cache = DirectoryExistenceCache()
        cache.add("/root/a")
        cache.clear()

        assert len(cache) == 0


class TestConcurrency:
    """Tests for concurrent access."""

    def test_concurrent_adds_respect_capacity(self) -> None:
        cache = DirectoryExistenceCache(capacity=50)
        errors: list[BaseException] = []

        def worker(thread_id: int) -> None:
            try:
                for i in range(200):
                    directory = f"/root/t{thread_id}/d{i}"
                    cache.add(directory)
                    cache.contains(directory)
                    if i % 7 == 0:
                        cache.discard_tree(f"/root/t{thread_id}")
            except BaseException as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(cache) <= 50
