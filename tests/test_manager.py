"""
Tests for Ledger Manager
========================

Tests for manager.py - the per-path store cache and its locking.
"""

import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from ledger.errors import StorageError
from ledger.manager import LedgerManager, ReadWriteLock
from ledger.store import LedgerStore


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_home():
    """Create a temporary ledger home directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def manager(temp_home):
    """Create a LedgerManager for testing."""
    m = LedgerManager(base_dir=temp_home)
    yield m
    m.close_all()


class FailingStore:
    """Stand-in store whose close() fails."""

    def __init__(self):
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        raise StorageError("close store", "failing")


# =============================================================================
# Cache Tests
# =============================================================================

class TestGetStore:
    """Tests for get_store caching."""

    def test_same_path_same_store(self, manager):
        first = manager.get_store("/work/repos/app")
        second = manager.get_store("/work/repos/app")

        assert first is second
        assert isinstance(first, LedgerStore)
        assert manager.cached_paths() == ["/work/repos/app"]

    def test_distinct_paths_distinct_stores(self, manager, temp_home):
        app = manager.get_store("/work/repos/app")
        api = manager.get_store("/work/repos/api")

        assert app is not api
        assert app.db_path != api.db_path
        assert app.db_path == temp_home / "repos-app" / "ledger.db"
        assert api.db_path == temp_home / "repos-api" / "ledger.db"

    def test_accepts_path_objects(self, manager):
        assert manager.get_store(Path("/work/repos/app")) is manager.get_store("/work/repos/app")

    def test_concurrent_first_requests_open_once(self, temp_home):
        calls = []
        calls_lock = threading.Lock()

        def factory(path, base_dir):
            with calls_lock:
                calls.append(path)
            time.sleep(0.05)
            return LedgerStore(path, base_dir)

        manager = LedgerManager(base_dir=temp_home, store_factory=factory)
        barrier = threading.Barrier(8)

        def request(_):
            barrier.wait()
            return manager.get_store("/work/repos/app")

        try:
            with ThreadPoolExecutor(max_workers=8) as pool:
                stores = list(pool.map(request, range(8)))
        finally:
            manager.close_all()

        assert calls == ["/work/repos/app"]
        assert all(s is stores[0] for s in stores)

    def test_open_failure_is_not_cached(self, temp_home):
        def factory(path, base_dir):
            raise StorageError("create project directory", path, "permission denied")

        manager = LedgerManager(base_dir=temp_home, store_factory=factory)

        with pytest.raises(StorageError) as exc_info:
            manager.get_store("/work/repos/app")
        assert exc_info.value.operation == "open ledger store"
        assert manager.cached_paths() == []

    def test_os_error_becomes_storage_error(self, temp_home):
        def factory(path, base_dir):
            raise PermissionError("read-only filesystem")

        manager = LedgerManager(base_dir=temp_home, store_factory=factory)

        with pytest.raises(StorageError):
            manager.get_store("/work/repos/app")


# =============================================================================
# Close Tests
# =============================================================================

class TestClose:
    """Tests for close_store and close_all."""

    def test_close_store_evicts(self, manager):
        store = manager.get_store("/work/repos/app")

        manager.close_store("/work/repos/app")

        assert store.closed
        assert manager.cached_paths() == []
        reopened = manager.get_store("/work/repos/app")
        assert reopened is not store
        assert reopened.project_id == store.project_id

    def test_close_store_unknown_path_is_noop(self, manager):
        manager.close_store("/never/opened")

    def test_close_all(self, manager):
        app = manager.get_store("/work/repos/app")
        api = manager.get_store("/work/repos/api")

        manager.close_all()

        assert app.closed and api.closed
        assert manager.cached_paths() == []

    def test_close_all_continues_past_failures(self, temp_home):
        failing = FailingStore()
        real = []

        def factory(path, base_dir):
            if path == "/bad":
                return failing
            store = LedgerStore(path, base_dir)
            real.append(store)
            return store

        manager = LedgerManager(base_dir=temp_home, store_factory=factory)
        manager.get_store("/bad")
        manager.get_store("/work/repos/app")

        with pytest.raises(StorageError) as exc_info:
            manager.close_all()

        assert isinstance(exc_info.value.__cause__, StorageError)
        assert failing.close_calls == 1
        assert real[0].closed
        assert manager.cached_paths() == []


# =============================================================================
# Initialization Check Tests
# =============================================================================

class TestIsInitialized:
    """Tests for is_initialized."""

    def test_reflects_database_on_disk(self, manager):
        assert manager.is_initialized("/work/repos/app") is False

        manager.get_store("/work/repos/app")
        assert manager.is_initialized("/work/repos/app") is True

        manager.close_all()
        assert manager.is_initialized("/work/repos/app") is True

    def test_does_not_open_store(self, manager):
        manager.is_initialized("/work/repos/app")
        assert manager.cached_paths() == []

    def test_colliding_path_counts_as_initialized(self, manager):
        manager.get_store("/a/repos/app")
        assert manager.is_initialized("/b/repos/app") is True


# =============================================================================
# ReadWriteLock Tests
# =============================================================================

class TestReadWriteLock:
    """Tests for the shared/exclusive lock."""

    def test_readers_share(self):
        lock = ReadWriteLock()
        both_inside = threading.Barrier(2, timeout=2)

        def reader():
            with lock.read_locked():
                both_inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert not both_inside.broken

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []
        lock.acquire_write()

        def reader():
            with lock.read_locked():
                events.append("read")

        t = threading.Thread(target=reader)
        t.start()
        time.sleep(0.05)
        events.append("write done")
        lock.release_write()
        t.join(timeout=5)

        assert events == ["write done", "read"]
