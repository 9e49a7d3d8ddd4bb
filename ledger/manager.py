"""
Ledger Manager
==============

Keeps one open LedgerStore per project path and hands it out to any number
of threads.

The manager is an ordinary object: create one at startup, pass it to
whatever needs stores, and call close_all() on shutdown.

Usage:
    manager = LedgerManager(base_dir=Path("~/.ledger").expanduser())
    try:
        store = manager.get_store("/home/me/repos/app")
        store.quick_note("remember to rotate the API key")
    finally:
        manager.close_all()
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from ledger.errors import LedgerError, StorageError
from ledger.slug import default_base_dir, project_db_path
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[str, Path], LedgerStore]


class ReadWriteLock:
    """
    Shared/exclusive lock.

    Any number of readers may hold it at once; a writer waits for them to
    drain and then holds it alone. Waiting writers block new readers.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class LedgerManager:
    """
    Cache of open ledger stores keyed by project path.

    get_store() checks the cache under the shared lock and only takes the
    exclusive lock on a miss, re-checking before it opens a store, so
    concurrent first requests for one path share a single store.
    """

    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = None,
        store_factory: Optional[StoreFactory] = None,
    ):
        """
        Args:
            base_dir: Ledger data directory, defaults to ~/.ledger
            store_factory: Callable(project_path, base_dir) -> LedgerStore
        """
        self._base_dir = Path(base_dir) if base_dir else default_base_dir()
        self._store_factory = store_factory or LedgerStore
        self._stores: dict[str, LedgerStore] = {}
        self._lock = ReadWriteLock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def get_store(self, project_path: Union[str, Path]) -> LedgerStore:
        """Return the store for project_path, opening it on first use."""
        key = str(project_path)

        with self._lock.read_locked():
            store = self._stores.get(key)
        if store is not None:
            return store

        with self._lock.write_locked():
            store = self._stores.get(key)
            if store is not None:
                return store

            try:
                store = self._store_factory(key, self._base_dir)
            except LedgerError as exc:
                raise StorageError("open ledger store", key, str(exc)) from exc
            except OSError as exc:
                raise StorageError("open ledger store", key, str(exc)) from exc

            self._stores[key] = store
            logger.debug("Cached ledger store for %s", key)
            return store

    def close_store(self, project_path: Union[str, Path]) -> None:
        """Evict and close the store for project_path, if one is open."""
        with self._lock.write_locked():
            store = self._stores.pop(str(project_path), None)
            if store is not None:
                store.close()

    def close_all(self) -> None:
        """
        Evict and close every cached store.

        Keeps going past failures; if any store failed to close, raises
        StorageError chained from the last failure.
        """
        with self._lock.write_locked():
            failures: list[tuple[str, Exception]] = []
            for path, store in list(self._stores.items()):
                try:
                    store.close()
                except (LedgerError, OSError) as exc:
                    logger.warning("Failed to close ledger store for %s: %s", path, exc)
                    failures.append((path, exc))
                del self._stores[path]

        if failures:
            path, last = failures[-1]
            raise StorageError(
                "close all stores",
                path,
                f"{len(failures)} store(s) failed to close, last: {last}",
            ) from last

    def cached_paths(self) -> list[str]:
        """Project paths with an open store."""
        with self._lock.read_locked():
            return list(self._stores)

    def is_initialized(self, project_path: Union[str, Path]) -> bool:
        """Whether a ledger database already exists on disk for project_path."""
        return project_db_path(self._base_dir, project_path).exists()
