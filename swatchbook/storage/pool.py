# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Connection pooling for the curation storage layer.

Keeps at most one live SQLite connection per logical database name,
opens connections lazily, shares a single in-flight open between
concurrent callers and closes connections that sit idle.
"""

import logging
import os
import sqlite3
import threading
import time
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from swatchbook.storage.errors import DatabaseOpenError, TransactionError, VersionError

logger = logging.getLogger(__name__)

# Called inside the upgrade transaction as (cursor, old_version, new_version).
UpgradeCallback = Callable[[sqlite3.Cursor, int, int], None]


class DatabaseHandle:
    """A pooled connection to one logical database.

    Thread-safety: an RLock serializes transactions on the connection,
    standing in for the engine's own transaction queue.

    Attributes:
        name: Logical database name.
        version: Schema version the connection was opened at.
        closed: True once the connection has been closed for any reason.
        last_used_at: time.monotonic() timestamp of the last use.
    """

    def __init__(self, name: str, conn: sqlite3.Connection, version: int):
        self.name = name
        self.version = version
        self.closed = False
        self.last_used_at = time.monotonic()
        self._conn = conn
        self._lock = threading.RLock()
        self._close_observers: List[Callable[['DatabaseHandle'], None]] = []

    def touch(self):
        """Mark the handle as used now."""
        self.last_used_at = time.monotonic()

    def add_close_observer(self, observer: Callable[['DatabaseHandle'], None]):
        """Register a callback invoked once when the connection closes."""
        self._close_observers.append(observer)

    @contextmanager
    def transaction(self, readonly: bool = False) -> Iterator[sqlite3.Cursor]:
        """Run a block of statements as one transaction.

        Commits when the block exits normally and rolls back otherwise.

        Args:
            readonly: Open a deferred transaction for reads instead of
                taking the write lock up front.

        Yields:
            Cursor bound to the transaction.

        Raises:
            TransactionError: If the handle is closed or the engine aborts
                the transaction.
        """
        with self._lock:
            if self.closed:
                raise TransactionError(f"Database '{self.name}' is closed")
            self.touch()

            cursor = self._conn.cursor()
            try:
                cursor.execute('BEGIN DEFERRED' if readonly else 'BEGIN IMMEDIATE')
            except sqlite3.Error as e:
                cursor.close()
                raise TransactionError(f"Cannot begin transaction on '{self.name}': {e}") from e

            try:
                yield cursor
            except sqlite3.Error as e:
                self._rollback()
                raise TransactionError(f"Transaction on '{self.name}' aborted: {e}") from e
            except BaseException:
                self._rollback()
                raise
            else:
                try:
                    cursor.execute('COMMIT')
                except sqlite3.Error as e:
                    self._rollback()
                    raise TransactionError(f"Commit on '{self.name}' failed: {e}") from e
            finally:
                cursor.close()
                self.touch()

    def _rollback(self):
        if self._conn.in_transaction:
            try:
                self._conn.execute('ROLLBACK')
            except sqlite3.Error as e:
                logger.debug(f"Rollback on {self.name} failed: {e}")

    def close(self):
        """Close the connection and notify observers.

        Idempotent: safe to call multiple times.
        """
        with self._lock:
            if self.closed:
                return
            self.closed = True
            try:
                self._conn.close()
            finally:
                observers = list(self._close_observers)
                self._close_observers.clear()

        for observer in observers:
            observer(self)


class ConnectionPool:
    """One live connection per logical database name.

    Construct once at application start, call init() to start the idle
    reaper and shutdown() to stop it and close every connection. Stores
    borrow a handle per operation through acquire() and must not keep it.
    """

    def __init__(self, data_dir: str, idle_timeout: float = 60.0,
                 reap_interval: float = 60.0):
        """Initialize the pool.

        Args:
            data_dir: Directory holding one SQLite file per database name.
            idle_timeout: Seconds a connection may stay unused before the
                reaper closes it.
            reap_interval: Seconds between reaper scans.
        """
        self.data_dir = data_dir
        self.idle_timeout = idle_timeout
        self.reap_interval = reap_interval
        self.open_count = 0

        self._lock = threading.Lock()
        self._handles: Dict[str, DatabaseHandle] = {}
        self._pending: Dict[str, Future] = {}
        self._stop_event = threading.Event()
        self._reaper: Optional[threading.Thread] = None

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def init(self):
        """Start the idle reaper. Calling it twice is harmless."""
        with self._lock:
            if self._reaper is not None:
                return
            self._stop_event.clear()
            self._reaper = threading.Thread(
                target=self._reap_loop,
                name='swatchbook-idle-reaper',
                daemon=True,
            )
            self._reaper.start()

    def shutdown(self):
        """Stop the reaper and close all open connections."""
        with self._lock:
            reaper = self._reaper
            self._reaper = None
            handles = list(self._handles.values())
        self._stop_event.set()
        if reaper is not None:
            reaper.join()

        for handle in handles:
            handle.close()

    def _reap_loop(self):
        while not self._stop_event.wait(self.reap_interval):
            self.reap_idle()

    # =========================================================================
    # Acquisition
    # =========================================================================

    def acquire(self, db_name: str, version: int,
                on_upgrade: Optional[UpgradeCallback] = None) -> DatabaseHandle:
        """Get the open handle for a database, opening it if needed.

        Concurrent calls for a database that is not open yet share one
        open operation; every waiter gets the same handle or the same
        exception. A failed open leaves nothing behind, so the next call
        starts over.

        Args:
            db_name: Logical database name.
            version: Schema version to open at.
            on_upgrade: Migration callback run when the stored version is
                lower than ``version``.

        Returns:
            The pooled DatabaseHandle.

        Raises:
            DatabaseOpenError: If the database cannot be opened or upgraded.
        """
        stale = None
        with self._lock:
            handle = self._handles.get(db_name)
            if handle is not None and not handle.closed:
                if handle.version >= version:
                    handle.touch()
                    return handle
                stale = handle

            pending = self._pending.get(db_name)
            owner = pending is None
            if owner:
                pending = Future()
                self._pending[db_name] = pending

        if not owner:
            return pending.result()

        if stale is not None:
            stale.close()

        try:
            handle = self._open(db_name, version, on_upgrade)
        except BaseException as e:
            with self._lock:
                self._pending.pop(db_name, None)
            pending.set_exception(e)
            raise

        with self._lock:
            self._handles[db_name] = handle
            self._pending.pop(db_name, None)
        pending.set_result(handle)
        return handle

    def _db_path(self, db_name: str) -> str:
        return os.path.join(self.data_dir, f'{db_name}.db')

    def _open(self, db_name: str, version: int,
              on_upgrade: Optional[UpgradeCallback]) -> DatabaseHandle:
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            conn = sqlite3.connect(
                self._db_path(db_name),
                check_same_thread=False,
                isolation_level=None,
            )
        except (OSError, sqlite3.Error) as e:
            raise DatabaseOpenError(db_name, str(e)) from e

        with self._lock:
            self.open_count += 1

        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            self._upgrade(conn, db_name, version, on_upgrade)
        except DatabaseOpenError:
            conn.close()
            raise
        except sqlite3.Error as e:
            conn.close()
            raise DatabaseOpenError(db_name, str(e)) from e

        handle = DatabaseHandle(db_name, conn, version)
        handle.add_close_observer(self._on_handle_closed)
        logger.debug(f"Opened database connection: {db_name} (v{version})")
        return handle

    def _upgrade(self, conn: sqlite3.Connection, db_name: str, version: int,
                 on_upgrade: Optional[UpgradeCallback]):
        """Run the upgrade callback when the stored version is older."""
        stored_version = conn.execute('PRAGMA user_version').fetchone()[0]
        if stored_version > version:
            raise VersionError(db_name, stored_version, version)
        if stored_version == version:
            return

        logger.info(f"Upgrading database {db_name} from v{stored_version} to v{version}")
        cursor = conn.cursor()
        try:
            cursor.execute('BEGIN IMMEDIATE')
            if on_upgrade is not None:
                on_upgrade(cursor, stored_version, version)
            cursor.execute(f'PRAGMA user_version = {int(version)}')
            cursor.execute('COMMIT')
        except Exception as e:
            if conn.in_transaction:
                conn.execute('ROLLBACK')
            logger.error(f"Upgrade of {db_name} to v{version} failed: {e}")
            raise DatabaseOpenError(db_name, f"upgrade to v{version} failed: {e}") from e
        finally:
            cursor.close()

    def _on_handle_closed(self, handle: DatabaseHandle):
        with self._lock:
            if self._handles.get(handle.name) is handle:
                del self._handles[handle.name]
        logger.debug(f"Database connection closed: {handle.name}")

    # =========================================================================
    # Maintenance
    # =========================================================================

    def invalidate(self, db_name: str) -> bool:
        """Close a database's connection from outside its users.

        The next acquire() opens a fresh connection.

        Returns:
            True if an open connection was closed.
        """
        with self._lock:
            handle = self._handles.get(db_name)
        if handle is None or handle.closed:
            return False
        handle.close()
        return True

    def reap_idle(self, now: Optional[float] = None) -> List[str]:
        """Close connections unused for longer than the idle timeout.

        Best-effort: a close failure is logged and the scan continues.

        Args:
            now: Override for time.monotonic() (for testing).

        Returns:
            Names of the databases whose connections were closed.
        """
        if now is None:
            now = time.monotonic()

        # Idle handles leave the map under the pool lock, so a concurrent
        # acquire() either touched the handle first or opens a fresh one.
        idle = []
        with self._lock:
            for name, handle in list(self._handles.items()):
                if handle.closed or now - handle.last_used_at <= self.idle_timeout:
                    continue
                del self._handles[name]
                idle.append(handle)

        reaped = []
        for handle in idle:
            try:
                handle.close()
            except sqlite3.Error as e:
                logger.debug(f"Error closing idle connection {handle.name}: {e}")
            reaped.append(handle.name)
            logger.debug(f"Closed idle database connection: {handle.name}")
        return reaped

    def is_open(self, db_name: str) -> bool:
        with self._lock:
            handle = self._handles.get(db_name)
            return handle is not None and not handle.closed

    def open_names(self) -> List[str]:
        with self._lock:
            return sorted(name for name, h in self._handles.items() if not h.closed)
