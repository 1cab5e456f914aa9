#!/usr/bin/python3
# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-

"""Tests for storage.pool - Connection pooling and idle reaping."""

import os
import shutil
import sqlite3
import tempfile
import threading
import time
import unittest
from unittest.mock import patch


def _create_items(cursor, old_version, new_version):
    cursor.execute('CREATE TABLE IF NOT EXISTS items (id TEXT PRIMARY KEY, value TEXT)')


class TestConnectionPoolAcquire(unittest.TestCase):
    """Tests for ConnectionPool.acquire()."""

    def setUp(self):
        from swatchbook.storage.pool import ConnectionPool
        self.temp_dir = tempfile.mkdtemp()
        self.pool = ConnectionPool(self.temp_dir)

    def tearDown(self):
        self.pool.shutdown()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_acquire_creates_database_file(self):
        """Acquiring a database creates <data_dir>/<name>.db."""
        self.pool.acquire('Things', 1, _create_items)
        self.assertTrue(os.path.exists(os.path.join(self.temp_dir, 'Things.db')))

    def test_acquire_reuses_open_handle(self):
        """A second acquire returns the same handle without reopening."""
        first = self.pool.acquire('Things', 1, _create_items)
        second = self.pool.acquire('Things', 1, _create_items)

        self.assertIs(first, second)
        self.assertEqual(self.pool.open_count, 1)

    def test_acquire_refreshes_last_used(self):
        """Acquiring an open handle marks it as used."""
        handle = self.pool.acquire('Things', 1, _create_items)
        handle.last_used_at -= 100

        self.pool.acquire('Things', 1, _create_items)

        self.assertLess(time.monotonic() - handle.last_used_at, 5)

    def test_different_names_get_different_handles(self):
        """Each logical database name has its own handle."""
        a = self.pool.acquire('A', 1, _create_items)
        b = self.pool.acquire('B', 1, _create_items)

        self.assertIsNot(a, b)
        self.assertEqual(self.pool.open_names(), ['A', 'B'])

    def test_concurrent_acquires_share_one_open(self):
        """Many threads acquiring an unopened database cause one open."""
        real_connect = sqlite3.connect
        connect_calls = []

        def slow_connect(*args, **kwargs):
            connect_calls.append(args)
            time.sleep(0.1)
            return real_connect(*args, **kwargs)

        results = []
        errors = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                results.append(self.pool.acquire('Shared', 1, _create_items))
            except Exception as e:
                errors.append(e)

        with patch('swatchbook.storage.pool.sqlite3.connect', side_effect=slow_connect):
            threads = [threading.Thread(target=worker) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(connect_calls), 1)
        self.assertEqual(self.pool.open_count, 1)
        self.assertEqual(len(results), 8)
        self.assertTrue(all(r is results[0] for r in results))

    def test_open_failure_is_not_cached(self):
        """A failed open propagates and the next acquire tries again."""
        from swatchbook.storage.errors import DatabaseOpenError

        def broken_upgrade(cursor, old_version, new_version):
            raise sqlite3.OperationalError('disk on fire')

        with self.assertRaises(DatabaseOpenError):
            self.pool.acquire('Flaky', 1, broken_upgrade)
        self.assertFalse(self.pool.is_open('Flaky'))

        handle = self.pool.acquire('Flaky', 1, _create_items)
        self.assertFalse(handle.closed)

    def test_concurrent_waiters_receive_open_failure(self):
        """Callers sharing a failed open all see the error."""
        from swatchbook.storage.errors import DatabaseOpenError

        def slow_broken_upgrade(cursor, old_version, new_version):
            time.sleep(0.1)
            raise sqlite3.OperationalError('nope')

        errors = []
        barrier = threading.Barrier(4)

        def worker():
            barrier.wait()
            try:
                self.pool.acquire('Broken', 1, slow_broken_upgrade)
            except DatabaseOpenError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(errors), 4)

    def test_newer_stored_version_raises_version_error(self):
        """Opening at a lower version than stored is refused."""
        from swatchbook.storage.errors import VersionError

        self.pool.acquire('Versioned', 3, _create_items)
        self.pool.invalidate('Versioned')

        with self.assertRaises(VersionError) as ctx:
            self.pool.acquire('Versioned', 2, _create_items)
        self.assertEqual(ctx.exception.stored_version, 3)
        self.assertEqual(ctx.exception.requested_version, 2)

    def test_upgrade_runs_once_per_version(self):
        """The upgrade callback runs on a version bump only."""
        calls = []

        def upgrade(cursor, old_version, new_version):
            calls.append((old_version, new_version))
            _create_items(cursor, old_version, new_version)

        self.pool.acquire('Migrating', 1, upgrade)
        self.pool.invalidate('Migrating')
        self.pool.acquire('Migrating', 1, upgrade)
        self.pool.invalidate('Migrating')
        self.pool.acquire('Migrating', 2, upgrade)

        self.assertEqual(calls, [(0, 1), (1, 2)])

    def test_acquire_at_higher_version_reopens(self):
        """Asking for a newer version than the open handle reopens it."""
        calls = []

        def upgrade(cursor, old_version, new_version):
            calls.append(new_version)

        old = self.pool.acquire('Bump', 1, upgrade)
        new = self.pool.acquire('Bump', 2, upgrade)

        self.assertTrue(old.closed)
        self.assertIsNot(old, new)
        self.assertEqual(calls, [1, 2])


class TestConnectionLifecycle(unittest.TestCase):
    """Tests for close observers, invalidation and idle reaping."""

    def setUp(self):
        from swatchbook.storage.pool import ConnectionPool
        self.temp_dir = tempfile.mkdtemp()
        self.pool = ConnectionPool(self.temp_dir, idle_timeout=60.0, reap_interval=0.05)

    def tearDown(self):
        self.pool.shutdown()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_closing_handle_marks_it_closed(self):
        """Closing a handle outside the pool flips closed and frees the slot."""
        handle = self.pool.acquire('Things', 1, _create_items)
        handle.close()

        self.assertTrue(handle.closed)
        self.assertFalse(self.pool.is_open('Things'))

        reopened = self.pool.acquire('Things', 1, _create_items)
        self.assertIsNot(reopened, handle)
        self.assertEqual(self.pool.open_count, 2)

    def test_invalidate_forces_fresh_open(self):
        """invalidate() closes the connection; next acquire reopens."""
        handle = self.pool.acquire('Things', 1, _create_items)

        self.assertTrue(self.pool.invalidate('Things'))
        self.assertTrue(handle.closed)
        self.assertFalse(self.pool.invalidate('Things'))

    def test_transaction_on_closed_handle_raises(self):
        """A borrowed handle that was closed refuses new transactions."""
        from swatchbook.storage.errors import TransactionError

        handle = self.pool.acquire('Things', 1, _create_items)
        handle.close()

        with self.assertRaises(TransactionError):
            with handle.transaction() as cursor:
                cursor.execute('SELECT 1')

    def test_reap_idle_closes_only_idle_handles(self):
        """reap_idle closes handles unused beyond the idle timeout."""
        idle = self.pool.acquire('Idle', 1, _create_items)
        busy = self.pool.acquire('Busy', 1, _create_items)
        idle.last_used_at -= 120

        reaped = self.pool.reap_idle()

        self.assertEqual(reaped, ['Idle'])
        self.assertTrue(idle.closed)
        self.assertFalse(busy.closed)

    def test_acquire_racing_reap_gets_open_handle(self):
        """An acquire that lands while an idle handle is closing opens a new one."""
        idle = self.pool.acquire('Things', 1, _create_items)
        idle.last_used_at -= 120
        real_close = idle.close
        borrowed = []

        def close_while_acquiring():
            borrowed.append(self.pool.acquire('Things', 1, _create_items))
            real_close()

        with patch.object(idle, 'close', side_effect=close_while_acquiring):
            reaped = self.pool.reap_idle()

        self.assertEqual(reaped, ['Things'])
        self.assertTrue(idle.closed)
        self.assertIsNot(borrowed[0], idle)
        self.assertFalse(borrowed[0].closed)
        with borrowed[0].transaction() as cursor:
            cursor.execute("INSERT INTO items VALUES ('a', 'b')")
        self.assertEqual(self.pool.open_names(), ['Things'])

    def test_reaped_database_reopens_on_next_use(self):
        """Reaping is not an error: the next acquire just reopens."""
        handle = self.pool.acquire('Things', 1, _create_items)
        with handle.transaction() as cursor:
            cursor.execute("INSERT INTO items VALUES ('a', 'b')")

        self.pool.reap_idle(now=time.monotonic() + 3600)

        fresh = self.pool.acquire('Things', 1, _create_items)
        with fresh.transaction(readonly=True) as cursor:
            cursor.execute('SELECT value FROM items WHERE id = ?', ('a',))
            self.assertEqual(cursor.fetchone()[0], 'b')

    def test_reaper_thread_closes_idle_handles(self):
        """The background reaper closes idle handles after init()."""
        self.pool.idle_timeout = 0.05
        self.pool.init()
        handle = self.pool.acquire('Things', 1, _create_items)

        deadline = time.monotonic() + 2.0
        while not handle.closed and time.monotonic() < deadline:
            time.sleep(0.02)

        self.assertTrue(handle.closed)

    def test_shutdown_closes_everything(self):
        """shutdown() stops the reaper and closes all handles."""
        self.pool.init()
        a = self.pool.acquire('A', 1, _create_items)
        b = self.pool.acquire('B', 1, _create_items)

        self.pool.shutdown()

        self.assertTrue(a.closed)
        self.assertTrue(b.closed)
        self.assertEqual(self.pool.open_names(), [])

    def test_context_manager(self):
        """The pool can be used as a context manager."""
        from swatchbook.storage.pool import ConnectionPool

        with ConnectionPool(self.temp_dir) as pool:
            handle = pool.acquire('Things', 1, _create_items)
        self.assertTrue(handle.closed)


class TestTransactions(unittest.TestCase):
    """Tests for DatabaseHandle.transaction()."""

    def setUp(self):
        from swatchbook.storage.pool import ConnectionPool
        self.temp_dir = tempfile.mkdtemp()
        self.pool = ConnectionPool(self.temp_dir)
        self.handle = self.pool.acquire('Things', 1, _create_items)

    def tearDown(self):
        self.pool.shutdown()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _count(self):
        with self.handle.transaction(readonly=True) as cursor:
            cursor.execute('SELECT COUNT(*) FROM items')
            return cursor.fetchone()[0]

    def test_commit_on_success(self):
        with self.handle.transaction() as cursor:
            cursor.execute("INSERT INTO items VALUES ('a', '1')")
            cursor.execute("INSERT INTO items VALUES ('b', '2')")
        self.assertEqual(self._count(), 2)

    def test_rollback_on_engine_error(self):
        """A constraint violation rolls back the whole transaction."""
        from swatchbook.storage.errors import TransactionError

        with self.assertRaises(TransactionError):
            with self.handle.transaction() as cursor:
                cursor.execute("INSERT INTO items VALUES ('a', '1')")
                cursor.execute("INSERT INTO items VALUES ('a', '2')")

        self.assertEqual(self._count(), 0)

    def test_rollback_on_python_error(self):
        """Non-engine exceptions roll back and propagate unchanged."""
        with self.assertRaises(RuntimeError):
            with self.handle.transaction() as cursor:
                cursor.execute("INSERT INTO items VALUES ('a', '1')")
                raise RuntimeError('boom')

        self.assertEqual(self._count(), 0)


if __name__ == '__main__':
    unittest.main()
