#!/usr/bin/python3
# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-

"""Tests for storage.facade - Storage layer wiring."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch


class TestCurationStorage(unittest.TestCase):
    """Tests for CurationStorage lifecycle."""

    def setUp(self):
        from swatchbook.storage.config import StorageConfig
        self.temp_dir = tempfile.mkdtemp()
        self.config = StorageConfig(data_dir=self.temp_dir, debounce_seconds=0.05)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_stores_share_one_pool(self):
        from swatchbook.storage.facade import CurationStorage

        storage = CurationStorage(self.config)

        self.assertIs(storage.lists.pool, storage.pool)
        self.assertIs(storage.swatches.pool, storage.pool)
        self.assertIs(storage.images.pool, storage.pool)
        self.assertIs(storage.lists.images, storage.images)

    def test_nothing_opened_before_init(self):
        from swatchbook.storage.facade import CurationStorage

        storage = CurationStorage(self.config)

        self.assertEqual(storage.pool.open_names(), [])
        self.assertTrue(storage.lists.is_loading)

    def test_context_manager_loads_and_saves(self):
        from swatchbook.storage.facade import CurationStorage

        with CurationStorage(self.config) as storage:
            self.assertFalse(storage.lists.is_loading)
            storage.lists.create_list('Spring')

        self.assertEqual(storage.pool.open_names(), [])

        with CurationStorage(self.config) as storage:
            self.assertEqual(storage.lists.state, {'Spring': []})

    def test_files_land_in_data_dir(self):
        from swatchbook.storage.facade import CurationStorage, KV_FILENAME

        with CurationStorage(self.config) as storage:
            storage.lists.create_list('A')
            storage.swatches.save((1, 2, 3), 'A', 'p1', 0)

        files = set(os.listdir(self.temp_dir))
        self.assertIn('ProductLists.db', files)
        self.assertIn('ColorPicker.db', files)
        self.assertIn(KV_FILENAME, files)

    def test_init_failure_shuts_pool_down(self):
        from swatchbook.storage.errors import DatabaseOpenError
        from swatchbook.storage.facade import CurationStorage

        storage = CurationStorage(self.config)
        error = DatabaseOpenError('ProductLists', 'unavailable')

        with patch.object(storage.lists, 'load_all', side_effect=error):
            with self.assertRaises(DatabaseOpenError):
                storage.init()

        self.assertIsNone(storage.pool._reaper)
        storage.shutdown()

    def test_estimate_tracks_lists(self):
        from swatchbook.storage.accounting import calculate_object_size
        from swatchbook.storage.facade import CurationStorage

        with CurationStorage(self.config) as storage:
            storage.lists.create_list('A')
            estimate = storage.estimate()

        self.assertEqual(estimate.usage, calculate_object_size({'A': []}))
        self.assertEqual(estimate.quota, self.config.quota_bytes)

    def test_shutdown_logs_unsaved_changes(self):
        from swatchbook.storage.config import StorageConfig
        from swatchbook.storage.facade import CurationStorage

        storage = CurationStorage(StorageConfig(data_dir=self.temp_dir, debounce_seconds=30))
        storage.init()
        storage.lists.create_list('A')

        with patch.object(storage.lists, 'close', return_value=False):
            with self.assertLogs('swatchbook.storage.facade', level='ERROR'):
                storage.shutdown()

        self.assertTrue(storage.lists._debouncer.cancel())
        self.assertEqual(storage.pool.open_names(), [])

    def test_process_pending_variants_uses_processor(self):
        from swatchbook.storage.facade import CurationStorage

        with CurationStorage(self.config) as storage:
            with patch.object(storage.lists, 'process_pending_variants',
                              return_value=3) as process:
                self.assertEqual(storage.process_pending_variants(), 3)

        process.assert_called_once_with(storage.processor)


if __name__ == '__main__':
    unittest.main()
