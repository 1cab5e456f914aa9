# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Storage layer wiring.

Builds one connection pool and hands it to every store, so each logical
database has a single live connection for the whole application:
- ListsStore: saved lists, display order and image passthroughs
- SwatchStore: saved colors per (list, product, variant)
- ImagesStore: image payloads
- StorageAccounting: advisory usage figures
"""

import logging
import os
from typing import Optional

from swatchbook.storage.accounting import StorageAccounting
from swatchbook.storage.config import StorageConfig
from swatchbook.storage.images import ImagesStore
from swatchbook.storage.kvstore import KeyValueStore
from swatchbook.storage.lists import ListsStore
from swatchbook.storage.models import StorageEstimate
from swatchbook.storage.pool import ConnectionPool
from swatchbook.storage.processing import ImageProcessor
from swatchbook.storage.swatches import SwatchStore

logger = logging.getLogger(__name__)

KV_FILENAME = 'local_storage.json'


class CurationStorage:
    """Owns the pool and the stores built on it.

    Usage:
        with CurationStorage(StorageConfig(data_dir=path)) as storage:
            storage.lists.create_list('Spring')
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        """Build the pool and stores. Nothing is opened until init().

        Args:
            config: Storage configuration. Defaults are used when omitted.
        """
        self.config = config or StorageConfig()

        self.pool = ConnectionPool(
            self.config.data_dir,
            idle_timeout=self.config.idle_timeout,
            reap_interval=self.config.reap_interval,
        )
        self.kv = KeyValueStore(os.path.join(self.config.data_dir, KV_FILENAME))
        self.accounting = StorageAccounting(self.kv, quota=self.config.quota_bytes)
        self.images = ImagesStore(self.pool)
        self.swatches = SwatchStore(self.pool)
        self.lists = ListsStore(
            self.pool,
            self.kv,
            self.swatches,
            images=self.images,
            accounting=self.accounting,
            debounce_seconds=self.config.debounce_seconds,
        )
        self.processor = ImageProcessor(max_width=self.config.max_image_width)
        self._started = False

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    def init(self):
        """Start the idle reaper and load the saved lists.

        Raises:
            StorageError: If the lists cannot be loaded. The pool is shut
                down again before the error propagates.
        """
        if self._started:
            return
        self.pool.init()
        try:
            self.lists.load_all()
        except Exception:
            self.pool.shutdown()
            raise
        self._started = True
        logger.info(f"Storage initialized in {self.config.data_dir}")

    def shutdown(self):
        """Write pending list changes, then close every connection."""
        if not self._started:
            return
        try:
            if not self.lists.close():
                logger.error("Pending list changes could not be saved on shutdown")
        finally:
            self.pool.shutdown()
            self._started = False

    def process_pending_variants(self) -> int:
        return self.lists.process_pending_variants(self.processor)

    def estimate(self) -> StorageEstimate:
        return self.accounting.estimate()
