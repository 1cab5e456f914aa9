# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Durable string key-value storage for small scalar settings.

Holds values that live outside the transactional databases, such as the
list display order and the storage usage counter. The whole mapping is
kept in one JSON file that is rewritten atomically on every change.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

LIST_ORDER_KEY = 'listOrder'
STORAGE_USAGE_KEY = 'storageUsage'


class KeyValueStore:
    """String-to-string store persisted to a JSON file.

    Thread-safety: a lock serializes reads and writes of the file.
    """

    def __init__(self, path: str):
        """Initialize the store.

        Args:
            path: Path of the JSON file. Created on first write.
        """
        self.path = path
        self._lock = threading.Lock()
        self._items: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._items is not None:
            return self._items

        items: Dict[str, str] = {}
        if os.path.exists(self.path):
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    items = {str(k): str(v) for k, v in data.items()}
                else:
                    logger.warning(f"Ignoring malformed key-value file: {self.path}")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read key-value file {self.path}: {e}")

        self._items = items
        return items

    def _write_atomic(self, items: Dict[str, str]) -> bool:
        """Write the mapping to disk using temp file + rename.

        Returns:
            True if successful.
        """
        parent_dir = os.path.dirname(self.path) or '.'
        try:
            os.makedirs(parent_dir, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=parent_dir)
        except OSError as e:
            logger.error(f"Error preparing {self.path}: {e}")
            return False

        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(items, f, ensure_ascii=False)
            os.replace(temp_path, self.path)
            return True
        except OSError as e:
            logger.error(f"Error writing {self.path}: {e}")
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            return False

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> bool:
        """Store a value and persist the mapping.

        Returns:
            True if the change reached disk. The in-memory value is
            updated either way.
        """
        with self._lock:
            items = self._load()
            items[key] = str(value)
            return self._write_atomic(items)

    def remove_item(self, key: str) -> bool:
        with self._lock:
            items = self._load()
            if key not in items:
                return True
            del items[key]
            return self._write_atomic(items)

    def clear(self) -> bool:
        with self._lock:
            self._items = {}
            return self._write_atomic(self._items)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._load().keys())
