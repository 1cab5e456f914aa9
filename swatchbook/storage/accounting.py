# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Advisory storage usage accounting.

Usage is not measured from the databases. Callers record the serialized
size of the in-memory lists after each change and the UI reads it back
against a fixed quota. Nothing here blocks a write.
"""

import json
import logging
from typing import Any

from swatchbook.storage.kvstore import KeyValueStore, STORAGE_USAGE_KEY
from swatchbook.storage.models import StorageEstimate

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 50 * 1024 * 1024

_SIZE_UNITS = ['B', 'KB', 'MB', 'GB']


def calculate_object_size(obj: Any) -> int:
    """Byte length of the compact UTF-8 JSON encoding of an object."""
    encoded = json.dumps(obj, ensure_ascii=False, separators=(',', ':'))
    return len(encoded.encode('utf-8'))


def format_file_size(num_bytes: int) -> str:
    """Format a byte count for display.

    Examples:
        0 -> '0 B'
        1536 -> '1.5 KB'
        52428800 -> '50 MB'
    """
    if num_bytes <= 0:
        return '0 B'

    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(_SIZE_UNITS) - 1:
        value /= 1024
        i += 1

    value = round(value, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_SIZE_UNITS[i]}"


class StorageAccounting:
    """Reports usage against a fixed quota from a persisted counter."""

    def __init__(self, kv: KeyValueStore, quota: int = DEFAULT_QUOTA_BYTES):
        self.kv = kv
        self.quota = quota

    def estimate(self) -> StorageEstimate:
        """Get the current usage estimate.

        Returns:
            StorageEstimate with quota, recorded usage and the remainder.
            A missing or unreadable counter counts as zero usage.
        """
        raw = self.kv.get_item(STORAGE_USAGE_KEY)
        usage = 0
        if raw is not None:
            try:
                usage = int(raw)
            except ValueError:
                logger.warning(f"Ignoring corrupt storage usage value: {raw!r}")

        return StorageEstimate(
            quota=self.quota,
            usage=usage,
            available=self.quota - usage,
        )

    def record_usage(self, num_bytes: int) -> bool:
        """Overwrite the persisted usage counter.

        Returns:
            True if the counter was persisted.
        """
        return self.kv.set_item(STORAGE_USAGE_KEY, str(int(num_bytes)))
