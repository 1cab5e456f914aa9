# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Configuration for the curation storage layer.

Defines the tunables that control connection lifetime, write batching,
storage accounting and image processing.
"""

import json
import logging
import os
from dataclasses import dataclass, fields as dataclass_fields, asdict
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.expanduser('~/.local/share/swatchbook')


@dataclass
class StorageConfig:
    """Configuration for the storage layer.

    Attributes:
        data_dir: Directory holding the database files and the key-value
            file. Default: ~/.local/share/swatchbook.
        debounce_seconds: Quiet period after the last list change before
            the batched write is committed. Default: 0.3 seconds.
        idle_timeout: Seconds a connection may stay unused before the
            reaper closes it. Default: 60 seconds.
        reap_interval: Seconds between idle reaper scans. Default: 60.
        quota_bytes: Fixed quota reported by storage estimates.
            Default: 50 MiB.
        max_image_width: Width processed images are downsized to.
            Default: 300 pixels.
    """
    data_dir: str = DEFAULT_DATA_DIR
    debounce_seconds: float = 0.3
    idle_timeout: float = 60.0
    reap_interval: float = 60.0
    quota_bytes: int = 50 * 1024 * 1024
    max_image_width: int = 300

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to a dictionary.

        Returns:
            Dictionary representation of the config.
        """
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageConfig':
        """Create a StorageConfig from a dictionary.

        Unknown keys are ignored. Missing keys use defaults.

        Args:
            data: Dictionary with config values.

        Returns:
            New StorageConfig instance.
        """
        valid_fields = {f.name for f in dataclass_fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered_data)

    @classmethod
    def load(cls, path: Optional[str]) -> 'StorageConfig':
        """Load configuration from a JSON file.

        A missing file yields the defaults. An unreadable or malformed
        file is logged and also yields the defaults.

        Args:
            path: Path to a JSON object with config values.

        Returns:
            New StorageConfig instance.
        """
        if not path or not os.path.exists(path):
            return cls()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read storage config {path}: {e}")
            return cls()

        if not isinstance(data, dict):
            logger.warning(f"Storage config {path} is not a JSON object, using defaults")
            return cls()

        return cls.from_dict(data)
