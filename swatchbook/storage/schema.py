# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Versioned schema definitions for the curation databases.

Each logical database has a schema version and an upgrade callback that
the connection pool runs inside the upgrade transaction whenever the
stored version is older than the declared one.

Databases:
    ProductLists: ``lists`` (keyed by list name) and ``images`` (keyed by
        surrogate id). Both are additive-only and never dropped.
    ColorPicker: ``swatches`` (autoincrement id) with the composite index
        ``by_product_variant``. Swatches are derived data, so the table is
        dropped and recreated on every version bump.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict

from swatchbook.storage.pool import UpgradeCallback

logger = logging.getLogger(__name__)

PRODUCT_LISTS_DB = 'ProductLists'
COLOR_PICKER_DB = 'ColorPicker'

LISTS_TABLE = 'lists'
IMAGES_TABLE = 'images'
SWATCHES_TABLE = 'swatches'
SWATCH_INDEX = 'by_product_variant'


def upgrade_product_lists(cursor: sqlite3.Cursor, old_version: int, new_version: int):
    """Create the lists and images tables if they don't exist."""
    cursor.execute(f'''
        CREATE TABLE IF NOT EXISTS {LISTS_TABLE} (
            list_name TEXT PRIMARY KEY,
            products TEXT NOT NULL
        )
    ''')
    cursor.execute(f'''
        CREATE TABLE IF NOT EXISTS {IMAGES_TABLE} (
            id TEXT PRIMARY KEY,
            data TEXT
        )
    ''')


def upgrade_color_picker(cursor: sqlite3.Cursor, old_version: int, new_version: int):
    """Recreate the swatches table and its composite index."""
    if old_version > 0:
        logger.info(f"Dropping {SWATCHES_TABLE} for schema v{new_version}")
    cursor.execute(f'DROP TABLE IF EXISTS {SWATCHES_TABLE}')
    cursor.execute(f'''
        CREATE TABLE {SWATCHES_TABLE} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            list_name TEXT NOT NULL,
            product_id TEXT NOT NULL,
            variant_index INTEGER NOT NULL,
            hue REAL NOT NULL,
            saturation REAL NOT NULL,
            lightness REAL NOT NULL,
            timestamp TEXT
        )
    ''')
    cursor.execute(
        f'CREATE INDEX {SWATCH_INDEX} ON {SWATCHES_TABLE}'
        '(list_name, product_id, variant_index)'
    )


@dataclass(frozen=True)
class SchemaDefinition:
    """Name, version and upgrade callback of one logical database."""
    name: str
    version: int
    upgrade: UpgradeCallback


DATABASES: Dict[str, SchemaDefinition] = {
    PRODUCT_LISTS_DB: SchemaDefinition(PRODUCT_LISTS_DB, 1, upgrade_product_lists),
    COLOR_PICKER_DB: SchemaDefinition(COLOR_PICKER_DB, 4, upgrade_color_picker),
}
