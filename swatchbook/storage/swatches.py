# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Color swatch persistence keyed by (list, product, variant).

Swatches are saved colors picked from a variant's image. Lookups, the
cascading delete and the renumbering after a variant is removed all go
through the composite index over (list_name, product_id, variant_index).
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable, List, Sequence, Union

from swatchbook.storage.models import HSLColor, SwatchRecord
from swatchbook.storage.pool import ConnectionPool, DatabaseHandle
from swatchbook.storage.schema import COLOR_PICKER_DB, DATABASES, SWATCHES_TABLE

logger = logging.getLogger(__name__)

ColorInput = Union[HSLColor, dict, tuple, list]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_single_color(value: Any) -> bool:
    if isinstance(value, (HSLColor, dict)):
        return True
    return (
        isinstance(value, (tuple, list))
        and len(value) == 3
        and all(isinstance(v, (int, float)) for v in value)
    )


class SwatchStore:
    """Dedup-on-write storage of HSL swatches.

    Errors are not swallowed: every method raises StorageError subclasses
    so callers running a cascade can report which step failed.
    """

    def __init__(self, pool: ConnectionPool):
        self.pool = pool
        self._schema = DATABASES[COLOR_PICKER_DB]

    def _handle(self) -> DatabaseHandle:
        return self.pool.acquire(self._schema.name, self._schema.version, self._schema.upgrade)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SwatchRecord:
        return SwatchRecord(
            id=row['id'],
            list_name=row['list_name'],
            product_id=row['product_id'],
            variant_index=row['variant_index'],
            hue=row['hue'],
            saturation=row['saturation'],
            lightness=row['lightness'],
            timestamp=row['timestamp'],
        )

    @staticmethod
    def _select_variant(cursor: sqlite3.Cursor, list_name: str, product_id: str,
                        variant_index: int) -> List[sqlite3.Row]:
        cursor.execute(f'''
            SELECT * FROM {SWATCHES_TABLE}
            WHERE list_name = ? AND product_id = ? AND variant_index = ?
            ORDER BY id
        ''', (list_name, product_id, variant_index))
        return cursor.fetchall()

    # =========================================================================
    # Save / load
    # =========================================================================

    def save_many(self, colors: Iterable[ColorInput], list_name: str,
                  product_id: Any, variant_index: int) -> bool:
        """Save colors for a variant, skipping ones already saved.

        Reading the existing swatches, filtering and inserting happen in
        one transaction, so the saved set never holds two identical
        (hue, saturation, lightness) triples for the same key.

        Args:
            colors: HSLColors, dicts or 3-tuples.
            list_name: Owning list.
            product_id: Owning product id (stored as text).
            variant_index: Position of the variant within the product.

        Returns:
            True if at least one swatch was inserted.

        Raises:
            ValueError: If a color cannot be interpreted.
            StorageError: If the transaction fails.
        """
        product_id = str(product_id)
        wanted = [HSLColor.coerce(c) for c in colors]
        if not wanted:
            return False

        with self._handle().transaction() as cursor:
            seen = {
                (row['hue'], row['saturation'], row['lightness'])
                for row in self._select_variant(cursor, list_name, product_id, variant_index)
            }

            new_rows = []
            for color in wanted:
                key = color.as_tuple()
                if key in seen:
                    continue
                seen.add(key)
                new_rows.append((
                    list_name, product_id, variant_index,
                    color.hue, color.saturation, color.lightness, _now_iso(),
                ))

            if new_rows:
                cursor.executemany(f'''
                    INSERT INTO {SWATCHES_TABLE} (
                        list_name, product_id, variant_index,
                        hue, saturation, lightness, timestamp
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', new_rows)

        if new_rows:
            logger.debug(
                f"Saved {len(new_rows)} swatches for {list_name}/{product_id}/{variant_index}"
            )
        return bool(new_rows)

    def save(self, color_or_colors: Union[ColorInput, Sequence[ColorInput]],
             list_name: str, product_id: Any, variant_index: int) -> bool:
        """Save one color or a sequence of colors. See save_many()."""
        if _is_single_color(color_or_colors):
            color_or_colors = [color_or_colors]
        return self.save_many(color_or_colors, list_name, product_id, variant_index)

    def load(self, list_name: str, product_id: Any, variant_index: int) -> List[SwatchRecord]:
        """Get all swatches saved for a variant, oldest first."""
        with self._handle().transaction(readonly=True) as cursor:
            rows = self._select_variant(cursor, list_name, str(product_id), variant_index)
        return [self._row_to_record(row) for row in rows]

    # =========================================================================
    # Deletion and cascades
    # =========================================================================

    def delete_many(self, swatch_ids: Iterable[int]) -> bool:
        """Delete swatches by id in one transaction.

        Returns:
            True once the transaction committed. Ids that did not exist
            are not an error.
        """
        swatch_ids = list(swatch_ids)
        if not swatch_ids:
            return True

        with self._handle().transaction() as cursor:
            cursor.executemany(
                f'DELETE FROM {SWATCHES_TABLE} WHERE id = ?',
                [(swatch_id,) for swatch_id in swatch_ids]
            )
        return True

    def delete(self, id_or_ids: Union[int, Iterable[int]]) -> bool:
        """Delete one swatch id or several. See delete_many()."""
        if isinstance(id_or_ids, int):
            id_or_ids = [id_or_ids]
        return self.delete_many(id_or_ids)

    def delete_by_variant(self, list_name: str, product_id: Any, variant_index: int) -> bool:
        """Delete every swatch saved for a variant."""
        swatch_ids = [record.id for record in self.load(list_name, product_id, variant_index)]
        result = self.delete_many(swatch_ids)
        logger.debug(
            f"Deleted {len(swatch_ids)} swatches for {list_name}/{product_id}/{variant_index}"
        )
        return result

    def renumber_from(self, list_name: str, product_id: Any, start_index: int) -> int:
        """Shift swatches of variants at or after start_index down by one.

        Used after the variant at start_index - 1 was removed, so saved
        swatches follow their variant to its new position. Matches are
        read in full before any row is rewritten; ids are preserved.

        Returns:
            Number of swatches renumbered.

        Raises:
            StorageError: If the transaction fails.
        """
        product_id = str(product_id)
        with self._handle().transaction() as cursor:
            cursor.execute(f'''
                SELECT id, variant_index FROM {SWATCHES_TABLE}
                WHERE list_name = ? AND product_id = ? AND variant_index >= ?
                ORDER BY variant_index, id
            ''', (list_name, product_id, start_index))
            matches = [(row['id'], row['variant_index']) for row in cursor.fetchall()]

            cursor.executemany(
                f'UPDATE {SWATCHES_TABLE} SET variant_index = ? WHERE id = ?',
                [(variant_index - 1, swatch_id) for swatch_id, variant_index in matches]
            )

        if matches:
            logger.debug(
                f"Renumbered {len(matches)} swatches for {list_name}/{product_id} "
                f"from index {start_index}"
            )
        return len(matches)

    def delete_by_product(self, list_name: str, product_id: Any) -> int:
        """Delete every swatch of a product in a list.

        Returns:
            Number of swatches deleted.
        """
        with self._handle().transaction() as cursor:
            cursor.execute(
                f'DELETE FROM {SWATCHES_TABLE} WHERE list_name = ? AND product_id = ?',
                (list_name, str(product_id))
            )
            return cursor.rowcount

    def delete_by_list(self, list_name: str) -> int:
        """Delete every swatch of a list. Returns the number deleted."""
        with self._handle().transaction() as cursor:
            cursor.execute(f'DELETE FROM {SWATCHES_TABLE} WHERE list_name = ?', (list_name,))
            return cursor.rowcount

    def rename_list(self, old_name: str, new_name: str) -> int:
        """Reattach a list's swatches to its new name. Returns rows moved."""
        with self._handle().transaction() as cursor:
            cursor.execute(
                f'UPDATE {SWATCHES_TABLE} SET list_name = ? WHERE list_name = ?',
                (new_name, old_name)
            )
            return cursor.rowcount

    def count(self) -> int:
        with self._handle().transaction(readonly=True) as cursor:
            cursor.execute(f'SELECT COUNT(*) FROM {SWATCHES_TABLE}')
            return cursor.fetchone()[0]
