# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Batch storage for image payloads.

Images (usually base64 data URLs) are kept apart from the lists so the
frequently rewritten lists table stays small. Records are keyed by
surrogate ids supplied by the caller, typically derived from the product
and variant they belong to.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from swatchbook.storage.errors import StorageError
from swatchbook.storage.models import ImageBlob
from swatchbook.storage.pool import ConnectionPool, DatabaseHandle
from swatchbook.storage.schema import DATABASES, IMAGES_TABLE, PRODUCT_LISTS_DB

logger = logging.getLogger(__name__)

ImageInput = Union[ImageBlob, Tuple[str, Optional[str]], Dict[str, Any]]

# SQLite has a 999 parameter limit
_CHUNK_SIZE = 500


def _coerce_blob(item: ImageInput) -> ImageBlob:
    if isinstance(item, ImageBlob):
        return item
    if isinstance(item, dict):
        return ImageBlob(id=item['id'], data=item.get('data'))
    image_id, data = item
    return ImageBlob(id=image_id, data=data)


class ImagesStore:
    """Batch get/put/delete of image payloads.

    Every batch runs as a single transaction. A failed batch raises;
    the single-item wrappers log and return None/False instead.
    """

    def __init__(self, pool: ConnectionPool):
        self.pool = pool
        self._schema = DATABASES[PRODUCT_LISTS_DB]

    def _handle(self) -> DatabaseHandle:
        return self.pool.acquire(self._schema.name, self._schema.version, self._schema.upgrade)

    def put_many(self, images: Iterable[ImageInput]) -> List[str]:
        """Insert or replace image records in one transaction.

        Args:
            images: ImageBlobs, (id, data) pairs or {'id', 'data'} dicts.

        Returns:
            Ids of the stored records, in input order.

        Raises:
            StorageError: If the transaction fails.
        """
        blobs = [_coerce_blob(item) for item in images]
        if not blobs:
            return []

        with self._handle().transaction() as cursor:
            cursor.executemany(f'''
                INSERT INTO {IMAGES_TABLE} (id, data) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data
            ''', [(b.id, b.data) for b in blobs])

        return [b.id for b in blobs]

    def get_many(self, image_ids: Iterable[str]) -> List[ImageBlob]:
        """Fetch image records in one transaction.

        Args:
            image_ids: Ids to look up.

        Returns:
            One ImageBlob per requested id, in request order. Missing ids
            come back with data set to None.

        Raises:
            StorageError: If the transaction fails.
        """
        image_ids = list(image_ids)
        if not image_ids:
            return []

        found: Dict[str, Optional[str]] = {}
        unique_ids = list(dict.fromkeys(image_ids))
        with self._handle().transaction(readonly=True) as cursor:
            for i in range(0, len(unique_ids), _CHUNK_SIZE):
                chunk = unique_ids[i:i + _CHUNK_SIZE]
                placeholders = ','.join('?' * len(chunk))
                cursor.execute(
                    f'SELECT id, data FROM {IMAGES_TABLE} WHERE id IN ({placeholders})',
                    chunk
                )
                for row in cursor.fetchall():
                    found[row['id']] = row['data']

        return [ImageBlob(id=image_id, data=found.get(image_id)) for image_id in image_ids]

    def delete_many(self, image_ids: Iterable[str]) -> List[bool]:
        """Delete image records in one transaction.

        Returns:
            One flag per id, True if a record was removed.

        Raises:
            StorageError: If the transaction fails.
        """
        image_ids = list(image_ids)
        if not image_ids:
            return []

        results = []
        with self._handle().transaction() as cursor:
            for image_id in image_ids:
                cursor.execute(f'DELETE FROM {IMAGES_TABLE} WHERE id = ?', (image_id,))
                results.append(cursor.rowcount > 0)
        return results

    # =========================================================================
    # Single-item wrappers
    # =========================================================================

    def save_image(self, image_id: str, data: Optional[str]) -> Optional[str]:
        try:
            return self.put_many([(image_id, data)])[0]
        except StorageError as e:
            logger.error(f"Error saving image {image_id}: {e}")
            return None

    def get_image(self, image_id: str) -> Optional[str]:
        try:
            return self.get_many([image_id])[0].data
        except StorageError as e:
            logger.error(f"Error getting image {image_id}: {e}")
            return None

    def delete_image(self, image_id: str) -> bool:
        try:
            return self.delete_many([image_id])[0]
        except StorageError as e:
            logger.error(f"Error deleting image {image_id}: {e}")
            return False
