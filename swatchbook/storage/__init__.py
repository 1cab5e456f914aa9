# Curation storage layer for swatchbook
# Connection-pooled SQLite storage for saved product lists, image
# payloads and color swatches, with batched list writes.

from swatchbook.storage.models import (
    HSLColor,
    SwatchRecord,
    ImageBlob,
    StorageEstimate,
    CascadeResult,
    AddResult,
)
from swatchbook.storage.errors import (
    StorageError,
    DatabaseOpenError,
    VersionError,
    TransactionError,
)
from swatchbook.storage.config import StorageConfig
from swatchbook.storage.pool import ConnectionPool, DatabaseHandle
from swatchbook.storage.schema import (
    DATABASES,
    PRODUCT_LISTS_DB,
    COLOR_PICKER_DB,
)
from swatchbook.storage.debounce import Debouncer
from swatchbook.storage.kvstore import KeyValueStore
from swatchbook.storage.ordering import reconcile_order
from swatchbook.storage.accounting import (
    StorageAccounting,
    calculate_object_size,
    format_file_size,
)
from swatchbook.storage.images import ImagesStore
from swatchbook.storage.swatches import SwatchStore
from swatchbook.storage.lists import ListsStore
from swatchbook.storage.processing import ImageProcessor
from swatchbook.storage.facade import CurationStorage

__all__ = [
    # Models
    'HSLColor',
    'SwatchRecord',
    'ImageBlob',
    'StorageEstimate',
    'CascadeResult',
    'AddResult',
    # Errors
    'StorageError',
    'DatabaseOpenError',
    'VersionError',
    'TransactionError',
    # Config
    'StorageConfig',
    # Connections and schema
    'ConnectionPool',
    'DatabaseHandle',
    'DATABASES',
    'PRODUCT_LISTS_DB',
    'COLOR_PICKER_DB',
    # Helpers
    'Debouncer',
    'KeyValueStore',
    'reconcile_order',
    # Accounting
    'StorageAccounting',
    'calculate_object_size',
    'format_file_size',
    # Stores
    'ImagesStore',
    'SwatchStore',
    'ListsStore',
    'ImageProcessor',
    'CurationStorage',
]
