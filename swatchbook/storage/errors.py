# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Exception types raised by the curation storage layer."""


class StorageError(Exception):
    """Base class for all storage layer failures."""


class DatabaseOpenError(StorageError):
    """The engine refused to open or upgrade a database.

    Attributes:
        db_name: Logical database name that failed to open.
    """

    def __init__(self, db_name: str, message: str):
        super().__init__(f"Cannot open database '{db_name}': {message}")
        self.db_name = db_name


class VersionError(DatabaseOpenError):
    """The on-disk schema version is newer than the requested version."""

    def __init__(self, db_name: str, stored_version: int, requested_version: int):
        super().__init__(
            db_name,
            f"stored version {stored_version} is newer than requested "
            f"version {requested_version}",
        )
        self.stored_version = stored_version
        self.requested_version = requested_version


class TransactionError(StorageError):
    """A transaction was aborted (constraint, engine failure, closed handle)."""
