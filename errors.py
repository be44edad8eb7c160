"""Exceptions raised by the store layer.

Callers (the HTTP app, scripts) decide how these are rendered; nothing in
this package retries or swallows them.
"""
from typing import Dict


class StoreError(Exception):
    """Base class for store layer errors."""


class StoreValidationError(StoreError):
    """A candidate store failed validation. Nothing was written."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class StoreNotFoundError(StoreError):
    pass


class StorageError(StoreError):
    """A MongoDB read, write or aggregation failed.

    The driver exception is kept as ``__cause__``.
    """


class SlugConflictError(StorageError):
    """Two concurrent writes derived the same slug and the unique index
    rejected the later one."""
