"""Persistent key and usage store."""

from toolgate.store.base import KeyStore, KeyValidationRow, UsageLogRecord, ValidationFailure
from toolgate.store.sql import SQLKeyStore

__all__ = [
    "KeyStore",
    "KeyValidationRow",
    "SQLKeyStore",
    "UsageLogRecord",
    "ValidationFailure",
]
