"""Local record store."""

from .base import RecordStore, RecordStoreError, create_record_store
from .memory import MemoryRecordStore
from .sql import SQLRecordStore

__all__ = [
    'RecordStore',
    'RecordStoreError',
    'create_record_store',
    'MemoryRecordStore',
    'SQLRecordStore',
]
