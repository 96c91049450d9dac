"""Data models for devices and migrations."""

from .device import (
    ApplicationRef,
    Credential,
    DeviceProfileRef,
    DeviceRecord,
    SessionState,
    TenantRef,
    normalize_dev_eui,
)
from .migration import (
    BatchSummary,
    DeviceMigrationResult,
    DiscoverySummary,
    MigrationOptions,
    MigrationRecord,
    MigrationState,
    MigrationStatus,
    SyncError,
)

__all__ = [
    'ApplicationRef',
    'Credential',
    'DeviceProfileRef',
    'DeviceRecord',
    'SessionState',
    'TenantRef',
    'normalize_dev_eui',
    'BatchSummary',
    'DeviceMigrationResult',
    'DiscoverySummary',
    'MigrationOptions',
    'MigrationRecord',
    'MigrationState',
    'MigrationStatus',
    'SyncError',
]
