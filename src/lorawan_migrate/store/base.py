"""Record store interface used by discovery and migration."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..config.config import StoreConfig
from ..models.device import Credential, DeviceProfileRef, DeviceRecord, SessionState
from ..models.migration import MigrationRecord, MigrationStatus

DEFAULT_HISTORY_LIMIT = 100


class RecordStoreError(Exception):
    """Record store unavailable or rejected a write."""

    pass


class RecordStore(ABC):
    """Local persistence of devices, credentials, profiles and migration history.

    Upserts are keyed by DevEUI (or profile ID) and must tolerate concurrent
    independent writers; migration history rows are append-only.
    """

    async def init(self) -> None:
        """Prepare the store for use."""

    async def close(self) -> None:
        """Release store resources."""

    async def __aenter__(self):
        """Async context manager entry."""
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    @abstractmethod
    async def save_device(
        self, device: DeviceRecord, credential: Optional[Credential] = None
    ) -> None:
        """Insert or replace a device and, when given, its credential."""

    @abstractmethod
    async def get_device(self, dev_eui: str) -> Optional[DeviceRecord]:
        """Fetch a device, or None."""

    @abstractmethod
    async def get_credential(self, dev_eui: str) -> Optional[Credential]:
        """Fetch the stored credential of a device, or None if the device is unknown."""

    @abstractmethod
    async def get_all_devices(self) -> List[DeviceRecord]:
        """All devices ordered by name, then DevEUI."""

    @abstractmethod
    async def save_session_keys(self, session: SessionState) -> None:
        """Store the latest session state of a device."""

    @abstractmethod
    async def get_session_keys(self, dev_eui: str) -> Optional[SessionState]:
        """Latest stored session state of a device, or None."""

    @abstractmethod
    async def save_device_profile(self, profile: DeviceProfileRef) -> None:
        """Insert or replace a device profile."""

    @abstractmethod
    async def get_device_profile(self, profile_id: str) -> Optional[DeviceProfileRef]:
        """Fetch a device profile, or None."""

    @abstractmethod
    async def save_migration_record(self, record: MigrationRecord) -> int:
        """Append a migration history row.

        Returns:
            ID of the new row
        """

    @abstractmethod
    async def update_migration_status(
        self,
        record_id: int,
        status: MigrationStatus,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        """Move a migration history row to a new status.

        Raises:
            RecordStoreError: If the row does not exist
        """

    @abstractmethod
    async def get_migration_history(
        self,
        dev_eui: Optional[str] = None,
        limit: Optional[int] = DEFAULT_HISTORY_LIMIT,
    ) -> List[MigrationRecord]:
        """Migration history, newest first.

        Args:
            dev_eui: Restrict to one device
            limit: Maximum rows; None for all
        """


def resolve_completed_at(
    status: MigrationStatus, completed_at: Optional[datetime]
) -> Optional[datetime]:
    """Completion time to persist: set for terminal statuses only, defaulting to now."""
    if not MigrationStatus(status).is_terminal:
        return None
    return completed_at or datetime.now()


def create_record_store(config: StoreConfig) -> RecordStore:
    """Create the record store selected by configuration.

    Args:
        config: Store configuration

    Returns:
        Uninitialised record store; call ``init()`` before use
    """
    if config.url == 'memory://':
        from .memory import MemoryRecordStore

        return MemoryRecordStore()

    from .sql import SQLRecordStore

    return SQLRecordStore(config.url)
