"""In-process record store."""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from ..models.device import (
    Credential,
    DeviceProfileRef,
    DeviceRecord,
    SessionState,
    normalize_dev_eui,
)
from ..models.migration import MigrationRecord, MigrationStatus
from .base import (
    DEFAULT_HISTORY_LIMIT,
    RecordStore,
    RecordStoreError,
    resolve_completed_at,
)


class MemoryRecordStore(RecordStore):
    """Record store holding everything in dictionaries.

    Models are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self):
        self._devices: Dict[str, DeviceRecord] = {}
        self._credentials: Dict[str, Credential] = {}
        self._sessions: Dict[str, SessionState] = {}
        self._profiles: Dict[str, DeviceProfileRef] = {}
        self._history: List[MigrationRecord] = []
        self._lock = asyncio.Lock()

    async def save_device(
        self, device: DeviceRecord, credential: Optional[Credential] = None
    ) -> None:
        async with self._lock:
            stored = device.model_copy(update={'updated_at': datetime.now()})
            self._devices[stored.dev_eui] = stored
            if credential is not None:
                self._credentials[stored.dev_eui] = credential.model_copy(
                    update={'dev_eui': stored.dev_eui}
                )

    async def get_device(self, dev_eui: str) -> Optional[DeviceRecord]:
        device = self._devices.get(normalize_dev_eui(dev_eui))
        return device.model_copy() if device else None

    async def get_credential(self, dev_eui: str) -> Optional[Credential]:
        dev_eui = normalize_dev_eui(dev_eui)
        if dev_eui not in self._devices:
            return None
        credential = self._credentials.get(dev_eui)
        return credential.model_copy() if credential else Credential.placeholder(dev_eui)

    async def get_all_devices(self) -> List[DeviceRecord]:
        devices = sorted(self._devices.values(), key=lambda d: (d.name, d.dev_eui))
        return [d.model_copy() for d in devices]

    async def save_session_keys(self, session: SessionState) -> None:
        async with self._lock:
            self._sessions[session.dev_eui] = session.model_copy()

    async def get_session_keys(self, dev_eui: str) -> Optional[SessionState]:
        session = self._sessions.get(normalize_dev_eui(dev_eui))
        return session.model_copy() if session else None

    async def save_device_profile(self, profile: DeviceProfileRef) -> None:
        async with self._lock:
            self._profiles[profile.profile_id] = profile.model_copy()

    async def get_device_profile(self, profile_id: str) -> Optional[DeviceProfileRef]:
        profile = self._profiles.get(profile_id)
        return profile.model_copy() if profile else None

    async def save_migration_record(self, record: MigrationRecord) -> int:
        async with self._lock:
            record_id = len(self._history) + 1
            self._history.append(record.model_copy(update={'id': record_id}, deep=True))
            return record_id

    async def update_migration_status(
        self,
        record_id: int,
        status: MigrationStatus,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        async with self._lock:
            if not 1 <= record_id <= len(self._history):
                raise RecordStoreError(f'Migration record {record_id} not found')

            current = self._history[record_id - 1]
            try:
                self._history[record_id - 1] = MigrationRecord(
                    **{
                        **current.model_dump(),
                        'status': status,
                        'error_message': error,
                        'completed_at': resolve_completed_at(status, completed_at),
                    }
                )
            except ValueError as e:
                raise RecordStoreError(
                    f'Invalid status update for record {record_id}: {e}'
                )

    async def get_migration_history(
        self,
        dev_eui: Optional[str] = None,
        limit: Optional[int] = DEFAULT_HISTORY_LIMIT,
    ) -> List[MigrationRecord]:
        records = list(reversed(self._history))
        if dev_eui:
            dev_eui = normalize_dev_eui(dev_eui)
            records = [r for r in records if r.dev_eui == dev_eui]
        return [r.model_copy(deep=True) for r in records[:limit]]
