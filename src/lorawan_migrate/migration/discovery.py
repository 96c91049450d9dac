"""Discovery sweep: source backend -> record store."""

from typing import Optional, Set

from loguru import logger

from ..api.client import BackendClient
from ..api.exceptions import BackendError
from ..models.device import ApplicationRef, DeviceProfileRef, DeviceRecord
from ..models.migration import DiscoverySummary, SyncError
from ..store.base import RecordStore


class DiscoverySweep:
    """Copies every device of the source backend into the record store.

    For each device the record, join credential, session state and (once per
    profile) the device profile are fetched and upserted. A device that
    cannot be read is reported in the summary and the sweep carries on.
    """

    def __init__(self, source: BackendClient, store: RecordStore):
        """Initialize discovery sweep.

        Args:
            source: Client of the backend to enumerate
            store: Record store to upsert into
        """
        self.source = source
        self.store = store
        self.logger = logger.bind(component='DiscoverySweep')

    async def run(self, tenant_id: Optional[str] = None) -> DiscoverySummary:
        """Enumerate all applications and devices of the source backend.

        Args:
            tenant_id: Tenant to sweep (defaults to the configured tenant)

        Returns:
            Summary with per-device and per-application errors

        Raises:
            BackendError: If the application list itself cannot be read
            RecordStoreError: If the record store is unavailable
        """
        self.logger.info(f'Discovering devices from {self.source.name}')
        summary = DiscoverySummary()
        seen_profiles: Set[str] = set()

        applications = await self.source.list_applications(tenant_id)
        for application in applications:
            try:
                devices = await self.source.list_devices(application.id)
            except BackendError as e:
                self.logger.error(
                    f'Cannot list devices of application {application.id}: {e}'
                )
                summary.errors.append(
                    SyncError(application_id=application.id, error=str(e))
                )
                continue

            summary.total += len(devices)
            for device in devices:
                try:
                    cached = await self._sync_device(device, application, seen_profiles)
                except BackendError as e:
                    self.logger.error(f'Error syncing device {device.dev_eui}: {e}')
                    summary.errors.append(
                        SyncError(
                            dev_eui=device.dev_eui,
                            application_id=application.id,
                            error=str(e),
                        )
                    )
                    continue

                summary.synced += 1
                summary.profiles_cached += cached
                self.logger.debug(f'Synced device: {device.dev_eui} ({device.name})')

        self.logger.info(
            f'Discovery complete. Synced {summary.synced}/{summary.total} devices'
        )
        return summary

    async def _sync_device(
        self, listed: DeviceRecord, application: ApplicationRef, seen_profiles: Set[str]
    ) -> int:
        """Fetch one device and upsert it.

        All reads happen before any write, so a failed read leaves the store
        untouched for this device.

        Returns:
            Number of device profiles newly cached (0 or 1)
        """
        dev_eui = listed.dev_eui

        device = await self.source.get_device(dev_eui)
        credential = await self.source.get_credential(dev_eui)
        session = await self.source.get_session_state(dev_eui)

        profile: Optional[DeviceProfileRef] = None
        profile_id = device.device_profile_id or listed.device_profile_id
        if profile_id and profile_id not in seen_profiles:
            if await self.store.get_device_profile(profile_id) is None:
                try:
                    profile = await self.source.get_device_profile(profile_id)
                except BackendError as e:
                    self.logger.warning(
                        f'Could not fetch device profile {profile_id} of {dev_eui}: {e}'
                    )
                    seen_profiles.add(profile_id)
            else:
                seen_profiles.add(profile_id)

        # A placeholder read never replaces a real key already on record.
        if credential.is_placeholder:
            existing = await self.store.get_credential(dev_eui)
            if existing is not None and not existing.is_placeholder:
                self.logger.info(f'Keeping stored AppKey of {dev_eui}')
                credential = existing

        record = device.model_copy(
            update={
                'application_id': device.application_id or application.id,
                'application_name': application.name,
                'device_profile_id': profile_id,
            }
        )
        await self.store.save_device(record, credential)

        if not session.is_placeholder:
            await self.store.save_session_keys(session)

        if profile is not None:
            await self.store.save_device_profile(profile)
            seen_profiles.add(profile_id)
            return 1
        return 0
