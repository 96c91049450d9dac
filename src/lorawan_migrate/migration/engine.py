"""Migration engine - main entry point for migration operations."""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from .. import __version__
from ..api.client import BackendClient, ConnectionResult
from ..api.exceptions import BackendError
from ..api.factory import BackendClientFactory
from ..config.config import Config
from ..models.device import ApplicationRef, DeviceProfileRef, DeviceRecord
from ..models.migration import (
    BatchSummary,
    DeviceMigrationResult,
    DiscoverySummary,
    MigrationOptions,
    MigrationRecord,
)
from ..store.base import RecordStore, create_record_store
from .discovery import DiscoverySweep
from .orchestrator import MigrationOrchestrator
from .scheduler import BatchScheduler


class ApplicationListing(BaseModel):
    """Applications of one backend, or the error that prevented listing them."""

    backend: str = Field(..., description='Backend name')
    applications: List[ApplicationRef] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description='Listing error')


class ProfileListing(BaseModel):
    """Device profiles of one backend, or the error that prevented listing them."""

    backend: str = Field(..., description='Backend name')
    profiles: List[DeviceProfileRef] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description='Listing error')


class ApplicationDevice(BaseModel):
    """A source device annotated with what the record store knows about it."""

    device: DeviceRecord = Field(..., description='Device as listed by the source')
    has_local_data: bool = Field(default=False, description='Device is in the store')
    has_app_key: bool = Field(default=False, description='Stored AppKey is real')
    migration_history: List[MigrationRecord] = Field(
        default_factory=list, description='Previous migration attempts'
    )


class ApplicationDevices(BaseModel):
    """Devices of one source application."""

    application_id: str = Field(..., description='Source application ID')
    devices: List[ApplicationDevice] = Field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of devices."""
        return len(self.devices)


class MigrationEngine:
    """Main migration engine that wires configuration to clients, store and services."""

    def __init__(
        self,
        config: Config,
        source_client: Optional[BackendClient] = None,
        target_client: Optional[BackendClient] = None,
        store: Optional[RecordStore] = None,
    ):
        """Initialize migration engine.

        Args:
            config: Migration configuration
            source_client: Client to use instead of one built from ``config.source``
            target_client: Client to use instead of one built from ``config.target``
            store: Record store to use instead of one built from ``config.store``
        """
        self.config = config
        self.logger = logger.bind(component='MigrationEngine')

        self.source_client = source_client or BackendClientFactory.create_client(
            config.source
        )
        self.target_client = target_client or BackendClientFactory.create_client(
            config.target
        )
        self.store = store or create_record_store(config.store)

        self.orchestrator = MigrationOrchestrator(
            self.source_client, self.target_client, self.store
        )
        self.discovery = DiscoverySweep(self.source_client, self.store)

    async def start(self) -> None:
        """Prepare the record store."""
        await self.store.init()

    async def close(self) -> None:
        """Close backend clients and the record store."""
        await self.source_client.close()
        await self.target_client.close()
        await self.store.close()

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def client(self, side: str) -> BackendClient:
        """Backend client for ``source`` or ``target``."""
        if side == 'source':
            return self.source_client
        if side == 'target':
            return self.target_client
        raise ValueError(f"Unknown backend side: {side!r} (expected 'source' or 'target')")

    # Setup

    async def test_connections(self) -> Dict[str, ConnectionResult]:
        """Test both backends concurrently.

        Returns:
            Results keyed by ``source`` and ``target``; never raises
        """
        self.logger.info('Testing connectivity to both backends')
        results = await asyncio.gather(
            self.source_client.test_connection(),
            self.target_client.test_connection(),
            return_exceptions=True,
        )

        report = {}
        for side, result in zip(('source', 'target'), results):
            if isinstance(result, Exception):
                result = ConnectionResult(ok=False, error=str(result))
            report[side] = result
        return report

    async def get_available_applications(self) -> Dict[str, ApplicationListing]:
        """Applications of both backends, side by side."""
        listings = {}
        for side in ('source', 'target'):
            client = self.client(side)
            try:
                listings[side] = ApplicationListing(
                    backend=client.name, applications=await client.list_applications()
                )
            except BackendError as e:
                self.logger.error(f'Cannot list applications of {client.name}: {e}')
                listings[side] = ApplicationListing(backend=client.name, error=str(e))
        return listings

    async def get_available_device_profiles(self) -> Dict[str, ProfileListing]:
        """Device profiles of both backends, side by side."""
        listings = {}
        for side in ('source', 'target'):
            client = self.client(side)
            try:
                listings[side] = ProfileListing(
                    backend=client.name, profiles=await client.list_device_profiles()
                )
            except BackendError as e:
                self.logger.error(f'Cannot list device profiles of {client.name}: {e}')
                listings[side] = ProfileListing(backend=client.name, error=str(e))
        return listings

    # Discovery

    async def discover(self, tenant_id: Optional[str] = None) -> DiscoverySummary:
        """Sweep the source backend into the record store."""
        return await self.discovery.run(tenant_id)

    async def get_devices_for_application(self, application_id: str) -> ApplicationDevices:
        """List a source application's devices, annotated with local knowledge."""
        self.logger.info(
            f'Fetching devices for application {application_id} '
            f'from {self.source_client.name}'
        )
        devices = await self.source_client.list_devices(application_id)

        enriched = []
        for device in devices:
            local = await self.store.get_device(device.dev_eui)
            credential = await self.store.get_credential(device.dev_eui) if local else None
            history = (
                await self.store.get_migration_history(device.dev_eui, limit=None)
                if local
                else []
            )
            enriched.append(
                ApplicationDevice(
                    device=device,
                    has_local_data=local is not None,
                    has_app_key=credential is not None and not credential.is_placeholder,
                    migration_history=history,
                )
            )

        return ApplicationDevices(application_id=application_id, devices=enriched)

    # Migration

    def build_options(self, **overrides: Any) -> MigrationOptions:
        """Migration options from configuration defaults and explicit overrides.

        Raises:
            pydantic.ValidationError: If a target application or profile is missing
        """
        settings = self.config.migration
        values = {
            'target_application_id': settings.target_application_id,
            'target_device_profile_id': settings.target_device_profile_id,
            'skip_fcnt_check': settings.skip_fcnt_check,
            'activate_sessions': settings.activate_sessions,
            'key_settle_delay': settings.key_settle_delay,
            'timeout_retries': settings.timeout_retries,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return MigrationOptions(**values)

    async def migrate_device(
        self, dev_eui: str, options: MigrationOptions
    ) -> DeviceMigrationResult:
        """Migrate one device."""
        return await self.orchestrator.migrate_device(dev_eui, options)

    async def migrate_devices(
        self,
        dev_euis: Sequence[str],
        options: MigrationOptions,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchSummary:
        """Migrate many devices in chunks.

        Args:
            dev_euis: Devices to migrate
            options: Migration parameters
            batch_size: Override of the configured batch size
            cancel_event: Stops the run between chunks when set

        Returns:
            Batch summary
        """
        scheduler = BatchScheduler(
            self.orchestrator,
            batch_size=batch_size or self.config.migration.batch_size,
            batch_pause=self.config.migration.batch_pause,
        )
        return await scheduler.run(dev_euis, options, cancel_event=cancel_event)

    async def migrate_all(
        self, options: MigrationOptions, batch_size: Optional[int] = None
    ) -> BatchSummary:
        """Migrate every device in the record store."""
        devices = await self.store.get_all_devices()
        return await self.migrate_devices(
            [d.dev_eui for d in devices], options, batch_size=batch_size
        )

    async def migrate_application(
        self,
        source_application_id: str,
        options: MigrationOptions,
        batch_size: Optional[int] = None,
    ) -> BatchSummary:
        """Migrate every device of a source application.

        Devices must have been discovered first; unknown devices fail with
        "not found locally".
        """
        self.logger.info(
            f'Starting application migration from {source_application_id} '
            f'to {options.target_application_id}'
        )
        devices = await self.source_client.list_devices(source_application_id)
        if not devices:
            self.logger.info(f'No devices found in source application {source_application_id}')
            return BatchSummary()

        summary = await self.migrate_devices(
            [d.dev_eui for d in devices], options, batch_size=batch_size
        )
        self.logger.info(
            f'Application migration completed. {summary.successful} successful, '
            f'{summary.failed} failed'
        )
        return summary

    # History and backup

    async def get_migration_history(
        self, dev_eui: Optional[str] = None, limit: Optional[int] = 100
    ) -> List[MigrationRecord]:
        """Migration history, newest first."""
        return await self.store.get_migration_history(dev_eui, limit=limit)

    async def export_backup(self, output_path: Optional[str] = None) -> Dict[str, Any]:
        """Export local devices, credentials and migration history as JSON.

        Args:
            output_path: File to write; the document is only returned when omitted

        Returns:
            Backup document
        """
        devices = await self.store.get_all_devices()
        history = await self.store.get_migration_history(limit=None)

        exported = []
        for device in devices:
            credential = await self.store.get_credential(device.dev_eui)
            entry = device.model_dump(mode='json')
            if credential is not None:
                entry['join_eui'] = credential.join_eui
                entry['app_key'] = credential.app_key
            exported.append(entry)

        backup = {
            'metadata': {
                'export_date': datetime.now().isoformat(),
                'version': __version__,
                'source': self.source_client.name,
                'target': self.target_client.name,
                'total_devices': len(exported),
                'total_migrations': len(history),
            },
            'devices': exported,
            'migration_history': [r.model_dump(mode='json') for r in history],
        }

        if output_path:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(backup, f, indent=2)
            self.logger.info(f'Backup written to {output_path}')

        return backup
