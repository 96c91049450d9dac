"""Per-device migration state machine."""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from ..api.client import BackendClient, OperationResult, OperationStatus
from ..api.exceptions import BackendError
from ..models.device import Credential, DeviceRecord, normalize_dev_eui
from ..models.migration import (
    DeviceMigrationResult,
    MigrationOptions,
    MigrationRecord,
    MigrationState,
    MigrationStatus,
)
from ..store.base import RecordStore, RecordStoreError


class _Attempt:
    """Mutable bookkeeping of one device's migration attempt."""

    def __init__(self, dev_eui: str):
        self.dev_eui = dev_eui
        self.started_at = datetime.now()
        self.started = time.monotonic()
        self.transitions: List[MigrationState] = [MigrationState.PENDING]
        self.notes: List[str] = []

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class MigrationOrchestrator:
    """Migrates single devices from the record store to the target backend.

    States: PENDING -> FETCHING -> PROVISIONING -> ASSIGNING_CREDENTIAL ->
    COMPLETED | REQUIRES_MANUAL_STEPS | FAILED. Every attempt that reaches a
    terminal state appends exactly one migration history row.

    The orchestrator holds no per-device state between calls, so one instance
    can run many devices concurrently.
    """

    def __init__(
        self, source: BackendClient, target: BackendClient, store: RecordStore
    ):
        """Initialize migration orchestrator.

        Args:
            source: Client of the backend devices are migrated from
            target: Client of the backend devices are migrated to
            store: Record store holding discovered devices
        """
        self.source = source
        self.target = target
        self.store = store
        self.logger = logger.bind(component='MigrationOrchestrator')

    async def migrate_device(
        self, dev_eui: str, options: MigrationOptions
    ) -> DeviceMigrationResult:
        """Migrate one device.

        Backend and unexpected failures end the attempt as FAILED and never
        raise; record store failures propagate.

        Args:
            dev_eui: Device to migrate
            options: Migration parameters

        Returns:
            Terminal result of the attempt

        Raises:
            RecordStoreError: If the record store is unavailable
        """
        try:
            dev_eui = normalize_dev_eui(dev_eui)
        except ValueError as e:
            self.logger.error(f'Rejected device identifier {dev_eui!r}: {e}')
            return DeviceMigrationResult(
                dev_eui=str(dev_eui),
                status=MigrationStatus.FAILED,
                error=str(e),
                transitions=[MigrationState.PENDING, MigrationState.FAILED],
            )

        attempt = _Attempt(dev_eui)
        self.logger.info(f'Migrating device {dev_eui} to {self.target.name}')

        try:
            return await self._run(attempt, options)
        except RecordStoreError:
            raise
        except BackendError as e:
            return await self._finish(attempt, options, MigrationState.FAILED, error=str(e))
        except Exception as e:
            self.logger.exception(f'Unexpected error migrating {dev_eui}')
            return await self._finish(attempt, options, MigrationState.FAILED, error=str(e))

    async def _run(
        self, attempt: _Attempt, options: MigrationOptions
    ) -> DeviceMigrationResult:
        dev_eui = attempt.dev_eui

        self._enter(attempt, MigrationState.FETCHING)
        device = await self.store.get_device(dev_eui)
        if device is None:
            return await self._finish(
                attempt,
                options,
                MigrationState.FAILED,
                error=f'Device {dev_eui} not found locally',
            )
        credential = await self.store.get_credential(dev_eui)
        if credential is None:
            credential = Credential.placeholder(dev_eui)

        self._enter(attempt, MigrationState.PROVISIONING)
        error = await self._provision(attempt, device, options)
        if error:
            return await self._finish(attempt, options, MigrationState.FAILED, error=error)

        if credential.is_placeholder:
            self.logger.warning(f'Device {dev_eui} has no AppKey stored locally')
            attempt.notes.extend(self._manual_key_notes(dev_eui))
            terminal = MigrationState.REQUIRES_MANUAL_STEPS
        else:
            self._enter(attempt, MigrationState.ASSIGNING_CREDENTIAL)
            terminal = await self._assign_credential(attempt, credential, options)

        await self._activate(attempt, options)

        return await self._finish(attempt, options, terminal)

    async def _provision(
        self, attempt: _Attempt, device: DeviceRecord, options: MigrationOptions
    ) -> Optional[str]:
        """Create the device on the target, updating it if it already exists.

        Returns:
            Failure reason, or None on success
        """
        dev_eui = attempt.dev_eui
        target_device = DeviceRecord(
            dev_eui=dev_eui,
            name=device.name,
            description=device.description,
            application_id=options.target_application_id,
            device_profile_id=options.target_device_profile_id,
            skip_fcnt_check=options.skip_fcnt_check,
            is_disabled=False,
        )

        result = await self._retry_on_timeout(
            lambda: self.target.create(target_device), options, f'create {dev_eui}'
        )
        if result.ok:
            attempt.notes.append(f'Created device on {self.target.name}')
            return None
        if result.status != OperationStatus.CONFLICT:
            return f'Create failed: {result.detail}'

        self.logger.info(f'Device {dev_eui} already exists on {self.target.name}; updating')
        result = await self._retry_on_timeout(
            lambda: self.target.update(dev_eui, target_device),
            options,
            f'update {dev_eui}',
        )
        if not result.ok:
            return f'Update of existing device failed: {result.detail}'

        attempt.notes.append(f'Updated existing device on {self.target.name}')
        return None

    async def _assign_credential(
        self, attempt: _Attempt, credential: Credential, options: MigrationOptions
    ) -> MigrationState:
        dev_eui = attempt.dev_eui

        # The target may not have committed the new device yet.
        if options.key_settle_delay:
            await asyncio.sleep(options.key_settle_delay)

        result = await self.target.set_credential(dev_eui, credential)
        if result.ok:
            attempt.notes.append('AppKey set automatically')
            attempt.notes.append('Device ready for activation')
            return MigrationState.COMPLETED

        self.logger.warning(f'Failed to set AppKey for {dev_eui}: {result.detail}')
        attempt.notes.extend(
            [
                'MANUAL ACTION REQUIRED: Failed to set AppKey automatically',
                f'1. Go to: {self._console_url(self.target, dev_eui)}',
                '2. Navigate to Keys tab',
                f'3. Set AppKey: {credential.app_key}',
                f'4. Set JoinEUI: {credential.join_eui}',
                f'5. Error: {result.detail}',
            ]
        )
        return MigrationState.REQUIRES_MANUAL_STEPS

    async def _activate(self, attempt: _Attempt, options: MigrationOptions) -> None:
        """Copy stored session state; outcomes are informational only."""
        if not self.target.supports_activation:
            attempt.notes.append(
                f'Session activation skipped (not supported by {self.target.name})'
            )
            return
        if not options.activate_sessions:
            return

        session = await self.store.get_session_keys(attempt.dev_eui)
        if session is None or session.is_placeholder:
            attempt.notes.append('Session activation skipped (no session state stored)')
            return

        result = await self.target.activate(attempt.dev_eui, session)
        if result.ok:
            attempt.notes.append(f'Session activated with DevAddr {session.dev_addr}')
        elif result.status == OperationStatus.UNSUPPORTED:
            attempt.notes.append(
                f'Session activation skipped (not supported by {self.target.name})'
            )
        else:
            attempt.notes.append(f'Session activation failed: {result.detail}')

    async def _retry_on_timeout(
        self,
        call: Callable[[], Awaitable[OperationResult]],
        options: MigrationOptions,
        label: str,
    ) -> OperationResult:
        result = await call()
        retries = 0
        while result.status == OperationStatus.TIMEOUT and retries < options.timeout_retries:
            retries += 1
            self.logger.warning(
                f'{label} timed out; retry {retries}/{options.timeout_retries}'
            )
            result = await call()
        return result

    async def _finish(
        self,
        attempt: _Attempt,
        options: MigrationOptions,
        state: MigrationState,
        error: Optional[str] = None,
    ) -> DeviceMigrationResult:
        """Record the terminal transition and build the result."""
        self._enter(attempt, state)
        duration_ms = attempt.duration_ms
        status = state.to_status()

        snapshot = {
            **options.snapshot(),
            'notes': list(attempt.notes),
            'duration': duration_ms,
        }
        if error:
            snapshot['error'] = error

        record = MigrationRecord(
            dev_eui=attempt.dev_eui,
            source_backend_name=self.source.name,
            target_backend_name=self.target.name,
            status=MigrationStatus.IN_PROGRESS,
            options_snapshot=snapshot,
            started_at=attempt.started_at,
        )
        migration_id = await self.store.save_migration_record(record)
        await self.store.update_migration_status(
            migration_id, status, error=error, completed_at=datetime.now()
        )

        if status == MigrationStatus.COMPLETED:
            self.logger.info(f'Migration completed: {attempt.dev_eui} ({duration_ms} ms)')
        elif status == MigrationStatus.REQUIRES_MANUAL_STEPS:
            self.logger.warning(f'Migration of {attempt.dev_eui} requires manual steps')
        else:
            self.logger.error(f'Migration failed for device {attempt.dev_eui}: {error}')

        return DeviceMigrationResult(
            dev_eui=attempt.dev_eui,
            status=status,
            notes=list(attempt.notes),
            error=error,
            migration_id=migration_id,
            duration_ms=duration_ms,
            transitions=list(attempt.transitions),
        )

    def _enter(self, attempt: _Attempt, state: MigrationState) -> None:
        self.logger.debug(
            f'{attempt.dev_eui}: {attempt.transitions[-1].value} -> {state.value}'
        )
        attempt.transitions.append(state)

    def _manual_key_notes(self, dev_eui: str) -> List[str]:
        return [
            'MANUAL ACTION REQUIRED: Set AppKey in the target web interface',
            f'1. Go to: {self._console_url(self.target, dev_eui)}',
            '2. Navigate to Keys tab',
            f'3. Copy AppKey from source: {self._console_url(self.source, dev_eui)}',
            '4. Paste AppKey into the target and save',
        ]

    @staticmethod
    def _console_url(client: BackendClient, dev_eui: str) -> str:
        tenant = client.config.tenant_id or ''
        return f'{client.config.url}/tenants/{tenant}/devices/{dev_eui}'
