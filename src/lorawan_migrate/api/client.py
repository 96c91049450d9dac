"""Backend client interface shared by the RPC and REST variants."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ValidationError

from ..config.config import BackendConfig, BackendProtocol
from ..credentials.mapper import CredentialFieldMapper, KeyFields
from ..models.device import (
    ApplicationRef,
    Credential,
    DeviceProfileRef,
    DeviceRecord,
    SessionState,
    TenantRef,
    normalize_dev_eui,
)
from .exceptions import (
    BackendConflictError,
    BackendError,
    BackendNotFoundError,
    BackendProtocolError,
    BackendTimeoutError,
    BackendUnsupportedError,
    BackendValidationError,
)
from .rate_limiter import RateLimiter


class OperationStatus(str, Enum):
    """Outcome of a mutating backend call."""

    OK = 'ok'
    CONFLICT = 'conflict'
    NOT_FOUND = 'not_found'
    TIMEOUT = 'timeout'
    UNSUPPORTED = 'unsupported'
    ERROR = 'error'


class OperationResult(BaseModel):
    """Result of a mutating backend call."""

    status: OperationStatus
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Whether the call succeeded."""
        return self.status == OperationStatus.OK

    @classmethod
    def from_error(cls, error: BackendError) -> 'OperationResult':
        """Classify a backend exception."""
        if isinstance(error, BackendConflictError):
            status = OperationStatus.CONFLICT
        elif isinstance(error, BackendNotFoundError):
            status = OperationStatus.NOT_FOUND
        elif isinstance(error, BackendTimeoutError):
            status = OperationStatus.TIMEOUT
        elif isinstance(error, BackendUnsupportedError):
            status = OperationStatus.UNSUPPORTED
        else:
            status = OperationStatus.ERROR

        return cls(status=status, detail=str(error))


class ConnectionResult(BaseModel):
    """Result of a connectivity test."""

    ok: bool
    detail: Optional[str] = None
    error: Optional[str] = None
    applications: Optional[int] = None


class BackendClient(ABC):
    """Uniform operations against one device-management backend instance.

    Subclasses only provide the transport: ``_send`` maps a logical operation
    name (``get_device``, ``create_keys``, ...) and a JSON-shaped payload onto
    their wire protocol and return the JSON-shaped response.
    """

    protocol: BackendProtocol

    # Key assignment verbs, canonical first; the second is tried once if the
    # first is rejected.
    key_assignment_order: Tuple[str, str] = ('create_keys', 'update_keys')

    def __init__(self, config: BackendConfig):
        """Initialize backend client.

        Args:
            config: Backend instance configuration
        """
        self.config = config
        self.name = config.name
        self.mapper = CredentialFieldMapper(config.lorawan_version)
        self.rate_limiter = RateLimiter(config.rate_limit_per_second)
        self.logger = logger.bind(
            component=self.__class__.__name__, backend=config.name
        )

    @property
    def supports_activation(self) -> bool:
        """Whether the backend accepts session activation."""
        return self.config.activation_supported

    @abstractmethod
    async def _send(self, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Execute one logical operation on the wire.

        Args:
            operation: Logical operation name
            payload: camelCase JSON-shaped request

        Returns:
            camelCase JSON-shaped response

        Raises:
            BackendError: Typed by failure class
        """

    async def _call(
        self, operation: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        self.logger.debug(f'{self.name}: {operation}')
        return await self._send(operation, payload or {})

    async def close(self) -> None:
        """Release transport resources."""

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    # Identifiers

    @staticmethod
    def _dev_eui(value: str) -> str:
        try:
            return normalize_dev_eui(value)
        except ValueError as e:
            raise BackendValidationError(str(e))

    @staticmethod
    def _wire_eui(dev_eui: str) -> str:
        return dev_eui.lower()

    def _tenant(self, tenant_id: Optional[str]) -> str:
        tenant = tenant_id or self.config.tenant_id
        if not tenant:
            raise BackendValidationError(f'No tenant ID configured for {self.name}')
        return tenant

    # Reads

    async def test_connection(self) -> ConnectionResult:
        """Test connectivity with a bounded application list query.

        Never mutates state and never raises.
        """
        try:
            data = await self._call(
                'list_applications', {'tenantId': self._tenant(None), 'limit': 1}
            )
        except BackendError as e:
            self.logger.error(f'Connection test failed for {self.name}: {e}')
            return ConnectionResult(ok=False, error=str(e))

        count = int(data.get('totalCount') or 0)
        self.logger.info(f'Connection test succeeded for {self.name}')
        return ConnectionResult(
            ok=True,
            detail=f'Connected successfully - found {count} applications',
            applications=count,
        )

    async def list_tenants(self) -> List[TenantRef]:
        """List tenants visible to the API key."""
        items = await self._paginate('list_tenants', {})
        return [
            self._build(TenantRef, id=i.get('id'), name=i.get('name') or '')
            for i in items
        ]

    async def list_applications(
        self, tenant_id: Optional[str] = None
    ) -> List[ApplicationRef]:
        """List applications of a tenant (defaults to the configured tenant)."""
        items = await self._paginate(
            'list_applications', {'tenantId': self._tenant(tenant_id)}
        )
        applications = [
            self._build(
                ApplicationRef,
                id=i.get('id'),
                name=i.get('name') or '',
                description=i.get('description') or '',
            )
            for i in items
        ]
        self.logger.info(f'Found {len(applications)} applications on {self.name}')
        return applications

    async def list_device_profiles(
        self, tenant_id: Optional[str] = None
    ) -> List[DeviceProfileRef]:
        """List device profiles of a tenant (defaults to the configured tenant)."""
        items = await self._paginate(
            'list_device_profiles', {'tenantId': self._tenant(tenant_id)}
        )
        return [self._parse_profile(i) for i in items]

    async def get_device_profile(self, profile_id: str) -> DeviceProfileRef:
        """Fetch one device profile.

        Raises:
            BackendNotFoundError: If the profile does not exist
        """
        if not profile_id:
            raise BackendValidationError('Device profile ID is required')

        data = await self._call('get_device_profile', {'id': profile_id})
        return self._parse_profile(data.get('deviceProfile') or {})

    async def list_devices(self, application_id: str) -> List[DeviceRecord]:
        """List every device of an application, following pagination."""
        if not application_id:
            raise BackendValidationError('Application ID is required')

        items = await self._paginate('list_devices', {'applicationId': application_id})
        devices = [self._parse_device(i, application_id=application_id) for i in items]
        self.logger.info(
            f'Found {len(devices)} devices in application {application_id} '
            f'on {self.name}'
        )
        return devices

    async def get_device(self, dev_eui: str) -> DeviceRecord:
        """Fetch one device.

        Raises:
            BackendNotFoundError: If the device does not exist
        """
        dev_eui = self._dev_eui(dev_eui)
        data = await self._call('get_device', {'devEui': self._wire_eui(dev_eui)})
        return self._parse_device(data.get('device') or {})

    async def get_credential(self, dev_eui: str) -> Credential:
        """Fetch the join credential of a device.

        A device without keys yields the placeholder credential.
        """
        dev_eui = self._dev_eui(dev_eui)
        try:
            data = await self._call('get_keys', {'devEui': self._wire_eui(dev_eui)})
        except BackendNotFoundError:
            self.logger.info(f'No keys for device {dev_eui} on {self.name}')
            return Credential.placeholder(dev_eui)

        keys = data.get('deviceKeys') or {}
        app_key = self.mapper.read(
            KeyFields(nwk_key=keys.get('nwkKey'), app_key=keys.get('appKey'))
        )
        return self._build(
            Credential,
            dev_eui=dev_eui,
            join_eui=keys.get('joinEui') or keys.get('appEui'),
            app_key=app_key,
        )

    async def get_session_state(self, dev_eui: str) -> SessionState:
        """Fetch the session state of a device.

        A device that never joined, or a backend without activation support,
        yields the placeholder session state.
        """
        dev_eui = self._dev_eui(dev_eui)
        try:
            data = await self._call(
                'get_activation', {'devEui': self._wire_eui(dev_eui)}
            )
        except (BackendNotFoundError, BackendUnsupportedError) as e:
            self.logger.debug(f'No activation for device {dev_eui}: {e}')
            return SessionState.placeholder(dev_eui)

        activation = data.get('deviceActivation') or {}
        if not activation:
            return SessionState.placeholder(dev_eui)

        return self._build(
            SessionState,
            dev_eui=dev_eui,
            dev_addr=activation.get('devAddr'),
            nwk_s_key=activation.get('nwkSEncKey') or activation.get('nwkSKey'),
            app_s_key=activation.get('appSKey'),
            f_cnt_up=int(activation.get('fCntUp') or 0),
            f_cnt_down=int(activation.get('nFCntDown') or activation.get('fCntDown') or 0),
        )

    # Writes

    async def create(self, device: DeviceRecord) -> OperationResult:
        """Create a device. A duplicate yields ``CONFLICT``."""
        dev_eui = self._dev_eui(device.dev_eui)
        payload = {'device': self._device_payload(dev_eui, device)}
        return await self._mutate(f'create device {dev_eui}', 'create_device', payload)

    async def update(self, dev_eui: str, device: DeviceRecord) -> OperationResult:
        """Update an existing device."""
        dev_eui = self._dev_eui(dev_eui)
        payload = {'device': self._device_payload(dev_eui, device)}
        return await self._mutate(f'update device {dev_eui}', 'update_device', payload)

    async def set_credential(
        self, dev_eui: str, credential: Credential
    ) -> OperationResult:
        """Assign the join credential of a device.

        Tries the canonical verb first and falls back once to the other one;
        backend builds disagree on which verb is authoritative.
        """
        dev_eui = self._dev_eui(dev_eui)
        if credential.is_placeholder:
            raise BackendValidationError(
                f'Refusing to assign placeholder AppKey to device {dev_eui}'
            )

        payload = self._keys_payload(dev_eui, credential)
        first, second = self.key_assignment_order

        result = await self._mutate(f'{first} {dev_eui}', first, payload)
        if result.ok or result.status == OperationStatus.TIMEOUT:
            return result

        self.logger.info(
            f'{first} rejected for {dev_eui} on {self.name} ({result.detail}); '
            f'falling back to {second}'
        )
        fallback = await self._mutate(f'{second} {dev_eui}', second, payload)
        if fallback.ok:
            return fallback

        return OperationResult(
            status=fallback.status,
            detail=f'{first}: {result.detail}; {second}: {fallback.detail}',
        )

    async def activate(self, dev_eui: str, session: SessionState) -> OperationResult:
        """Push session state to the backend (ABP-style activation)."""
        dev_eui = self._dev_eui(dev_eui)
        if not self.supports_activation:
            return OperationResult(
                status=OperationStatus.UNSUPPORTED,
                detail=f'{self.name} does not support session activation',
            )

        payload = {
            'deviceActivation': {
                'devEui': self._wire_eui(dev_eui),
                'devAddr': session.dev_addr,
                'nwkSEncKey': session.nwk_s_key,
                'sNwkSIntKey': session.nwk_s_key,
                'fNwkSIntKey': session.nwk_s_key,
                'appSKey': session.app_s_key,
                'fCntUp': session.f_cnt_up,
                'nFCntDown': session.f_cnt_down,
            }
        }
        return await self._mutate(f'activate {dev_eui}', 'activate', payload)

    async def delete(self, dev_eui: str) -> OperationResult:
        """Delete a device."""
        dev_eui = self._dev_eui(dev_eui)
        return await self._mutate(
            f'delete device {dev_eui}',
            'delete_device',
            {'devEui': self._wire_eui(dev_eui)},
        )

    # Helpers

    async def _mutate(
        self, label: str, operation: str, payload: Dict[str, Any]
    ) -> OperationResult:
        try:
            await self._call(operation, payload)
        except BackendValidationError:
            raise
        except BackendError as e:
            result = OperationResult.from_error(e)
            self.logger.warning(
                f'{label} on {self.name}: {result.status.value} ({result.detail})'
            )
            return result

        self.logger.info(f'{label} on {self.name}: ok')
        return OperationResult(status=OperationStatus.OK)

    async def _paginate(
        self, operation: str, payload: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        limit = self.config.page_size
        offset = 0

        while True:
            data = await self._call(
                operation, {**payload, 'limit': limit, 'offset': offset}
            )
            page = data.get('result') or []
            items.extend(page)
            offset += len(page)

            total = int(data.get('totalCount') or 0)
            if not page or len(page) < limit or (total and offset >= total):
                break

        return items

    def _device_payload(self, dev_eui: str, device: DeviceRecord) -> Dict[str, Any]:
        if not device.application_id or not device.device_profile_id:
            raise BackendValidationError(
                f'Device {dev_eui} needs an application ID and a device profile ID'
            )

        return {
            'devEui': self._wire_eui(dev_eui),
            'name': device.name or dev_eui,
            'description': device.description,
            'applicationId': device.application_id,
            'deviceProfileId': device.device_profile_id,
            'skipFcntCheck': device.skip_fcnt_check,
            'isDisabled': device.is_disabled,
        }

    def _keys_payload(self, dev_eui: str, credential: Credential) -> Dict[str, Any]:
        fields = self.mapper.write(credential.app_key)
        return {
            'deviceKeys': {
                'devEui': self._wire_eui(dev_eui),
                'nwkKey': fields.nwk_key,
                'appKey': fields.app_key,
                'joinEui': credential.join_eui,
            }
        }

    def _parse_device(
        self, data: Dict[str, Any], application_id: Optional[str] = None
    ) -> DeviceRecord:
        return self._build(
            DeviceRecord,
            dev_eui=data.get('devEui') or data.get('devEUI'),
            name=data.get('name'),
            description=data.get('description'),
            application_id=data.get('applicationId') or application_id,
            device_profile_id=data.get('deviceProfileId'),
            skip_fcnt_check=bool(data.get('skipFcntCheck', False)),
            is_disabled=bool(data.get('isDisabled', False)),
        )

    def _parse_profile(self, data: Dict[str, Any]) -> DeviceProfileRef:
        return self._build(
            DeviceProfileRef,
            profile_id=data.get('id'),
            name=data.get('name') or '',
            region=data.get('region'),
            mac_version=data.get('macVersion'),
            reg_params_revision=data.get('regParamsRevision'),
            adr_algorithm_id=data.get('adrAlgorithmId'),
            payload_codec=data.get('payloadCodecRuntime') or data.get('payloadCodec'),
            uplink_interval=data.get('uplinkInterval'),
            flush_queue_on_activate=bool(data.get('flushQueueOnActivate', False)),
            supports_otaa=bool(data.get('supportsOtaa', False)),
            supports_class_b=bool(data.get('supportsClassB', False)),
            supports_class_c=bool(data.get('supportsClassC', False)),
        )

    def _build(self, model, **fields):
        """Instantiate a model from backend data, reporting bad data as a protocol error."""
        try:
            return model(**fields)
        except ValidationError as e:
            raise BackendProtocolError(
                f'Unexpected {model.__name__} data from {self.name}: {e}'
            )
