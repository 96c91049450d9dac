"""gRPC backend client built on the ChirpStack API stubs."""

from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import grpc
from chirpstack_api import api
from google.protobuf import json_format

from ..config.config import BackendConfig, BackendProtocol
from .client import BackendClient
from .exceptions import (
    BackendAuthenticationError,
    BackendConflictError,
    BackendError,
    BackendNotFoundError,
    BackendProtocolError,
    BackendTimeoutError,
    BackendTransportError,
    BackendUnsupportedError,
    looks_like_conflict,
)

# Logical operation -> (service, method, request message)
ROUTES: Dict[str, Tuple[str, str, str]] = {
    'list_tenants': ('api.TenantService', 'List', 'ListTenantsRequest'),
    'list_applications': ('api.ApplicationService', 'List', 'ListApplicationsRequest'),
    'list_device_profiles': (
        'api.DeviceProfileService',
        'List',
        'ListDeviceProfilesRequest',
    ),
    'get_device_profile': ('api.DeviceProfileService', 'Get', 'GetDeviceProfileRequest'),
    'list_devices': ('api.DeviceService', 'List', 'ListDevicesRequest'),
    'get_device': ('api.DeviceService', 'Get', 'GetDeviceRequest'),
    'create_device': ('api.DeviceService', 'Create', 'CreateDeviceRequest'),
    'update_device': ('api.DeviceService', 'Update', 'UpdateDeviceRequest'),
    'delete_device': ('api.DeviceService', 'Delete', 'DeleteDeviceRequest'),
    'get_keys': ('api.DeviceService', 'GetKeys', 'GetDeviceKeysRequest'),
    'create_keys': ('api.DeviceService', 'CreateKeys', 'CreateDeviceKeysRequest'),
    'update_keys': ('api.DeviceService', 'UpdateKeys', 'UpdateDeviceKeysRequest'),
    'get_activation': (
        'api.DeviceService',
        'GetActivation',
        'GetDeviceActivationRequest',
    ),
    'activate': ('api.DeviceService', 'Activate', 'ActivateDeviceRequest'),
}

_STATUS_ERRORS = {
    grpc.StatusCode.NOT_FOUND: BackendNotFoundError,
    grpc.StatusCode.ALREADY_EXISTS: BackendConflictError,
    grpc.StatusCode.DEADLINE_EXCEEDED: BackendTimeoutError,
    grpc.StatusCode.UNIMPLEMENTED: BackendUnsupportedError,
    grpc.StatusCode.UNAUTHENTICATED: BackendAuthenticationError,
    grpc.StatusCode.PERMISSION_DENIED: BackendAuthenticationError,
    grpc.StatusCode.UNAVAILABLE: BackendTransportError,
}


class RpcBackendClient(BackendClient):
    """Backend client speaking the gRPC API.

    The channel is opened lazily on first use so the client can be built
    outside a running event loop; stubs are cached per service.
    """

    protocol = BackendProtocol.RPC
    key_assignment_order = ('create_keys', 'update_keys')

    def __init__(self, config: BackendConfig):
        """Initialize gRPC client.

        Args:
            config: Backend instance configuration
        """
        super().__init__(config)

        parsed = urlparse(config.url)
        self.secure = parsed.scheme == 'https'
        port = parsed.port or (443 if self.secure else 80)
        self.target = f'{parsed.hostname}:{port}'

        self._metadata = (('authorization', f'Bearer {config.api_key}'),)
        self._channel: Optional[grpc.aio.Channel] = None
        self._stubs: Dict[str, Any] = {}

        self.logger.info(f'Initialized gRPC client for {self.name} at {self.target}')

    def _open_channel(self) -> grpc.aio.Channel:
        if not self.secure:
            return grpc.aio.insecure_channel(self.target)

        root_certificates = None
        if self.config.ca_cert:
            with open(self.config.ca_cert, 'rb') as f:
                root_certificates = f.read()

        credentials = grpc.ssl_channel_credentials(root_certificates=root_certificates)
        return grpc.aio.secure_channel(self.target, credentials)

    def _stub(self, service: str) -> Any:
        stub = self._stubs.get(service)
        if stub is None:
            if self._channel is None:
                self._channel = self._open_channel()
            stub_class = getattr(api, service.split('.')[-1] + 'Stub')
            stub = self._stubs[service] = stub_class(self._channel)
        return stub

    async def _send(self, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        service, method, request_name = ROUTES[operation]

        request = json_format.ParseDict(
            payload, getattr(api, request_name)(), ignore_unknown_fields=True
        )
        call = getattr(self._stub(service), method)

        try:
            response = await call(
                request, metadata=self._metadata, timeout=self.config.timeout
            )
        except grpc.aio.AioRpcError as e:
            raise self._translate_error(e, f'{service}/{method}')

        return json_format.MessageToDict(response)

    def _translate_error(self, error: grpc.aio.AioRpcError, call: str) -> BackendError:
        code = error.code()
        details = error.details() or code.name
        message = f'{call} failed on {self.name}: {code.name}: {details}'

        error_class = _STATUS_ERRORS.get(code)
        if error_class is None:
            error_class = (
                BackendConflictError if looks_like_conflict(details) else BackendProtocolError
            )

        return error_class(message, status_code=code.value[0])

    async def close(self) -> None:
        """Close the gRPC channel."""
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
            self._stubs.clear()
            self.logger.info(f'gRPC channel to {self.name} closed')
