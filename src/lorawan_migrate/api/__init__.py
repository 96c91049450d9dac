"""Backend API clients."""

from .client import BackendClient, ConnectionResult, OperationResult, OperationStatus
from .exceptions import (
    BackendAuthenticationError,
    BackendConflictError,
    BackendError,
    BackendNotFoundError,
    BackendProtocolError,
    BackendTimeoutError,
    BackendTransportError,
    BackendUnsupportedError,
    BackendValidationError,
)
from .factory import BackendClientFactory
from .rest_client import RestBackendClient
from .rpc_client import RpcBackendClient

__all__ = [
    'BackendClient',
    'BackendClientFactory',
    'ConnectionResult',
    'OperationResult',
    'OperationStatus',
    'RestBackendClient',
    'RpcBackendClient',
    'BackendError',
    'BackendNotFoundError',
    'BackendConflictError',
    'BackendTimeoutError',
    'BackendUnsupportedError',
    'BackendTransportError',
    'BackendProtocolError',
    'BackendAuthenticationError',
    'BackendValidationError',
]
