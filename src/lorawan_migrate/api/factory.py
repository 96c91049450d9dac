"""Backend client construction."""

from ..config.config import BackendConfig, BackendProtocol
from .client import BackendClient
from .exceptions import BackendValidationError
from .rest_client import RestBackendClient
from .rpc_client import RpcBackendClient


class BackendClientFactory:
    """Factory for creating backend clients."""

    @staticmethod
    def create_client(config: BackendConfig) -> BackendClient:
        """Create a backend client from configuration.

        Args:
            config: Backend instance configuration

        Returns:
            Client for the configured protocol variant

        Raises:
            BackendValidationError: If the protocol is not supported
        """
        if not config.api_key:
            raise BackendValidationError(f'No API key configured for {config.name}')

        if config.protocol == BackendProtocol.RPC:
            return RpcBackendClient(config)
        if config.protocol == BackendProtocol.REST:
            return RestBackendClient(config)

        raise BackendValidationError(f'Unsupported protocol: {config.protocol}')
