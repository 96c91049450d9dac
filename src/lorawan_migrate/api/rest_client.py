"""REST backend client implementation."""

import asyncio
import json
import re
import ssl
from typing import Any, Dict, Optional, Tuple, Union

import aiohttp

from ..config.config import BackendConfig, BackendProtocol
from .client import BackendClient
from .exceptions import (
    BackendAuthenticationError,
    BackendConflictError,
    BackendNotFoundError,
    BackendProtocolError,
    BackendTimeoutError,
    BackendTransportError,
    BackendUnsupportedError,
    looks_like_conflict,
)

# Logical operation -> (HTTP method, path template)
ROUTES: Dict[str, Tuple[str, str]] = {
    'list_tenants': ('GET', 'tenants'),
    'list_applications': ('GET', 'applications'),
    'list_device_profiles': ('GET', 'device-profiles'),
    'get_device_profile': ('GET', 'device-profiles/{id}'),
    'list_devices': ('GET', 'devices'),
    'get_device': ('GET', 'devices/{devEui}'),
    'create_device': ('POST', 'devices'),
    'update_device': ('PUT', 'devices/{devEui}'),
    'delete_device': ('DELETE', 'devices/{devEui}'),
    'get_keys': ('GET', 'devices/{devEui}/keys'),
    'create_keys': ('POST', 'devices/{devEui}/keys'),
    'update_keys': ('PUT', 'devices/{devEui}/keys'),
    'get_activation': ('GET', 'devices/{devEui}/activation'),
    'activate': ('POST', 'devices/{devEui}/activate'),
}

_PATH_PARAM = re.compile(r'\{(\w+)\}')

# Some REST gateways only accept POST for device updates.
METHOD_FALLBACKS: Dict[str, str] = {'update_device': 'POST'}


class RestBackendClient(BackendClient):
    """Backend client speaking the REST gateway API."""

    protocol = BackendProtocol.REST

    # The REST gateway treats key update as canonical.
    key_assignment_order = ('update_keys', 'create_keys')

    def __init__(self, config: BackendConfig):
        """Initialize REST client.

        Args:
            config: Backend instance configuration
        """
        super().__init__(config)
        self.base_url = config.url.rstrip('/') + '/api'
        self.headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'Grpc-Metadata-Authorization': f'Bearer {config.api_key}',
            'Authorization': f'Bearer {config.api_key}',
            'User-Agent': 'lorawan-migrate/0.1.0',
        }

        if not config.verify_tls:
            self.logger.warning(
                f'TLS certificate verification disabled for {self.name}'
            )

        self.logger.info(f'Initialized REST client for {self.name} at {config.url}')

    def _ssl(self) -> Union[bool, ssl.SSLContext, None]:
        """TLS setting passed to each request."""
        if not self.config.verify_tls:
            return False
        if self.config.ca_cert:
            return ssl.create_default_context(cafile=self.config.ca_cert)
        return None

    def _build_request(
        self, operation: str, payload: Dict[str, Any]
    ) -> Tuple[str, str, Dict[str, Any]]:
        """Resolve the HTTP method and URL.

        Top-level path parameters leave the payload; parameters found inside
        a nested object (``device.devEui``) stay in the body.

        Args:
            operation: Logical operation name
            payload: camelCase request

        Returns:
            Method, URL and remaining payload
        """
        method, template = ROUTES[operation]
        remaining = dict(payload)

        def resolve(match):
            key = match.group(1)
            if key in remaining:
                return str(remaining.pop(key))
            for value in remaining.values():
                if isinstance(value, dict) and key in value:
                    return str(value[key])
            raise BackendProtocolError(
                f'Missing path parameter {key} for {operation}: {template}'
            )

        path = _PATH_PARAM.sub(resolve, template)
        return method, f'{self.base_url}/{path}', remaining

    async def _send(self, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        method, url, body = self._build_request(operation, payload)

        try:
            return await self._request(method, url, body)
        except BackendUnsupportedError:
            fallback = METHOD_FALLBACKS.get(operation)
            if fallback is None:
                raise
            self.logger.debug(f'{method} {url} not allowed; retrying with {fallback}')
            return await self._request(fallback, url, body)

    async def _request(
        self, method: str, url: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Make one HTTP request and translate its outcome.

        Args:
            method: HTTP method
            url: Full request URL
            body: Query parameters for GET, JSON body otherwise

        Returns:
            Decoded JSON response, empty for an empty body

        Raises:
            BackendError: Typed by failure class
        """
        params: Optional[Dict[str, Any]] = None
        data: Optional[Dict[str, Any]] = None
        if method in ('GET', 'DELETE'):
            params = {k: str(v) for k, v in body.items() if v is not None} or None
        else:
            data = body

        kwargs: Dict[str, Any] = {}
        ssl_setting = self._ssl()
        if ssl_setting is not None:
            kwargs['ssl'] = ssl_setting

        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        async with aiohttp.ClientSession(headers=self.headers, timeout=timeout) as session:
            try:
                async with session.request(
                    method=method, url=url, params=params, json=data, **kwargs
                ) as response:
                    response_text = await response.text()

                    if response.status >= 400:
                        self._raise_for_status(method, url, response.status, response_text)

                    if not response_text:
                        return {}
                    try:
                        decoded = json.loads(response_text)
                    except ValueError as e:
                        raise BackendProtocolError(
                            f'Invalid JSON from {method} {url}: {e}',
                            status_code=response.status,
                        )
                    return decoded if isinstance(decoded, dict) else {'result': decoded}

            except asyncio.TimeoutError:
                raise BackendTimeoutError(
                    f'{method} {url} timed out after {self.config.timeout}s'
                )
            except aiohttp.ClientError as e:
                self.logger.error(f'Network error during {method} {url}: {e}')
                raise BackendTransportError(f'Network error: {e}')

    def _raise_for_status(
        self, method: str, url: str, status: int, response_text: str
    ) -> None:
        error_data: Optional[dict] = None
        try:
            decoded = json.loads(response_text) if response_text else None
            if isinstance(decoded, dict):
                error_data = decoded
        except ValueError:
            pass

        detail = ''
        if error_data:
            detail = error_data.get('message') or error_data.get('error') or ''
        if not detail:
            detail = response_text or f'HTTP {status}'

        message = f'{method} {url} failed: HTTP {status}: {detail}'

        if status == 404:
            error_class = BackendNotFoundError
        elif status == 409 or looks_like_conflict(detail):
            error_class = BackendConflictError
        elif status in (401, 403):
            error_class = BackendAuthenticationError
        elif status in (405, 501):
            error_class = BackendUnsupportedError
        else:
            error_class = BackendProtocolError

        raise error_class(message, status_code=status, response_data=error_data)
