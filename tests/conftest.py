"""Shared fixtures: an in-memory backend speaking the JSON-shaped API."""

from typing import Any, Dict, List, Optional

import pytest

from lorawan_migrate.api.client import BackendClient
from lorawan_migrate.api.exceptions import (
    BackendConflictError,
    BackendNotFoundError,
)
from lorawan_migrate.config.config import BackendConfig, BackendProtocol
from lorawan_migrate.models.device import Credential, DeviceRecord
from lorawan_migrate.models.migration import MigrationOptions
from lorawan_migrate.store.memory import MemoryRecordStore

DEV_EUI = '70B3D57ED0049D2A'
APP_KEY = '1' * 32


def make_backend_config(name: str = 'backend', **overrides: Any) -> BackendConfig:
    values = {
        'name': name,
        'url': f'http://{name.lower().replace(" ", "-")}.example.com:8080',
        'api_key': f'{name}-api-key',
        'tenant_id': f'{name}-tenant',
        'protocol': 'rpc',
        'lorawan_version': '1.0.x',
        'rate_limit_per_second': 10000,
    }
    values.update(overrides)
    return BackendConfig(**values)


class FakeBackend(BackendClient):
    """Backend double keeping devices, keys and activations in dictionaries.

    ``fail`` maps an operation name to a list of exceptions raised by the next
    calls of that operation, one per call.
    """

    protocol = BackendProtocol.RPC

    def __init__(self, config: Optional[BackendConfig] = None):
        super().__init__(config or make_backend_config('fake'))
        self.tenants: List[Dict[str, Any]] = [{'id': 'tenant-1', 'name': 'Tenant'}]
        self.applications: List[Dict[str, Any]] = []
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.devices: Dict[str, Dict[str, Any]] = {}
        self.keys: Dict[str, Dict[str, Any]] = {}
        self.activations: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail: Dict[str, List[Exception]] = {}
        self.closed = False

    # Seeding helpers

    def add_application(self, app_id: str, name: str = '') -> None:
        self.applications.append({'id': app_id, 'name': name or app_id})

    def add_profile(self, profile_id: str, name: str = '', region: str = 'US915') -> None:
        self.profiles[profile_id] = {
            'id': profile_id,
            'name': name or profile_id,
            'region': region,
            'macVersion': 'LORAWAN_1_0_3',
            'supportsOtaa': True,
        }

    def add_device(
        self,
        dev_eui: str,
        application_id: str = 'app-1',
        profile_id: str = 'profile-1',
        name: str = '',
        nwk_key: Optional[str] = None,
        app_key: Optional[str] = None,
        activation: Optional[Dict[str, Any]] = None,
    ) -> None:
        key = dev_eui.lower()
        self.devices[key] = {
            'devEui': key,
            'name': name or f'device-{dev_eui[-4:]}',
            'description': '',
            'applicationId': application_id,
            'deviceProfileId': profile_id,
        }
        if nwk_key is not None or app_key is not None:
            self.keys[key] = {
                'devEui': key,
                'nwkKey': (nwk_key or '0' * 32).lower(),
                'appKey': (app_key or '0' * 32).lower(),
            }
        if activation is not None:
            self.activations[key] = activation

    def operations(self) -> List[str]:
        return [operation for operation, _ in self.calls]

    async def close(self) -> None:
        self.closed = True

    # Transport

    async def _send(self, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((operation, payload))

        pending = self.fail.get(operation)
        if pending:
            raise pending.pop(0)

        handler = getattr(self, f'_op_{operation}')
        return handler(payload)

    @staticmethod
    def _page(items: List[Dict[str, Any]], payload: Dict[str, Any]) -> Dict[str, Any]:
        offset = payload.get('offset', 0)
        limit = payload.get('limit', len(items))
        return {
            'totalCount': len(items),
            'result': [dict(i) for i in items[offset : offset + limit]],
        }

    def _op_list_tenants(self, payload):
        return self._page(self.tenants, payload)

    def _op_list_applications(self, payload):
        return self._page(self.applications, payload)

    def _op_list_device_profiles(self, payload):
        return self._page(list(self.profiles.values()), payload)

    def _op_get_device_profile(self, payload):
        profile = self.profiles.get(payload['id'])
        if profile is None:
            raise BackendNotFoundError(f'device profile {payload["id"]} not found')
        return {'deviceProfile': dict(profile)}

    def _op_list_devices(self, payload):
        items = [
            d
            for d in self.devices.values()
            if d['applicationId'] == payload['applicationId']
        ]
        return self._page(items, payload)

    def _op_get_device(self, payload):
        device = self.devices.get(payload['devEui'])
        if device is None:
            raise BackendNotFoundError('Object does not exist')
        return {'device': dict(device)}

    def _op_create_device(self, payload):
        device = payload['device']
        if device['devEui'] in self.devices:
            raise BackendConflictError('Object already exists')
        self.devices[device['devEui']] = dict(device)
        return {}

    def _op_update_device(self, payload):
        device = payload['device']
        if device['devEui'] not in self.devices:
            raise BackendNotFoundError('Object does not exist')
        self.devices[device['devEui']] = dict(device)
        return {}

    def _op_delete_device(self, payload):
        if self.devices.pop(payload['devEui'], None) is None:
            raise BackendNotFoundError('Object does not exist')
        return {}

    def _op_get_keys(self, payload):
        keys = self.keys.get(payload['devEui'])
        if keys is None:
            raise BackendNotFoundError('Object does not exist')
        return {'deviceKeys': dict(keys)}

    def _op_create_keys(self, payload):
        keys = payload['deviceKeys']
        if keys['devEui'] in self.keys:
            raise BackendConflictError('Object already exists')
        self.keys[keys['devEui']] = dict(keys)
        return {}

    def _op_update_keys(self, payload):
        keys = payload['deviceKeys']
        if keys['devEui'] not in self.keys:
            raise BackendNotFoundError('Object does not exist')
        self.keys[keys['devEui']] = dict(keys)
        return {}

    def _op_get_activation(self, payload):
        activation = self.activations.get(payload['devEui'])
        if activation is None:
            raise BackendNotFoundError('Object does not exist')
        return {'deviceActivation': dict(activation)}

    def _op_activate(self, payload):
        activation = payload['deviceActivation']
        self.activations[activation['devEui']] = dict(activation)
        return {}


@pytest.fixture
def source():
    return FakeBackend(make_backend_config('Source LNS'))


@pytest.fixture
def target():
    return FakeBackend(make_backend_config('Target LNS'))


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def options():
    return MigrationOptions(
        target_application_id='target-app',
        target_device_profile_id='target-profile',
        key_settle_delay=0,
    )


async def seed_device(
    store: MemoryRecordStore,
    dev_eui: str = DEV_EUI,
    app_key: Optional[str] = APP_KEY,
    name: str = 'sensor',
) -> None:
    """Put a discovered device into the store."""
    await store.save_device(
        DeviceRecord(
            dev_eui=dev_eui,
            name=name,
            application_id='source-app',
            device_profile_id='source-profile',
        ),
        Credential(dev_eui=dev_eui, join_eui='0102030405060708', app_key=app_key),
    )
