"""Tests for the REST backend client."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from lorawan_migrate.api.client import OperationStatus
from lorawan_migrate.api.exceptions import (
    BackendAuthenticationError,
    BackendConflictError,
    BackendNotFoundError,
    BackendProtocolError,
    BackendTimeoutError,
    BackendTransportError,
    BackendUnsupportedError,
)
from lorawan_migrate.api.rest_client import RestBackendClient
from lorawan_migrate.models.device import Credential, DeviceRecord, SessionState

from conftest import APP_KEY, DEV_EUI, make_backend_config

BASE_URL = 'http://target-lns.example.com:8080/api'


def http_response(status=200, body=None):
    """Async context manager standing in for an aiohttp response."""
    response = MagicMock()
    response.status = status
    if body is None:
        text = ''
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__.return_value = response
    context.__aexit__.return_value = False
    return context


@pytest.fixture
def http():
    """Patched aiohttp session; set ``http.request.side_effect`` per test."""
    with patch('lorawan_migrate.api.rest_client.aiohttp.ClientSession') as session_cls:
        session = MagicMock()
        session_cls.return_value.__aenter__.return_value = session
        session_cls.return_value.__aexit__.return_value = False
        session.session_cls = session_cls
        yield session


@pytest.fixture
def client():
    return RestBackendClient(make_backend_config('Target LNS', protocol='rest'))


def device_record():
    return DeviceRecord(
        dev_eui=DEV_EUI,
        name='sensor',
        application_id='target-app',
        device_profile_id='target-profile',
    )


class TestRequests:
    """Test how logical operations map onto HTTP requests."""

    @pytest.mark.asyncio
    async def test_get_device(self, client, http):
        """Test path parameters and response parsing."""
        http.request.side_effect = [
            http_response(
                body={
                    'device': {
                        'devEui': DEV_EUI.lower(),
                        'name': 'sensor',
                        'applicationId': 'app-1',
                        'deviceProfileId': 'profile-1',
                    }
                }
            )
        ]

        device = await client.get_device(DEV_EUI)

        assert device.dev_eui == DEV_EUI
        assert device.application_id == 'app-1'
        http.request.assert_called_once_with(
            method='GET',
            url=f'{BASE_URL}/devices/{DEV_EUI.lower()}',
            params=None,
            json=None,
        )

    @pytest.mark.asyncio
    async def test_bearer_headers(self, client, http):
        """Test both authorization headers carry the API key."""
        http.request.side_effect = [http_response(body={'totalCount': 0, 'result': []})]

        await client.list_applications()

        headers = http.session_cls.call_args.kwargs['headers']
        assert headers['Authorization'] == 'Bearer Target LNS-api-key'
        assert headers['Grpc-Metadata-Authorization'] == 'Bearer Target LNS-api-key'

    @pytest.mark.asyncio
    async def test_list_follows_pages(self, client, http):
        """Test list calls page with limit and offset query parameters."""
        client.config.page_size = 2
        http.request.side_effect = [
            http_response(
                body={
                    'totalCount': 3,
                    'result': [{'id': 'app-1', 'name': 'A'}, {'id': 'app-2'}],
                }
            ),
            http_response(body={'totalCount': 3, 'result': [{'id': 'app-3'}]}),
        ]

        applications = await client.list_applications()

        assert [a.id for a in applications] == ['app-1', 'app-2', 'app-3']
        first, second = http.request.call_args_list
        assert first.kwargs['url'] == f'{BASE_URL}/applications'
        assert first.kwargs['params'] == {
            'tenantId': 'Target LNS-tenant',
            'limit': '2',
            'offset': '0',
        }
        assert second.kwargs['params']['offset'] == '2'

    @pytest.mark.asyncio
    async def test_create_posts_json_body(self, client, http):
        """Test device creation sends the device as the JSON body."""
        http.request.side_effect = [http_response(body={})]

        result = await client.create(device_record())

        assert result.ok
        call = http.request.call_args
        assert call.kwargs['method'] == 'POST'
        assert call.kwargs['url'] == f'{BASE_URL}/devices'
        assert call.kwargs['params'] is None
        body = call.kwargs['json']['device']
        assert body['devEui'] == DEV_EUI.lower()
        assert body['applicationId'] == 'target-app'
        assert body['deviceProfileId'] == 'target-profile'
        assert body['skipFcntCheck'] is True

    @pytest.mark.asyncio
    async def test_create_conflict(self, client, http):
        """Test a duplicate create is reported as a conflict."""
        http.request.side_effect = [
            http_response(409, {'code': 6, 'message': 'object already exists'})
        ]

        result = await client.create(device_record())

        assert result.status == OperationStatus.CONFLICT
        assert 'object already exists' in result.detail

    @pytest.mark.asyncio
    async def test_update_falls_back_to_post(self, client, http):
        """Test a rejected PUT update is retried once as POST."""
        http.request.side_effect = [http_response(405), http_response(200)]

        result = await client.update(DEV_EUI, device_record())

        assert result.ok
        methods = [c.kwargs['method'] for c in http.request.call_args_list]
        assert methods == ['PUT', 'POST']
        assert http.request.call_args.kwargs['url'] == (
            f'{BASE_URL}/devices/{DEV_EUI.lower()}'
        )

    @pytest.mark.asyncio
    async def test_keys_update_first_then_create(self, client, http):
        """Test key assignment starts with update and falls back to create."""
        http.request.side_effect = [http_response(404), http_response(200)]

        result = await client.set_credential(
            DEV_EUI, Credential(dev_eui=DEV_EUI, app_key=APP_KEY)
        )

        assert result.ok
        calls = http.request.call_args_list
        assert [c.kwargs['method'] for c in calls] == ['PUT', 'POST']
        assert calls[0].kwargs['url'] == f'{BASE_URL}/devices/{DEV_EUI.lower()}/keys'
        keys = calls[1].kwargs['json']['deviceKeys']
        assert keys['nwkKey'] == APP_KEY
        assert keys['appKey'] == APP_KEY

    @pytest.mark.asyncio
    async def test_activation_unsupported_by_default(self, client, http):
        """Test activation is not attempted on a REST backend by default."""
        session = SessionState(dev_eui=DEV_EUI, dev_addr='01020304', app_s_key='2' * 32)

        result = await client.activate(DEV_EUI, session)

        assert result.status == OperationStatus.UNSUPPORTED
        http.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_tls_verification_disabled(self, http):
        """Test verify_tls=false is passed to each request."""
        client = RestBackendClient(
            make_backend_config('Target LNS', protocol='rest', verify_tls=False)
        )
        http.request.side_effect = [http_response(body={'totalCount': 0})]

        await client.list_tenants()

        assert http.request.call_args.kwargs['ssl'] is False


class TestResponses:
    """Test response and failure translation."""

    @pytest.mark.parametrize(
        'status, body, error_class',
        [
            (404, {'message': 'object does not exist'}, BackendNotFoundError),
            (409, {'message': 'conflict'}, BackendConflictError),
            (500, {'message': 'Object already exists'}, BackendConflictError),
            (401, {'message': 'invalid token'}, BackendAuthenticationError),
            (403, 'forbidden', BackendAuthenticationError),
            (405, None, BackendUnsupportedError),
            (501, None, BackendUnsupportedError),
            (500, 'internal error', BackendProtocolError),
            (400, {'error': 'bad request'}, BackendProtocolError),
        ],
    )
    @pytest.mark.asyncio
    async def test_status_mapping(self, client, http, status, body, error_class):
        """Test HTTP failures become typed backend errors."""
        http.request.side_effect = [http_response(status, body)]

        with pytest.raises(error_class) as exc_info:
            await client.get_device(DEV_EUI)

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_error_message_detail(self, client, http):
        """Test the backend message is kept in the error."""
        http.request.side_effect = [http_response(400, {'message': 'bad devEui'})]

        with pytest.raises(BackendProtocolError) as exc_info:
            await client.get_device(DEV_EUI)

        assert 'bad devEui' in str(exc_info.value)
        assert exc_info.value.response_data == {'message': 'bad devEui'}

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, http):
        """Test a non-JSON success body is a protocol error."""
        http.request.side_effect = [http_response(200, '<html>gateway</html>')]

        with pytest.raises(BackendProtocolError):
            await client.get_device(DEV_EUI)

    @pytest.mark.asyncio
    async def test_timeout(self, client, http):
        """Test a client timeout becomes a backend timeout."""
        http.request.side_effect = asyncio.TimeoutError()

        with pytest.raises(BackendTimeoutError):
            await client.get_device(DEV_EUI)

    @pytest.mark.asyncio
    async def test_timeout_on_create_is_classified(self, client, http):
        """Test a timed-out create reports TIMEOUT rather than raising."""
        http.request.side_effect = asyncio.TimeoutError()

        result = await client.create(device_record())

        assert result.status == OperationStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_network_error(self, client, http):
        """Test connection failures become transport errors."""
        http.request.side_effect = aiohttp.ClientConnectionError('refused')

        with pytest.raises(BackendTransportError):
            await client.get_device(DEV_EUI)

    @pytest.mark.asyncio
    async def test_connection_test_never_raises(self, client, http):
        """Test a failing connectivity test is reported, not raised."""
        http.request.side_effect = aiohttp.ClientConnectionError('refused')

        result = await client.test_connection()

        assert result.ok is False
        assert 'refused' in result.error

    @pytest.mark.asyncio
    async def test_connection_test_counts_applications(self, client, http):
        """Test a working backend reports its application count."""
        http.request.side_effect = [
            http_response(body={'totalCount': 4, 'result': [{'id': 'app-1'}]})
        ]

        result = await client.test_connection()

        assert result.ok is True
        assert result.applications == 4
        assert http.request.call_args.kwargs['params']['limit'] == '1'
