"""Tests for the discovery sweep."""

import pytest

from lorawan_migrate.api.exceptions import BackendProtocolError, BackendTransportError
from lorawan_migrate.credentials.mapper import PLACEHOLDER_KEY
from lorawan_migrate.migration.discovery import DiscoverySweep

from conftest import APP_KEY, DEV_EUI, seed_device

OTHER_EUI = '70B3D57ED0049D2B'
ACTIVATION = {
    'devEui': DEV_EUI.lower(),
    'devAddr': '01ab02cd',
    'nwkSEncKey': '2' * 32,
    'appSKey': '3' * 32,
    'fCntUp': 10,
    'nFCntDown': 4,
}


@pytest.fixture
def sweep(source, store):
    return DiscoverySweep(source, store)


class TestDiscoverySweep:
    """Test copying the source backend into the record store."""

    @pytest.mark.asyncio
    async def test_syncs_devices_keys_and_profiles(self, source, store, sweep):
        """Test devices, credentials and profiles land in the store."""
        source.add_application('app-1', 'Meters')
        source.add_profile('profile-1', 'Class A', region='EU868')
        source.add_device(DEV_EUI, name='meter-1', nwk_key=APP_KEY)
        source.add_device(OTHER_EUI, name='meter-2', app_key='4' * 32)

        summary = await sweep.run()

        assert summary.total == 2
        assert summary.synced == 2
        assert summary.errors == []
        assert summary.profiles_cached == 1

        device = await store.get_device(DEV_EUI)
        assert device.name == 'meter-1'
        assert device.application_id == 'app-1'
        assert device.application_name == 'Meters'
        assert device.device_profile_id == 'profile-1'

        assert (await store.get_credential(DEV_EUI)).app_key == APP_KEY
        assert (await store.get_credential(OTHER_EUI)).app_key == '4' * 32

        profile = await store.get_device_profile('profile-1')
        assert profile.name == 'Class A'
        assert profile.region == 'EU868'

    @pytest.mark.asyncio
    async def test_profile_fetched_once(self, source, sweep):
        """Test a shared profile is fetched once per sweep."""
        source.add_application('app-1')
        source.add_profile('profile-1')
        source.add_device(DEV_EUI)
        source.add_device(OTHER_EUI)

        await sweep.run()

        assert source.operations().count('get_device_profile') == 1

    @pytest.mark.asyncio
    async def test_profile_already_stored_is_not_fetched(self, source, store, sweep):
        """Test a profile already in the store is not fetched again."""
        source.add_application('app-1')
        source.add_profile('profile-1')
        source.add_device(DEV_EUI)
        await sweep.run()

        source.calls.clear()
        summary = await DiscoverySweep(source, store).run()

        assert 'get_device_profile' not in source.operations()
        assert summary.profiles_cached == 0

    @pytest.mark.asyncio
    async def test_device_without_keys_gets_placeholder(self, source, store, sweep):
        """Test a device without keys is stored with the placeholder credential."""
        source.add_application('app-1')
        source.add_profile('profile-1')
        source.add_device(DEV_EUI)

        summary = await sweep.run()

        assert summary.synced == 1
        credential = await store.get_credential(DEV_EUI)
        assert credential.is_placeholder
        assert credential.app_key == PLACEHOLDER_KEY

    @pytest.mark.asyncio
    async def test_placeholder_never_overwrites_real_key(self, source, store, sweep):
        """Test a stored real key survives a sweep that only sees the placeholder."""
        await seed_device(store, app_key=APP_KEY)
        source.add_application('app-1')
        source.add_profile('profile-1')
        source.add_device(DEV_EUI, name='renamed')

        await sweep.run()

        assert (await store.get_credential(DEV_EUI)).app_key == APP_KEY
        assert (await store.get_device(DEV_EUI)).name == 'renamed'

    @pytest.mark.asyncio
    async def test_real_key_replaces_stored_key(self, source, store, sweep):
        """Test a newly read real key replaces the stored one."""
        await seed_device(store, app_key=APP_KEY)
        source.add_application('app-1')
        source.add_profile('profile-1')
        source.add_device(DEV_EUI, nwk_key='5' * 32)

        await sweep.run()

        assert (await store.get_credential(DEV_EUI)).app_key == '5' * 32

    @pytest.mark.asyncio
    async def test_session_saved_only_when_joined(self, source, store, sweep):
        """Test session state is stored for joined devices only."""
        source.add_application('app-1')
        source.add_profile('profile-1')
        source.add_device(DEV_EUI, activation=ACTIVATION)
        source.add_device(OTHER_EUI)

        await sweep.run()

        session = await store.get_session_keys(DEV_EUI)
        assert session.dev_addr == '01AB02CD'
        assert session.app_s_key == '3' * 32
        assert session.f_cnt_up == 10
        assert session.f_cnt_down == 4
        assert await store.get_session_keys(OTHER_EUI) is None

    @pytest.mark.asyncio
    async def test_device_error_is_collected(self, source, store, sweep):
        """Test one unreadable device does not stop the sweep."""
        source.add_application('app-1')
        source.add_profile('profile-1')
        source.add_device(DEV_EUI)
        source.add_device(OTHER_EUI)
        source.fail['get_device'] = [BackendTransportError('connection reset')]

        summary = await sweep.run()

        assert summary.total == 2
        assert summary.synced == 1
        assert len(summary.errors) == 1
        assert summary.errors[0].dev_eui == DEV_EUI
        assert summary.errors[0].application_id == 'app-1'
        assert 'connection reset' in summary.errors[0].error
        assert await store.get_device(DEV_EUI) is None
        assert await store.get_device(OTHER_EUI) is not None

    @pytest.mark.asyncio
    async def test_missing_profile_does_not_block_device(self, source, store, sweep):
        """Test a device whose profile is gone on the source is still stored."""
        source.add_application('app-1')
        source.add_device(DEV_EUI, profile_id='gone', nwk_key=APP_KEY)
        source.add_device(OTHER_EUI, profile_id='gone')

        summary = await sweep.run()

        assert summary.synced == 2
        assert summary.errors == []
        assert summary.profiles_cached == 0
        assert source.operations().count('get_device_profile') == 1
        device = await store.get_device(DEV_EUI)
        assert device.device_profile_id == 'gone'
        assert (await store.get_credential(DEV_EUI)).app_key == APP_KEY
        assert await store.get_device_profile('gone') is None

    @pytest.mark.asyncio
    async def test_application_error_is_collected(self, source, store, sweep):
        """Test a failed device listing skips only that application."""
        source.add_application('app-1')
        source.add_application('app-2')
        source.add_profile('profile-1')
        source.add_device(OTHER_EUI, application_id='app-2')
        source.fail['list_devices'] = [BackendProtocolError('bad page')]

        summary = await sweep.run()

        assert summary.synced == 1
        assert summary.errors[0].application_id == 'app-1'
        assert summary.errors[0].dev_eui is None

    @pytest.mark.asyncio
    async def test_application_list_error_propagates(self, source, sweep):
        """Test the sweep fails when applications cannot be listed."""
        source.fail['list_applications'] = [BackendTransportError('unreachable')]

        with pytest.raises(BackendTransportError):
            await sweep.run()

    @pytest.mark.asyncio
    async def test_empty_backend(self, sweep):
        """Test a backend without applications yields an empty summary."""
        summary = await sweep.run()

        assert summary.total == 0
        assert summary.synced == 0
