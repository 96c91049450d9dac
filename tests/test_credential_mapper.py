"""Tests for the credential field mapper."""

import pytest

from lorawan_migrate.credentials.mapper import (
    PLACEHOLDER_KEY,
    CredentialFieldMapper,
    KeyFields,
    LoRaWANVersion,
    is_placeholder,
)

KEY_A = 'A' * 32
KEY_B = 'B' * 32


class TestLoRaWANVersion:
    """Test version hint parsing."""

    @pytest.mark.parametrize(
        'value, expected',
        [
            ('1.0.x', LoRaWANVersion.V1_0),
            ('1.0.3', LoRaWANVersion.V1_0),
            ('v1.0', LoRaWANVersion.V1_0),
            ('1.1.x', LoRaWANVersion.V1_1),
            ('1.1.0', LoRaWANVersion.V1_1),
        ],
    )
    def test_parse(self, value, expected):
        """Test patch-level and family spellings."""
        assert LoRaWANVersion.parse(value) is expected

    def test_parse_rejects_unknown(self):
        """Test unknown versions are rejected."""
        with pytest.raises(ValueError):
            LoRaWANVersion.parse('2.0')


class TestIsPlaceholder:
    """Test placeholder detection."""

    def test_placeholders(self):
        """Test missing and all-zero values."""
        assert is_placeholder(None)
        assert is_placeholder('')
        assert is_placeholder(PLACEHOLDER_KEY)
        assert is_placeholder('0' * 16)

    def test_real_key(self):
        """Test a real key is not a placeholder."""
        assert not is_placeholder('0' * 31 + '1')


class TestRead:
    """Test extracting the application key."""

    def test_v10_prefers_legacy_field(self):
        """Test 1.0.x reads the network-key field first."""
        mapper = CredentialFieldMapper('1.0.x')
        assert mapper.read(KeyFields(nwk_key=KEY_A, app_key=KEY_B)) == KEY_A

    def test_v10_falls_back_to_app_key(self):
        """Test 1.0.x falls back when the legacy field is the placeholder."""
        mapper = CredentialFieldMapper('1.0.x')
        assert mapper.read(KeyFields(nwk_key=PLACEHOLDER_KEY, app_key=KEY_B)) == KEY_B
        assert mapper.read(KeyFields(nwk_key=None, app_key=KEY_B)) == KEY_B

    def test_v11_prefers_app_key(self):
        """Test 1.1.x reads the application-key field first."""
        mapper = CredentialFieldMapper('1.1.x')
        assert mapper.read(KeyFields(nwk_key=KEY_A, app_key=KEY_B)) == KEY_B

    def test_v11_falls_back_to_legacy_field(self):
        """Test 1.1.x falls back when the application-key field is the placeholder."""
        mapper = CredentialFieldMapper('1.1.x')
        assert mapper.read(KeyFields(nwk_key=KEY_A, app_key=PLACEHOLDER_KEY)) == KEY_A

    @pytest.mark.parametrize('version', ['1.0.x', '1.1.x'])
    def test_both_placeholder(self, version):
        """Test the placeholder is returned when neither field is real."""
        mapper = CredentialFieldMapper(version)
        assert mapper.read(KeyFields(nwk_key=None, app_key='')) == PLACEHOLDER_KEY
        assert (
            mapper.read(KeyFields(nwk_key=PLACEHOLDER_KEY, app_key=PLACEHOLDER_KEY))
            == PLACEHOLDER_KEY
        )

    def test_read_upper_cases(self):
        """Test keys are canonicalised to upper case."""
        mapper = CredentialFieldMapper('1.0.x')
        assert mapper.read(KeyFields(nwk_key='ab' * 16, app_key=None)) == 'AB' * 16


class TestWrite:
    """Test building wire fields."""

    @pytest.mark.parametrize('version', ['1.0.x', '1.1.x'])
    def test_write_populates_both_fields(self, version):
        """Test both fields carry the same key."""
        fields = CredentialFieldMapper(version).write('1' * 32)
        assert fields.nwk_key == '1' * 32
        assert fields.app_key == '1' * 32

    def test_written_key_reads_back_whichever_field_is_echoed(self):
        """Test a written key is read back even if a backend drops one field."""
        mapper = CredentialFieldMapper('1.0.x')
        fields = mapper.write(KEY_A)

        assert mapper.read(fields) == KEY_A
        assert mapper.read(KeyFields(nwk_key=fields.nwk_key, app_key=None)) == KEY_A
        assert mapper.read(KeyFields(nwk_key=None, app_key=fields.app_key)) == KEY_A
