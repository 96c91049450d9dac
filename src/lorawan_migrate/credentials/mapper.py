"""Mapping between stored join credentials and backend key fields.

LoRaWAN 1.0.x devices have a single root key. Backends built for 1.1 expose two
root key fields, ``nwkKey`` and ``appKey``, and 1.0.x devices conventionally keep
their key in ``nwkKey``. Which field holds the real value therefore depends on
the device's LoRaWAN version, and some backends consult the "other" field.
"""

from enum import Enum
from typing import NamedTuple, Optional, Union

PLACEHOLDER_KEY = '0' * 32
PLACEHOLDER_EUI = '0' * 16


class LoRaWANVersion(str, Enum):
    """LoRaWAN major version family."""

    V1_0 = '1.0.x'
    V1_1 = '1.1.x'

    @classmethod
    def parse(cls, value: Union[str, 'LoRaWANVersion']) -> 'LoRaWANVersion':
        """Parse a version hint such as ``1.0.x``, ``1.0.3`` or ``1.1``.

        Args:
            value: Version string or enum member

        Returns:
            Matching version family

        Raises:
            ValueError: If the value names neither family
        """
        if isinstance(value, cls):
            return value

        text = str(value).strip().lower().lstrip('v')
        if text.startswith('1.0'):
            return cls.V1_0
        if text.startswith('1.1'):
            return cls.V1_1

        raise ValueError(f'Unsupported LoRaWAN version: {value}')


class KeyFields(NamedTuple):
    """Root key values as they appear on the wire."""

    nwk_key: str
    app_key: str


def is_placeholder(value: Optional[str]) -> bool:
    """Check whether a key or EUI is missing or the all-zero sentinel."""
    if value is None:
        return True
    text = value.strip()
    return not text or set(text) == {'0'}


class CredentialFieldMapper:
    """Pure translation between one application key and the wire key fields."""

    def __init__(self, version: Union[str, 'LoRaWANVersion'] = LoRaWANVersion.V1_0):
        """Initialize mapper.

        Args:
            version: LoRaWAN version hint of the backend's devices
        """
        self.version = LoRaWANVersion.parse(version)

    def read(self, fields: KeyFields) -> str:
        """Extract the application key from wire fields.

        Args:
            fields: Values of the legacy network-key and application-key fields

        Returns:
            Upper-cased application key, or the placeholder if neither field
            carries a real key
        """
        if self.version is LoRaWANVersion.V1_0:
            preferred, fallback = fields.nwk_key, fields.app_key
        else:
            preferred, fallback = fields.app_key, fields.nwk_key

        for candidate in (preferred, fallback):
            if not is_placeholder(candidate):
                return candidate.strip().upper()

        return PLACEHOLDER_KEY

    def write(self, app_key: str) -> KeyFields:
        """Build wire fields for an application key.

        Both fields always carry the same value so the record is correct no
        matter which one the remote backend consults.
        """
        key = app_key.strip().upper() if app_key else PLACEHOLDER_KEY
        return KeyFields(nwk_key=key, app_key=key)
