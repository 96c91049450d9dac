"""Join-credential field mapping."""

from .mapper import (
    PLACEHOLDER_EUI,
    PLACEHOLDER_KEY,
    CredentialFieldMapper,
    KeyFields,
    LoRaWANVersion,
    is_placeholder,
)

__all__ = [
    'PLACEHOLDER_EUI',
    'PLACEHOLDER_KEY',
    'CredentialFieldMapper',
    'KeyFields',
    'LoRaWANVersion',
    'is_placeholder',
]
