"""Device, credential and profile models."""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..credentials.mapper import PLACEHOLDER_EUI, PLACEHOLDER_KEY, is_placeholder

_HEX = re.compile(r'^[0-9A-F]*$')
PLACEHOLDER_DEV_ADDR = '0' * 8


def normalize_hex(value: Optional[str], length: int, label: str = 'value') -> str:
    """Canonicalise a fixed-length hex identifier or key.

    Separators (``-``, ``:``, spaces) are dropped and the result is upper-cased.

    Raises:
        ValueError: If the value is not ``length`` hex characters
    """
    text = re.sub(r'[\s:\-]', '', value or '').upper()
    if text.startswith('0X'):
        text = text[2:]
    if len(text) != length or not _HEX.match(text):
        raise ValueError(f'{label} must be {length} hex characters, got {value!r}')
    return text


def normalize_dev_eui(value: str) -> str:
    """Canonicalise a DevEUI (8 bytes, upper-case hex)."""
    return normalize_hex(value, 16, 'DevEUI')


class DeviceRecord(BaseModel):
    """A device as known to the local record store or a backend."""

    dev_eui: str = Field(..., description='Device EUI (16 hex characters)')
    name: str = Field(default='', description='Device name')
    description: str = Field(default='', description='Device description')
    application_id: Optional[str] = Field(
        default=None, description='Owning application on the backend'
    )
    device_profile_id: Optional[str] = Field(
        default=None, description='Referenced device profile on the backend'
    )
    application_name: Optional[str] = Field(
        default=None, description='Owning application name, when known'
    )
    skip_fcnt_check: bool = Field(
        default=True, description='Disable frame-counter validation on the backend'
    )
    is_disabled: bool = Field(default=False, description='Device disabled')

    # Store bookkeeping
    updated_at: Optional[datetime] = Field(
        default=None, description='Last local update timestamp'
    )

    @field_validator('dev_eui')
    @classmethod
    def validate_dev_eui(cls, v):
        """Validate and canonicalise the DevEUI."""
        return normalize_dev_eui(v)

    @field_validator('name', 'description', mode='before')
    @classmethod
    def default_empty_text(cls, v):
        """Treat missing text fields as empty strings."""
        return v or ''


class Credential(BaseModel):
    """OTAA join credential of one device."""

    dev_eui: str = Field(..., description='Device EUI')
    join_eui: str = Field(
        default=PLACEHOLDER_EUI, description='JoinEUI / AppEUI (16 hex characters)'
    )
    app_key: str = Field(
        default=PLACEHOLDER_KEY, description='Root application key (32 hex characters)'
    )

    @field_validator('dev_eui')
    @classmethod
    def validate_dev_eui(cls, v):
        """Validate and canonicalise the DevEUI."""
        return normalize_dev_eui(v)

    @field_validator('join_eui', mode='before')
    @classmethod
    def validate_join_eui(cls, v):
        """Canonicalise the JoinEUI, using the placeholder when absent."""
        if is_placeholder(v):
            return PLACEHOLDER_EUI
        return normalize_hex(v, 16, 'JoinEUI')

    @field_validator('app_key', mode='before')
    @classmethod
    def validate_app_key(cls, v):
        """Canonicalise the AppKey, using the placeholder when absent."""
        if is_placeholder(v):
            return PLACEHOLDER_KEY
        return normalize_hex(v, 32, 'AppKey')

    @property
    def is_placeholder(self) -> bool:
        """True when the AppKey is unknown."""
        return is_placeholder(self.app_key)

    @classmethod
    def placeholder(cls, dev_eui: str) -> 'Credential':
        """Credential standing in for "unknown"."""
        return cls(dev_eui=dev_eui)


class SessionState(BaseModel):
    """ABP-style session (activation) state of a joined device."""

    dev_eui: str = Field(..., description='Device EUI')
    dev_addr: str = Field(default=PLACEHOLDER_DEV_ADDR, description='Device address')
    nwk_s_key: str = Field(default=PLACEHOLDER_KEY, description='Network session key')
    app_s_key: str = Field(
        default=PLACEHOLDER_KEY, description='Application session key'
    )
    f_cnt_up: int = Field(default=0, ge=0, description='Uplink frame counter')
    f_cnt_down: int = Field(default=0, ge=0, description='Downlink frame counter')

    @field_validator('dev_eui')
    @classmethod
    def validate_dev_eui(cls, v):
        """Validate and canonicalise the DevEUI."""
        return normalize_dev_eui(v)

    @field_validator('dev_addr', mode='before')
    @classmethod
    def validate_dev_addr(cls, v):
        """Canonicalise the device address."""
        if is_placeholder(v):
            return PLACEHOLDER_DEV_ADDR
        return normalize_hex(v, 8, 'DevAddr')

    @field_validator('nwk_s_key', 'app_s_key', mode='before')
    @classmethod
    def validate_session_key(cls, v):
        """Canonicalise session keys."""
        if is_placeholder(v):
            return PLACEHOLDER_KEY
        return normalize_hex(v, 32, 'session key')

    @property
    def is_placeholder(self) -> bool:
        """True when the device has never joined."""
        return is_placeholder(self.dev_addr) or (
            is_placeholder(self.nwk_s_key) and is_placeholder(self.app_s_key)
        )

    @classmethod
    def placeholder(cls, dev_eui: str) -> 'SessionState':
        """Session state standing in for "not joined"."""
        return cls(dev_eui=dev_eui)


class DeviceProfileRef(BaseModel):
    """Reference to a backend-scoped device profile."""

    profile_id: str = Field(..., description='Device profile ID on its backend')
    name: str = Field(default='', description='Profile name')
    region: Optional[str] = Field(default=None, description='Regional band, e.g. US915')
    mac_version: Optional[str] = Field(default=None, description='LoRaWAN MAC version')
    reg_params_revision: Optional[str] = Field(
        default=None, description='Regional parameters revision'
    )
    adr_algorithm_id: Optional[str] = Field(default=None, description='ADR algorithm')
    payload_codec: Optional[str] = Field(default=None, description='Payload codec runtime')
    uplink_interval: Optional[int] = Field(
        default=None, description='Expected uplink interval in seconds'
    )
    flush_queue_on_activate: bool = Field(
        default=False, description='Flush downlink queue on activation'
    )
    supports_otaa: bool = Field(default=True, description='Supports OTAA')
    supports_class_b: bool = Field(default=False, description='Supports Class-B')
    supports_class_c: bool = Field(default=False, description='Supports Class-C')


class ApplicationRef(BaseModel):
    """Reference to an application on a backend."""

    id: str = Field(..., description='Application ID')
    name: str = Field(default='', description='Application name')
    description: str = Field(default='', description='Application description')


class TenantRef(BaseModel):
    """Reference to a tenant on a backend."""

    id: str = Field(..., description='Tenant ID')
    name: str = Field(default='', description='Tenant name')
