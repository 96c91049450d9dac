"""Configuration management for LoRaWAN Migration Tool."""

from enum import Enum
from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import yaml
from dotenv import load_dotenv

from ..credentials.mapper import LoRaWANVersion


class BackendProtocol(str, Enum):
    """Wire protocol spoken by a backend instance."""

    RPC = 'rpc'
    REST = 'rest'


class BackendConfig(BaseModel):
    """Configuration for one device-management backend instance."""

    model_config = ConfigDict(extra='forbid')

    name: str = Field(default='backend', description='Display name of the backend')
    url: str = Field(..., description='Backend base URL')
    api_key: str = Field(..., min_length=1, description='API key (bearer token)')
    tenant_id: Optional[str] = Field(default=None, description='Tenant ID')
    tenant_name: Optional[str] = Field(default=None, description='Tenant name')
    protocol: BackendProtocol = Field(..., description='Wire protocol: rpc or rest')
    lorawan_version: LoRaWANVersion = Field(
        default=LoRaWANVersion.V1_0, description='LoRaWAN version of the devices'
    )
    timeout: float = Field(default=10.0, description='Per-call timeout in seconds')
    verify_tls: bool = Field(
        default=True, description='Verify TLS certificates (REST only)'
    )
    ca_cert: Optional[str] = Field(
        default=None, description='PEM file trusted for self-signed servers'
    )
    supports_activation: Optional[bool] = Field(
        default=None,
        description='Backend accepts session activation (default depends on protocol)',
    )
    rate_limit_per_second: float = Field(
        default=10.0, description='API requests per second limit'
    )
    page_size: int = Field(default=100, description='Page size for list calls')

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Validate backend URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('lorawan_version', mode='before')
    @classmethod
    def validate_lorawan_version(cls, v):
        """Accept patch-level spellings like 1.0.3."""
        return LoRaWANVersion.parse(v)

    @field_validator('timeout', 'rate_limit_per_second')
    @classmethod
    def validate_positive(cls, v):
        """Validate value is positive."""
        if v <= 0:
            raise ValueError('Value must be positive')
        return v

    @field_validator('page_size')
    @classmethod
    def validate_page_size(cls, v):
        """Validate page size is positive."""
        if v <= 0:
            raise ValueError('Page size must be positive')
        return v

    @model_validator(mode='after')
    def validate_tls(self):
        """gRPC channels cannot skip verification; a CA file must be given."""
        if self.protocol == BackendProtocol.RPC and not self.verify_tls:
            raise ValueError(
                'verify_tls=false is not supported for the rpc protocol; '
                'set ca_cert to trust a self-signed server'
            )
        if self.ca_cert is not None and not Path(self.ca_cert).is_file():
            raise ValueError(f'ca_cert file not found: {self.ca_cert}')
        return self

    @property
    def activation_supported(self) -> bool:
        """Effective activation capability."""
        if self.supports_activation is not None:
            return self.supports_activation
        return self.protocol == BackendProtocol.RPC


class MigrationConfig(BaseModel):
    """Migration-specific configuration."""

    model_config = ConfigDict(extra='forbid')

    batch_size: int = Field(default=10, description='Devices migrated concurrently')
    batch_pause: float = Field(
        default=1.0, description='Pause between batches in seconds'
    )
    key_settle_delay: float = Field(
        default=1.0, description='Pause between device creation and key assignment'
    )
    skip_fcnt_check: bool = Field(
        default=True, description='Disable frame-counter checks on migrated devices'
    )
    activate_sessions: bool = Field(
        default=False, description='Copy session state when the target supports it'
    )
    timeout_retries: int = Field(
        default=0, description='Retries for provisioning calls that time out'
    )
    target_application_id: Optional[str] = Field(
        default=None, description='Default target application'
    )
    target_device_profile_id: Optional[str] = Field(
        default=None, description='Default target device profile'
    )

    @field_validator('batch_size')
    @classmethod
    def validate_batch_size(cls, v):
        """Validate batch size is positive."""
        if v <= 0:
            raise ValueError('Batch size must be positive')
        return v

    @field_validator('batch_pause', 'key_settle_delay', 'timeout_retries')
    @classmethod
    def validate_non_negative(cls, v):
        """Validate value is not negative."""
        if v < 0:
            raise ValueError('Value must not be negative')
        return v


class StoreConfig(BaseModel):
    """Local record store configuration."""

    model_config = ConfigDict(extra='forbid')

    url: str = Field(
        default='sqlite+aiosqlite:///lorawan-migrate.db',
        description='SQLAlchemy async URL, or memory:// for an in-process store',
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra='forbid')

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: Optional[str] = Field(default=None, description='Log format')

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for LoRaWAN Migration Tool."""

    model_config = ConfigDict(extra='forbid')

    source: BackendConfig = Field(..., description='Source backend')
    target: BackendConfig = Field(..., description='Target backend')
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    store: StoreConfig = Field(
        default_factory=StoreConfig, description='Record store settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        # Load .env file if it exists
        load_dotenv()

        config_data = {
            'source': cls._backend_from_env('SOURCE', 'Source LNS'),
            'target': cls._backend_from_env('TARGET', 'Target LNS'),
            'migration': {
                'batch_size': int(os.getenv('MIGRATION_BATCH_SIZE', 10)),
                'batch_pause': float(os.getenv('MIGRATION_BATCH_PAUSE', 1.0)),
                'target_application_id': os.getenv('MIGRATION_TARGET_APPLICATION_ID'),
                'target_device_profile_id': os.getenv(
                    'MIGRATION_TARGET_DEVICE_PROFILE_ID'
                ),
            },
            'store': {
                'url': os.getenv('STORE_URL'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        # Remove None values
        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _backend_from_env(prefix: str, default_name: str) -> Dict[str, Any]:
        """Read one backend section from ``<PREFIX>_*`` variables."""
        return {
            'name': os.getenv(f'{prefix}_NAME', default_name),
            'url': os.getenv(f'{prefix}_URL'),
            'api_key': os.getenv(f'{prefix}_API_KEY'),
            'tenant_id': os.getenv(f'{prefix}_TENANT_ID'),
            'tenant_name': os.getenv(f'{prefix}_TENANT_NAME'),
            'protocol': os.getenv(f'{prefix}_PROTOCOL'),
            'lorawan_version': os.getenv(f'{prefix}_LORAWAN_VERSION'),
        }

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.model_dump(mode='json'),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'source': {
                'name': 'Source LNS',
                'url': 'http://old-lns.example.com:8080',
                'api_key': 'your-source-api-key',
                'tenant_id': 'your-source-tenant-id',
                'protocol': 'rpc',
                'lorawan_version': '1.0.x',
                'timeout': 10,
            },
            'target': {
                'name': 'Target LNS',
                'url': 'https://new-lns.example.com',
                'api_key': 'your-target-api-key',
                'tenant_id': 'your-target-tenant-id',
                'protocol': 'rest',
                'lorawan_version': '1.0.x',
                'timeout': 10,
                'verify_tls': True,
            },
            'migration': {
                'batch_size': 10,
                'batch_pause': 1.0,
                'key_settle_delay': 1.0,
                'skip_fcnt_check': True,
                'activate_sessions': False,
                'timeout_retries': 0,
                'target_application_id': 'target-application-id',
                'target_device_profile_id': 'target-device-profile-id',
            },
            'store': {
                'url': 'sqlite+aiosqlite:///lorawan-migrate.db',
            },
            'logging': {
                'level': 'INFO',
                'file': 'migration.log',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
