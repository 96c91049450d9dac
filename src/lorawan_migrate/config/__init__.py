"""Configuration models."""

from .config import (
    BackendConfig,
    BackendProtocol,
    Config,
    LoggingConfig,
    MigrationConfig,
    StoreConfig,
)

__all__ = [
    'BackendConfig',
    'BackendProtocol',
    'Config',
    'LoggingConfig',
    'MigrationConfig',
    'StoreConfig',
]
