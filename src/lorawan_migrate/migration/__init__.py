"""Migration engine, orchestrator, scheduler and discovery."""

from .discovery import DiscoverySweep
from .engine import (
    ApplicationDevice,
    ApplicationDevices,
    ApplicationListing,
    MigrationEngine,
    ProfileListing,
)
from .orchestrator import MigrationOrchestrator
from .scheduler import BatchScheduler, chunked

__all__ = [
    'ApplicationDevice',
    'ApplicationDevices',
    'ApplicationListing',
    'BatchScheduler',
    'DiscoverySweep',
    'MigrationEngine',
    'MigrationOrchestrator',
    'ProfileListing',
    'chunked',
]
