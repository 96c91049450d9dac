"""Migration bookkeeping models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .device import normalize_dev_eui


class MigrationStatus(str, Enum):
    """Persisted status of one migration attempt."""

    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    REQUIRES_MANUAL_STEPS = 'requires_manual_steps'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        """Whether the status ends an attempt."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        MigrationStatus.COMPLETED,
        MigrationStatus.REQUIRES_MANUAL_STEPS,
        MigrationStatus.FAILED,
    }
)


class MigrationState(str, Enum):
    """States of the per-device migration state machine."""

    PENDING = 'pending'
    FETCHING = 'fetching'
    PROVISIONING = 'provisioning'
    ASSIGNING_CREDENTIAL = 'assigning_credential'
    COMPLETED = 'completed'
    REQUIRES_MANUAL_STEPS = 'requires_manual_steps'
    FAILED = 'failed'

    def to_status(self) -> MigrationStatus:
        """Persisted status for this state."""
        if self in (
            MigrationState.FETCHING,
            MigrationState.PROVISIONING,
            MigrationState.ASSIGNING_CREDENTIAL,
        ):
            return MigrationStatus.IN_PROGRESS
        return MigrationStatus(self.value)


class MigrationOptions(BaseModel):
    """Parameters of a migration run, applied to every device."""

    target_application_id: str = Field(
        ..., min_length=1, description='Application on the target backend'
    )
    target_device_profile_id: str = Field(
        ..., min_length=1, description='Device profile on the target backend'
    )
    skip_fcnt_check: bool = Field(
        default=True, description='Disable frame-counter validation on the target'
    )
    activate_sessions: bool = Field(
        default=False, description='Copy stored session state to the target'
    )
    key_settle_delay: float = Field(
        default=1.0,
        ge=0,
        description='Seconds to wait between provisioning and key assignment',
    )
    timeout_retries: int = Field(
        default=0, ge=0, description='Retries of provisioning calls that timed out'
    )

    def snapshot(self) -> Dict[str, Any]:
        """Serializable subset recorded with each migration attempt."""
        return {
            'targetApplicationId': self.target_application_id,
            'targetDeviceProfileId': self.target_device_profile_id,
            'skipFcntCheck': self.skip_fcnt_check,
        }


class MigrationRecord(BaseModel):
    """One row of migration history; one per attempt, never mutated afterwards."""

    id: Optional[int] = Field(default=None, description='Store-assigned row ID')
    dev_eui: str = Field(..., description='Device EUI')
    source_backend_name: str = Field(..., description='Source backend name')
    target_backend_name: str = Field(..., description='Target backend name')
    status: MigrationStatus = Field(
        default=MigrationStatus.PENDING, description='Attempt status'
    )
    options_snapshot: Dict[str, Any] = Field(
        default_factory=dict, description='Migration parameters and notes'
    )
    error_message: Optional[str] = Field(default=None, description='Failure reason')
    started_at: datetime = Field(
        default_factory=datetime.now, description='Attempt start time'
    )
    completed_at: Optional[datetime] = Field(
        default=None, description='Set once the attempt reaches a terminal status'
    )

    @field_validator('dev_eui')
    @classmethod
    def validate_dev_eui(cls, v):
        """Validate and canonicalise the DevEUI."""
        return normalize_dev_eui(v)

    @model_validator(mode='after')
    def check_completion(self):
        """``completed_at`` is present exactly for terminal statuses."""
        if self.status.is_terminal != (self.completed_at is not None):
            raise ValueError(
                f'completed_at must be set if and only if status is terminal '
                f'(status={self.status.value})'
            )
        return self

    @property
    def notes(self) -> List[str]:
        """Operator notes recorded with the attempt."""
        return list(self.options_snapshot.get('notes', []))


class DeviceMigrationResult(BaseModel):
    """Outcome of migrating one device."""

    dev_eui: str = Field(..., description='Device EUI')
    status: MigrationStatus = Field(..., description='Terminal status')
    notes: List[str] = Field(default_factory=list, description='Operator notes')
    error: Optional[str] = Field(default=None, description='Failure reason')
    migration_id: Optional[int] = Field(
        default=None, description='ID of the recorded MigrationRecord'
    )
    duration_ms: int = Field(default=0, description='Wall time of the attempt')
    transitions: List[MigrationState] = Field(
        default_factory=list, description='States visited, in order'
    )

    @property
    def requires_manual_steps(self) -> bool:
        """Whether an operator has to finish the device by hand."""
        return self.status == MigrationStatus.REQUIRES_MANUAL_STEPS

    @property
    def successful(self) -> bool:
        """Completed or parked for manual steps; anything but failed."""
        return self.status in (
            MigrationStatus.COMPLETED,
            MigrationStatus.REQUIRES_MANUAL_STEPS,
        )


class SyncError(BaseModel):
    """A per-unit error collected during a batch or sweep."""

    dev_eui: Optional[str] = Field(default=None, description='Affected device')
    application_id: Optional[str] = Field(
        default=None, description='Affected application'
    )
    error: str = Field(..., description='Human-readable reason')


class BatchSummary(BaseModel):
    """Aggregate result of a batch migration."""

    total: int = Field(default=0, description='Devices requested')
    successful: int = Field(
        default=0, description='Devices completed or requiring manual steps'
    )
    failed: int = Field(default=0, description='Devices that failed')
    errors: List[SyncError] = Field(default_factory=list, description='Failures')
    batches: int = Field(default=0, description='Chunks processed')
    cancelled: bool = Field(default=False, description='Stopped between chunks')
    results: List[DeviceMigrationResult] = Field(
        default_factory=list, description='Per-device results'
    )

    @property
    def manual_steps(self) -> int:
        """Devices that need an operator to finish them."""
        return sum(1 for r in self.results if r.requires_manual_steps)


class DiscoverySummary(BaseModel):
    """Aggregate result of a discovery sweep."""

    total: int = Field(default=0, description='Devices enumerated')
    synced: int = Field(default=0, description='Devices written to the store')
    errors: List[SyncError] = Field(default_factory=list, description='Failures')
    profiles_cached: int = Field(
        default=0, description='Device profiles newly written to the store'
    )
