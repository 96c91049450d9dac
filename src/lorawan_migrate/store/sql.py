"""SQLAlchemy-backed record store.

Tables:
    devices: one row per DevEUI, device fields plus its join credential
    session_keys: session state snapshots, latest row wins
    device_profiles: cached device profiles keyed by profile ID
    migration_history: one append-only row per migration attempt
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional

from loguru import logger
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..models.device import (
    Credential,
    DeviceProfileRef,
    DeviceRecord,
    SessionState,
    normalize_dev_eui,
)
from ..models.migration import MigrationRecord, MigrationStatus
from .base import (
    DEFAULT_HISTORY_LIMIT,
    RecordStore,
    RecordStoreError,
    resolve_completed_at,
)


class Base(DeclarativeBase):
    """Declarative base for record store tables."""

    pass


class DeviceRow(Base):
    __tablename__ = 'devices'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dev_eui: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    join_eui: Mapped[Optional[str]] = mapped_column(String(16))
    app_key: Mapped[Optional[str]] = mapped_column(String(32))
    name: Mapped[str] = mapped_column(String(255), default='')
    description: Mapped[str] = mapped_column(Text, default='')
    application_id: Mapped[Optional[str]] = mapped_column(String(64))
    application_name: Mapped[Optional[str]] = mapped_column(String(255))
    device_profile_id: Mapped[Optional[str]] = mapped_column(String(64))
    skip_fcnt_check: Mapped[bool] = mapped_column(Boolean, default=True)
    is_disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


class SessionKeysRow(Base):
    __tablename__ = 'session_keys'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dev_eui: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    dev_addr: Mapped[Optional[str]] = mapped_column(String(8))
    nwk_s_key: Mapped[Optional[str]] = mapped_column(String(32))
    app_s_key: Mapped[Optional[str]] = mapped_column(String(32))
    f_cnt_up: Mapped[int] = mapped_column(Integer, default=0)
    f_cnt_down: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


class DeviceProfileRow(Base):
    __tablename__ = 'device_profiles'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default='')
    region: Mapped[Optional[str]] = mapped_column(String(32))
    mac_version: Mapped[Optional[str]] = mapped_column(String(32))
    reg_params_revision: Mapped[Optional[str]] = mapped_column(String(32))
    adr_algorithm_id: Mapped[Optional[str]] = mapped_column(String(64))
    payload_codec: Mapped[Optional[str]] = mapped_column(String(32))
    uplink_interval: Mapped[Optional[int]] = mapped_column(Integer)
    flush_queue_on_activate: Mapped[bool] = mapped_column(Boolean, default=False)
    supports_otaa: Mapped[bool] = mapped_column(Boolean, default=True)
    supports_class_b: Mapped[bool] = mapped_column(Boolean, default=False)
    supports_class_c: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


class MigrationHistoryRow(Base):
    __tablename__ = 'migration_history'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dev_eui: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    source_backend: Mapped[str] = mapped_column(String(255), nullable=False)
    target_backend: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    migration_options: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


_PROFILE_FIELDS = (
    'name',
    'region',
    'mac_version',
    'reg_params_revision',
    'adr_algorithm_id',
    'payload_codec',
    'uplink_interval',
    'flush_queue_on_activate',
    'supports_otaa',
    'supports_class_b',
    'supports_class_c',
)


class SQLRecordStore(RecordStore):
    """Record store on an async SQLAlchemy engine (SQLite via aiosqlite by default)."""

    def __init__(self, url: str, echo: bool = False):
        """Initialize SQL record store.

        Args:
            url: SQLAlchemy async database URL
            echo: Log emitted SQL
        """
        self.url = url
        self.engine = create_async_engine(url, echo=echo)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )
        self.logger = logger.bind(component='SQLRecordStore')

    async def init(self) -> None:
        """Create tables if they do not exist."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise RecordStoreError(f'Cannot initialise record store: {e}')
        self.logger.info(f'Record store ready at {self.engine.url.render_as_string()}')

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session; database errors surface as RecordStoreError."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise RecordStoreError(f'Record store error: {e}')

    # Devices

    async def save_device(
        self, device: DeviceRecord, credential: Optional[Credential] = None
    ) -> None:
        async with self._session() as session:
            row = await session.scalar(
                select(DeviceRow).where(DeviceRow.dev_eui == device.dev_eui)
            )
            if row is None:
                row = DeviceRow(dev_eui=device.dev_eui)
                session.add(row)

            row.name = device.name
            row.description = device.description
            row.application_id = device.application_id
            row.application_name = device.application_name
            row.device_profile_id = device.device_profile_id
            row.skip_fcnt_check = device.skip_fcnt_check
            row.is_disabled = device.is_disabled
            row.updated_at = datetime.now()

            if credential is not None:
                row.join_eui = credential.join_eui
                row.app_key = credential.app_key

    async def get_device(self, dev_eui: str) -> Optional[DeviceRecord]:
        async with self._session() as session:
            row = await session.scalar(
                select(DeviceRow).where(DeviceRow.dev_eui == normalize_dev_eui(dev_eui))
            )
            return self._to_device(row) if row else None

    async def get_credential(self, dev_eui: str) -> Optional[Credential]:
        async with self._session() as session:
            row = await session.scalar(
                select(DeviceRow).where(DeviceRow.dev_eui == normalize_dev_eui(dev_eui))
            )
            if row is None:
                return None
            return Credential(
                dev_eui=row.dev_eui, join_eui=row.join_eui, app_key=row.app_key
            )

    async def get_all_devices(self) -> List[DeviceRecord]:
        async with self._session() as session:
            rows = await session.scalars(
                select(DeviceRow).order_by(DeviceRow.name, DeviceRow.dev_eui)
            )
            return [self._to_device(row) for row in rows]

    @staticmethod
    def _to_device(row: DeviceRow) -> DeviceRecord:
        return DeviceRecord(
            dev_eui=row.dev_eui,
            name=row.name,
            description=row.description,
            application_id=row.application_id,
            application_name=row.application_name,
            device_profile_id=row.device_profile_id,
            skip_fcnt_check=row.skip_fcnt_check,
            is_disabled=row.is_disabled,
            updated_at=row.updated_at,
        )

    # Session keys

    async def save_session_keys(self, session_state: SessionState) -> None:
        async with self._session() as session:
            session.add(
                SessionKeysRow(
                    dev_eui=session_state.dev_eui,
                    dev_addr=session_state.dev_addr,
                    nwk_s_key=session_state.nwk_s_key,
                    app_s_key=session_state.app_s_key,
                    f_cnt_up=session_state.f_cnt_up,
                    f_cnt_down=session_state.f_cnt_down,
                )
            )

    async def get_session_keys(self, dev_eui: str) -> Optional[SessionState]:
        async with self._session() as session:
            row = await session.scalar(
                select(SessionKeysRow)
                .where(SessionKeysRow.dev_eui == normalize_dev_eui(dev_eui))
                .order_by(SessionKeysRow.id.desc())
                .limit(1)
            )
            if row is None:
                return None
            return SessionState(
                dev_eui=row.dev_eui,
                dev_addr=row.dev_addr,
                nwk_s_key=row.nwk_s_key,
                app_s_key=row.app_s_key,
                f_cnt_up=row.f_cnt_up,
                f_cnt_down=row.f_cnt_down,
            )

    # Device profiles

    async def save_device_profile(self, profile: DeviceProfileRef) -> None:
        async with self._session() as session:
            row = await session.scalar(
                select(DeviceProfileRow).where(
                    DeviceProfileRow.profile_id == profile.profile_id
                )
            )
            if row is None:
                row = DeviceProfileRow(profile_id=profile.profile_id)
                session.add(row)

            for field in _PROFILE_FIELDS:
                setattr(row, field, getattr(profile, field))

    async def get_device_profile(self, profile_id: str) -> Optional[DeviceProfileRef]:
        async with self._session() as session:
            row = await session.scalar(
                select(DeviceProfileRow).where(DeviceProfileRow.profile_id == profile_id)
            )
            if row is None:
                return None
            return DeviceProfileRef(
                profile_id=row.profile_id,
                **{field: getattr(row, field) for field in _PROFILE_FIELDS},
            )

    # Migration history

    async def save_migration_record(self, record: MigrationRecord) -> int:
        async with self._session() as session:
            row = MigrationHistoryRow(
                dev_eui=record.dev_eui,
                source_backend=record.source_backend_name,
                target_backend=record.target_backend_name,
                status=record.status.value,
                error_message=record.error_message,
                migration_options=record.options_snapshot,
                started_at=record.started_at,
                completed_at=record.completed_at,
            )
            session.add(row)
            await session.flush()
            return row.id

    async def update_migration_status(
        self,
        record_id: int,
        status: MigrationStatus,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        status = MigrationStatus(status)
        completed_at = resolve_completed_at(status, completed_at)

        async with self._session() as session:
            row = await session.get(MigrationHistoryRow, record_id)
            if row is None:
                raise RecordStoreError(f'Migration record {record_id} not found')

            row.status = status.value
            row.error_message = error
            row.completed_at = completed_at

    async def get_migration_history(
        self,
        dev_eui: Optional[str] = None,
        limit: Optional[int] = DEFAULT_HISTORY_LIMIT,
    ) -> List[MigrationRecord]:
        query = select(MigrationHistoryRow).order_by(
            MigrationHistoryRow.started_at.desc(), MigrationHistoryRow.id.desc()
        )
        if dev_eui:
            query = query.where(MigrationHistoryRow.dev_eui == normalize_dev_eui(dev_eui))
        if limit is not None:
            query = query.limit(limit)

        async with self._session() as session:
            rows = await session.scalars(query)
            return [
                MigrationRecord(
                    id=row.id,
                    dev_eui=row.dev_eui,
                    source_backend_name=row.source_backend,
                    target_backend_name=row.target_backend,
                    status=MigrationStatus(row.status),
                    options_snapshot=row.migration_options or {},
                    error_message=row.error_message,
                    started_at=row.started_at,
                    completed_at=row.completed_at,
                )
                for row in rows
            ]
