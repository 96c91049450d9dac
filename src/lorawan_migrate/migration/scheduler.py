"""Chunked batch execution of device migrations."""

import asyncio
from typing import List, Optional, Sequence

from loguru import logger

from ..models.migration import (
    BatchSummary,
    DeviceMigrationResult,
    MigrationOptions,
    MigrationState,
    MigrationStatus,
    SyncError,
)
from ..store.base import RecordStoreError
from .orchestrator import MigrationOrchestrator


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    """Split items into consecutive chunks of at most ``size``."""
    if size <= 0:
        raise ValueError('Chunk size must be positive')
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchScheduler:
    """Drives the orchestrator over many devices.

    Devices within a chunk run concurrently; chunks run one after another
    with a fixed pause in between. Per-device failures are collected, while a
    record store failure aborts the run.
    """

    def __init__(
        self,
        orchestrator: MigrationOrchestrator,
        batch_size: int = 10,
        batch_pause: float = 1.0,
    ):
        """Initialize batch scheduler.

        Args:
            orchestrator: Per-device migration runner
            batch_size: Devices migrated concurrently
            batch_pause: Seconds to wait between chunks
        """
        if batch_size <= 0:
            raise ValueError('Batch size must be positive')
        if batch_pause < 0:
            raise ValueError('Batch pause must not be negative')

        self.orchestrator = orchestrator
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.logger = logger.bind(component='BatchScheduler')

    async def run(
        self,
        dev_euis: Sequence[str],
        options: MigrationOptions,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchSummary:
        """Migrate devices in chunks.

        Args:
            dev_euis: Devices to migrate, in order
            options: Migration parameters applied to every device
            cancel_event: When set, no further chunk is started

        Returns:
            Aggregate summary; ``successful`` counts completed and
            manual-steps outcomes, ``failed`` only failures

        Raises:
            RecordStoreError: If the record store is unavailable
        """
        chunks = chunked(list(dev_euis), self.batch_size)
        summary = BatchSummary(total=len(dev_euis))

        self.logger.info(
            f'Starting batch migration of {len(dev_euis)} devices '
            f'in {len(chunks)} batches'
        )

        for index, chunk in enumerate(chunks, start=1):
            if cancel_event is not None and cancel_event.is_set():
                self.logger.warning(
                    f'Batch migration cancelled before batch {index}/{len(chunks)}'
                )
                summary.cancelled = True
                break

            self.logger.info(f'Processing batch {index} ({len(chunk)} devices)')
            outcomes = await asyncio.gather(
                *(self.orchestrator.migrate_device(d, options) for d in chunk),
                return_exceptions=True,
            )
            summary.batches += 1

            for dev_eui, outcome in zip(chunk, outcomes):
                if isinstance(outcome, RecordStoreError) or (
                    isinstance(outcome, BaseException)
                    and not isinstance(outcome, Exception)
                ):
                    raise outcome
                if isinstance(outcome, Exception):
                    self.logger.error(f'Unexpected error migrating {dev_eui}: {outcome}')
                    outcome = DeviceMigrationResult(
                        dev_eui=dev_eui,
                        status=MigrationStatus.FAILED,
                        error=str(outcome) or outcome.__class__.__name__,
                        transitions=[MigrationState.PENDING, MigrationState.FAILED],
                    )
                self._tally(summary, outcome)

            if index < len(chunks) and self.batch_pause:
                await asyncio.sleep(self.batch_pause)

        self.logger.info(
            f'Batch migration complete. {summary.successful} successful, '
            f'{summary.failed} failed, {summary.manual_steps} require manual steps'
        )
        return summary

    @staticmethod
    def _tally(summary: BatchSummary, result: DeviceMigrationResult) -> None:
        summary.results.append(result)
        if result.successful:
            summary.successful += 1
        else:
            summary.failed += 1
            summary.errors.append(
                SyncError(dev_eui=result.dev_eui, error=result.error or 'unknown error')
            )
