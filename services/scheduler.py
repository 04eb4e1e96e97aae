import asyncio
from contextlib import suppress

from core.config import Settings, settings
from core.logger import log

from sqlalchemy.orm import Session

from db.session import SessionLocal
from services.document_processor import DocumentProcessor
from services.sync_service import SyncService


class Scheduler:
    """
    Background worker: pending document jobs every cycle, then an
    accounting sync cycle when SYNC_ENABLED.
    """

    def __init__(
        self,
        processor: DocumentProcessor,
        sync_service: SyncService | None = None,
        config: Settings = settings,
        session_factory=SessionLocal,
    ) -> None:
        self.processor = processor
        self.sync = sync_service
        self.config = config
        self.session_factory = session_factory
        self._task = None
        self._stop = asyncio.Event()

    @property
    def interval(self) -> int:
        interval = self.config.WORKER_INTERVAL_SECONDS
        if interval < 1:
            log.warning("Invalid WORKER_INTERVAL_SECONDS=%s; using 5 seconds", interval)
            return 5
        return interval

    async def start(self) -> None:
        """
        Starts the background loop if enabled.
        Safe to call multiple times; will not start a second loop if one is already running.
        """
        log.info("WORKER_ENABLED=%s SYNC_ENABLED=%s", self.config.WORKER_ENABLED, self.config.SYNC_ENABLED)

        if not (self.config.WORKER_ENABLED or self.config.SYNC_ENABLED):
            log.info("worker and sync disabled -> scheduler not started")
            return

        if self._task and not self._task.done():
            log.info("Scheduler already running; start() ignored")
            return

        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="worker_scheduler_loop")

        log.info("Scheduler started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        """Stops background loop gracefully."""
        if not self._task or self._task.done():
            return

        self._stop.set()
        self._task.cancel()

        with suppress(asyncio.CancelledError):
            await self._task

        log.info("Scheduler stopped")

    async def run_cycle(self, db: Session) -> dict:
        result: dict = {}

        if self.config.WORKER_ENABLED:
            result["documents"] = self.processor.process_pending(db, self.config.WORKER_BATCH_SIZE)

        if self.config.SYNC_ENABLED and self.sync is not None:
            result["sync"] = await self.sync.run_one_cycle(
                db, self.config.SYNC_TENANT_ID, self.config.SYNC_CLIENT_COMPANY_ID
            )

        return result

    async def _loop(self) -> None:
        interval = self.interval
        log.info("Scheduler loop running (interval=%ss)", interval)

        try:
            while not self._stop.is_set():
                db: Session = self.session_factory()
                try:
                    res = await self.run_cycle(db)
                    log.info("worker cycle result: %s", res)

                except asyncio.CancelledError:
                    db.rollback()
                    raise

                except Exception as e:
                    # session must be usable again after a failed flush/commit
                    db.rollback()
                    log.exception("worker cycle failed: %s", e)

                finally:
                    db.close()

                with suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop.wait(), timeout=interval)

        except asyncio.CancelledError:
            log.info("Scheduler loop cancelled")
            raise

        finally:
            log.info("Scheduler loop exited")
