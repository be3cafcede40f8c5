"""Background alert monitor for Sewer Monitor."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sewer_monitor.config import settings
from sewer_monitor.services.broadcaster import EventPublisher
from sewer_monitor.services.dispatcher import DispatchReport, dispatch_pending_alerts
from sewer_monitor.services.lifecycle import AlertLifecycleManager
from sewer_monitor.services.offline_detector import check_offline_sensors
from sewer_monitor.services.whatsapp_notifier import WhatsAppNotifier

logger = logging.getLogger(__name__)

JOB_ID = "alert_monitor"


@dataclass(frozen=True)
class AlertMonitorConfig:
    interval_seconds: int = 30
    batch_size: int = 10
    offline_after: timedelta = timedelta(hours=2)

    @classmethod
    def from_settings(cls) -> "AlertMonitorConfig":
        return cls(
            interval_seconds=settings.ALERT_CHECK_INTERVAL_SECONDS,
            batch_size=settings.NOTIFICATION_BATCH_SIZE,
            offline_after=timedelta(minutes=settings.SENSOR_OFFLINE_MINUTES),
        )


class AlertMonitor:
    """
    Periodic driver of the notification dispatcher and offline detector.

    One tick runs the dispatch sweep followed by the offline sweep, each in
    its own session. Ticks never overlap. ``stop()`` prevents new ticks and
    waits for the one in flight.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher,
        notifier: WhatsAppNotifier | None = None,
    ):
        self.session_factory = session_factory
        self.lifecycle = AlertLifecycleManager(publisher)
        self.notifier = notifier or WhatsAppNotifier()
        self.config = AlertMonitorConfig()
        self._scheduler: AsyncIOScheduler | None = None
        self._tick_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, config: AlertMonitorConfig | None = None) -> None:
        if self.running:
            logger.warning("Alert monitor already running")
            return

        self.config = config or AlertMonitorConfig.from_settings()
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.config.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Alert monitor started (interval: %ds)", self.config.interval_seconds)

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        # wait for an in-flight tick to finish
        async with self._tick_lock:
            pass
        logger.info("Alert monitor stopped")

    async def run_dispatch(self) -> DispatchReport:
        async with self.session_factory() as db:
            return await dispatch_pending_alerts(db, self.notifier, self.config.batch_size)

    async def run_offline_check(self) -> int:
        async with self.session_factory() as db:
            created = await check_offline_sensors(db, self.lifecycle, self.config.offline_after)
            return len(created)

    async def tick(self) -> None:
        """One sweep: dispatch pending notifications, then look for offline sensors."""
        async with self._tick_lock:
            try:
                report = await self.run_dispatch()
                if report.selected:
                    logger.info(
                        "Dispatch sweep: %d pending, %d sent, %d without recipients, %d failed deliveries",
                        report.selected,
                        report.sent,
                        report.unroutable,
                        report.failures,
                    )
            except Exception as e:
                logger.error(f"Notification dispatch error: {e}")

            try:
                offline = await self.run_offline_check()
                if offline:
                    logger.info(f"Offline check: {offline} new sensor_offline alerts")
            except Exception as e:
                logger.error(f"Offline sensor check error: {e}")
