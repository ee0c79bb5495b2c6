"""Background scheduler for recurring scans."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import Config
from .scan_runner import AnalysisRunner


logger = logging.getLogger(__name__)


class ScanScheduler:
    """Triggers ``start_scan`` on a fixed interval using APScheduler."""

    JOB_ID = "recurring_scan"

    def __init__(
        self,
        runner: AnalysisRunner,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.runner = runner
        self.config = config or Config.to_dict()
        self.scheduler = AsyncIOScheduler()
        self._running = False
        self._last_run_id: Optional[str] = None

    async def start(self):
        """Register the scan job and start the scheduler."""
        if self._running:
            return

        interval = int(self.config.get("SCAN_INTERVAL_MINUTES", 1440) or 1440)
        self.scheduler.add_job(
            self._run_scheduled_scan,
            'interval',
            minutes=interval,
            id=self.JOB_ID,
            replace_existing=True,
            next_run_time=datetime.utcnow() + timedelta(minutes=interval),
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Scan scheduler started (every {interval}m)")

    async def stop(self):
        """Shut down the scheduler."""
        if self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scan scheduler stopped")

    async def _run_scheduled_scan(self) -> Optional[str]:
        """Start a scan unless the previous scheduled one is still running."""
        if self._last_run_id and self.runner.has_active_runs("start_scan"):
            logger.info(f"Skipping scheduled scan; run {self._last_run_id} still active")
            return None

        try:
            run_id = await self.runner.invoke("start_scan", {
                "batch_size": self.config.get("SCAN_BATCH_SIZE"),
                "inter_batch_delay": self.config.get("SCAN_BATCH_DELAY"),
            })
        except Exception as e:
            logger.error(f"Scheduled scan failed to start: {e}", exc_info=True)
            return None

        self._last_run_id = run_id
        logger.info(f"Scheduled scan started as run {run_id}")
        return run_id
