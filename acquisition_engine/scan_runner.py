"""Invocation surface: start analysis runs and track them to completion."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .database import DatabaseManager
from .models import BusinessRecord, CompositeAssessment, ProgressUpdate
from .orchestrator import AnalysisDispatcher
from .progress import ProgressBroker
from .rate_limiter import ProviderRateLimits

logger = logging.getLogger(__name__)


class AnalysisRunner:
    """
    Single entry point for analysis runs.

    ``invoke`` validates the request, records a pending run, and starts the
    work as a background task; callers follow progress through the broker
    or await ``wait(run_id)``.
    """

    ACTIONS = ("start_scan", "analyze_one")
    CREDENTIAL_SOURCES = ("environment",)

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Optional[Dict[str, Any]] = None,
        broker: Optional[ProgressBroker] = None,
        rate_limits: Optional[ProviderRateLimits] = None,
        dispatcher_factory: Optional[Callable[..., AnalysisDispatcher]] = None,
    ):
        """
        Initialize runner.

        Args:
            db_manager: Record store
            config: Configuration dictionary (uses Config class if not provided)
            broker: Progress channel shared with subscribers
            rate_limits: Shared per-provider limiters
            dispatcher_factory: Callable(progress_callback) -> AnalysisDispatcher
        """
        self.db_manager = db_manager
        self.config = config or Config.to_dict()
        self.broker = broker or ProgressBroker()
        self.rate_limits = rate_limits or ProviderRateLimits(
            requests_per_minute=self.config.get("PROVIDER_RATE_LIMIT_PER_MINUTE", 60)
        )
        self._dispatcher_factory = dispatcher_factory or self._default_dispatcher
        self._tasks: Dict[str, asyncio.Task] = {}

    def _default_dispatcher(self, progress_callback: Optional[Callable] = None) -> AnalysisDispatcher:
        return AnalysisDispatcher(
            config=self.config,
            rate_limits=self.rate_limits,
            progress_callback=progress_callback,
        )

    def _resolve_records(self, action: str, options: Dict[str, Any]) -> List[BusinessRecord]:
        if action == "start_scan":
            return self.db_manager.list_businesses(active_only=True)

        business_id = options.get("business_id")
        if not business_id:
            raise ValueError("analyze_one requires business_id")
        record = self.db_manager.get_business(business_id)
        if record is None:
            raise ValueError(f"Unknown business: {business_id}")
        return [record]

    async def invoke(self, action: str, options: Optional[Dict[str, Any]] = None) -> str:
        """
        Start an analysis run.

        Args:
            action: start_scan or analyze_one
            options: business_id, batch_size, inter_batch_delay, credentials_source

        Returns:
            Run ID

        Raises:
            ValueError: Unknown action, unsupported credentials source, or missing/unknown business
        """
        options = dict(options or {})
        if action not in self.ACTIONS:
            raise ValueError(f"Unknown action: {action}. Valid: {', '.join(self.ACTIONS)}")

        credentials_source = options.get("credentials_source") or "environment"
        if credentials_source not in self.CREDENTIAL_SOURCES:
            raise ValueError(f"Unsupported credentials source: {credentials_source}")

        records = self._resolve_records(action, options)
        stored_options = {
            "business_id": options.get("business_id"),
            "batch_size": options.get("batch_size"),
            "inter_batch_delay": options.get("inter_batch_delay"),
            "credentials_source": credentials_source,
        }
        run_id = self.db_manager.create_run(action, stored_options)
        logger.info(f"Run {run_id} ({action}) queued with {len(records)} businesses")
        self._publish(run_id, "queued", "pending", message=f"{len(records)} businesses queued")

        task = asyncio.create_task(self._execute(run_id, records, options))
        self._tasks[run_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run_id, None))
        return run_id

    async def wait(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Await a background run and return its stored record."""
        task = self._tasks.get(run_id)
        if task is not None:
            await task
        return self.db_manager.get_run(run_id)

    def has_active_runs(self, action: Optional[str] = None) -> bool:
        """True while any run (optionally of one action) is still executing."""
        for run_id, task in self._tasks.items():
            if task.done():
                continue
            if action is None:
                return True
            run = self.db_manager.get_run(run_id)
            if run and run.get("action") == action:
                return True
        return False

    async def _execute(self, run_id: str, records: List[BusinessRecord], options: Dict[str, Any]) -> None:
        start_time = time.time()
        counts = {
            "businesses_processed": 0,
            "businesses_added": 0,
            "businesses_updated": 0,
        }

        def progress_callback(update: Dict[str, Any]):
            self._publish(
                run_id,
                update.get("stage", "analyzing"),
                "processing",
                counts,
                business_id=update.get("business_id"),
                message=update.get("message"),
            )

        def on_batch(batch: List[BusinessRecord], assessments: List[CompositeAssessment]):
            for record, assessment in zip(batch, assessments):
                seen_before = self.db_manager.has_assessment(record.business_id)
                self.db_manager.insert_assessment(assessment)
                counts["businesses_processed"] += 1
                if seen_before:
                    counts["businesses_updated"] += 1
                else:
                    counts["businesses_added"] += 1
            self.db_manager.update_run(run_id, **counts)
            self._publish(run_id, "batch_complete", "processing", counts)

        try:
            self.db_manager.update_run(run_id, status="processing")
            self._publish(run_id, "processing", "processing", counts)

            dispatcher = self._dispatcher_factory(progress_callback)
            await dispatcher.analyze_batch(
                records,
                batch_size=options.get("batch_size"),
                inter_batch_delay=options.get("inter_batch_delay"),
                on_batch=on_batch,
            )

            self.db_manager.update_run(
                run_id,
                status="completed",
                completed_at=datetime.utcnow().isoformat(),
                execution_time_seconds=round(time.time() - start_time, 3),
                **counts,
            )
            logger.info(
                f"Run {run_id} completed: {counts['businesses_processed']} processed, "
                f"{counts['businesses_added']} added, {counts['businesses_updated']} updated"
            )
            self._publish(run_id, "complete", "completed", counts)

        except Exception as e:
            logger.error(f"Run {run_id} failed: {e}", exc_info=True)
            try:
                self.db_manager.update_run(
                    run_id,
                    status="failed",
                    completed_at=datetime.utcnow().isoformat(),
                    execution_time_seconds=round(time.time() - start_time, 3),
                    error_message=str(e)[:500],
                    **counts,
                )
            except Exception as db_exc:
                logger.error(f"Could not record failure for run {run_id}: {db_exc}")
            self._publish(run_id, "error", "failed", counts, message=str(e))

    def _publish(
        self,
        run_id: str,
        stage: str,
        status: str,
        counts: Optional[Dict[str, int]] = None,
        business_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.broker.publish(ProgressUpdate(
            run_id=run_id,
            stage=stage,
            status=status,
            business_id=business_id,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            **(counts or {}),
        ))
