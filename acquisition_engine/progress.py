"""In-process publish/subscribe channel for analysis run progress."""

import asyncio
import logging
from typing import Dict, List, Optional

from .models import ProgressUpdate

TERMINAL_STATUSES = ("completed", "failed")


class ProgressBroker:
    """
    Fan progress updates out to per-run subscriber queues.

    Subscriber queues are bounded; a subscriber that stops draining is
    dropped once its queue fills.

    The latest update of each run is retained so a subscriber that joins
    late (or after the run finished) still sees the current state.
    """

    def __init__(self, max_retained_runs: int = 200, max_queue_size: int = 100):
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._latest: Dict[str, ProgressUpdate] = {}
        self._max_retained_runs = max_retained_runs
        self._max_queue_size = max_queue_size
        self.logger = logging.getLogger(__name__)

    def subscribe(self, run_id: str) -> asyncio.Queue:
        """Register a subscriber queue for a run, primed with the latest update."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        latest = self._latest.get(run_id)
        if latest is not None:
            queue.put_nowait(latest)
        self._subscribers.setdefault(run_id, []).append(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(run_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[run_id]

    def publish(self, update: ProgressUpdate) -> None:
        """
        Deliver an update to every subscriber of its run.

        Never blocks and never raises; a failing subscriber is dropped.
        """
        self._remember(update)
        for queue in list(self._subscribers.get(update.run_id, [])):
            try:
                queue.put_nowait(update)
            except asyncio.QueueFull:
                self.logger.warning(f"Dropping slow progress subscriber for run {update.run_id}")
                self.unsubscribe(update.run_id, queue)

    def latest(self, run_id: str) -> Optional[ProgressUpdate]:
        return self._latest.get(run_id)

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, []))

    def _remember(self, update: ProgressUpdate) -> None:
        self._latest.pop(update.run_id, None)
        self._latest[update.run_id] = update
        # Dicts keep insertion order, so the first key is the stalest run
        while len(self._latest) > self._max_retained_runs:
            oldest = next(iter(self._latest))
            del self._latest[oldest]


def is_terminal(update: ProgressUpdate) -> bool:
    """True once a run has completed or failed."""
    return update.status in TERMINAL_STATUSES
