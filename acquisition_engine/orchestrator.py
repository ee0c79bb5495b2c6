"""Dispatcher coordinating the four domain agents for each business."""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp

from . import fallback
from .agents.financial_agent import FinancialAgent
from .agents.market_agent import MarketAgent
from .agents.narrative_agent import NarrativeSynthesizer
from .agents.risk_agent import RiskAgent
from .agents.strategic_agent import StrategicAgent
from .config import Config
from .fusion import attach_narrative, fuse
from .models import BusinessRecord, CompositeAssessment, DomainAnalysisResult, DomainKind
from .providers import ProviderAdapter, build_adapter
from .rate_limiter import ProviderRateLimits
from .retry import ProviderCallOutcome, RetryController


class DispatchState(str, Enum):
    """Lifecycle of one analysis run."""

    CREATED = "created"
    DISPATCHING = "dispatching"
    ALL_SETTLED = "all_settled"
    FUSED = "fused"


_STATE_ORDER = [DispatchState.CREATED, DispatchState.DISPATCHING, DispatchState.ALL_SETTLED, DispatchState.FUSED]


@dataclass
class DispatchRun:
    """In-flight state for one business; owned by the dispatcher until fused."""

    record: BusinessRecord
    state: DispatchState = DispatchState.CREATED
    outcomes: Dict[DomainKind, ProviderCallOutcome] = field(default_factory=dict)
    results: Dict[DomainKind, DomainAnalysisResult] = field(default_factory=dict)
    assessment: Optional[CompositeAssessment] = None

    def advance(self, new_state: DispatchState) -> None:
        if _STATE_ORDER.index(new_state) != _STATE_ORDER.index(self.state) + 1:
            raise RuntimeError(f"Illegal dispatch transition {self.state.value} -> {new_state.value}")
        self.state = new_state


class AnalysisDispatcher:
    """Coordinates execution of the domain agents, fusion and narrative."""

    AGENT_REGISTRY = {
        DomainKind.FINANCIAL: FinancialAgent,
        DomainKind.STRATEGIC: StrategicAgent,
        DomainKind.MARKET: MarketAgent,
        DomainKind.RISK: RiskAgent,
    }

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        rate_limits: Optional[ProviderRateLimits] = None,
        progress_callback: Optional[Callable] = None,
        adapters: Optional[Dict[str, Optional[ProviderAdapter]]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize dispatcher.

        Args:
            config: Configuration dictionary (uses Config class if not provided)
            rate_limits: Shared per-provider limiters (persist across runs via app.state)
            progress_callback: Optional callback for per-business progress updates
            adapters: Prebuilt adapters keyed by target name, replacing config-built ones
            sleep: Awaitable sleep used for retry and inter-batch delays
        """
        self.config = config or Config.to_dict()
        self.rate_limits = rate_limits or ProviderRateLimits(
            requests_per_minute=self.config.get("PROVIDER_RATE_LIMIT_PER_MINUTE", 60)
        )
        self.progress_callback = progress_callback
        self.logger = logging.getLogger(__name__)

        self._adapters = adapters
        self._sleep = sleep
        self.retry = RetryController(
            max_attempts=self.config.get("PROVIDER_MAX_ATTEMPTS", 3),
            base_delay=self.config.get("RETRY_BASE_DELAY", 2.0),
            attempt_timeout=self.config.get("PROVIDER_TIMEOUT", 60),
            sleep=sleep,
        )
        self._shared_session: Optional[aiohttp.ClientSession] = None

    async def _create_shared_session(self) -> aiohttp.ClientSession:
        """Create a shared aiohttp session for all provider calls in this run."""
        connector = aiohttp.TCPConnector(
            limit=20,
            limit_per_host=10,
            ttl_dns_cache=300,
        )
        self._shared_session = aiohttp.ClientSession(connector=connector)
        return self._shared_session

    async def _close_shared_session(self):
        """Close the shared session and its connector."""
        if self._shared_session and not self._shared_session.closed:
            await self._shared_session.close()
            self._shared_session = None

    def _adapter_for(self, target: str) -> Optional[ProviderAdapter]:
        """Resolve the adapter for a target; None sends the domain straight to fallback."""
        if self._adapters is not None:
            return self._adapters.get(target)

        provider_config = (self.config.get("providers") or {}).get(target)
        if not provider_config:
            self.logger.warning(f"No provider configured for {target}")
            return None
        try:
            return build_adapter(provider_config, self.rate_limits.for_provider(provider_config.get("provider", "")))
        except ValueError as e:
            self.logger.warning(f"Cannot build adapter for {target}: {e}")
            return None

    async def dispatch(
        self,
        record: BusinessRecord,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> DispatchRun:
        """
        Run all four domain analyses for one business and fuse them.

        Every domain task settles with a result (provider- or fallback-sourced)
        before fusion; a degraded provider never aborts the run.

        Args:
            record: Business to analyze
            session: Shared aiohttp session

        Returns:
            DispatchRun in the FUSED state, with the narrated assessment attached
        """
        start_time = time.time()
        run = DispatchRun(record=record)

        run.advance(DispatchState.DISPATCHING)
        await self._notify_progress("dispatching", record.business_id)

        agents = {
            kind: agent_cls(record, self._adapter_for(kind.value), self.retry, session)
            for kind, agent_cls in self.AGENT_REGISTRY.items()
        }
        run.outcomes = {kind: agent.outcome for kind, agent in agents.items()}

        timeout = self.config.get("AGENT_TIMEOUT", 180)
        raw_results = await asyncio.gather(
            *(agent.execute(timeout=timeout) for agent in agents.values()),
            return_exceptions=True,
        )

        for kind, result in zip(agents.keys(), raw_results):
            if isinstance(result, DomainAnalysisResult):
                run.results[kind] = result
            elif isinstance(result, Exception):
                self.logger.error(f"{kind.value} task for {record.business_id} raised: {result}")
                agents[kind].outcome.abandon(str(result))
                run.results[kind] = fallback.generate(kind, record, str(result))
            else:
                raise result

        run.advance(DispatchState.ALL_SETTLED)
        assessment = fuse(record, run.results)
        run.advance(DispatchState.FUSED)

        await self._notify_progress("synthesizing", record.business_id)
        synthesizer = NarrativeSynthesizer(self._adapter_for("narrative"), self.retry, session)
        narrative = await synthesizer.synthesize(record, assessment)
        run.assessment = attach_narrative(assessment, narrative)

        self._log_run_metrics(record, start_time, run.assessment)
        await self._notify_progress("analyzed", record.business_id)
        return run

    async def analyze_record(self, record: BusinessRecord) -> CompositeAssessment:
        """
        Run full analysis on one business.

        Args:
            record: Business to analyze

        Returns:
            CompositeAssessment with narrative
        """
        self.logger.info(f"Starting analysis for {record.business_id} ({record.business_name})")
        session = await self._create_shared_session()
        try:
            run = await self.dispatch(record, session)
            return run.assessment
        finally:
            await self._close_shared_session()

    async def analyze_batch(
        self,
        records: Sequence[BusinessRecord],
        batch_size: Optional[int] = None,
        inter_batch_delay: Optional[float] = None,
        on_batch: Optional[Callable] = None,
    ) -> List[CompositeAssessment]:
        """
        Analyze many businesses in fixed-size batches.

        Analyses inside a batch run concurrently; batches run one after
        another with ``inter_batch_delay`` seconds between them. Exceptions
        from ``on_batch`` stop the remaining batches and propagate.

        Args:
            records: Businesses to analyze
            batch_size: Businesses per batch (default SCAN_BATCH_SIZE)
            inter_batch_delay: Seconds between batches (default SCAN_BATCH_DELAY)
            on_batch: Optional callback(batch_records, batch_assessments), sync or async

        Returns:
            Assessments in input order
        """
        batch_size = batch_size or self.config.get("SCAN_BATCH_SIZE", 5)
        if inter_batch_delay is None:
            inter_batch_delay = self.config.get("SCAN_BATCH_DELAY", 2.0)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        assessments: List[CompositeAssessment] = []
        session = await self._create_shared_session()
        try:
            for start in range(0, len(records), batch_size):
                if start > 0 and inter_batch_delay > 0:
                    self.logger.info(f"Waiting {inter_batch_delay:.1f}s before next batch")
                    await self._sleep(inter_batch_delay)

                batch = list(records[start:start + batch_size])
                runs = await asyncio.gather(*(self.dispatch(record, session) for record in batch))
                batch_assessments = [run.assessment for run in runs]
                assessments.extend(batch_assessments)

                if on_batch:
                    if inspect.iscoroutinefunction(on_batch):
                        await on_batch(batch, batch_assessments)
                    else:
                        on_batch(batch, batch_assessments)
        finally:
            await self._close_shared_session()

        return assessments

    def _log_run_metrics(
        self,
        record: BusinessRecord,
        started_at: float,
        assessment: CompositeAssessment,
    ) -> None:
        """Emit per-analysis metrics used for regression tracking."""
        elapsed = max(0.0, time.time() - started_at)
        self.logger.info(
            "run_metrics business_id=%s latency_s=%.3f fallback_count=%d composite=%.3f confidence=%s",
            record.business_id,
            elapsed,
            assessment.confidence.fallback_sourced,
            assessment.composite_score,
            assessment.confidence.level,
        )

    async def _notify_progress(
        self,
        stage: str,
        business_id: str,
        message: Optional[str] = None
    ):
        """
        Notify progress callback if set.

        Args:
            stage: Current stage
            business_id: Business being analyzed
            message: Optional message
        """
        if self.progress_callback:
            try:
                update = {
                    "stage": stage,
                    "business_id": business_id,
                    "message": message,
                    "timestamp": datetime.now(timezone.utc).isoformat()
                }
                if inspect.iscoroutinefunction(self.progress_callback):
                    await self.progress_callback(update)
                else:
                    self.progress_callback(update)
            except Exception as e:
                self.logger.warning(f"Progress callback failed: {e}")
