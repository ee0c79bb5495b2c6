"""Base agent class for all domain analysis agents."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging
import time

import aiohttp
from pydantic import ValidationError as ModelValidationError

from .. import fallback
from ..errors import TerminalFailure, UnparseableResponse, ValidationError
from ..models import BusinessRecord, DomainAnalysisResult, DomainKind, Provenance
from ..normalizer import parse_structured_response
from ..providers import ProviderAdapter
from ..retry import ProviderCallOutcome, RetryController
from ..sanitizer import clamp_fields, clamp_unit, finite_float


def format_money(value: float) -> str:
    """Format a dollar amount with thousands separators."""
    return f"${value:,.0f}"


class BaseDomainAgent(ABC):
    """
    Abstract base class for the four domain agents.

    One agent analyzes one domain of one business. ``execute`` chains the
    provider call (through the retry controller) into normalization and
    sanitization, and substitutes the formula fallback when any link fails.
    """

    domain: DomainKind

    # Field holding the domain score in the provider's JSON object
    SCORE_FIELD = ""
    # Secondary numeric fields -> inclusive upper bound
    METRIC_FIELDS: Dict[str, float] = {}
    # Categorical labels copied through as strings
    ATTRIBUTE_FIELDS: Tuple[str, ...] = ()
    # List fields merged, in order, into the findings sequence
    FINDING_FIELDS: Tuple[str, ...] = ()
    # List fields kept under their own name
    FACTOR_FIELDS: Tuple[str, ...] = ()

    MAX_FINDINGS = 12
    MAX_FINDING_LENGTH = 240
    MAX_ATTRIBUTE_LENGTH = 64

    def __init__(
        self,
        record: BusinessRecord,
        adapter: Optional[ProviderAdapter],
        retry: RetryController,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize domain agent.

        Args:
            record: Business under analysis
            adapter: Provider adapter for this domain (None forces fallback)
            retry: Retry controller wrapping provider calls
            session: Shared aiohttp session for HTTP adapters
        """
        self.record = record
        self.adapter = adapter
        self.retry = retry
        self.session = session
        self.logger = logging.getLogger(self.__class__.__name__)
        self.outcome = ProviderCallOutcome(label=f"{self.domain.value}:{record.business_id}")
        self.error: Optional[str] = None
        self.start_time = None
        self.end_time = None

    @abstractmethod
    def build_prompt(self) -> str:
        """
        Build the provider prompt for this domain.

        Returns:
            Prompt asking for a single JSON object
        """
        pass

    def business_header(self) -> str:
        """Business lines shared by every domain prompt."""
        r = self.record
        return (
            f"Business: {r.business_name}\n"
            f"Sector: {r.sector or 'Unknown'}\n"
            f"Location: {r.location or 'Unknown'}\n"
            f"Asking Price: {format_money(r.asking_price)}\n"
            f"Annual Revenue: {format_money(r.annual_revenue)}\n"
            f"Annual Net Profit: {format_money(r.annual_net_profit)}"
        )

    def extract_score(self, payload: Dict[str, Any]) -> float:
        """
        Read the domain score from a parsed payload.

        Raises:
            UnparseableResponse: If the score is missing or not a finite number
        """
        score = finite_float(payload.get(self.SCORE_FIELD))
        if score is None:
            raise UnparseableResponse(f"Missing numeric {self.SCORE_FIELD} in {self.domain.value} response")
        return score

    def _string_items(self, value: Any) -> List[str]:
        if isinstance(value, str):
            value = [value]
        elif not isinstance(value, list):
            return []

        items: List[str] = []
        for item in value:
            if isinstance(item, str):
                text = " ".join(item.split())[:self.MAX_FINDING_LENGTH]
                if text:
                    items.append(text)
        return items

    def _collect_findings(self, payload: Dict[str, Any]) -> List[str]:
        findings: List[str] = []
        seen = set()
        for field in self.FINDING_FIELDS:
            for text in self._string_items(payload.get(field)):
                key = text.lower()
                if key in seen:
                    continue
                seen.add(key)
                findings.append(text)
                if len(findings) >= self.MAX_FINDINGS:
                    return findings
        return findings

    def _collect_factors(self, payload: Dict[str, Any]) -> Dict[str, List[str]]:
        factors = {}
        for field in self.FACTOR_FIELDS:
            items = list(dict.fromkeys(self._string_items(payload.get(field))))
            if items:
                factors[field] = items[:self.MAX_FINDINGS]
        return factors

    def _collect_attributes(self, payload: Dict[str, Any]) -> Dict[str, str]:
        attributes = {}
        for field in self.ATTRIBUTE_FIELDS:
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                attributes[field] = value.strip()[:self.MAX_ATTRIBUTE_LENGTH]
        return attributes

    def interpret(self, payload: Dict[str, Any]) -> DomainAnalysisResult:
        """
        Turn a parsed provider object into a DomainAnalysisResult.

        Each numeric field is clamped exactly once, here.

        Raises:
            UnparseableResponse: No derivable score
            ValidationError: Result violates its bounds after clamping
        """
        score = clamp_unit(self.extract_score(payload))
        metrics = clamp_fields(payload, self.METRIC_FIELDS)

        try:
            return DomainAnalysisResult(
                domain=self.domain,
                score=score,
                findings=self._collect_findings(payload),
                metrics=metrics,
                attributes=self._collect_attributes(payload),
                factors=self._collect_factors(payload),
                provenance=Provenance.PROVIDER,
                provider=self.adapter.name if self.adapter else None,
                model=self.adapter.model if self.adapter else None,
            )
        except ModelValidationError as e:
            raise ValidationError(f"{self.domain.value} result out of bounds: {e}") from e

    async def analyze(self) -> DomainAnalysisResult:
        """Call the provider through the retry controller and interpret its answer."""
        if self.adapter is None:
            raise TerminalFailure(ValueError("no provider adapter configured"), 0, self.outcome.label)

        prompt = self.build_prompt()
        raw_text = await self.retry.execute(
            lambda: self.adapter.call(prompt, self.session),
            label=self.outcome.label,
            outcome=self.outcome,
        )
        payload = parse_structured_response(raw_text)
        return self.interpret(payload)

    async def execute(self, timeout: Optional[float] = None) -> DomainAnalysisResult:
        """
        Execute agent workflow: call → normalize → sanitize, or fall back.

        Never raises for provider-side problems; the returned result is
        provider-sourced on success and fallback-sourced otherwise.

        Args:
            timeout: Caller timeout for the whole domain task, in seconds

        Returns:
            DomainAnalysisResult for this agent's domain
        """
        self.start_time = time.time()
        self.logger.info(f"Starting {self.domain.value} analysis for {self.record.business_id}")

        try:
            if timeout:
                result = await asyncio.wait_for(self.analyze(), timeout=timeout)
            else:
                result = await self.analyze()
            self.end_time = time.time()
            return result
        except asyncio.TimeoutError:
            self.error = f"timed out after {timeout}s"
        except (TerminalFailure, UnparseableResponse, ValidationError) as e:
            self.error = str(e)
        except Exception as e:
            self.error = f"unexpected {type(e).__name__}: {e}"
            self.logger.error(f"{self.__class__.__name__} failed: {e}", exc_info=True)

        self.end_time = time.time()
        self.outcome.abandon(self.error)
        self.logger.warning(
            f"Falling back for {self.domain.value} on {self.record.business_id}: {self.error}"
        )
        return fallback.generate(self.domain, self.record, self.error)

    def get_duration(self) -> float:
        """
        Get execution duration in seconds.

        Returns:
            Duration in seconds, or 0 if not yet completed
        """
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return 0.0


