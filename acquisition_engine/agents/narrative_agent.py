"""Narrative synthesizer: investment thesis and executive summary."""

import asyncio
import json
import logging
from typing import Optional, Tuple

import aiohttp

from .base_agent import format_money
from ..errors import TerminalFailure, UnparseableResponse
from ..models import BusinessRecord, CompositeAssessment, DomainKind, Narrative, Provenance
from ..providers import ProviderAdapter
from ..retry import RetryController


class NarrativeSynthesizer:
    """
    Request prose for a fused assessment, one provider call per artifact.

    Each artifact degrades independently to a template sentence built from
    the business record, so an assessment always ends up with narrative text.
    """

    MAX_TEXT_LENGTH = 8000

    def __init__(
        self,
        adapter: Optional[ProviderAdapter],
        retry: RetryController,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.adapter = adapter
        self.retry = retry
        self.session = session
        self.logger = logging.getLogger(self.__class__.__name__)

    def _domain_json(self, assessment: CompositeAssessment, kind: DomainKind) -> str:
        return json.dumps(assessment.domain(kind).model_dump(mode="json"), indent=2)

    def _thesis_prompt(self, record: BusinessRecord, assessment: CompositeAssessment) -> str:
        return f"""Based on the comprehensive analysis below, write a compelling investment thesis for this acquisition opportunity:

Business: {record.business_name}
Sector: {record.sector or 'Unknown'}
Asking Price: {format_money(record.asking_price)}
Composite Score: {assessment.composite_score:.3f}
Capitalization Rate: {assessment.cap_rate:.1%}
Payback Years: {assessment.payback_years:.1f}

Financial Assessment: {self._domain_json(assessment, DomainKind.FINANCIAL)}
Strategic Assessment: {self._domain_json(assessment, DomainKind.STRATEGIC)}
Market Analysis: {self._domain_json(assessment, DomainKind.MARKET)}
Risk Evaluation: {self._domain_json(assessment, DomainKind.RISK)}

Write a professional investment thesis (3-4 paragraphs) focusing on value creation opportunities, competitive advantages, and ROI potential. Respond with plain prose only."""

    def _summary_prompt(self, record: BusinessRecord, assessment: CompositeAssessment) -> str:
        return f"""Create an executive summary for this business acquisition opportunity:

{record.business_name} - {record.sector or 'Unknown sector'}
Price: {format_money(record.asking_price)}
Revenue: {format_money(record.annual_revenue)}
Profit: {format_money(record.annual_net_profit)}

Key findings from analysis:
- Financial Health Score: {assessment.domain(DomainKind.FINANCIAL).score:.3f}
- Strategic Value Score: {assessment.domain(DomainKind.STRATEGIC).score:.3f}
- Market Attractiveness Score: {assessment.domain(DomainKind.MARKET).score:.3f}
- Risk Level: {assessment.domain(DomainKind.RISK).score:.3f}
- Composite Score: {assessment.composite_score:.3f}
- Analysis Confidence: {assessment.confidence.level}

Write a concise executive summary (2-3 paragraphs) highlighting the key investment merits and recommendation. Respond with plain prose only."""

    @staticmethod
    def template_thesis(record: BusinessRecord) -> str:
        sector = f"the {record.sector} sector" if record.sector else "its sector"
        return (
            f"Investment Thesis: {record.business_name} represents a compelling acquisition opportunity "
            f"in {sector} with strong financial performance and significant potential "
            f"for AI-driven operational optimization."
        )

    @staticmethod
    def template_summary(record: BusinessRecord) -> str:
        sector = f"the {record.sector} sector" if record.sector else "its sector"
        return (
            f"Executive Summary: {record.business_name} represents a compelling acquisition opportunity "
            f"in {sector} with strong financial performance and growth potential."
        )

    async def _generate(self, label: str, prompt: str, template: str) -> Tuple[str, Provenance]:
        if self.adapter is None:
            return template, Provenance.FALLBACK

        try:
            raw_text = await self.retry.execute(
                lambda: self.adapter.call(prompt, self.session),
                label=label,
            )
            text = (raw_text or "").strip()
            if not text:
                raise UnparseableResponse("Empty narrative response")
            return text[:self.MAX_TEXT_LENGTH], Provenance.PROVIDER
        except (TerminalFailure, UnparseableResponse) as e:
            self.logger.warning(f"Using template text for {label}: {e}")
        except Exception as e:
            self.logger.error(f"Narrative generation failed for {label}: {e}", exc_info=True)
        return template, Provenance.FALLBACK

    async def synthesize(self, record: BusinessRecord, assessment: CompositeAssessment) -> Narrative:
        """
        Produce the thesis and executive summary for an assessment.

        Args:
            record: Business the assessment belongs to
            assessment: Fused assessment (narrative not yet attached)

        Returns:
            Narrative with per-artifact provenance
        """
        (thesis, thesis_source), (summary, summary_source) = await asyncio.gather(
            self._generate(
                f"thesis:{record.business_id}",
                self._thesis_prompt(record, assessment),
                self.template_thesis(record),
            ),
            self._generate(
                f"summary:{record.business_id}",
                self._summary_prompt(record, assessment),
                self.template_summary(record),
            ),
        )
        return Narrative(
            thesis=thesis,
            summary=summary,
            thesis_provenance=thesis_source,
            summary_provenance=summary_source,
        )
