"""Fuse the four domain results into a composite assessment."""

import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .models import (
    BusinessRecord,
    CompositeAssessment,
    ConfidenceIndicator,
    DomainAnalysisResult,
    DomainKind,
    Narrative,
    Provenance,
)
from .sanitizer import PAYBACK_SENTINEL, clamp, clamp_unit

# Fixed policy; risk is inverted into a safety score before weighting
DOMAIN_WEIGHTS: Dict[DomainKind, float] = {
    DomainKind.FINANCIAL: 0.3,
    DomainKind.STRATEGIC: 0.3,
    DomainKind.MARKET: 0.2,
    DomainKind.RISK: 0.2,
}

OWNERSHIP_MODELS = ("absentee", "semi_absentee", "owner_operator")
DEFAULT_OWNERSHIP_MODEL = "semi_absentee"
DEFAULT_AUTOMATION_SCORE = 0.7
DEFAULT_RESILIENCE_FACTORS = ("essential_service",)


def profit_margin(record: BusinessRecord) -> Optional[float]:
    """Net profit over revenue, or None when revenue is not positive."""
    if record.annual_revenue <= 0:
        return None
    return record.annual_net_profit / record.annual_revenue


def capitalization_rate(record: BusinessRecord) -> float:
    """Net profit over asking price; zero when either is not positive."""
    if record.asking_price <= 0 or record.annual_net_profit <= 0:
        return 0.0
    return clamp(record.annual_net_profit / record.asking_price)


def payback_years(record: BusinessRecord) -> float:
    """Asking price over net profit, capped at the sentinel for non-positive profit."""
    if record.annual_net_profit <= 0:
        return PAYBACK_SENTINEL
    return clamp(record.asking_price / record.annual_net_profit, 0.0, PAYBACK_SENTINEL, PAYBACK_SENTINEL)


def derive_ratios(record: BusinessRecord) -> Tuple[float, float]:
    """Return (cap_rate, payback_years) at storage precision."""
    return capitalization_rate(record), payback_years(record)


def composite_score(results: Mapping[DomainKind, DomainAnalysisResult]) -> float:
    """
    Weighted sum of domain scores, risk inverted.

    Iterates DomainKind in declaration order, so the result does not depend
    on the order in which the domain tasks finished.
    """
    total = 0.0
    for kind in DomainKind:
        score = results[kind].score
        if kind == DomainKind.RISK:
            score = 1.0 - score
        total += DOMAIN_WEIGHTS[kind] * score
    return clamp_unit(total)


def confidence_for(results: Mapping[DomainKind, DomainAnalysisResult]) -> ConfidenceIndicator:
    """Summarize how many domains fell back to formula results."""
    fallback_domains = [kind for kind in DomainKind if results[kind].provenance == Provenance.FALLBACK]
    fallback_count = len(fallback_domains)
    provider_count = len(DomainKind) - fallback_count

    if fallback_count == 0:
        level = "high"
    elif fallback_count <= 2:
        level = "medium"
    else:
        level = "low"

    return ConfidenceIndicator(
        level=level,
        score=clamp_unit(provider_count / len(DomainKind)),
        provider_sourced=provider_count,
        fallback_sourced=fallback_count,
        fallback_domains=fallback_domains,
    )


def _ownership_model(strategic: DomainAnalysisResult) -> str:
    raw = strategic.attributes.get("recommended_ownership_model", "")
    candidate = raw.strip().lower().replace("-", "_").replace(" ", "_")
    return candidate if candidate in OWNERSHIP_MODELS else DEFAULT_OWNERSHIP_MODEL


def _automation_opportunity(financial: DomainAnalysisResult) -> float:
    return clamp_unit(financial.metrics.get("automation_score"), DEFAULT_AUTOMATION_SCORE)


def _resilience_factors(risk: DomainAnalysisResult) -> List[str]:
    return list(risk.factors.get("resilience_factors") or DEFAULT_RESILIENCE_FACTORS)


def _index_results(
    results: Union[Mapping[DomainKind, DomainAnalysisResult], Iterable[DomainAnalysisResult]],
) -> Dict[DomainKind, DomainAnalysisResult]:
    items = results.values() if isinstance(results, Mapping) else results
    indexed: Dict[DomainKind, DomainAnalysisResult] = {}
    for result in items:
        if result.domain in indexed:
            raise ValueError(f"Duplicate result for domain {result.domain.value}")
        indexed[result.domain] = result

    missing = [kind.value for kind in DomainKind if kind not in indexed]
    if missing:
        raise ValueError(f"Cannot fuse without results for: {', '.join(missing)}")
    return indexed


def fuse(
    record: BusinessRecord,
    results: Union[Mapping[DomainKind, DomainAnalysisResult], Iterable[DomainAnalysisResult]],
) -> CompositeAssessment:
    """
    Build a CompositeAssessment from exactly one result per domain.

    The narrative is attached afterwards with ``attach_narrative``.

    Args:
        record: Business being assessed
        results: Four DomainAnalysisResult values in any order

    Returns:
        CompositeAssessment without narrative

    Raises:
        ValueError: If a domain is missing or duplicated
    """
    indexed = _index_results(results)
    cap_rate, payback = derive_ratios(record)

    return CompositeAssessment(
        assessment_id=uuid.uuid4().hex,
        business_id=record.business_id,
        domains=indexed,
        composite_score=composite_score(indexed),
        cap_rate=cap_rate,
        payback_years=payback,
        confidence=confidence_for(indexed),
        ownership_model=_ownership_model(indexed[DomainKind.STRATEGIC]),
        automation_opportunity_score=_automation_opportunity(indexed[DomainKind.FINANCIAL]),
        resilience_factors=_resilience_factors(indexed[DomainKind.RISK]),
        created_at=datetime.utcnow().isoformat(),
    )


def attach_narrative(assessment: CompositeAssessment, narrative: Narrative) -> CompositeAssessment:
    """Return a new assessment carrying the narrative; the input is left untouched."""
    return assessment.model_copy(update={"narrative": narrative})
