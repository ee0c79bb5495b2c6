"""
Formula-based substitute results for domains whose provider call failed.

Every function here is pure: the same BusinessRecord always yields the
same DomainAnalysisResult. The heuristics are provisional defaults, not a
calibrated model.
"""

from typing import Callable, Dict, List, Optional

from .fusion import capitalization_rate, payback_years, profit_margin
from .models import BusinessRecord, DomainAnalysisResult, DomainKind, Provenance
from .sanitizer import clamp_unit

HIGH_GROWTH_SECTORS = ("hvac", "electrical", "healthcare")
DEFAULT_RESILIENCE_FACTORS = ["essential_service", "recurring_revenue"]


def _margin_tier(margin: Optional[float]) -> float:
    if margin is None:
        return 0.5
    if margin > 0.20:
        return 0.9
    if margin > 0.15:
        return 0.8
    if margin > 0.10:
        return 0.7
    if margin > 0.05:
        return 0.6
    return 0.4


def _cap_rate_tier(cap_rate: float) -> float:
    if cap_rate >= 0.30:
        return 0.9
    if cap_rate >= 0.20:
        return 0.8
    if cap_rate >= 0.15:
        return 0.7
    if cap_rate >= 0.10:
        return 0.6
    if cap_rate > 0:
        return 0.4
    return 0.2


def _financial(record: BusinessRecord) -> DomainAnalysisResult:
    margin = profit_margin(record)
    cap_rate = capitalization_rate(record)
    score = clamp_unit((_margin_tier(margin) + _cap_rate_tier(cap_rate)) / 2)

    findings: List[str] = []
    if margin is None:
        findings.append("Revenue not reported; profit margin unavailable")
    else:
        findings.append(f"Net margin of {margin:.1%} on ${record.annual_revenue:,.0f} revenue")
    findings.append(f"Capitalization rate of {cap_rate:.1%} at ${record.asking_price:,.0f} asking price")
    if record.annual_net_profit <= 0:
        findings.append("Business reports no positive net profit")

    return DomainAnalysisResult(
        domain=DomainKind.FINANCIAL,
        score=score,
        findings=findings,
        metrics={
            "profit_margin": clamp_unit(margin),
            "cap_rate": cap_rate,
            "automation_score": 0.6,
            "cash_flow_predictability": 0.7,
        },
        attributes={"revenue_quality": "recurring", "growth_trajectory": "stable"},
        provenance=Provenance.FALLBACK,
    )


def _strategic(record: BusinessRecord) -> DomainAnalysisResult:
    cap_rate = capitalization_rate(record)
    revenue = record.annual_revenue

    score = 0.5
    if cap_rate > 0.25:
        score += 0.3
    elif cap_rate > 0.15:
        score += 0.2
    elif cap_rate > 0.10:
        score += 0.1

    if revenue > 10_000_000:
        score += 0.2
    elif revenue > 5_000_000:
        score += 0.15
    elif revenue > 1_000_000:
        score += 0.1

    findings = ["platform_potential", "operational_optimization"]
    if revenue > 1_000_000:
        findings.append(f"Revenue scale of ${revenue:,.0f} supports add-on acquisitions")

    return DomainAnalysisResult(
        domain=DomainKind.STRATEGIC,
        score=clamp_unit(min(score, 1.0)),
        findings=findings,
        metrics={"scalability_potential": 0.6},
        attributes={
            "competitive_moat": "moderate",
            "market_position": "challenger",
            "recommended_ownership_model": "semi_absentee",
        },
        provenance=Provenance.FALLBACK,
    )


def _market(record: BusinessRecord) -> DomainAnalysisResult:
    sector = record.sector.lower()
    high_growth = any(name in sector for name in HIGH_GROWTH_SECTORS)
    score = 0.7 if high_growth else 0.5

    findings = ["digital_transformation", "consolidation"]
    if high_growth:
        findings.append(f"{record.sector} is a high-growth service sector")

    return DomainAnalysisResult(
        domain=DomainKind.MARKET,
        score=clamp_unit(score),
        findings=findings,
        metrics={"competitive_intensity": 0.6},
        attributes={
            "market_size": "medium",
            "market_growth_rate": "growing" if high_growth else "stable",
        },
        provenance=Provenance.FALLBACK,
    )


def _risk(record: BusinessRecord) -> DomainAnalysisResult:
    margin = profit_margin(record)
    payback = payback_years(record)

    score = 0.4
    findings = ["market_competition", "economic_downturn"]
    if record.annual_net_profit <= 0:
        score += 0.3
        findings.append("Non-positive net profit")
    if payback > 5:
        score += 0.1
        findings.append(f"Payback period of {payback:.1f} years")
    elif payback <= 3:
        score -= 0.1
    if margin is not None and margin < 0.05:
        score += 0.1
        findings.append("Thin net margin below 5%")

    return DomainAnalysisResult(
        domain=DomainKind.RISK,
        score=clamp_unit(score),
        findings=findings,
        metrics={"resilience": clamp_unit(1.0 - score)},
        attributes={},
        factors={"resilience_factors": list(DEFAULT_RESILIENCE_FACTORS)},
        provenance=Provenance.FALLBACK,
    )


_GENERATORS: Dict[DomainKind, Callable[[BusinessRecord], DomainAnalysisResult]] = {
    DomainKind.FINANCIAL: _financial,
    DomainKind.STRATEGIC: _strategic,
    DomainKind.MARKET: _market,
    DomainKind.RISK: _risk,
}


def generate(domain: DomainKind, record: BusinessRecord, reason: Optional[str] = None) -> DomainAnalysisResult:
    """
    Produce the formula-derived result for one domain.

    Args:
        domain: Domain to substitute
        record: Business being analyzed
        reason: Optional failure description kept on the result

    Returns:
        Fallback-sourced DomainAnalysisResult
    """
    result = _GENERATORS[DomainKind(domain)](record)
    if reason:
        result = result.model_copy(update={"fallback_reason": reason[:300]})
    return result
