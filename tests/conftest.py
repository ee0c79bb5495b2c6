"""Shared test fixtures for the acquisition analysis engine test suite."""

import json
from typing import Any, Dict, List, Optional, Union
from unittest.mock import AsyncMock

import pytest

from acquisition_engine.database import DatabaseManager
from acquisition_engine.models import BusinessRecord, DomainAnalysisResult, DomainKind, Provenance


# ─── Database Fixtures ───


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary database file path."""
    return str(tmp_path / "test_acquisition_analysis.db")


@pytest.fixture
def db_manager(tmp_db_path):
    """Create a fresh DatabaseManager with a temp database."""
    return DatabaseManager(tmp_db_path)


# ─── Config Fixtures ───


def _provider(provider: str, model: str) -> Dict[str, Any]:
    return {
        "provider": provider,
        "model": model,
        "api_key": f"test-{provider}-key",
        "temperature": 0.2,
        "max_tokens": 500,
        "timeout": 5,
    }


@pytest.fixture
def test_config(tmp_db_path) -> Dict[str, Any]:
    """Plain configuration dict; no retry delays, no rate limiting."""
    return {
        "DATABASE_PATH": tmp_db_path,
        "PROVIDER_TIMEOUT": 5,
        "AGENT_TIMEOUT": 5,
        "PROVIDER_MAX_ATTEMPTS": 3,
        "RETRY_BASE_DELAY": 0.0,
        "PROVIDER_RATE_LIMIT_PER_MINUTE": 0,
        "SCAN_BATCH_SIZE": 2,
        "SCAN_BATCH_DELAY": 0.0,
        "SCAN_INTERVAL_MINUTES": 60,
        "providers": {
            "financial": _provider("replicate", "meta/meta-llama-3-70b-instruct"),
            "strategic": _provider("replicate", "mistralai/mixtral-8x7b-instruct-v0.1"),
            "market": _provider("openai", "gpt-4o-mini"),
            "risk": _provider("anthropic", "claude-3-5-sonnet-20241022"),
            "narrative": _provider("anthropic", "claude-3-5-sonnet-20241022"),
        },
    }


# ─── Business Fixtures ───


@pytest.fixture
def sample_record() -> BusinessRecord:
    """The Raleigh multi-trade listing used throughout the suite."""
    return BusinessRecord(
        business_id="premier-multi-trade",
        business_name="Premier Multi-Trade Services",
        sector="Multi-Trade Services",
        location="Raleigh, NC",
        asking_price=2_800_000,
        annual_revenue=3_600_000,
        annual_net_profit=1_000_000,
    )


@pytest.fixture
def zero_profit_record() -> BusinessRecord:
    return BusinessRecord(
        business_id="breakeven-hvac",
        business_name="Breakeven HVAC Co",
        sector="HVAC Services",
        location="Durham, NC",
        asking_price=900_000,
        annual_revenue=1_200_000,
        annual_net_profit=0,
    )


@pytest.fixture
def make_result():
    """Factory for DomainAnalysisResult values."""
    def _make(
        domain: DomainKind,
        score: float,
        provenance: Provenance = Provenance.PROVIDER,
        **kwargs,
    ) -> DomainAnalysisResult:
        return DomainAnalysisResult(domain=domain, score=score, provenance=provenance, **kwargs)
    return _make


# ─── Provider Fixtures ───


class ScriptedAdapter:
    """
    Stand-in for a ProviderAdapter that replays a script of responses.

    Each call consumes the next entry: strings are returned, exceptions are
    raised. The last entry repeats once the script is exhausted.
    """

    def __init__(self, script: List[Union[str, BaseException]], name: str = "scripted", model: str = "fake-model"):
        self.script = list(script)
        self.name = name
        self.model = model
        self.prompts: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def call(self, prompt: str, session: Optional[Any] = None) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.script)) - 1
        entry = self.script[index]
        if isinstance(entry, BaseException):
            raise entry
        return entry


@pytest.fixture
def scripted_adapter():
    """Factory for ScriptedAdapter instances."""
    def _make(*script, name: str = "scripted", model: str = "fake-model") -> ScriptedAdapter:
        return ScriptedAdapter(list(script), name=name, model=model)
    return _make


@pytest.fixture
def no_sleep():
    """Awaitable sleep replacement that records requested delays."""
    return AsyncMock(return_value=None)


# ─── Mock Provider Payloads ───


@pytest.fixture
def financial_payload() -> Dict[str, Any]:
    return {
        "financial_health_score": 0.82,
        "automation_score": 0.65,
        "revenue_quality": "recurring",
        "profit_margins": "27.8%",
        "cash_flow_predictability": 0.75,
        "growth_trajectory": "growing",
        "automation_opportunities": ["Dispatch scheduling software", "Automated invoicing"],
        "financial_red_flags": ["Customer concentration in commercial contracts"],
        "working_capital_requirements": "medium",
        "seasonality_impact": 0.3,
    }


@pytest.fixture
def strategic_payload() -> Dict[str, Any]:
    return {
        "strategic_value_score": 0.78,
        "competitive_moat": "moderate",
        "market_position": "challenger",
        "scalability_potential": 0.7,
        "recommended_ownership_model": "semi_absentee",
        "strategic_flags": ["platform_potential", "consolidation_target"],
        "growth_strategies": ["Add-on acquisitions in the Triangle"],
        "integration_complexity": "medium",
        "synergy_opportunities": ["cost_optimization"],
        "technology_modernization_needs": 0.6,
        "management_team_quality": "good",
    }


@pytest.fixture
def market_payload() -> Dict[str, Any]:
    return {
        "market_attractiveness_score": 0.74,
        "market_size": "large",
        "market_growth_rate": "growing",
        "competitive_intensity": 0.55,
        "market_trends": ["Electrification", "Aging housing stock"],
        "target_demographics": ["Homeowners", "Property managers"],
        "economic_sensitivity": 0.4,
        "digital_transformation_opportunity": 0.8,
    }


@pytest.fixture
def risk_payload() -> Dict[str, Any]:
    return {
        "overall_risk_score": 0.35,
        "key_risks": ["Key technician retention"],
        "operational_risks": ["Licensing tied to the seller"],
        "financial_risks": [],
        "market_risks": ["Housing slowdown"],
        "regulatory_risks": ["State contractor licensing"],
        "resilience_factors": ["essential_service"],
    }


@pytest.fixture
def provider_texts(financial_payload, strategic_payload, market_payload, risk_payload) -> Dict[str, str]:
    """Raw provider text per target, in the messy shapes providers return."""
    return {
        "financial": "```json\n" + json.dumps(financial_payload, indent=2) + "\n```",
        "strategic": "Here is the analysis:\n" + json.dumps(strategic_payload) + "\nLet me know if you need more.",
        "market": json.dumps(market_payload),
        "risk": json.dumps(risk_payload),
    }
