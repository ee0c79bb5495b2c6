"""Financial health agent."""

from .base_agent import BaseDomainAgent
from ..models import DomainKind


class FinancialAgent(BaseDomainAgent):
    """Assesses financial health, cash-flow quality and automation upside."""

    domain = DomainKind.FINANCIAL

    SCORE_FIELD = "financial_health_score"
    METRIC_FIELDS = {
        "automation_score": 1.0,
        "cash_flow_predictability": 1.0,
        "seasonality_impact": 1.0,
    }
    ATTRIBUTE_FIELDS = (
        "revenue_quality",
        "profit_margins",
        "growth_trajectory",
        "working_capital_requirements",
    )
    FINDING_FIELDS = ("financial_red_flags", "automation_opportunities")

    def build_prompt(self) -> str:
        return f"""You are a senior financial analyst with 15+ years in business acquisitions. Analyze this business opportunity and provide a detailed financial assessment in JSON format:

{self.business_header()}

Provide analysis in this exact JSON structure:
{{
  "financial_health_score": 0.0-1.0,
  "automation_score": 0.0-1.0,
  "revenue_quality": "recurring|project_based|seasonal|mixed",
  "profit_margins": "percentage string",
  "cash_flow_predictability": 0.0-1.0,
  "growth_trajectory": "declining|stable|growing|rapidly_growing",
  "automation_opportunities": ["specific opportunities"],
  "financial_red_flags": ["specific concerns"],
  "working_capital_requirements": "low|medium|high",
  "seasonality_impact": 0.0-1.0
}}

Respond with only the JSON object."""
