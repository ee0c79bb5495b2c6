"""Strategic value agent."""

from .base_agent import BaseDomainAgent
from ..models import DomainKind


class StrategicAgent(BaseDomainAgent):
    """Assesses strategic value, scalability and the fitting ownership model."""

    domain = DomainKind.STRATEGIC

    SCORE_FIELD = "strategic_value_score"
    METRIC_FIELDS = {
        "scalability_potential": 1.0,
        "technology_modernization_needs": 1.0,
    }
    ATTRIBUTE_FIELDS = (
        "competitive_moat",
        "market_position",
        "recommended_ownership_model",
        "integration_complexity",
        "management_team_quality",
    )
    FINDING_FIELDS = ("strategic_flags", "growth_strategies", "synergy_opportunities")

    def build_prompt(self) -> str:
        return f"""You are a strategic business consultant specializing in acquisition strategy. Analyze this business for strategic value and operational optimization:

{self.business_header()}

Provide strategic analysis in JSON format:
{{
  "strategic_value_score": 0.0-1.0,
  "competitive_moat": "weak|moderate|strong",
  "market_position": "leader|challenger|follower|niche",
  "scalability_potential": 0.0-1.0,
  "recommended_ownership_model": "absentee|semi_absentee|owner_operator",
  "strategic_flags": ["growth_potential", "automation_ready", "consolidation_target"],
  "growth_strategies": ["specific strategies"],
  "integration_complexity": "low|medium|high",
  "synergy_opportunities": ["revenue_enhancement", "cost_optimization"],
  "technology_modernization_needs": 0.0-1.0,
  "management_team_quality": "poor|fair|good|excellent"
}}

Respond with only the JSON object."""
