"""Market conditions agent."""

from typing import Any, Dict

from .base_agent import BaseDomainAgent
from ..errors import UnparseableResponse
from ..models import DomainKind
from ..sanitizer import finite_float


class MarketAgent(BaseDomainAgent):
    """Assesses market size, growth and competitive landscape."""

    domain = DomainKind.MARKET

    SCORE_FIELD = "market_attractiveness_score"
    METRIC_FIELDS = {
        "competitive_intensity": 1.0,
        "economic_sensitivity": 1.0,
        "digital_transformation_opportunity": 1.0,
    }
    ATTRIBUTE_FIELDS = (
        "market_size",
        "market_growth_rate",
        "seasonal_patterns",
        "regulatory_environment",
        "barriers_to_entry",
    )
    FINDING_FIELDS = ("market_trends", "target_demographics")

    # Used when the provider gives a growth label but no numeric score
    GROWTH_RATE_SCORES = {
        "rapidly_growing": 0.9,
        "growing": 0.7,
        "stable": 0.5,
        "declining": 0.3,
    }

    def extract_score(self, payload: Dict[str, Any]) -> float:
        score = finite_float(payload.get(self.SCORE_FIELD))
        if score is not None:
            return score

        growth = payload.get("market_growth_rate")
        if isinstance(growth, str):
            label = growth.strip().lower().replace(" ", "_").replace("-", "_")
            if label in self.GROWTH_RATE_SCORES:
                return self.GROWTH_RATE_SCORES[label]

        raise UnparseableResponse("Market response has neither a score nor a known growth rate")

    def build_prompt(self) -> str:
        return f"""You are a market research analyst. Analyze the market conditions and competitive landscape for this business:

{self.business_header()}

Provide market analysis in JSON format:
{{
  "market_attractiveness_score": 0.0-1.0,
  "market_size": "small|medium|large|very_large",
  "market_growth_rate": "declining|stable|growing|rapidly_growing",
  "competitive_intensity": 0.0-1.0,
  "market_trends": ["trend1", "trend2"],
  "target_demographics": ["demographic segments"],
  "seasonal_patterns": "minimal|moderate|high_seasonality",
  "regulatory_environment": "restrictive|neutral|favorable",
  "economic_sensitivity": 0.0-1.0,
  "digital_transformation_opportunity": 0.0-1.0,
  "barriers_to_entry": "low|medium|high"
}}

Respond with only the JSON object."""
