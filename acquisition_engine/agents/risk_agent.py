"""Risk assessment agent."""

from .base_agent import BaseDomainAgent
from ..models import DomainKind


class RiskAgent(BaseDomainAgent):
    """
    Assesses business risk.

    The score is a risk level (higher is riskier); fusion inverts it.
    """

    domain = DomainKind.RISK

    SCORE_FIELD = "overall_risk_score"
    FINDING_FIELDS = (
        "key_risks",
        "financial_risks",
        "operational_risks",
        "market_risks",
        "regulatory_risks",
    )
    FACTOR_FIELDS = ("resilience_factors",)

    def build_prompt(self) -> str:
        return f"""You are a risk assessment specialist. Analyze the business risks and mitigation strategies:

{self.business_header()}

Provide risk analysis in JSON format:
{{
  "overall_risk_score": 0.0-1.0,
  "key_risks": ["specific risk factors"],
  "resilience_factors": ["competitive advantages"],
  "regulatory_risks": ["compliance requirements"],
  "market_risks": ["market-specific risks"],
  "operational_risks": ["operational vulnerabilities"],
  "financial_risks": ["financial concerns"],
  "mitigation_strategies": ["risk mitigation approaches"],
  "insurance_requirements": ["coverage types needed"],
  "contingency_planning": ["backup strategies"]
}}

Respond with only the JSON object."""
