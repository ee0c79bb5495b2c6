"""Domain Analysis Agents"""

from .base_agent import BaseDomainAgent
from .financial_agent import FinancialAgent
from .strategic_agent import StrategicAgent
from .market_agent import MarketAgent
from .risk_agent import RiskAgent
from .narrative_agent import NarrativeSynthesizer

__all__ = [
    "BaseDomainAgent",
    "FinancialAgent",
    "StrategicAgent",
    "MarketAgent",
    "RiskAgent",
    "NarrativeSynthesizer",
]
