"""Pydantic models for analysis entities and request/response validation."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .sanitizer import PAYBACK_SENTINEL, STORAGE_CEILING


class DomainKind(str, Enum):
    """Closed set of analysis domains."""

    FINANCIAL = "financial"
    STRATEGIC = "strategic"
    MARKET = "market"
    RISK = "risk"


class Provenance(str, Enum):
    """Where a domain result came from."""

    PROVIDER = "provider-sourced"
    FALLBACK = "fallback-sourced"


class BusinessRecord(BaseModel):
    """Candidate acquisition as produced by the upstream discovery step."""

    model_config = ConfigDict(frozen=True)

    business_id: str = Field(..., min_length=1, max_length=64)
    business_name: str = Field(..., min_length=1, max_length=200)
    sector: str = ""
    location: str = ""
    asking_price: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)
    annual_revenue: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)
    annual_net_profit: float = Field(default=0.0, allow_inf_nan=False)  # may be negative
    description: str = ""
    is_active: bool = True


class DomainAnalysisResult(BaseModel):
    """Outcome of one domain analysis, provider- or fallback-sourced."""

    model_config = ConfigDict(frozen=True)

    domain: DomainKind
    score: float = Field(..., ge=0.0, le=1.0, allow_inf_nan=False)
    findings: List[str] = Field(default_factory=list)
    metrics: Dict[str, float] = Field(default_factory=dict)
    attributes: Dict[str, str] = Field(default_factory=dict)
    factors: Dict[str, List[str]] = Field(default_factory=dict)
    provenance: Provenance
    provider: Optional[str] = None
    model: Optional[str] = None
    fallback_reason: Optional[str] = None

    @field_validator("metrics")
    @classmethod
    def _metrics_within_storage(cls, value: Dict[str, float]) -> Dict[str, float]:
        for name, number in value.items():
            if number != number or not (0.0 <= number <= STORAGE_CEILING):
                raise ValueError(f"metric {name}={number} outside [0, {STORAGE_CEILING}]")
        return value

    @property
    def is_fallback(self) -> bool:
        return self.provenance == Provenance.FALLBACK


class ConfidenceIndicator(BaseModel):
    """How much of an assessment rests on live provider output."""

    model_config = ConfigDict(frozen=True)

    level: str  # high, medium, low
    score: float = Field(..., ge=0.0, le=1.0)
    provider_sourced: int = Field(..., ge=0, le=4)
    fallback_sourced: int = Field(..., ge=0, le=4)
    fallback_domains: List[DomainKind] = Field(default_factory=list)


class Narrative(BaseModel):
    """Investment thesis and executive summary for an assessment."""

    model_config = ConfigDict(frozen=True)

    thesis: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    thesis_provenance: Provenance
    summary_provenance: Provenance


class CompositeAssessment(BaseModel):
    """Fused result of the four domain analyses for one business."""

    model_config = ConfigDict(frozen=True)

    assessment_id: str
    business_id: str
    domains: Dict[DomainKind, DomainAnalysisResult]
    composite_score: float = Field(..., ge=0.0, le=1.0, allow_inf_nan=False)
    cap_rate: float = Field(..., ge=0.0, le=STORAGE_CEILING, allow_inf_nan=False)
    payback_years: float = Field(..., ge=0.0, le=PAYBACK_SENTINEL, allow_inf_nan=False)
    confidence: ConfidenceIndicator
    ownership_model: str = "semi_absentee"
    automation_opportunity_score: float = Field(default=0.7, ge=0.0, le=1.0, allow_inf_nan=False)
    resilience_factors: List[str] = Field(default_factory=list)
    narrative: Optional[Narrative] = None
    created_at: str

    @model_validator(mode="after")
    def _one_result_per_domain(self) -> "CompositeAssessment":
        if set(self.domains) != set(DomainKind):
            missing = sorted(k.value for k in set(DomainKind) - set(self.domains))
            raise ValueError(f"assessment requires all four domains; missing {missing}")
        for kind, result in self.domains.items():
            if result.domain != kind:
                raise ValueError(f"result tagged {result.domain.value} stored under {kind.value}")
        return self

    def domain(self, kind: DomainKind) -> DomainAnalysisResult:
        return self.domains[kind]

    def to_record(self) -> Dict[str, object]:
        """Serialize to the persisted shape: domain sub-objects plus top-level fused fields."""
        record: Dict[str, object] = {
            kind.value: self.domains[kind].model_dump(mode="json") for kind in DomainKind
        }
        record.update({
            "assessment_id": self.assessment_id,
            "business_id": self.business_id,
            "composite_score": self.composite_score,
            "cap_rate": self.cap_rate,
            "payback_years": self.payback_years,
            "confidence": self.confidence.model_dump(mode="json"),
            "ownership_model": self.ownership_model,
            "automation_opportunity_score": self.automation_opportunity_score,
            "resilience_factors": list(self.resilience_factors),
            "investment_thesis": self.narrative.thesis if self.narrative else None,
            "executive_summary": self.narrative.summary if self.narrative else None,
            "narrative": self.narrative.model_dump(mode="json") if self.narrative else None,
            "created_at": self.created_at,
        })
        return record


# ─── API models ───


class InvocationRequest(BaseModel):
    """Request model for the single invocation entry point."""
    action: str = Field(..., description="start_scan or analyze_one")
    business_id: Optional[str] = Field(default=None, description="Required for analyze_one")
    batch_size: Optional[int] = Field(default=None, ge=1, le=50)
    inter_batch_delay: Optional[float] = Field(default=None, ge=0.0, le=300.0)
    credentials_source: str = Field(default="environment", description="Where provider secrets are read from")


class InvocationResponse(BaseModel):
    """Response model for the invocation entry point."""
    success: bool
    run_id: str
    action: str


class RunStatus(BaseModel):
    """Model for an analysis run record."""
    id: str
    action: str
    status: str  # pending, processing, completed, failed
    started_at: str
    completed_at: Optional[str] = None
    businesses_processed: int = 0
    businesses_added: int = 0
    businesses_updated: int = 0
    execution_time_seconds: Optional[float] = None
    error_message: Optional[str] = None


class ProgressUpdate(BaseModel):
    """Model for progress updates via SSE."""
    run_id: str
    stage: str
    status: str
    businesses_processed: int = 0
    businesses_added: int = 0
    businesses_updated: int = 0
    business_id: Optional[str] = None
    message: Optional[str] = None
    timestamp: str


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    database_connected: bool
    config_valid: bool
