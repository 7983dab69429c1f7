"""
Visibility Models for Multi-LLM Visibility Analysis.
Defines the unified data structures shared by adapters, the health monitor,
the analyzer and both orchestrators.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunMode(str, Enum):
    SINGLE_PROVIDER = "single-provider"
    MULTI_PROVIDER = "multi-provider"


class ModelDescriptor(BaseModel):
    """Static configuration for one upstream model."""
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    provider: str
    deprecated: bool = False
    free: bool = True
    probe_input: str = 'Say "OK" in JSON format: {"status": "ok"}'


class HealthRecord(BaseModel):
    """Outcome of the latest health probe for one model."""
    healthy: bool
    last_checked_at: datetime
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    is_rate_limited: bool = False
    retry_after_seconds: Optional[int] = None
    status_code: Optional[int] = None
    deprecated: bool = False


class HealthSnapshot(BaseModel):
    last_checked_at: Optional[datetime] = None
    models: Dict[str, HealthRecord] = Field(default_factory=dict)


class HealthyModel(BaseModel):
    key: str
    descriptor: Optional[ModelDescriptor] = None
    record: HealthRecord


class PromptSpec(BaseModel):
    """One test query sent to the providers."""
    model_config = ConfigDict(frozen=True)

    id: str
    template: str
    category: str

    def render(self, domain: str, brand: str, topic: str) -> str:
        return (
            self.template
            .replace("{domain}", domain)
            .replace("{brand}", brand)
            .replace("{topic}", topic)
        )


class ParsedAnswer(BaseModel):
    """Structured JSON answer requested from every model."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: str = ""
    citations: List[str] = Field(default_factory=list)
    mentions_domain: bool = Field(default=False, alias="mentionsDomain")
    reasoning: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("citations", mode="before")
    @classmethod
    def _keep_string_citations(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    @field_validator("mentions_domain", mode="before")
    @classmethod
    def _strict_true(cls, value: Any) -> bool:
        # Only a literal JSON true counts as a mention claim.
        return value is True


class ProviderResponse(BaseModel):
    """Normalized result of one model call."""
    model_config = ConfigDict(protected_namespaces=())

    provider: str
    model_id: str
    raw_text: str
    parsed: Optional[ParsedAnswer] = None
    tokens_used_estimate: int = 0
    response_time_ms: Optional[int] = None

    def answer(self) -> ParsedAnswer:
        """Structured answer, or the raw text treated as the description."""
        if self.parsed is not None:
            return self.parsed
        return ParsedAnswer(description=self.raw_text)


class Recommendation(BaseModel):
    title: str
    description: str
    priority: str = "medium"


class AnalyzerVerdict(BaseModel):
    mentioned: bool
    score: float
    citations: List[str] = Field(default_factory=list)
    confidence: str


class ProviderBranchResult(BaseModel):
    """One branch of a multi-provider fan-out."""
    model_config = ConfigDict(protected_namespaces=())

    branch: str
    provider: str
    model_id: Optional[str] = None
    success: bool
    error: Optional[str] = None
    citations: List[str] = Field(default_factory=list)
    mentions_domain: bool = False


class AnalysisResult(BaseModel):
    """Per-prompt visibility result."""
    prompt_id: str
    prompt: str
    category: Optional[str] = None
    response: Optional[str] = None
    parsed_response: Optional[ParsedAnswer] = None
    domain_mentioned: bool = False
    score: float = 0
    citations: List[str] = Field(default_factory=list)
    confidence: str = "low"
    recommendations: List[Recommendation] = Field(default_factory=list)
    tokens_used: int = 0
    error: Optional[str] = None
    provider_results: Optional[List[ProviderBranchResult]] = None


class BusinessContext(BaseModel):
    brand_name: Optional[str] = None
    industry: Optional[str] = None
    brand_summary: Optional[str] = None


class ReportMetadata(BaseModel):
    total_tokens: int = 0
    estimated_cost: float = 0.0
    prompts_used: int = 0
    prompt_source: str = "static"
    multi_llm_enabled: bool = False
    generation_failure: Optional[str] = None


class VisibilityReport(BaseModel):
    """Complete result of one visibility run."""
    success: bool = True
    url: str
    domain: str
    brand: str
    total_score: int = 0
    max_score: int = 0
    percentage: int = 0
    details: List[AnalysisResult] = Field(default_factory=list)
    is_elevated_tier: bool = False
    warnings: List[str] = Field(default_factory=list)
    metadata: ReportMetadata = Field(default_factory=ReportMetadata)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for non-negatives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))
