from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _round_score(v: Any) -> Any:
    return round(v) if isinstance(v, float) else v


# Servers sometimes report fractional scores (72.5); the dashboard shows whole numbers.
Score = Annotated[int, BeforeValidator(_round_score)]


class ApiModel(BaseModel):
    """Base for payloads coming from the dashboard API (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


# -------------------------------------------------
# Completion analysis
# -------------------------------------------------
class FieldDescriptor(ApiModel):
    name: str
    label: str = ""
    filled: bool = False
    importance: str = ""
    affects_tools: List[str] = []


class FieldTier(ApiModel):
    percentage: Score = Field(0, ge=0, le=100)
    complete: bool = False
    total_fields: int = 0
    filled_fields: int = 0
    fields: List[FieldDescriptor] = []

    @property
    def is_complete(self) -> bool:
        return self.filled_fields == self.total_fields


class TierStatus(ApiModel):
    tier1_essential: FieldTier = FieldTier()
    tier2_context: FieldTier = FieldTier()
    tier3_intelligence: FieldTier = FieldTier()


class QualityReadiness(ApiModel):
    score: Score = 0
    quality: str = ""
    blockers: List[str] = []
    enhancers: List[str] = []


class ToolReadiness(ApiModel):
    ready: bool = False
    score: Score = 0
    quality: str = ""
    missing_fields: List[str] = []
    recommendations: List[str] = []
    quality_score: Optional[Score] = None
    quality_readiness: Optional[QualityReadiness] = None


class CompletionRecommendation(ApiModel):
    priority: str = "medium"
    category: str = ""
    message: str
    fields: List[str] = []
    benefit: str = ""


class CompletionAnalysis(ApiModel):
    overall_score: Score = 0
    tier_status: TierStatus = TierStatus()
    tool_readiness: Dict[str, ToolReadiness] = {}
    recommendations: List[CompletionRecommendation] = []
    missing_critical_fields: List[str] = []


# -------------------------------------------------
# Quality analysis
# -------------------------------------------------
class FieldQuality(ApiModel):
    quality_score: Score = 0
    specificity_score: Score = 0
    actionability_score: Score = 0
    overall_quality: str = ""
    strengths: List[str] = []
    gaps: List[str] = []
    recommendations: List[str] = []


class CrossFieldCoherence(ApiModel):
    score: Score = 0
    issues: List[str] = []
    strengths: List[str] = []


class ToolImpact(ApiModel):
    quality_score: Score = 0
    blockers: List[str] = []
    enhancers: List[str] = []
    estimated_improvement: Optional[str] = None


class QualityRecommendation(ApiModel):
    priority: str = "medium"
    field: Optional[str] = None
    message: str
    impact: str = ""


class QualityAnalysis(ApiModel):
    overall_score: Score = 0
    field_analysis: Dict[str, FieldQuality] = {}
    cross_field_coherence: CrossFieldCoherence = CrossFieldCoherence()
    tool_impact: Optional[Dict[str, ToolImpact]] = None
    top_recommendations: List[QualityRecommendation] = []
    analyzed_at: Optional[str] = None


@dataclass(frozen=True)
class NotAnalyzed:
    """The server has not produced a quality analysis yet."""


@dataclass(frozen=True)
class Analyzed:
    value: QualityAnalysis
    cached: bool = False


QualityState = Union[NotAnalyzed, Analyzed]
QualityInput = Union[None, QualityAnalysis, Dict[str, Any], NotAnalyzed, Analyzed]
NOT_ANALYZED = NotAnalyzed()


def unwrap_quality(quality: QualityInput) -> Optional[QualityAnalysis]:
    if quality is None or isinstance(quality, NotAnalyzed):
        return None
    if isinstance(quality, Analyzed):
        return quality.value
    if isinstance(quality, dict):
        return QualityAnalysis.model_validate(quality)
    return quality


def quality_state(quality: QualityInput, cached: bool = False) -> QualityState:
    value = unwrap_quality(quality)
    if value is None:
        return NOT_ANALYZED
    if isinstance(quality, Analyzed):
        return quality
    return Analyzed(value, cached=cached)


def coerce_completion(completion: Union[None, CompletionAnalysis, Dict[str, Any]]) -> Optional[CompletionAnalysis]:
    if completion is None:
        return None
    if isinstance(completion, dict):
        return CompletionAnalysis.model_validate(completion)
    return completion


# -------------------------------------------------
# Organization profile + documents
# -------------------------------------------------
class ProfileUser(ApiModel):
    id: str = ""
    firstname: str = ""
    lastname: str = ""
    email: str = ""


class OrganizationProfile(ApiModel):
    id: Optional[str] = None
    organization_id: Optional[str] = None

    business_name: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    industry_other: Optional[str] = None
    what_you_sell: Optional[str] = None
    monthly_revenue: Optional[str] = None
    team_size: Optional[str] = None
    primary_goal: Optional[str] = None
    biggest_bottle_neck: Optional[str] = None
    ideal_customer: Optional[str] = None
    top_objection: Optional[str] = None
    core_offer: Optional[str] = None
    customer_journey: Optional[str] = None
    tool_stack: Optional[List[str]] = None
    primary_crm: Optional[str] = Field(None, alias="primaryCRM")
    default_time_zone: Optional[str] = None
    booking_link: Optional[str] = None
    support_email: Optional[str] = None
    brand_voice_style: Optional[str] = None
    risk_boldness: Optional[str] = None
    voice_example_good: Optional[str] = None
    voice_examples_avoid: Optional[str] = None
    content_links: Optional[str] = None
    is_regulated: Optional[bool] = None
    regulated_industry: Optional[str] = None
    forbidden_words: Optional[str] = None
    disclaimers: Optional[str] = None
    default_weekly_hours: Optional[str] = None
    default_management_style: Optional[str] = None
    default_english_level: Optional[str] = None
    proof_assets: Optional[str] = None
    proof_files: Optional[Any] = None
    pipe_line_stages: Optional[str] = None
    email_sign_off: Optional[str] = None

    last_edited_by: Optional[str] = None
    last_edited_at: Optional[str] = None
    contributors_count: int = 0
    required_fields_complete: bool = False
    completed_at: Optional[str] = None
    completed_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completeness: Optional[float] = None
    completeness_breakdown: Optional[Any] = None
    last_edited_by_user: Optional[ProfileUser] = None
    completed_by_user: Optional[ProfileUser] = None


ExtractionStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]


class KnowledgeDocument(ApiModel):
    id: str
    file_name: str = Field("", validation_alias=AliasChoices("name", "fileName", "file_name"))
    file_type: Optional[str] = Field(None, validation_alias=AliasChoices("type", "fileType", "file_type"))
    file_size: Optional[int] = Field(None, validation_alias=AliasChoices("size", "fileSize", "file_size"))
    url: Optional[str] = None
    extraction_status: ExtractionStatus = "PENDING"
    extraction_error: Optional[str] = None
    created_at: Optional[str] = Field(None, validation_alias=AliasChoices("uploadedAt", "createdAt", "created_at"))
    extracted_at: Optional[str] = None


# -------------------------------------------------
# SOPs
# -------------------------------------------------
class VersionAuthor(ApiModel):
    id: str = ""
    firstname: str = ""
    lastname: str = ""
    email: str = ""


class SOPVersion(ApiModel):
    id: str
    version_number: int = Field(1, ge=1)
    is_current_version: bool = False
    created_by: Optional[VersionAuthor] = None
    created_at: Optional[str] = None
    version_created_at: Optional[str] = None


class TokenUsage(ApiModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0


class SOPMetadata(ApiModel):
    title: str = "SOP"
    generated_at: Optional[str] = None
    tokens: TokenUsage = TokenUsage()
    organization_profile_used: bool = False
    version_number: Optional[int] = None


class GeneratedSOP(ApiModel):
    markdown: str = ""
    html: Optional[str] = None
    sop_id: Optional[str] = None
    root_sop_id: Optional[str] = Field(None, alias="rootSOPId")
    version_number: int = 1
    is_current_version: bool = True
    is_draft: bool = False
    metadata: SOPMetadata = SOPMetadata()


class ReviewSuggestion(ApiModel):
    type: str = ""
    original: str = ""
    suggested: str = ""
    reason: str = ""


# -------------------------------------------------
# Role Builder (JD analysis)
# -------------------------------------------------
def empty_preview() -> Dict[str, Any]:
    return {
        "summary": {
            "company_stage": "",
            "outcome_90d": "",
            "primary_bottleneck": "",
            "role_recommendation": "",
            "sop_status": {
                "has_sops": False,
                "pain_points": [],
                "documentation_gaps": [],
                "summary": "",
            },
            "workflow_analysis": "",
        },
        "primary_outcome": "",
        "service_type": "",
        "service_confidence": "",
        "service_reasoning": "",
        "confidence": "",
        "key_risks": [],
        "critical_questions": [],
    }


class JDAnalysisResult(BaseModel):
    """Pass-through analysis package; only ``preview`` is guaranteed."""

    model_config = ConfigDict(extra="allow")

    preview: Dict[str, Any] = Field(default_factory=empty_preview)
    full_package: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "JDAnalysisResult":
        payload = dict(data or {})
        if payload.get("preview") is None:
            payload["preview"] = empty_preview()
        return cls.model_validate(payload)


# -------------------------------------------------
# Derived descriptors
# -------------------------------------------------
class DerivedModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthDisplay(DerivedModel):
    primary_score: Optional[int] = None
    coverage_score: Optional[int] = None
    primary_label: str


class BusinessBrainReadiness(DerivedModel):
    score: int
    ready: bool
    quality_label: str
    message: str


class Milestone(DerivedModel):
    title: str
    message: str
    target_score: int


class CallToAction(DerivedModel):
    label: str
    action: str
    description: str = ""


class RankedRecommendation(DerivedModel):
    source: Literal["completion", "quality"]
    priority: str
    message: str
    fields: List[str] = []
    time_estimate: int
    category: Optional[str] = None
    benefit: Optional[str] = None
    impact: Optional[str] = None


class ToolReadinessView(DerivedModel):
    key: str
    label: str
    ready: bool
    score: int
    quality: str
    missing_fields: List[str] = []
    time_to_ready: int
    quality_score: Optional[int] = None
    enriched: bool = False


class DashboardSummary(DerivedModel):
    health: HealthDisplay
    completion_tier: Optional[str] = None
    business_brain: BusinessBrainReadiness
    next_milestone: Optional[Milestone] = None
    primary_cta: CallToAction
    tools: List[ToolReadinessView] = []
    quick_wins: List[RankedRecommendation] = []
    remaining_tasks: List[RankedRecommendation] = []
