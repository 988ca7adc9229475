from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from bizbrain.app.logic.models import (
    BusinessBrainReadiness,
    CompletionAnalysis,
    DashboardSummary,
    QualityAnalysis,
    RankedRecommendation,
)
from bizbrain.app.logic.readiness import build_dashboard_summary, get_business_brain_readiness
from bizbrain.app.logic.recommendations import get_quick_wins, get_remaining_tasks
from bizbrain.app.logic.scoring import get_completion_tier

router = APIRouter()


# -------------------------------------------------
# Request / response models
# -------------------------------------------------
class InsightsRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    profile_exists: bool = True
    completion_analysis: Optional[CompletionAnalysis] = None
    quality_analysis: Optional[QualityAnalysis] = None


class QuickWinsResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    quick_wins: List[RankedRecommendation] = []
    remaining_tasks: List[RankedRecommendation] = []


# -------------------------------------------------
# Routes
# -------------------------------------------------
@router.post("/summary", response_model=DashboardSummary, response_model_by_alias=True)
def insights_summary(req: InsightsRequest) -> DashboardSummary:
    return build_dashboard_summary(req.profile_exists, req.completion_analysis, req.quality_analysis)


@router.post("/quick-wins", response_model=QuickWinsResponse, response_model_by_alias=True)
def insights_quick_wins(req: InsightsRequest) -> QuickWinsResponse:
    return QuickWinsResponse(
        quick_wins=get_quick_wins(req.completion_analysis, req.quality_analysis),
        remaining_tasks=get_remaining_tasks(req.completion_analysis, req.quality_analysis),
    )


@router.post("/business-brain", response_model=BusinessBrainReadiness, response_model_by_alias=True)
def insights_business_brain(req: InsightsRequest) -> BusinessBrainReadiness:
    return get_business_brain_readiness(req.quality_analysis)


@router.get("/completion-tier")
def insights_completion_tier(score: int = Query(..., ge=0, le=100)) -> Dict[str, Any]:
    return {"ok": True, "score": score, "tier": get_completion_tier(score)}
