from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from bizbrain.app.logic.models import (
    BusinessBrainReadiness,
    CallToAction,
    CompletionAnalysis,
    DashboardSummary,
    HealthDisplay,
    Milestone,
    QualityInput,
    ToolImpact,
    ToolReadinessView,
    coerce_completion,
    unwrap_quality,
)
from bizbrain.app.logic.recommendations import get_quick_wins, get_remaining_tasks
from bizbrain.app.logic.scoring import essentials_complete, estimate_time_to_ready, get_completion_tier

BUSINESS_BRAIN = "businessBrain"
TOOL_ORDER = ("jobDescriptionBuilder", "sopGenerator", "businessBrain")
TOOL_LABELS = {
    "jobDescriptionBuilder": "Role Builder",
    "sopGenerator": "SOP Builder",
    "businessBrain": "Business Brain",
}

READY_THRESHOLD = 60
ENRICHED_THRESHOLD = 50

CompletionInput = Union[None, CompletionAnalysis, Dict[str, Any]]


def _tool_impact(quality: QualityInput, tool_key: str) -> Optional[ToolImpact]:
    q = unwrap_quality(quality)
    if q is None or not q.tool_impact:
        return None
    return q.tool_impact.get(tool_key)


# -------------------------------------------------
# Headline scores
# -------------------------------------------------
def get_health_display(quality: QualityInput, completion: CompletionInput) -> HealthDisplay:
    """
    Quality is the primary score once analyzed; completion coverage is always secondary.
    """
    q = unwrap_quality(quality)
    c = coerce_completion(completion)
    primary = q.overall_score if q is not None else None
    coverage = c.overall_score if c is not None else None
    return HealthDisplay(
        primary_score=primary,
        coverage_score=coverage,
        primary_label="Knowledge base quality" if primary is not None else "Not yet analyzed",
    )


def get_quality_label(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "basic"
    return "insufficient"


def get_business_brain_readiness(quality: QualityInput) -> BusinessBrainReadiness:
    impact = _tool_impact(quality, BUSINESS_BRAIN)
    score = impact.quality_score if impact is not None else 0
    ready = score >= READY_THRESHOLD

    if impact is None:
        message = "Run quality check to see readiness"
    elif ready:
        message = "Ready for AI conversations"
    else:
        message = "Improve profile quality for better AI answers"

    return BusinessBrainReadiness(
        score=score,
        ready=ready,
        quality_label=get_quality_label(score),
        message=message,
    )


def is_enriched_with_ai(quality: QualityInput, tool_key: str) -> bool:
    impact = _tool_impact(quality, tool_key)
    score = impact.quality_score if impact is not None else 0
    return score >= ENRICHED_THRESHOLD


def get_next_milestone(quality: QualityInput) -> Optional[Milestone]:
    if get_business_brain_readiness(quality).ready:
        return None
    if unwrap_quality(quality) is not None:
        return Milestone(
            title="Unlock Business Brain",
            message="Raise your knowledge base quality score to 60 to unlock confident AI answers",
            target_score=READY_THRESHOLD,
        )
    return Milestone(
        title="Run your first quality check",
        message="Run a quality check to see how close Business Brain is to ready",
        target_score=READY_THRESHOLD,
    )


def get_primary_cta(profile_exists: bool, completion: CompletionInput, quality: QualityInput) -> CallToAction:
    c = coerce_completion(completion)
    if not profile_exists:
        return CallToAction(
            label="Set up knowledge base",
            action="setup",
            description="Start with the essential fields. You can refine and expand later.",
        )
    if c is None or not essentials_complete(c):
        return CallToAction(
            label="Complete essential fields",
            action="edit",
            description="Every tool relies on the essential tier.",
        )
    if unwrap_quality(quality) is None:
        return CallToAction(
            label="Run quality check",
            action="analyze_quality",
            description="Get AI-powered quality scores for your knowledge base.",
        )
    if not get_business_brain_readiness(quality).ready:
        return CallToAction(
            label="Improve knowledge base quality",
            action="quick_wins",
            description="Start with the quick wins below.",
        )
    return CallToAction(
        label="Open Business Brain",
        action="open_business_brain",
        description="Your knowledge base is ready for AI conversations.",
    )


# -------------------------------------------------
# Per-tool readiness
# -------------------------------------------------
def get_tool_readiness(completion: CompletionInput, quality: QualityInput) -> List[ToolReadinessView]:
    c = coerce_completion(completion)
    if c is None:
        return []

    keys = [k for k in TOOL_ORDER if k in c.tool_readiness]
    keys += [k for k in c.tool_readiness if k not in TOOL_ORDER]

    out: List[ToolReadinessView] = []
    for key in keys:
        tool = c.tool_readiness[key]
        impact = _tool_impact(quality, key)
        if impact is not None:
            quality_score: Optional[int] = impact.quality_score
        elif tool.quality_readiness is not None:
            quality_score = tool.quality_readiness.score
        else:
            quality_score = tool.quality_score

        out.append(
            ToolReadinessView(
                key=key,
                label=TOOL_LABELS.get(key, key),
                ready=tool.ready,
                score=tool.score,
                quality=tool.quality,
                missing_fields=list(tool.missing_fields),
                time_to_ready=0 if tool.ready else estimate_time_to_ready(tool.missing_fields),
                quality_score=quality_score,
                enriched=is_enriched_with_ai(quality, key),
            )
        )
    return out


def build_dashboard_summary(
    profile_exists: bool,
    completion: CompletionInput,
    quality: QualityInput,
) -> DashboardSummary:
    c = coerce_completion(completion)
    q = unwrap_quality(quality)
    health = get_health_display(q, c)
    return DashboardSummary(
        health=health,
        completion_tier=get_completion_tier(health.coverage_score) if health.coverage_score is not None else None,
        business_brain=get_business_brain_readiness(q),
        next_milestone=get_next_milestone(q),
        primary_cta=get_primary_cta(profile_exists, c, q),
        tools=get_tool_readiness(c, q),
        quick_wins=get_quick_wins(c, q),
        remaining_tasks=get_remaining_tasks(c, q),
    )
