from __future__ import annotations

from typing import List, Optional, Sequence

from bizbrain.app.logic.models import CompletionAnalysis, FieldTier

MINUTES_PER_FIELD = 2
MIN_MINUTES = 2

TIER_KEYS = ("tier1_essential", "tier2_context", "tier3_intelligence")
TIER_LABELS = {
    "tier1_essential": "Essential",
    "tier2_context": "Context",
    "tier3_intelligence": "Intelligence",
}


def estimate_time_to_ready(missing_fields: Sequence[str]) -> int:
    """Rough minutes needed to fill the given fields (display heuristic, not an SLA)."""
    return max(MIN_MINUTES, len(missing_fields or []) * MINUTES_PER_FIELD)


def get_completion_tier(score: float) -> str:
    if score >= 80:
        return "Optimized"
    if score >= 50:
        return "Building"
    return "Getting Started"


def get_tier(completion: Optional[CompletionAnalysis], key: str) -> Optional[FieldTier]:
    if completion is None:
        return None
    return getattr(completion.tier_status, key, None)


def tier_percentage(completion: Optional[CompletionAnalysis], key: str) -> int:
    # taken verbatim from the server, never recomputed
    tier = get_tier(completion, key)
    return tier.percentage if tier is not None else 0


def is_tier_complete(tier: Optional[FieldTier]) -> bool:
    return tier is not None and tier.is_complete


def essentials_complete(completion: Optional[CompletionAnalysis]) -> bool:
    return is_tier_complete(get_tier(completion, "tier1_essential"))


def missing_tier_fields(tier: Optional[FieldTier]) -> List[str]:
    if tier is None:
        return []
    return [f.label or f.name for f in tier.fields if not f.filled]
