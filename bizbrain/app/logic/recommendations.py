"""
Quick wins / All Tasks.

The two recommendation lists the server produces (completion gaps and quality
findings) are merged into one ranked list and split into:

    merge -> annotate -> filter (time estimate <= 5 min) -> take(2)

"All Tasks" is the merged list minus anything whose message text matches a
quick win. Matching is on message text, not identity, so two different
recommendations sharing a message both disappear from the remainder.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Union

from bizbrain.app.logic.models import (
    CompletionAnalysis,
    QualityInput,
    RankedRecommendation,
    coerce_completion,
    unwrap_quality,
)
from bizbrain.app.logic.scoring import estimate_time_to_ready

QUICK_WIN_MAX_MINUTES = 5
QUICK_WIN_LIMIT = 2


def merge_recommendations(
    completion: Union[None, CompletionAnalysis, Dict[str, Any]],
    quality: QualityInput,
) -> List[RankedRecommendation]:
    """Quality findings first, then completion gaps. Each item gets fields + time estimate."""
    c = coerce_completion(completion)
    if c is None:
        return []
    q = unwrap_quality(quality)

    merged: List[RankedRecommendation] = []
    if q is not None:
        for rec in q.top_recommendations:
            merged.append(
                annotate(
                    source="quality",
                    priority=rec.priority,
                    message=rec.message,
                    fields=[rec.field] if rec.field else [],
                    impact=rec.impact,
                )
            )
    for rec in c.recommendations:
        merged.append(
            annotate(
                source="completion",
                priority=rec.priority,
                message=rec.message,
                fields=list(rec.fields),
                category=rec.category,
                benefit=rec.benefit,
            )
        )
    return merged


def annotate(source: str, priority: str, message: str, fields: List[str], **extra: Optional[str]) -> RankedRecommendation:
    return RankedRecommendation(
        source=source,
        priority=priority,
        message=message,
        fields=fields,
        time_estimate=estimate_time_to_ready(fields),
        **extra,
    )


def filter_quick_win_candidates(
    items: Iterable[RankedRecommendation],
    max_minutes: int = QUICK_WIN_MAX_MINUTES,
) -> List[RankedRecommendation]:
    return [r for r in items if r.time_estimate <= max_minutes]


def take(items: Iterable[RankedRecommendation], limit: int = QUICK_WIN_LIMIT) -> List[RankedRecommendation]:
    # order-preserving truncation; priority is deliberately ignored
    return list(items)[:limit]


def get_quick_wins(
    completion: Union[None, CompletionAnalysis, Dict[str, Any]],
    quality: QualityInput,
) -> List[RankedRecommendation]:
    return take(filter_quick_win_candidates(merge_recommendations(completion, quality)))


def exclude_by_message(
    items: Iterable[RankedRecommendation],
    excluded: Iterable[RankedRecommendation],
) -> List[RankedRecommendation]:
    messages = {r.message for r in excluded}
    return [r for r in items if r.message not in messages]


def get_remaining_tasks(
    completion: Union[None, CompletionAnalysis, Dict[str, Any]],
    quality: QualityInput,
) -> List[RankedRecommendation]:
    merged = merge_recommendations(completion, quality)
    quick = take(filter_quick_win_candidates(merged))
    return exclude_by_message(merged, quick)
