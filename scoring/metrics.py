"""
Deterministic local scoring.
Pure step functions of already-collected counters; used whenever the scoring service
is not configured, fails, or returns something unusable.
"""
from typing import Any, Dict, Optional
from correlate.models import ContributionScore, UserActivity, GENERATED_BY_FALLBACK
from .utils import DEFAULT_THRESHOLDS, bucket_score

FALLBACK_MARKER = '[fallback]'


def _axis(thresholds: Dict[str, Dict[str, Any]], name: str) -> Dict[str, Any]:
    return thresholds.get(name) or DEFAULT_THRESHOLDS[name]


def _complexity(commit_count: int, repository_count: int, axis: Dict[str, Any]) -> int:
    base = bucket_score(commit_count, axis['buckets'], axis['above'])
    if base == 0:
        return 0
    extra_repos = max(0, repository_count - 1)
    bonus = min(extra_repos * int(axis.get('repository_bonus', 1)), int(axis.get('repository_bonus_cap', 3)))
    return min(base + bonus, 10)


def estimate_time(lines_changed: int, review_count: int) -> str:
    """Rough effort range; a review counts as about 200 changed lines of effort."""
    effort = lines_changed + review_count * 200
    if effort > 3000:
        return '60+ hours'
    if effort > 1000:
        return '36-60 hours'
    if effort > 300:
        return '12-36 hours'
    if effort > 100:
        return '6-12 hours'
    if effort > 0:
        return '1-3 hours'
    return '0 hours'


def fallback_summary(lines_changed: int, commit_count: int, repository_count: int, review_count: int) -> str:
    if not commit_count and not review_count:
        return f"{FALLBACK_MARKER} No commits or reviews in this window."
    parts = [
        f"{commit_count} commit{'s' if commit_count != 1 else ''}",
        f"{lines_changed} lines changed",
        f"{repository_count} repositor{'ies' if repository_count != 1 else 'y'}",
        f"{review_count} review{'s' if review_count != 1 else ''}",
    ]
    return f"{FALLBACK_MARKER} Heuristic score from activity counts: " + ', '.join(parts) + '.'


def fallback_score(lines_changed: int, commit_count: int, repository_count: int, review_count: int, thresholds: Optional[Dict[str, Dict[str, Any]]] = None) -> ContributionScore:
    """
    Score activity counters with bucket step functions. Same input, same output.
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS
    volume = _axis(thresholds, 'code_volume')
    depth = _axis(thresholds, 'technical_depth')
    scope = _axis(thresholds, 'scope')
    reviews = _axis(thresholds, 'review_contribution')
    return ContributionScore(
        code_volume=bucket_score(lines_changed, volume['buckets'], volume['above']),
        complexity=_complexity(commit_count, repository_count, _axis(thresholds, 'complexity')),
        technical_depth=bucket_score(repository_count, depth['buckets'], depth['above']),
        scope=bucket_score(commit_count, scope['buckets'], scope['above']),
        review_contribution=bucket_score(review_count, reviews['buckets'], reviews['above']),
        summary=fallback_summary(lines_changed, commit_count, repository_count, review_count),
        generated_by=GENERATED_BY_FALLBACK,
        time_estimate=estimate_time(lines_changed, review_count),
    )


def fallback_for_activity(activity: UserActivity, thresholds: Optional[Dict[str, Dict[str, Any]]] = None) -> ContributionScore:
    return fallback_score(activity.lines_changed, activity.commit_count, len(activity.repositories), activity.review_count, thresholds)


__all__ = ["fallback_score", "fallback_for_activity", "fallback_summary", "estimate_time", "FALLBACK_MARKER"]
