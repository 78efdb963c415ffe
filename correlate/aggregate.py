"""
Per-user activity aggregation within one organization and across organizations.
Identities are matched case-insensitively, since GitHub logins are.
"""
import logging
from typing import Dict, Iterable, List, Optional
from normalize.models import Commit, ReviewRecord
from .models import ContributionScore, UserActivity, UserReport, GENERATED_BY_MIXED

logger = logging.getLogger(__name__)


def build_user_activity(identity: str, commits: Iterable[Commit], reviews: Iterable[ReviewRecord], organization: str) -> UserActivity:
    reviews = list(reviews)
    return UserActivity(identity, commits=commits, review_count=len(reviews), organizations=[organization], reviews=reviews)


def _fold_by_key(mapping: Dict[str, list]) -> Dict[str, list]:
    folded: Dict[str, list] = {}
    for identity, items in mapping.items():
        folded.setdefault(identity.lower(), []).extend(items)
    return folded


def aggregate_organization(
    org: str,
    members: Iterable[str],
    user_commits: Dict[str, List[Commit]],
    user_reviews: Dict[str, List[ReviewRecord]],
    specific_users: Optional[Iterable[str]] = None,
) -> Dict[str, UserActivity]:
    """
    One UserActivity per identity seen among the members or in the activity.
    Members without activity get an all-zero entry. With ``specific_users``, only those
    identities are kept, and each of them is present even without activity.
    """
    display: Dict[str, str] = {}
    for name in list(members) + list(user_commits) + list(user_reviews):
        if name:
            display.setdefault(name.lower(), name)
    commits_by = _fold_by_key(user_commits)
    reviews_by = _fold_by_key(user_reviews)

    if specific_users:
        keys = []
        for user in specific_users:
            key = user.strip().lower()
            if key and key not in keys:
                display.setdefault(key, user.strip())
                keys.append(key)
    else:
        keys = list(display)

    result: Dict[str, UserActivity] = {}
    for key in keys:
        identity = display[key]
        result[identity] = build_user_activity(identity, commits_by.get(key, []), reviews_by.get(key, []), org)
    logger.info("%s: %d users aggregated (%d with activity)", org, len(result), sum(1 for a in result.values() if a.is_active))
    return result


def merge_user_activity(a: UserActivity, b: UserActivity) -> UserActivity:
    """Sum review counts and union commits (by repository and sha) and organizations."""
    identity = min(a.identity, b.identity)
    return UserActivity(
        identity,
        commits=list(a.commits) + list(b.commits),
        review_count=a.review_count + b.review_count,
        organizations=list(a.organizations) + list(b.organizations),
        reviews=list(a.reviews) + list(b.reviews),
    )


def merge_scores(a: ContributionScore, b: ContributionScore) -> ContributionScore:
    """Per-axis maximum; text comes from the higher-scoring side."""
    leader = max((a, b), key=lambda s: (s.total, s.summary))
    generated_by = a.generated_by if a.generated_by == b.generated_by else GENERATED_BY_MIXED
    return ContributionScore(
        code_volume=max(a.code_volume, b.code_volume),
        complexity=max(a.complexity, b.complexity),
        technical_depth=max(a.technical_depth, b.technical_depth),
        scope=max(a.scope, b.scope),
        review_contribution=max(a.review_contribution, b.review_contribution),
        summary=leader.summary,
        generated_by=generated_by,
        time_estimate=leader.time_estimate,
    )


def merge_across_orgs(per_org: Iterable[Iterable[UserReport]]) -> List[UserReport]:
    """Merge each organization's UserReports into one per identity. The result does not depend on organization order."""
    merged: Dict[str, UserReport] = {}
    for reports in per_org:
        for report in reports:
            key = report.identity.lower()
            seen = merged.get(key)
            if seen is None:
                merged[key] = report
            else:
                merged[key] = UserReport(merge_user_activity(seen.activity, report.activity), merge_scores(seen.score, report.score))
    return sorted(merged.values(), key=lambda r: (-r.score.total, r.identity.lower()))


__all__ = ["build_user_activity", "aggregate_organization", "merge_user_activity", "merge_scores", "merge_across_orgs"]
