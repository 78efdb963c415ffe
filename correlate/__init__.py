"""
Correlate package: reconcile raw commits and identities, then aggregate per-user activity.
"""

from .reconcile import dedupe_commits, resolve_identity, map_commits_to_users, group_reviews_by_reviewer
from .aggregate import build_user_activity, aggregate_organization, merge_user_activity, merge_scores, merge_across_orgs

__all__ = [
    "dedupe_commits",
    "resolve_identity",
    "map_commits_to_users",
    "group_reviews_by_reviewer",
    "build_user_activity",
    "aggregate_organization",
    "merge_user_activity",
    "merge_scores",
    "merge_across_orgs",
]
