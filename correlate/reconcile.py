"""
Reconciliation of raw per-branch commit records and contributor identities.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from normalize.models import AuthorIdentity, Commit, ReviewRecord

logger = logging.getLogger(__name__)

# author names used by automation; never a useful identity on their own
GENERIC_AUTHOR_NAMES = frozenset(
    name.lower()
    for name in (
        'GitHub',
        'GitHub Action',
        'GitHub Actions',
        'github-actions',
        'github-actions[bot]',
        'dependabot[bot]',
        'renovate[bot]',
        'web-flow',
    )
)


def dedupe_commits(commits: Iterable[Commit]) -> List[Commit]:
    """
    Fold per-branch listings into one Commit per ``(repository, sha)``.
    The first-seen record wins and its branches become the union of every listing. Order is first-seen.
    """
    merged: Dict = {}
    for commit in commits:
        seen = merged.get(commit.key)
        if seen is None:
            merged[commit.key] = commit
        else:
            merged[commit.key] = seen.with_branches(commit.branches)
    return list(merged.values())


def is_generic_name(name: str) -> bool:
    return (name or '').strip().lower() in GENERIC_AUTHOR_NAMES


def resolve_identity(author: AuthorIdentity) -> Optional[str]:
    """
    Pick the key activity is grouped under: login, else name, else email.
    A generic automation name gives way to the email when one exists.
    """
    login = (author.login or '').strip()
    if login:
        return login
    name = (author.name or '').strip()
    email = (author.email or '').strip()
    if name:
        if email and is_generic_name(name):
            return email
        return name
    return email or None


def map_commits_to_users(commits: Iterable[Commit]) -> Dict[str, List[Commit]]:
    """Group deduplicated commits by resolved identity across all repositories."""
    by_user: Dict[str, List[Commit]] = {}
    dropped = 0
    for commit in dedupe_commits(commits):
        identity = resolve_identity(commit.author)
        if identity is None:
            dropped += 1
            continue
        by_user.setdefault(identity, []).append(commit)
    if dropped:
        logger.debug("Dropped %d commits with no usable author identity", dropped)
    return by_user


def group_reviews_by_reviewer(reviews: Iterable[ReviewRecord], since: datetime) -> Dict[str, List[ReviewRecord]]:
    """Group reviews submitted at or after ``since`` by reviewer login."""
    by_reviewer: Dict[str, List[ReviewRecord]] = {}
    for review in reviews:
        if not review.reviewer or review.submitted_at is None or review.submitted_at < since:
            continue
        by_reviewer.setdefault(review.reviewer, []).append(review)
    return by_reviewer


__all__ = ["GENERIC_AUTHOR_NAMES", "dedupe_commits", "resolve_identity", "map_commits_to_users", "group_reviews_by_reviewer", "is_generic_name"]
