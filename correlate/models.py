"""
Data models for per-user activity, contribution scores and the final report.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from normalize.models import Commit, Repository, ReviewRecord

# the five scored axes, in display order
SCORE_AXES = ('code_volume', 'complexity', 'technical_depth', 'scope', 'review_contribution')

GENERATED_BY_GEMINI = 'gemini'
GENERATED_BY_FALLBACK = 'fallback'
GENERATED_BY_MIXED = 'mixed'


class UserActivity:
    """
    Canonical per-identity activity. Line and repository totals are derived from the
    distinct commits, so they stay consistent through cross-organization merges.
    """

    def __init__(self, identity: str, commits: Iterable[Commit] = (), review_count: int = 0, organizations: Iterable[str] = (), reviews: Iterable[ReviewRecord] = ()):
        self.identity = identity
        distinct: Dict = {}
        for c in commits:
            distinct.setdefault(c.key, c)
        self.commits: List[Commit] = sorted(distinct.values(), key=_commit_sort_key, reverse=True)
        self.review_count = int(review_count or 0)
        self.organizations: List[str] = sorted(set(organizations))
        self.reviews: List[ReviewRecord] = list(reviews)

    @property
    def commit_count(self) -> int:
        return len(self.commits)

    @property
    def lines_changed(self) -> int:
        return sum(c.lines_changed for c in self.commits)

    @property
    def unmeasured_commit_count(self) -> int:
        """Commits whose listing carried no line stats and were never enriched with diff detail."""
        return sum(1 for c in self.commits if not c.has_stats)

    @property
    def lines_partial(self) -> bool:
        return self.unmeasured_commit_count > 0

    @property
    def additions(self) -> int:
        return sum(c.additions for c in self.commits)

    @property
    def deletions(self) -> int:
        return sum(c.deletions for c in self.commits)

    @property
    def repositories(self) -> List[str]:
        return sorted({c.repository for c in self.commits})

    @property
    def is_active(self) -> bool:
        return bool(self.commits) or self.review_count > 0

    def to_dict(self, include_commits: bool = True) -> Dict:
        data = {
            'identity': self.identity,
            'organizations': self.organizations,
            'commit_count': self.commit_count,
            'lines_changed': self.lines_changed,
            'lines_partial': self.lines_partial,
            'unmeasured_commits': self.unmeasured_commit_count,
            'additions': self.additions,
            'deletions': self.deletions,
            'repositories': self.repositories,
            'review_count': self.review_count,
        }
        if include_commits:
            data['commits'] = [c.to_dict() for c in self.commits]
        return data

    def __repr__(self):
        return f"UserActivity({self.identity!r}, commits={self.commit_count}, lines={self.lines_changed}, reviews={self.review_count})"


def _commit_sort_key(commit: Commit):
    return (commit.authored_at.timestamp() if commit.authored_at else 0.0, commit.sha)


class ContributionScore:
    """
    Five 0-10 sub-scores. ``total`` is always the local sum of the five, whatever the
    scoring service may have claimed.
    """

    def __init__(self, code_volume: int = 0, complexity: int = 0, technical_depth: int = 0, scope: int = 0, review_contribution: int = 0, summary: str = '', generated_by: str = GENERATED_BY_FALLBACK, time_estimate: str = ''):
        self.code_volume = int(code_volume)
        self.complexity = int(complexity)
        self.technical_depth = int(technical_depth)
        self.scope = int(scope)
        self.review_contribution = int(review_contribution)
        self.summary = summary or ''
        self.generated_by = generated_by
        self.time_estimate = time_estimate or ''

    @property
    def total(self) -> int:
        return sum(self.axes().values())

    @property
    def is_fallback(self) -> bool:
        return self.generated_by != GENERATED_BY_GEMINI

    def axes(self) -> Dict[str, int]:
        return {axis: getattr(self, axis) for axis in SCORE_AXES}

    def to_dict(self) -> Dict:
        data = dict(self.axes())
        data.update({
            'total': self.total,
            'summary': self.summary,
            'generated_by': self.generated_by,
            'time_estimate': self.time_estimate,
        })
        return data

    def __repr__(self):
        return f"ContributionScore(total={self.total}, generated_by={self.generated_by!r})"


class UserReport:
    """One user's activity paired with its score."""

    def __init__(self, activity: UserActivity, score: ContributionScore):
        self.activity = activity
        self.score = score

    @property
    def identity(self) -> str:
        return self.activity.identity

    def to_dict(self) -> Dict:
        data = self.activity.to_dict()
        data['score'] = self.score.to_dict()
        return data


def language_distribution(repositories: Iterable[Repository]) -> Dict[str, float]:
    """Percentage of bytes per language across ``repositories``, largest first."""
    totals: Dict[str, int] = {}
    for repo in repositories:
        for lang, size in repo.languages.items():
            totals[lang] = totals.get(lang, 0) + int(size or 0)
    grand = sum(totals.values())
    if not grand:
        return {}
    ordered = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    return {lang: round(size * 100.0 / grand, 1) for lang, size in ordered}


class OrgRollup:
    """
    Per-organization totals. ``degraded`` marks an organization whose activity could not be fully fetched.
    """

    def __init__(self, organization: str, backend: str, member_count: int = 0, repositories: Optional[List[Repository]] = None, total_commits: int = 0, total_reviews: int = 0, degraded: bool = False):
        self.organization = organization
        self.backend = backend
        self.member_count = int(member_count or 0)
        self.repositories: List[Repository] = list(repositories or [])
        self.total_commits = int(total_commits or 0)
        self.total_reviews = int(total_reviews or 0)
        self.degraded = bool(degraded)

    @property
    def active_repository_count(self) -> int:
        return len(self.repositories)

    @property
    def language_distribution(self) -> Dict[str, float]:
        return language_distribution(self.repositories)

    def to_dict(self) -> Dict:
        return {
            'organization': self.organization,
            'backend': self.backend,
            'member_count': self.member_count,
            'total_commits': self.total_commits,
            'total_reviews': self.total_reviews,
            'active_repository_count': self.active_repository_count,
            'degraded': self.degraded,
            'language_distribution': self.language_distribution,
            'repositories': [r.to_dict() for r in self.repositories],
        }


class Report:
    """
    The run's canonical result. Users are kept sorted by score total, highest first.
    """

    def __init__(self, generated_at: datetime, since: datetime, window: str, organizations: List[OrgRollup], users: List[UserReport], team_summary: str = '', team_summary_generated_by: str = GENERATED_BY_FALLBACK):
        self.generated_at = generated_at
        self.since = since
        self.window = window
        self.organizations = list(organizations)
        self.users = sorted(users, key=lambda u: (-u.score.total, u.identity.lower()))
        self.team_summary = team_summary or ''
        self.team_summary_generated_by = team_summary_generated_by

    @property
    def active_users(self) -> List[UserReport]:
        return [u for u in self.users if u.activity.is_active]

    @property
    def degraded(self) -> bool:
        return any(o.degraded for o in self.organizations)

    def totals(self) -> Dict:
        users = self.users
        repos: Dict[str, Repository] = {}
        for org in self.organizations:
            for repo in org.repositories:
                repos.setdefault(repo.full_name, repo)
        averages = {}
        for axis in ('total',) + SCORE_AXES:
            values = [getattr(u.score, axis) for u in users]
            averages[axis] = round(sum(values) / len(values), 1) if values else 0.0
        return {
            'commits': sum(u.activity.commit_count for u in users),
            'reviews': sum(u.activity.review_count for u in users),
            'lines_changed': sum(u.activity.lines_changed for u in users),
            'partial_line_count_users': sum(1 for u in users if u.activity.lines_partial),
            'users': len(users),
            'active_users': len(self.active_users),
            'active_repositories': len(repos),
            'average_scores': averages,
            'fallback_scored_users': sum(1 for u in users if u.score.is_fallback),
            'language_distribution': language_distribution(repos.values()),
        }

    def to_dict(self) -> Dict:
        return {
            'generated_at': self.generated_at.isoformat(),
            'since': self.since.isoformat(),
            'window': self.window,
            'degraded': self.degraded,
            'totals': self.totals(),
            'team_summary': {'text': self.team_summary, 'generated_by': self.team_summary_generated_by},
            'organizations': [o.to_dict() for o in self.organizations],
            'users': [u.to_dict() for u in self.users],
        }


__all__ = [
    "SCORE_AXES",
    "UserActivity",
    "ContributionScore",
    "UserReport",
    "OrgRollup",
    "Report",
    "language_distribution",
]
