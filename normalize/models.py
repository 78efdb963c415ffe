"""
Normalized source-control entities.
Every backend reply is converted into these shapes once, at the ingest boundary.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional


class AuthorIdentity:
    """
    Raw author information attached to a commit. Any field may be empty.
    """
    def __init__(self, login: str = '', name: str = '', email: str = ''):
        self.login = login or ''
        self.name = name or ''
        self.email = email or ''

    def to_dict(self) -> Dict[str, str]:
        return {'login': self.login, 'name': self.name, 'email': self.email}

    def __repr__(self):
        return f"AuthorIdentity(login={self.login!r}, name={self.name!r}, email={self.email!r})"


class Repository:
    """
    Repository metadata. Used for report context only, never for scoring.
    """
    def __init__(self, full_name: str, organization: str, default_branch: str = '', languages: Optional[Dict[str, int]] = None, stars: int = 0, forks: int = 0, is_private: bool = False, is_fork: bool = False, updated_at: Optional[datetime] = None, pushed_at: Optional[datetime] = None):
        self.full_name = full_name
        self.name = full_name.split('/')[-1]
        self.organization = organization
        self.default_branch = default_branch or ''
        self.languages = dict(languages or {})  # language name -> bytes
        self.stars = int(stars or 0)
        self.forks = int(forks or 0)
        self.is_private = bool(is_private)
        self.is_fork = bool(is_fork)
        self.updated_at = updated_at
        self.pushed_at = pushed_at

    @property
    def last_activity(self) -> Optional[datetime]:
        stamps = [t for t in (self.updated_at, self.pushed_at) if t is not None]
        return max(stamps) if stamps else None

    def is_active_since(self, since: datetime) -> bool:
        last = self.last_activity
        return last is not None and last >= since

    def to_dict(self) -> Dict:
        return {
            'full_name': self.full_name,
            'name': self.name,
            'organization': self.organization,
            'default_branch': self.default_branch,
            'languages': self.languages,
            'stars': self.stars,
            'forks': self.forks,
            'private': self.is_private,
            'fork': self.is_fork,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'pushed_at': self.pushed_at.isoformat() if self.pushed_at else None,
        }


class FileChange:
    """
    One file touched by a commit, with its patch text when the backend supplied it.
    """
    def __init__(self, path: str, additions: int = 0, deletions: int = 0, patch: str = ''):
        self.path = path
        self.additions = int(additions or 0)
        self.deletions = int(deletions or 0)
        self.patch = patch or ''

    def to_dict(self) -> Dict:
        return {'path': self.path, 'additions': self.additions, 'deletions': self.deletions}


class CommitDetail:
    """
    Expensive per-commit detail (line stats plus per-file patches).
    """
    def __init__(self, additions: int = 0, deletions: int = 0, changed_files: int = 0, files: Optional[List[FileChange]] = None):
        self.additions = int(additions or 0)
        self.deletions = int(deletions or 0)
        self.changed_files = int(changed_files or 0)
        self.files = list(files or [])

    def to_dict(self) -> Dict:
        return {
            'additions': self.additions,
            'deletions': self.deletions,
            'changed_files': self.changed_files,
            'files': [f.to_dict() for f in self.files],
        }


class Commit:
    """
    Immutable commit record.

    The same logical commit can be listed once per branch it lives on; reconciliation
    folds those listings into one Commit whose ``branches`` is the union of all of them.
    ``has_stats`` is False when the listing endpoint did not report line counts.
    """
    def __init__(self, repository: str, sha: str, author: AuthorIdentity, authored_at: Optional[datetime], message: str = '', branches: Iterable[str] = (), additions: int = 0, deletions: int = 0, changed_files: int = 0, has_stats: bool = True, detail: Optional[CommitDetail] = None):
        self.repository = repository
        self.sha = sha
        self.author = author
        self.authored_at = authored_at
        self.message = message or ''
        self.branches: FrozenSet[str] = frozenset(b for b in branches if b)
        self.additions = int(additions or 0)
        self.deletions = int(deletions or 0)
        self.changed_files = int(changed_files or 0)
        self.has_stats = bool(has_stats)
        self.detail = detail

    @property
    def key(self):
        return (self.repository, self.sha)

    @property
    def lines_changed(self) -> int:
        return self.additions + self.deletions

    @property
    def headline(self) -> str:
        return self.message.split('\n', 1)[0].strip()

    def _copy(self, **changes) -> 'Commit':
        fields = {
            'repository': self.repository,
            'sha': self.sha,
            'author': self.author,
            'authored_at': self.authored_at,
            'message': self.message,
            'branches': self.branches,
            'additions': self.additions,
            'deletions': self.deletions,
            'changed_files': self.changed_files,
            'has_stats': self.has_stats,
            'detail': self.detail,
        }
        fields.update(changes)
        return Commit(**fields)

    def with_branches(self, branches: Iterable[str]) -> 'Commit':
        return self._copy(branches=self.branches | frozenset(branches))

    def with_detail(self, detail: CommitDetail) -> 'Commit':
        """Attach diff detail; listings without stats take their line counts from it."""
        if self.has_stats:
            return self._copy(detail=detail)
        return self._copy(
            detail=detail,
            additions=detail.additions,
            deletions=detail.deletions,
            changed_files=detail.changed_files,
            has_stats=True,
        )

    def to_dict(self) -> Dict:
        return {
            'repository': self.repository,
            'sha': self.sha,
            'branches': sorted(self.branches),
            'author': self.author.to_dict(),
            'authored_at': self.authored_at.isoformat() if self.authored_at else None,
            'message': self.headline,
            'additions': self.additions,
            'deletions': self.deletions,
            'changed_files': self.changed_files,
        }

    def __repr__(self):
        return f"Commit({self.repository}@{self.sha[:7]}, branches={sorted(self.branches)})"


class ReviewRecord:
    """
    A single submitted pull-request review.
    """
    def __init__(self, repository: str, pr_number: int, reviewer: str, submitted_at: Optional[datetime], state: str = '', pr_title: str = '', pr_url: str = '', pr_updated_at: Optional[datetime] = None):
        self.repository = repository
        self.pr_number = int(pr_number or 0)
        self.reviewer = reviewer or ''
        self.submitted_at = submitted_at
        self.state = state or ''
        self.pr_title = pr_title or ''
        self.pr_url = pr_url or ''
        self.pr_updated_at = pr_updated_at

    def to_dict(self) -> Dict:
        return {
            'repository': self.repository,
            'pr_number': self.pr_number,
            'reviewer': self.reviewer,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
            'state': self.state,
            'pr_title': self.pr_title,
        }
