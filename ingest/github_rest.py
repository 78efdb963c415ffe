"""
GitHub REST activity source.
Walks every branch of every recently active repository; listings carry no line stats,
so commits come back with ``has_stats=False`` until enriched with diff detail.
"""
import logging
from datetime import datetime
from typing import List, Optional
from normalize.models import Commit, Repository, ReviewRecord
from normalize.util import commit_from_rest, format_timestamp, parse_timestamp, repository_from_rest, review_from_rest
from storage.retry import is_success
from .base import ActivitySource, DEFAULT_PER_PAGE, _next_link

logger = logging.getLogger(__name__)


class GitHubRestSource(ActivitySource):
    """Activity source backed by the paginated REST API."""
    backend = 'rest'

    def list_active_repositories(self, org: str, since: datetime) -> List[Repository]:
        raw = self._paginate(
            f"orgs/{org}/repos",
            {"type": "all", "sort": "pushed", "direction": "desc", "per_page": DEFAULT_PER_PAGE},
            f"repositories of {org}",
        )
        repos = [repository_from_rest(r, org) for r in raw]
        active = [r for r in repos if r.is_active_since(since)]
        logger.info("%s: %d of %d repositories active since %s", org, len(active), len(repos), format_timestamp(since))
        return active

    def _list_branches(self, repository: str) -> List[str]:
        branches = self._paginate(f"repos/{repository}/branches", {"per_page": DEFAULT_PER_PAGE}, f"branches of {repository}")
        return [b['name'] for b in branches if b.get('name')]

    def _fetch_branch_commits(self, repository: str, branch: str, since: datetime) -> List[Commit]:
        raw = self._paginate(
            f"repos/{repository}/commits",
            {"sha": branch, "since": format_timestamp(since), "per_page": DEFAULT_PER_PAGE},
            f"commits of {repository}@{branch}",
        )
        return [commit_from_rest(item, repository, branch) for item in raw if item.get('sha')]

    def fetch_commits(self, org: str, since: datetime, repositories: Optional[List[Repository]] = None) -> List[Commit]:
        """Raw per-branch commit records; the same sha appears once per branch it is on."""
        if repositories is None:
            repositories = self.list_active_repositories(org, since)
        commits: List[Commit] = []
        for repo in repositories:
            self._courtesy_pause()
            for branch in self._list_branches(repo.full_name):
                commits.extend(self._fetch_branch_commits(repo.full_name, branch, since))
        logger.info("%s: fetched %d commit records over REST", org, len(commits))
        return commits

    def _fetch_pull_reviews(self, repository: str, pull: dict, since: datetime) -> List[ReviewRecord]:
        raw = self._paginate(
            f"repos/{repository}/pulls/{pull.get('number')}/reviews",
            {"per_page": DEFAULT_PER_PAGE},
            f"reviews of {repository}#{pull.get('number')}",
        )
        reviews = [review_from_rest(item, pull, repository) for item in raw]
        return [r for r in reviews if r.submitted_at is not None and r.submitted_at >= since]

    def _fetch_repo_reviews(self, repository: str, since: datetime) -> List[ReviewRecord]:
        reviews: List[ReviewRecord] = []
        url: Optional[str] = f"repos/{repository}/pulls"
        params = {"state": "all", "sort": "updated", "direction": "desc", "per_page": DEFAULT_PER_PAGE}
        pages = 0
        while url:
            if pages >= self.max_pages:
                self._warn_page_ceiling(f"pull requests of {repository}")
                break
            res = self._get(url, params=params)
            pages += 1
            if not is_success(res) or not isinstance(res.get('response'), list):
                self.failures += 1
                logger.warning("Could not list pull requests of %s (status %s)", repository, res.get('status'))
                break
            stale = False
            for pull in res['response']:
                updated = parse_timestamp(pull.get('updated_at')) if isinstance(pull, dict) else None
                # sorted by update time and a new review always bumps it, so older PRs cannot matter
                if updated is None or updated < since:
                    stale = True
                    break
                reviews.extend(self._fetch_pull_reviews(repository, pull, since))
            if stale:
                break
            url, params = _next_link(res), None
        return reviews

    def fetch_reviews(self, org: str, since: datetime, repositories: Optional[List[Repository]] = None) -> List[ReviewRecord]:
        if repositories is None:
            repositories = self.list_active_repositories(org, since)
        reviews: List[ReviewRecord] = []
        for repo in repositories:
            self._courtesy_pause()
            reviews.extend(self._fetch_repo_reviews(repo.full_name, since))
        logger.info("%s: fetched %d reviews over REST", org, len(reviews))
        return reviews

    def count_reviews(self, reviewer: str, org: str, since: datetime) -> int:
        """Number of pull requests ``reviewer`` reviewed in ``org`` since the cutoff, via the search API."""
        query = f"is:pr reviewed-by:{reviewer} org:{org} updated:>={format_timestamp(since)}"
        res = self._get("search/issues", params={"q": query, "per_page": 1})
        if not is_success(res) or not isinstance(res.get('response'), dict):
            logger.warning("Review search failed for %s in %s (status %s)", reviewer, org, res.get('status'))
            return 0
        return int(res['response'].get('total_count') or 0)


__all__ = ["GitHubRestSource"]
