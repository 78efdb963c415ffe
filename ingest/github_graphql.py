"""
GitHub GraphQL activity source.
One query per listing page; commit history nodes already carry line stats.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from normalize.models import Commit, Repository, ReviewRecord
from normalize.util import commit_from_graphql, format_timestamp, parse_timestamp, repository_from_graphql, review_from_graphql
from storage.retry import is_success, TERMINAL
from errors import AuthenticationError, BackendUnavailableError
from .base import ActivitySource

logger = logging.getLogger(__name__)

VIEWER_QUERY = "query { viewer { login } }"

MEMBERS_QUERY = """
query($org: String!, $cursor: String) {
  organization(login: $org) {
    membersWithRole(first: 100, after: $cursor) {
      pageInfo { hasNextPage endCursor }
      nodes { login }
    }
  }
}
"""

REPOSITORIES_QUERY = """
query($org: String!, $cursor: String) {
  organization(login: $org) {
    repositories(first: 50, after: $cursor, orderBy: {field: PUSHED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        name
        nameWithOwner
        isPrivate
        isFork
        updatedAt
        pushedAt
        stargazerCount
        forkCount
        defaultBranchRef { name }
        languages(first: 10, orderBy: {field: SIZE, direction: DESC}) {
          edges { size node { name } }
        }
      }
    }
  }
}
"""

_HISTORY_FIELDS = """
pageInfo { hasNextPage endCursor }
nodes {
  oid
  message
  committedDate
  authoredDate
  additions
  deletions
  changedFilesIfAvailable
  author { name email user { login } }
}
"""

BRANCHES_QUERY = """
query($owner: String!, $name: String!, $since: GitTimestamp!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    refs(refPrefix: "refs/heads/", first: 25, after: $cursor) {
      pageInfo { hasNextPage endCursor }
      nodes {
        name
        target { ... on Commit { history(first: 100, since: $since) { %s } } }
      }
    }
  }
}
""" % _HISTORY_FIELDS

BRANCH_HISTORY_QUERY = """
query($owner: String!, $name: String!, $qualified: String!, $since: GitTimestamp!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    ref(qualifiedName: $qualified) {
      target { ... on Commit { history(first: 100, since: $since, after: $cursor) { %s } } }
    }
  }
}
""" % _HISTORY_FIELDS

PULL_REVIEWS_QUERY = """
query($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(first: 50, after: $cursor, orderBy: {field: UPDATED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        number
        title
        url
        updatedAt
        reviews(first: 100) {
          pageInfo { hasNextPage }
          nodes { author { login } submittedAt state }
        }
      }
    }
  }
}
"""


def _dig(data: Any, *keys) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _page_info(connection: Any) -> Tuple[bool, Optional[str]]:
    info = _dig(connection, 'pageInfo') or {}
    return bool(info.get('hasNextPage')), info.get('endCursor')


class GitHubGraphQLSource(ActivitySource):
    """Activity source backed by the single-endpoint GraphQL API."""
    backend = 'graphql'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.graphql_url = f"{self.base_url}/graphql"

    def _query(self, query: str, variables: Dict[str, Any], what: str) -> Optional[Dict[str, Any]]:
        """Run one query and return its ``data``; None (after logging) when nothing usable came back."""
        res = self._request('POST', self.graphql_url, json_body={"query": query, "variables": variables})
        if not is_success(res) or not isinstance(res.get('response'), dict):
            self.failures += 1
            logger.warning("GraphQL query for %s failed (status %s): %s", what, res.get('status'), res.get('error'))
            return None
        body = res['response']
        errors = body.get('errors') or []
        if errors:
            first = errors[0] if isinstance(errors[0], dict) else {}
            logger.warning("GraphQL query for %s returned errors: %s", what, first.get('message', errors[0]))
        data = body.get('data')
        return data if isinstance(data, dict) else None

    def verify_authentication(self) -> str:
        res = self._request('POST', self.graphql_url, json_body={"query": VIEWER_QUERY, "variables": {}})
        login = _dig(res.get('response'), 'data', 'viewer', 'login') if is_success(res) else None
        if login:
            logger.info("Authenticated to GitHub as %s (%s backend)", login, self.backend)
            return login
        status = res.get('status', 0)
        if status in (401, 403) and res.get('outcome') == TERMINAL:
            raise AuthenticationError(f"GitHub rejected the token (HTTP {status}): {res.get('error')}")
        raise BackendUnavailableError(f"GitHub GraphQL API unreachable at {self.graphql_url} (status {status}): {res.get('error')}")

    def _connection_pages(self, query: str, variables: Dict[str, Any], path: Tuple[str, ...], what: str):
        """Yield each page's ``nodes`` for the connection at ``path``, following ``endCursor``."""
        cursor = None
        for page in range(self.max_pages):
            data = self._query(query, dict(variables, cursor=cursor), what)
            connection = _dig(data, *path)
            if connection is None:
                return
            logger.debug("Fetched page %d of %s", page + 1, what)
            yield [n for n in (connection.get('nodes') or []) if isinstance(n, dict)]
            has_next, cursor = _page_info(connection)
            if not has_next or not cursor:
                return
        self._warn_page_ceiling(what)

    def list_members(self, org: str) -> List[str]:
        logins: List[str] = []
        for nodes in self._connection_pages(MEMBERS_QUERY, {"org": org}, ('organization', 'membersWithRole'), f"members of {org}"):
            logins.extend(n['login'] for n in nodes if n.get('login'))
        logger.info("Organization %s has %d members", org, len(logins))
        return logins

    def list_active_repositories(self, org: str, since: datetime) -> List[Repository]:
        repos: List[Repository] = []
        for nodes in self._connection_pages(REPOSITORIES_QUERY, {"org": org}, ('organization', 'repositories'), f"repositories of {org}"):
            repos.extend(repository_from_graphql(n, org) for n in nodes)
        active = [r for r in repos if r.is_active_since(since)]
        logger.info("%s: %d of %d repositories active since %s", org, len(active), len(repos), format_timestamp(since))
        return active

    def _remaining_history(self, repo: Repository, branch: str, since: datetime, cursor: str) -> List[Commit]:
        owner, name = repo.full_name.split('/', 1)
        variables = {"owner": owner, "name": name, "qualified": f"refs/heads/{branch}", "since": format_timestamp(since)}
        commits: List[Commit] = []
        # the first history page came with the branch listing
        for _ in range(1, self.max_pages):
            data = self._query(BRANCH_HISTORY_QUERY, dict(variables, cursor=cursor), f"history of {repo.full_name}@{branch}")
            history = _dig(data, 'repository', 'ref', 'target', 'history')
            if history is None:
                return commits
            commits.extend(commit_from_graphql(n, repo.full_name, branch) for n in history.get('nodes') or [] if isinstance(n, dict))
            has_next, cursor = _page_info(history)
            if not has_next or not cursor:
                return commits
        self._warn_page_ceiling(f"history of {repo.full_name}@{branch}")
        return commits

    def _fetch_repo_commits(self, repo: Repository, since: datetime) -> List[Commit]:
        owner, name = repo.full_name.split('/', 1)
        commits: List[Commit] = []
        variables = {"owner": owner, "name": name, "since": format_timestamp(since)}
        for refs in self._connection_pages(BRANCHES_QUERY, variables, ('repository', 'refs'), f"branches of {repo.full_name}"):
            for ref in refs:
                branch = ref.get('name') or ''
                history = _dig(ref, 'target', 'history')
                if not branch or not isinstance(history, dict):
                    continue
                commits.extend(commit_from_graphql(n, repo.full_name, branch) for n in history.get('nodes') or [] if isinstance(n, dict))
                has_next, cursor = _page_info(history)
                if has_next and cursor:
                    commits.extend(self._remaining_history(repo, branch, since, cursor))
        return commits

    def fetch_commits(self, org: str, since: datetime, repositories: Optional[List[Repository]] = None) -> List[Commit]:
        if repositories is None:
            repositories = self.list_active_repositories(org, since)
        commits: List[Commit] = []
        for repo in repositories:
            self._courtesy_pause()
            commits.extend(self._fetch_repo_commits(repo, since))
        logger.info("%s: fetched %d commit records over GraphQL", org, len(commits))
        return commits

    def _fetch_repo_reviews(self, repo: Repository, since: datetime) -> List[ReviewRecord]:
        owner, name = repo.full_name.split('/', 1)
        reviews: List[ReviewRecord] = []
        pages = self._connection_pages(PULL_REVIEWS_QUERY, {"owner": owner, "name": name}, ('repository', 'pullRequests'), f"pull requests of {repo.full_name}")
        for pulls in pages:
            for pull in pulls:
                updated = parse_timestamp(pull.get('updatedAt'))
                # ordered by update time; a new review always bumps it
                if updated is None or updated < since:
                    pages.close()
                    return reviews
                if _page_info(pull.get('reviews'))[0]:
                    logger.warning("%s#%s has more than 100 reviews; only the first 100 are counted", repo.full_name, pull.get('number'))
                for node in _dig(pull, 'reviews', 'nodes') or []:
                    record = review_from_graphql(node, pull, repo.full_name)
                    if record.submitted_at is not None and record.submitted_at >= since:
                        reviews.append(record)
        return reviews

    def fetch_reviews(self, org: str, since: datetime, repositories: Optional[List[Repository]] = None) -> List[ReviewRecord]:
        if repositories is None:
            repositories = self.list_active_repositories(org, since)
        reviews: List[ReviewRecord] = []
        for repo in repositories:
            self._courtesy_pause()
            reviews.extend(self._fetch_repo_reviews(repo, since))
        logger.info("%s: fetched %d reviews over GraphQL", org, len(reviews))
        return reviews

    def count_reviews(self, reviewer: str, org: str, since: datetime) -> int:
        """Count ``reviewer``'s reviews in ``org`` since ``since``; fetches the organization's reviews each call."""
        reviews = self.fetch_reviews(org, since)
        wanted = reviewer.lower()
        return sum(1 for r in reviews if r.reviewer.lower() == wanted)


__all__ = ["GitHubGraphQLSource"]
