"""
Shared plumbing for the GitHub activity sources.
Both backends authenticate with a bearer token, go through the same retry policy and
expose the same operations, so the pipeline can be parameterized by backend alone.
"""
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from normalize.models import Commit, CommitDetail, Repository, ReviewRecord
from normalize.util import detail_from_rest
from storage.retry import RetryPolicy, perform_request_with_retries, is_success, TERMINAL
from errors import AuthenticationError, BackendUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_PER_PAGE = 100


class ActivitySource:
    """
    Base class for a remote activity source.

    Subclasses implement the listing operations. Every operation takes the organization
    and cutoff explicitly; a source never remembers which organization it is working on.
    Apart from ``verify_authentication``, nothing here raises on remote failure: the
    operations log and return an empty value instead.
    """
    backend = 'base'

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        max_pages: int = 50,
        courtesy_every: int = 10,
        courtesy_sleep: float = 1.0,
        sleep=None,
    ):
        self.token = token
        self.base_url = (base_url or DEFAULT_API_URL).rstrip('/')
        self.policy = policy or RetryPolicy()
        self.max_pages = max_pages
        self.courtesy_every = courtesy_every
        self.courtesy_sleep = courtesy_sleep
        self._sleep = sleep or time.sleep
        self.headers = {
            "Authorization": f"Bearer {self.token}" if self.token else "",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self._repo_checks = 0
        # listings that failed after retries; the pipeline uses this to flag degraded organizations
        self.failures = 0

    # --- transport -------------------------------------------------------

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None, json_body: Any = None) -> Dict[str, Any]:
        if not url.startswith('http'):
            url = f"{self.base_url}/{url.lstrip('/')}"
        return perform_request_with_retries(method, url, headers=self.headers, params=params, json_body=json_body, policy=self.policy)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request('GET', path, params=params)

    def _courtesy_pause(self):
        """Block briefly after every ``courtesy_every`` repository checks."""
        self._repo_checks += 1
        if self.courtesy_every and self._repo_checks % self.courtesy_every == 0 and self.courtesy_sleep > 0:
            logger.debug("Courtesy pause of %.1fs after %d repository checks", self.courtesy_sleep, self._repo_checks)
            self._sleep(self.courtesy_sleep)

    def _warn_page_ceiling(self, what: str):
        logger.warning("Stopped paging %s at the %d page ceiling; results are incomplete", what, self.max_pages)

    # --- operations ------------------------------------------------------

    def verify_authentication(self) -> str:
        """Return the authenticated login. Raises AuthenticationError or BackendUnavailableError."""
        res = self._get('user')
        if is_success(res):
            login = (res.get('response') or {}).get('login', '') if isinstance(res.get('response'), dict) else ''
            logger.info("Authenticated to GitHub as %s (%s backend)", login or 'unknown', self.backend)
            return login
        status = res.get('status', 0)
        if status in (401, 403) and res.get('outcome') == TERMINAL:
            raise AuthenticationError(f"GitHub rejected the token (HTTP {status}): {res.get('error')}")
        raise BackendUnavailableError(f"GitHub API unreachable at {self.base_url} (status {status}): {res.get('error')}")

    def _paginate(self, path: str, params: Optional[Dict[str, Any]], what: str, items_key: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Follow REST ``Link: rel=next`` continuation until exhausted or ``max_pages`` is hit.
        Returns whatever was collected; a failed page is logged and ends the listing.
        """
        items: List[Dict[str, Any]] = []
        url: Optional[str] = path
        pages = 0
        while url:
            if pages >= self.max_pages:
                self._warn_page_ceiling(what)
                break
            res = self._get(url, params=params)
            pages += 1
            if not is_success(res):
                if res.get('status') == 409:
                    logger.debug("Skipping %s: repository is empty", what)
                else:
                    self.failures += 1
                    logger.warning("Could not list %s (status %s): %s", what, res.get('status'), res.get('error'))
                break
            body = res.get('response')
            if items_key and isinstance(body, dict):
                body = body.get(items_key)
            items.extend(item for item in (body or []) if isinstance(item, dict))
            logger.debug("Fetched page %d of %s (%d items so far)", pages, what, len(items))
            # the next link already carries the query string
            url, params = _next_link(res), None
        return items

    def list_members(self, org: str) -> List[str]:
        """Return member logins of ``org``; an empty list when they cannot be read."""
        members = self._paginate(f"orgs/{org}/members", {"per_page": DEFAULT_PER_PAGE}, f"members of {org}")
        logins = [m['login'] for m in members if m.get('login')]
        logger.info("Organization %s has %d members", org, len(logins))
        return logins

    def list_active_repositories(self, org: str, since: datetime) -> List[Repository]:
        raise NotImplementedError

    def fetch_commits(self, org: str, since: datetime, repositories: Optional[List[Repository]] = None) -> List[Commit]:
        raise NotImplementedError

    def fetch_reviews(self, org: str, since: datetime, repositories: Optional[List[Repository]] = None) -> List[ReviewRecord]:
        raise NotImplementedError

    def count_reviews(self, reviewer: str, org: str, since: datetime) -> int:
        raise NotImplementedError

    def fetch_commit_diff_detail(self, repository: str, sha: str) -> Optional[CommitDetail]:
        """Per-file detail for one commit, or None. Both backends use the REST commit endpoint."""
        res = self._get(f"repos/{repository}/commits/{sha}")
        if not is_success(res) or not isinstance(res.get('response'), dict):
            logger.warning("No diff detail for %s@%s (status %s)", repository, sha[:7], res.get('status'))
            return None
        return detail_from_rest(res['response'])


def _next_link(res: Dict[str, Any]) -> Optional[str]:
    """Continuation URL from the REST ``Link`` header, if any."""
    links = res.get('links') or {}
    nxt = links.get('next') or {}
    return nxt.get('url') if isinstance(nxt, dict) else None


__all__ = ["ActivitySource", "DEFAULT_API_URL", "DEFAULT_PER_PAGE"]
