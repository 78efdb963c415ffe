"""
Normalization utility helpers.
Convert raw REST and GraphQL payloads into normalize.models entities exactly once,
so nothing downstream has to guess at field names or container shapes.
"""
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List
from normalize.models import AuthorIdentity, Commit, CommitDetail, FileChange, Repository, ReviewRecord

# weight given to a REST repository's single primary language (REST lists do not carry byte counts)
PRIMARY_LANGUAGE_FALLBACK_BYTES = 1


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ''


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime. Returns None when unparseable."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as the ``YYYY-MM-DDTHH:MM:SSZ`` form both GitHub APIs accept."""
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def commit_from_rest(raw: Dict[str, Any], repository: str, branch: str = '') -> Commit:
    """Build a Commit from a REST commit listing item. Listings carry no line stats."""
    raw = _dict(raw)
    commit = _dict(raw.get('commit'))
    git_author = _dict(commit.get('author'))
    account = _dict(raw.get('author'))
    stats = _dict(raw.get('stats'))
    author = AuthorIdentity(
        login=_str(account.get('login')),
        name=_str(git_author.get('name')),
        email=_str(git_author.get('email')),
    )
    return Commit(
        repository=repository,
        sha=_str(raw.get('sha')),
        author=author,
        authored_at=parse_timestamp(git_author.get('date')),
        message=_str(commit.get('message')),
        branches=[branch] if branch else [],
        additions=_int(stats.get('additions')),
        deletions=_int(stats.get('deletions')),
        changed_files=len(_list(raw.get('files'))),
        has_stats=bool(stats),
    )


def commit_from_graphql(node: Dict[str, Any], repository: str, branch: str = '') -> Commit:
    """Build a Commit from a GraphQL ``Commit`` history node."""
    node = _dict(node)
    author_node = _dict(node.get('author'))
    user = _dict(author_node.get('user'))
    author = AuthorIdentity(
        login=_str(user.get('login')),
        name=_str(author_node.get('name')),
        email=_str(author_node.get('email')),
    )
    return Commit(
        repository=repository,
        sha=_str(node.get('oid')),
        author=author,
        authored_at=parse_timestamp(node.get('authoredDate') or node.get('committedDate')),
        message=_str(node.get('message')),
        branches=[branch] if branch else [],
        additions=_int(node.get('additions')),
        deletions=_int(node.get('deletions')),
        changed_files=_int(node.get('changedFilesIfAvailable', node.get('changedFiles'))),
        has_stats=True,
    )


def repository_from_rest(raw: Dict[str, Any], organization: str) -> Repository:
    raw = _dict(raw)
    full_name = _str(raw.get('full_name')) or f"{organization}/{_str(raw.get('name'))}"
    language = _str(raw.get('language'))
    return Repository(
        full_name=full_name,
        organization=organization,
        default_branch=_str(raw.get('default_branch')),
        languages={language: PRIMARY_LANGUAGE_FALLBACK_BYTES} if language else {},
        stars=_int(raw.get('stargazers_count')),
        forks=_int(raw.get('forks_count')),
        is_private=bool(raw.get('private')),
        is_fork=bool(raw.get('fork')),
        updated_at=parse_timestamp(raw.get('updated_at')),
        pushed_at=parse_timestamp(raw.get('pushed_at')),
    )


def repository_from_graphql(node: Dict[str, Any], organization: str) -> Repository:
    node = _dict(node)
    full_name = _str(node.get('nameWithOwner')) or f"{organization}/{_str(node.get('name'))}"
    languages: Dict[str, int] = {}
    for edge in _list(_dict(node.get('languages')).get('edges')):
        edge = _dict(edge)
        name = _str(_dict(edge.get('node')).get('name'))
        if name:
            languages[name] = _int(edge.get('size'))
    return Repository(
        full_name=full_name,
        organization=organization,
        default_branch=_str(_dict(node.get('defaultBranchRef')).get('name')),
        languages=languages,
        stars=_int(node.get('stargazerCount')),
        forks=_int(node.get('forkCount')),
        is_private=bool(node.get('isPrivate')),
        is_fork=bool(node.get('isFork')),
        updated_at=parse_timestamp(node.get('updatedAt')),
        pushed_at=parse_timestamp(node.get('pushedAt')),
    )


def review_from_rest(raw: Dict[str, Any], pull: Dict[str, Any], repository: str) -> ReviewRecord:
    raw = _dict(raw)
    pull = _dict(pull)
    return ReviewRecord(
        repository=repository,
        pr_number=_int(pull.get('number')),
        reviewer=_str(_dict(raw.get('user')).get('login')),
        submitted_at=parse_timestamp(raw.get('submitted_at')),
        state=_str(raw.get('state')),
        pr_title=_str(pull.get('title')),
        pr_url=_str(pull.get('html_url')),
        pr_updated_at=parse_timestamp(pull.get('updated_at')),
    )


def review_from_graphql(node: Dict[str, Any], pull: Dict[str, Any], repository: str) -> ReviewRecord:
    node = _dict(node)
    pull = _dict(pull)
    return ReviewRecord(
        repository=repository,
        pr_number=_int(pull.get('number')),
        reviewer=_str(_dict(node.get('author')).get('login')),
        submitted_at=parse_timestamp(node.get('submittedAt')),
        state=_str(node.get('state')),
        pr_title=_str(pull.get('title')),
        pr_url=_str(pull.get('url')),
        pr_updated_at=parse_timestamp(pull.get('updatedAt')),
    )


def detail_from_rest(raw: Dict[str, Any]) -> CommitDetail:
    """Build CommitDetail from a REST single-commit payload (``/repos/{repo}/commits/{sha}``)."""
    raw = _dict(raw)
    stats = _dict(raw.get('stats'))
    files = []
    for item in _list(raw.get('files')):
        item = _dict(item)
        path = _str(item.get('filename'))
        if not path:
            continue
        files.append(FileChange(path=path, additions=_int(item.get('additions')), deletions=_int(item.get('deletions')), patch=_str(item.get('patch'))))
    return CommitDetail(
        additions=_int(stats.get('additions')),
        deletions=_int(stats.get('deletions')),
        changed_files=len(files),
        files=files,
    )
