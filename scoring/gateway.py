"""
Gemini scoring gateway.
Sends a per-user activity prompt to the Gemini ``generateContent`` endpoint and turns the
reply into a ContributionScore. Any failure or unusable reply becomes the local fallback score,
so callers never see an exception from here.
"""
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple
from correlate.models import ContributionScore, Report, UserActivity, SCORE_AXES, GENERATED_BY_GEMINI, GENERATED_BY_FALLBACK
from errors import ScoringError
from storage.retry import RetryPolicy, perform_request_with_retries, is_success
from .metrics import fallback_for_activity
from .utils import clamp_score

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = 'gemini-1.5-flash'
TEAM_SUMMARY_FALLBACK = (
    "Team showed varied activity levels across multiple repositories, "
    "demonstrating collaborative development efforts."
)
MAX_SUMMARY_CHARS = 300
MAX_PATCH_CHARS = 600

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)

PROMPT_TEMPLATE = """You are an expert reviewer of source-control activity. Score the GitHub user below.

User: {identity}
Time period: last {window} days
Total commits: {commit_count}
PR reviews submitted: {review_count}
Lines changed: {lines_changed} ({additions} additions, {deletions} deletions){partial}
Repositories: {repositories}

Most recent commits:
{commits}

Score each axis as an integer from 0 to 10:
- code_volume: amount of code changed
- complexity: difficulty of the changes
- technical_depth: breadth of systems and technologies touched
- scope: reach of the work across the codebase
- review_contribution: value of the PR reviews given

Reply with JSON only, no other text:
{{"code_volume": 0, "complexity": 0, "technical_depth": 0, "scope": 0, "review_contribution": 0, "summary": "one sentence, at most 100 characters", "time_estimate": "e.g. 6-12 hours"}}
"""


def extract_json(text: str) -> Dict[str, Any]:
    """Pull a JSON object out of a reply: a fenced block, the whole text, or the outermost braces."""
    if not text or not text.strip():
        raise ScoringError('empty reply')
    candidates: List[str] = []
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    candidates.append(text.strip())
    start, end = text.find('{'), text.rfind('}')
    if 0 <= start < end:
        candidates.append(text[start:end + 1])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    raise ScoringError('reply contains no JSON object')


def parse_score(payload: Dict[str, Any]) -> ContributionScore:
    """
    Validate a decoded reply. Every axis must be present and numeric; a value outside 0-10 is
    clamped and logged, then the whole reply is rejected. Any ``total`` in the reply is ignored.
    """
    missing = [axis for axis in SCORE_AXES if axis not in payload]
    if missing:
        raise ScoringError(f"reply is missing keys: {', '.join(missing)}")
    values: Dict[str, int] = {}
    out_of_range = []
    for axis in SCORE_AXES:
        raw = payload[axis]
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise ScoringError(f"{axis} is not a number: {raw!r}")
        if not math.isfinite(raw):
            raise ScoringError(f"{axis} is not finite: {raw!r}")
        values[axis], clamped = clamp_score(raw)
        if clamped:
            out_of_range.append(f"{axis}={raw}")
    if out_of_range:
        logger.warning("Scores outside 0-10 clamped (%s); reply treated as invalid", ', '.join(out_of_range))
        raise ScoringError(f"out-of-range scores: {', '.join(out_of_range)}")
    summary = payload.get('summary')
    if not isinstance(summary, str) or not summary.strip():
        raise ScoringError('reply has no summary')
    time_estimate = payload.get('time_estimate')
    return ContributionScore(
        summary=summary.strip()[:MAX_SUMMARY_CHARS],
        generated_by=GENERATED_BY_GEMINI,
        time_estimate=time_estimate.strip() if isinstance(time_estimate, str) else '',
        **values,
    )


def _reply_text(body: Any) -> str:
    try:
        parts = body['candidates'][0]['content']['parts']
    except (KeyError, IndexError, TypeError):
        raise ScoringError('reply has no candidates')
    if not isinstance(parts, list):
        raise ScoringError('reply candidate has no parts')
    text = ''.join(p.get('text', '') for p in parts if isinstance(p, dict))
    if not text.strip():
        raise ScoringError('reply candidate has no text')
    return text


class GeminiScoringGateway:
    """
    Scores users with Gemini. Without an API key every call returns the local fallback.
    """

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, policy: Optional[RetryPolicy] = None, sample_size: int = 20, thresholds: Optional[Dict[str, Dict[str, Any]]] = None, base_url: str = GEMINI_API_URL):
        self.api_key = api_key or ''
        self.model = model or DEFAULT_MODEL
        self.policy = policy or RetryPolicy()
        self.sample_size = sample_size
        self.thresholds = thresholds
        self.base_url = base_url.rstrip('/')

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _generate(self, prompt: str) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.2},
        }
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        res = perform_request_with_retries('POST', url, headers=headers, json_body=body, policy=self.policy)
        if not is_success(res):
            raise ScoringError(f"Gemini request failed (status {res.get('status')}): {res.get('error')}")
        return _reply_text(res.get('response'))

    def build_prompt(self, activity: UserActivity, window_days: float) -> str:
        lines = []
        for commit in activity.commits[:self.sample_size]:
            entry = f"- {commit.repository} [{', '.join(sorted(commit.branches)) or '?'}] {commit.headline}"
            entry += f" (+{commit.additions}/-{commit.deletions}, {commit.changed_files} files)"
            if commit.detail is not None:
                for change in commit.detail.files[:5]:
                    entry += f"\n    {change.path} (+{change.additions}/-{change.deletions})"
                    if change.patch:
                        entry += "\n      " + change.patch[:MAX_PATCH_CHARS].replace('\n', '\n      ')
            lines.append(entry)
        return PROMPT_TEMPLATE.format(
            identity=activity.identity,
            window=round(window_days, 1),
            commit_count=activity.commit_count,
            review_count=activity.review_count,
            lines_changed=activity.lines_changed,
            additions=activity.additions,
            deletions=activity.deletions,
            partial=f"; {activity.unmeasured_commit_count} older commits have no line stats" if activity.lines_partial else '',
            repositories=', '.join(activity.repositories) or 'None',
            commits='\n'.join(lines) or '(none)',
        )

    def score(self, activity: UserActivity, window_days: float) -> ContributionScore:
        """Score one user; falls back locally when inactive, unconfigured, or on any scoring failure."""
        if not activity.is_active or not self.enabled:
            return fallback_for_activity(activity, self.thresholds)
        try:
            score = parse_score(extract_json(self._generate(self.build_prompt(activity, window_days))))
        except ScoringError as ex:
            logger.warning("Gemini scoring failed for %s: %s; using fallback score", activity.identity, ex)
            return fallback_for_activity(activity, self.thresholds)
        logger.debug("Gemini scored %s: total %d", activity.identity, score.total)
        return score

    def _team_prompt(self, report: Report) -> str:
        totals = report.totals()
        lines = [
            f"Create a concise professional summary (3-4 sentences) of this team's GitHub activity over the last {report.window}.",
            f"Commits: {totals['commits']}; PR reviews: {totals['reviews']}; lines changed: {totals['lines_changed']}.",
            f"Active users: {totals['active_users']} of {totals['users']}; active repositories: {totals['active_repositories']}.",
            f"Organizations: {', '.join(o.organization for o in report.organizations)}.",
        ]
        languages = list(totals['language_distribution'].items())[:3]
        if languages:
            lines.append("Top languages: " + ', '.join(f"{name} ({share}%)" for name, share in languages) + '.')
        for user in report.active_users[:5]:
            lines.append(f"- {user.identity}: {user.activity.commit_count} commits, {user.activity.review_count} reviews, score {user.score.total}/50. {user.score.summary}")
        lines.append("Emphasize what the team accomplished collectively. Reply with plain text only.")
        return '\n'.join(lines)

    def summarize_team(self, report: Report) -> Tuple[str, str]:
        """Return (summary text, generated_by)."""
        if not self.enabled or not report.active_users:
            return TEAM_SUMMARY_FALLBACK, GENERATED_BY_FALLBACK
        try:
            text = self._generate(self._team_prompt(report)).strip()
        except ScoringError as ex:
            logger.warning("Gemini team summary failed: %s; using fallback summary", ex)
            return TEAM_SUMMARY_FALLBACK, GENERATED_BY_FALLBACK
        return text, GENERATED_BY_GEMINI


__all__ = ["GeminiScoringGateway", "extract_json", "parse_score", "TEAM_SUMMARY_FALLBACK"]
