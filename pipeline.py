"""
The digest pipeline: one state machine, parameterized by the active backend.

verify auth -> per organization: members -> activity -> reconcile -> aggregate -> enrich -> score
-> merge across organizations -> team summary -> Report
"""

import logging
from typing import List, Optional, Tuple
from settings import RunConfig, RunWindow, compute_cutoff
from correlate.aggregate import aggregate_organization, merge_across_orgs
from correlate.models import OrgRollup, Report, UserActivity, UserReport
from correlate.reconcile import dedupe_commits, group_reviews_by_reviewer, map_commits_to_users
from errors import AuthenticationError, BackendUnavailableError
from ingest.base import ActivitySource
from ingest.github_graphql import GitHubGraphQLSource
from ingest.github_rest import GitHubRestSource
from scoring.gateway import GeminiScoringGateway
from scoring.utils import load_thresholds
from storage.retry import RetryPolicy

logger = logging.getLogger(__name__)

SOURCES = {'graphql': GitHubGraphQLSource, 'rest': GitHubRestSource}


def build_source(config: RunConfig, policy: Optional[RetryPolicy] = None) -> ActivitySource:
    source_cls = SOURCES[config.backend]
    return source_cls(
        config.token,
        policy=policy,
        max_pages=config.max_pages,
        courtesy_every=config.courtesy_every,
        courtesy_sleep=config.courtesy_sleep,
    )


def build_gateway(config: RunConfig, policy: Optional[RetryPolicy] = None) -> GeminiScoringGateway:
    return GeminiScoringGateway(
        config.gemini_key,
        model=config.model,
        policy=policy,
        sample_size=config.sample_size,
        thresholds=load_thresholds(config.thresholds_path or None),
    )


class DigestPipeline:
    """Runs one digest. Holds no per-organization state between organizations."""

    def __init__(self, config: RunConfig, source: ActivitySource, gateway: GeminiScoringGateway):
        self.config = config
        self.source = source
        self.gateway = gateway

    def enrich(self, activity: UserActivity) -> UserActivity:
        """
        Attach diff detail to the user's most recent ``detail_limit`` commits. Detail is fetched
        when the prompt can use it or when the listing carried no line stats.
        """
        limit = self.config.detail_limit
        if limit <= 0 or not activity.commits:
            return activity
        enriched = []
        for index, commit in enumerate(activity.commits):
            if index < limit and commit.detail is None and (self.gateway.enabled or not commit.has_stats):
                detail = self.source.fetch_commit_diff_detail(commit.repository, commit.sha)
                if detail is not None:
                    commit = commit.with_detail(detail)
            enriched.append(commit)
        result = UserActivity(activity.identity, enriched, activity.review_count, activity.organizations, activity.reviews)
        if result.lines_partial:
            logger.info("%s: %d commits beyond the detail limit have no line stats; lines changed is partial", result.identity, result.unmeasured_commit_count)
        return result

    def process_organization(self, org: str, window: RunWindow) -> Tuple[OrgRollup, List[UserReport]]:
        since = window.since
        failures_before = self.source.failures
        logger.info("Processing organization %s (%s backend, since %s)", org, self.source.backend, since.isoformat())
        try:
            members = self.source.list_members(org)
            repositories = self.source.list_active_repositories(org, since)
            commits = self.source.fetch_commits(org, since, repositories)
            reviews = self.source.fetch_reviews(org, since, repositories)
        except (AuthenticationError, BackendUnavailableError):
            raise
        except Exception:
            logger.exception("Fetching activity for %s failed; continuing with no activity for it", org)
            rollup = OrgRollup(org, self.source.backend, degraded=True)
            return rollup, self._score_all(aggregate_organization(org, [], {}, {}, self.config.users), window)

        distinct = dedupe_commits(commits)
        user_commits = map_commits_to_users(distinct)
        user_reviews = group_reviews_by_reviewer(reviews, since)
        activities = aggregate_organization(org, members, user_commits, user_reviews, self.config.users)
        activities = {identity: self.enrich(activity) for identity, activity in activities.items()}

        degraded = self.source.failures > failures_before
        if degraded:
            logger.warning("%s: %d listings failed; results for this organization are incomplete", org, self.source.failures - failures_before)
        rollup = OrgRollup(
            org,
            self.source.backend,
            member_count=len(members),
            repositories=repositories,
            total_commits=len(distinct),
            total_reviews=sum(len(v) for v in user_reviews.values()),
            degraded=degraded,
        )
        logger.info("%s: %d distinct commits from %d records, %d reviews", org, len(distinct), len(commits), rollup.total_reviews)
        return rollup, self._score_all(activities, window)

    def _score_all(self, activities, window: RunWindow) -> List[UserReport]:
        reports = []
        for identity in sorted(activities, key=str.lower):
            activity = activities[identity]
            reports.append(UserReport(activity, self.gateway.score(activity, window.days)))
        return reports

    def run(self, window: Optional[RunWindow] = None) -> Report:
        window = window or compute_cutoff(self.config.window)
        logger.info("Digest window %s: activity since %s", window.label, window.since.isoformat())
        self.source.verify_authentication()
        if not self.gateway.enabled:
            logger.info("No Gemini API key configured; scoring is local-only")

        rollups: List[OrgRollup] = []
        per_org: List[List[UserReport]] = []
        for org in self.config.organizations:
            rollup, reports = self.process_organization(org, window)
            rollups.append(rollup)
            per_org.append(reports)

        report = Report(
            generated_at=window.started_at,
            since=window.since,
            window=window.label,
            organizations=rollups,
            users=merge_across_orgs(per_org),
        )
        report.team_summary, report.team_summary_generated_by = self.gateway.summarize_team(report)
        logger.info("Digest complete: %d users, %d active", len(report.users), len(report.active_users))
        return report


def run_digest(config: RunConfig, window: Optional[RunWindow] = None) -> Report:
    """Build the source and gateway for ``config`` and run the pipeline once."""
    policy = RetryPolicy(max_retries=config.max_retries, backoff_base=config.backoff_base)
    pipeline = DigestPipeline(config, build_source(config, policy), build_gateway(config, policy))
    return pipeline.run(window)


__all__ = ["DigestPipeline", "build_source", "build_gateway", "run_digest"]
