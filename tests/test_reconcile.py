import unittest
from datetime import datetime, timedelta, timezone

from correlate.reconcile import (
    dedupe_commits,
    group_reviews_by_reviewer,
    is_generic_name,
    map_commits_to_users,
    resolve_identity,
)
from normalize.models import AuthorIdentity, Commit, ReviewRecord

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_commit(sha, repo='acme/api', branch='main', login='alice', name='', email='', lines=10):
    return Commit(repo, sha, AuthorIdentity(login, name, email), T0, message=f'commit {sha}', branches=[branch], additions=lines, deletions=0)


class TestDedupe(unittest.TestCase):
    def test_same_sha_on_two_branches_folds_into_one(self):
        records = [make_commit('c1', branch='main'), make_commit('c1', branch='feature/x'), make_commit('c2', branch='feature/x')]
        distinct = dedupe_commits(records)
        self.assertEqual([c.sha for c in distinct], ['c1', 'c2'])
        self.assertEqual(distinct[0].branches, frozenset({'main', 'feature/x'}))
        self.assertEqual(distinct[1].branches, frozenset({'feature/x'}))

    def test_same_sha_in_different_repositories_is_distinct(self):
        distinct = dedupe_commits([make_commit('c1', repo='acme/api'), make_commit('c1', repo='acme/web')])
        self.assertEqual(len(distinct), 2)

    def test_dedupe_is_idempotent(self):
        records = [make_commit('c1'), make_commit('c1', branch='dev'), make_commit('c2')]
        once = dedupe_commits(records)
        twice = dedupe_commits(once)
        self.assertEqual([(c.key, c.branches) for c in once], [(c.key, c.branches) for c in twice])

    def test_empty(self):
        self.assertEqual(dedupe_commits([]), [])


class TestResolveIdentity(unittest.TestCase):
    def test_login_wins(self):
        self.assertEqual(resolve_identity(AuthorIdentity('alice', 'Alice Doe', 'a@example.com')), 'alice')

    def test_name_when_no_login(self):
        self.assertEqual(resolve_identity(AuthorIdentity('', 'Alice Doe', 'a@example.com')), 'Alice Doe')

    def test_generic_name_gives_way_to_email(self):
        self.assertEqual(resolve_identity(AuthorIdentity('', 'GitHub', 'noreply@github.com')), 'noreply@github.com')
        self.assertEqual(resolve_identity(AuthorIdentity('', 'dependabot[bot]', 'bot@example.com')), 'bot@example.com')

    def test_generic_name_without_email_is_kept(self):
        self.assertEqual(resolve_identity(AuthorIdentity('', 'GitHub', '')), 'GitHub')

    def test_email_only(self):
        self.assertEqual(resolve_identity(AuthorIdentity('', '', 'x@example.com')), 'x@example.com')

    def test_nothing_usable(self):
        self.assertIsNone(resolve_identity(AuthorIdentity('', '  ', '')))

    def test_generic_names_are_case_insensitive(self):
        self.assertTrue(is_generic_name('github actions'))
        self.assertFalse(is_generic_name('Alice'))


class TestMapping(unittest.TestCase):
    def test_commits_grouped_by_identity_and_deduplicated(self):
        records = [
            make_commit('c1', branch='main'),
            make_commit('c1', branch='feature/x'),
            make_commit('c2', login='', name='Bob'),
            make_commit('c3', login='', name='', email=''),
        ]
        by_user = map_commits_to_users(records)
        self.assertEqual(sorted(by_user), ['Bob', 'alice'])
        self.assertEqual(len(by_user['alice']), 1)
        self.assertEqual(by_user['alice'][0].branches, frozenset({'main', 'feature/x'}))

    def test_reviews_grouped_and_filtered_by_submission_time(self):
        since = T0 - timedelta(days=7)
        reviews = [
            ReviewRecord('acme/api', 1, 'carol', T0),
            ReviewRecord('acme/api', 2, 'carol', since),
            ReviewRecord('acme/api', 3, 'carol', since - timedelta(seconds=1)),
            ReviewRecord('acme/api', 4, '', T0),
            ReviewRecord('acme/api', 5, 'dave', None),
        ]
        grouped = group_reviews_by_reviewer(reviews, since)
        self.assertEqual(list(grouped), ['carol'])
        self.assertEqual([r.pr_number for r in grouped['carol']], [1, 2])


if __name__ == '__main__':
    unittest.main()
