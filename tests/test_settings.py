import unittest
from datetime import datetime, timedelta, timezone

import pytest

from cli import build_parser
from errors import ConfigError
from settings import compute_cutoff, load_config, parse_window


class TestParseWindow(unittest.TestCase):
    def test_accepted_forms(self):
        self.assertEqual(parse_window('7.days'), timedelta(days=7))
        self.assertEqual(parse_window('12.hours'), timedelta(hours=12))
        self.assertEqual(parse_window('7d'), timedelta(days=7))
        self.assertEqual(parse_window('36h'), timedelta(hours=36))
        self.assertEqual(parse_window('1w'), timedelta(weeks=1))
        self.assertEqual(parse_window(' 30 minutes '), timedelta(minutes=30))
        self.assertEqual(parse_window('1.Day'), timedelta(days=1))

    def test_rejected_forms(self):
        for text in ('', 'seven days', '7.fortnights', '0d', '-1d', '1.5d'):
            with self.assertRaises(ConfigError, msg=text):
                parse_window(text)

    def test_compute_cutoff(self):
        now = datetime(2024, 3, 8, 12, 0, tzinfo=timezone.utc)
        window = compute_cutoff('36h', now=now)
        self.assertEqual(window.since, datetime(2024, 3, 7, 0, 0, tzinfo=timezone.utc))
        self.assertEqual(window.days, 1.5)
        self.assertEqual(window.label, '36h')

    def test_naive_now_is_utc(self):
        window = compute_cutoff('1d', now=datetime(2024, 3, 8))
        self.assertEqual(window.since.tzinfo, timezone.utc)


def _load(argv, env):
    return load_config(build_parser().parse_args(argv), env=env)


def test_defaults_from_env():
    config = _load([], {'GITHUB_TOKEN': 'tok', 'GITHUB_ORG_NAME': 'acme, globex'})
    assert config.organizations == ['acme', 'globex']
    assert config.backend == 'graphql'
    assert config.window == '7.days'
    assert config.formats == ['json']
    assert config.destination == 'stdout'
    assert config.output_dir == 'results'
    assert config.gemini_key == ''
    assert config.max_retries is None
    assert 'tok' not in repr(config)


def test_cli_overrides_env():
    env = {'GITHUB_TOKEN': 'env-tok', 'GITHUB_ORG_NAME': 'acme', 'FETCH_WINDOW': '2.days', 'OUTPUT_FORMAT': 'html'}
    config = _load(['--token', 'cli-tok', '--window', '12h', '--format', 'md,json,markdown', '--max-retries', '5', '--users', 'alice,bob'], env)
    assert config.token == 'cli-tok'
    assert config.window == '12h'
    assert config.formats == ['markdown', 'json']
    assert config.max_retries == 5
    assert config.users == ['alice', 'bob']


@pytest.mark.parametrize('argv,env,expected', [
    ([], {'USE_GRAPHQL': 'false'}, 'rest'),
    ([], {'USE_GRAPHQL': 'true'}, 'graphql'),
    (['--no-graphql'], {'USE_GRAPHQL': 'true'}, 'rest'),
    (['--backend', 'REST'], {}, 'rest'),
])
def test_backend_selection(argv, env, expected):
    env = dict(env, GITHUB_TOKEN='tok', GITHUB_ORG_NAME='acme')
    assert _load(argv, env).backend == expected


@pytest.mark.parametrize('argv,env,message', [
    ([], {'GITHUB_ORG_NAME': 'acme'}, 'GitHub token'),
    ([], {'GITHUB_TOKEN': 'tok'}, 'organization'),
    (['--window', 'soon'], {}, 'time window'),
    (['--backend', 'svn'], {}, 'backend'),
    (['--format', 'pdf'], {}, 'output format'),
    (['--destination', 'email'], {}, 'destination'),
    (['--max-retries', 'many'], {}, 'max retries'),
    (['--backoff-base', '0'], {}, 'backoff base'),
    (['--log-level', 'LOUD'], {}, 'log level'),
    (['--html-theme', 'neon'], {}, 'HTML theme'),
])
def test_invalid_settings(argv, env, message):
    base = {} if message in ('GitHub token', 'organization') else {'GITHUB_TOKEN': 'tok', 'GITHUB_ORG_NAME': 'acme'}
    with pytest.raises(ConfigError, match=message):
        _load(argv, dict(base, **env))


if __name__ == '__main__':
    unittest.main()
