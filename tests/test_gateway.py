import json
import pytest
import requests
from datetime import datetime, timezone
from unittest.mock import patch

from correlate.models import OrgRollup, Report, UserActivity, UserReport, ContributionScore, GENERATED_BY_FALLBACK, GENERATED_BY_GEMINI
from errors import ScoringError
from normalize.models import AuthorIdentity, Commit, CommitDetail, FileChange
from scoring.gateway import GeminiScoringGateway, TEAM_SUMMARY_FALLBACK, extract_json, parse_score
from scoring.metrics import FALLBACK_MARKER
from storage.retry import RetryPolicy

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

GOOD_REPLY = {
    'code_volume': 3, 'complexity': 4, 'technical_depth': 5, 'scope': 2, 'review_contribution': 1,
    'summary': 'Steady API work.', 'time_estimate': '6-12 hours',
}


def _activity(identity='alice'):
    commits = [
        Commit('acme/api', 'c1', AuthorIdentity(identity), T0, message='Add endpoint', branches=['main', 'feature/x'], additions=100),
        Commit('acme/api', 'c2', AuthorIdentity(identity), T0, message='Fix test', branches=['main'], deletions=50),
    ]
    return UserActivity(identity, commits, organizations=['acme'])


def _gemini_body(text):
    return {'candidates': [{'content': {'parts': [{'text': text}]}}]}


def _gateway(key='k'):
    return GeminiScoringGateway(key, policy=RetryPolicy(max_retries=0, sleep=lambda s: None))


def test_extract_json_from_fenced_block():
    text = "Here you go:\n```json\n{\"a\": 1}\n```\nThanks"
    assert extract_json(text) == {'a': 1}


def test_extract_json_from_surrounding_prose():
    assert extract_json('Result: {"a": {"b": 2}} done') == {'a': {'b': 2}}


@pytest.mark.parametrize('text', ['', 'no json here', '[1, 2, 3]', '{broken'])
def test_extract_json_failures(text):
    with pytest.raises(ScoringError):
        extract_json(text)


def test_parse_score_ignores_claimed_total():
    score = parse_score(dict(GOOD_REPLY, total=49))
    assert score.total == 15
    assert score.generated_by == GENERATED_BY_GEMINI
    assert score.time_estimate == '6-12 hours'


@pytest.mark.parametrize('change', [
    {'code_volume': 11},
    {'scope': -1},
    {'complexity': 'high'},
    {'technical_depth': True},
    {'summary': ''},
])
def test_parse_score_rejects_bad_values(change):
    with pytest.raises(ScoringError):
        parse_score(dict(GOOD_REPLY, **change))


def test_parse_score_rejects_missing_axis():
    payload = dict(GOOD_REPLY)
    del payload['review_contribution']
    with pytest.raises(ScoringError, match='review_contribution'):
        parse_score(payload)


def test_out_of_range_is_logged(caplog):
    with caplog.at_level('WARNING', logger='scoring.gateway'):
        with pytest.raises(ScoringError):
            parse_score(dict(GOOD_REPLY, code_volume=12))
    assert any('clamped' in r.message for r in caplog.records)


def test_score_uses_gemini_reply(make_response):
    gw = _gateway()
    resp = make_response(200, _gemini_body('```json\n' + json.dumps(GOOD_REPLY) + '\n```'))
    with patch('storage.retry.requests.request', return_value=resp) as req:
        score = gw.score(_activity(), 7.0)
    assert score.generated_by == GENERATED_BY_GEMINI
    assert score.total == 15
    args, kwargs = req.call_args
    assert args[0] == 'POST'
    assert args[1].endswith('/models/gemini-1.5-flash:generateContent')
    assert kwargs['headers']['x-goog-api-key'] == 'k'
    prompt = kwargs['json']['contents'][0]['parts'][0]['text']
    assert 'alice' in prompt
    assert 'Lines changed: 150' in prompt


@pytest.mark.parametrize('reply', [
    'I cannot score this user.',
    json.dumps(dict(GOOD_REPLY, code_volume=15)),
    json.dumps({'code_volume': 1}),
])
def test_unusable_reply_falls_back(make_response, reply):
    with patch('storage.retry.requests.request', return_value=make_response(200, _gemini_body(reply))):
        score = _gateway().score(_activity(), 7.0)
    assert score.generated_by == GENERATED_BY_FALLBACK
    assert score.summary.startswith(FALLBACK_MARKER)
    assert score.total == 9


def test_empty_candidates_fall_back(make_response):
    with patch('storage.retry.requests.request', return_value=make_response(200, {'candidates': []})):
        assert _gateway().score(_activity(), 7.0).is_fallback


def test_unreachable_service_falls_back():
    with patch('storage.retry.requests.request', side_effect=requests.exceptions.ConnectionError('down')):
        score = _gateway().score(_activity(), 7.0)
    assert score.is_fallback
    assert score.total == 9


def test_no_api_key_never_calls_service():
    with patch('storage.retry.requests.request') as req:
        score = _gateway(key='').score(_activity(), 7.0)
    req.assert_not_called()
    assert score.is_fallback


def test_inactive_user_is_not_sent():
    with patch('storage.retry.requests.request') as req:
        score = _gateway().score(UserActivity('idle'), 7.0)
    req.assert_not_called()
    assert score.total == 0


def test_prompt_includes_branches_and_detail():
    gw = _gateway()
    detail = CommitDetail(100, 0, 1, [FileChange('src/app.py', 100, 0, '@@ +def handler()')])
    activity = _activity()
    activity.commits[0] = activity.commits[0].with_detail(detail)
    prompt = gw.build_prompt(activity, 7.0)
    assert 'feature/x, main' in prompt
    assert 'src/app.py (+100/-0)' in prompt
    assert 'def handler()' in prompt


def _report():
    score = ContributionScore(2, 2, 3, 2, 0, summary='s')
    return Report(T0, T0, '7.days', [OrgRollup('acme', 'graphql')], [UserReport(_activity(), score)])


def test_team_summary_without_key_is_fallback():
    assert _gateway(key='').summarize_team(_report()) == (TEAM_SUMMARY_FALLBACK, GENERATED_BY_FALLBACK)


def test_team_summary_from_gemini(make_response):
    with patch('storage.retry.requests.request', return_value=make_response(200, _gemini_body('  The team shipped.  '))):
        assert _gateway().summarize_team(_report()) == ('The team shipped.', GENERATED_BY_GEMINI)


def test_team_summary_failure_is_fallback(make_response):
    with patch('storage.retry.requests.request', return_value=make_response(500, {'error': {'message': 'boom'}})):
        assert _gateway().summarize_team(_report()) == (TEAM_SUMMARY_FALLBACK, GENERATED_BY_FALLBACK)


@pytest.mark.parametrize('body', [
    {'candidates': [{'content': {'parts': None}}]},
    {'candidates': [{'content': {'parts': 'not a list'}}]},
    _gemini_body(json.dumps(dict(GOOD_REPLY, code_volume=float('nan')))),
    _gemini_body(json.dumps(dict(GOOD_REPLY, scope=float('inf')))),
])
def test_malformed_reply_falls_back_for_that_user(make_response, body):
    with patch('storage.retry.requests.request', return_value=make_response(200, body)):
        score = _gateway().score(_activity(), 7.0)
    assert score.generated_by == GENERATED_BY_FALLBACK
    assert score.total == 9


def test_parse_score_rejects_nan():
    with pytest.raises(ScoringError, match='not finite'):
        parse_score(json.loads('{"code_volume": NaN, "complexity": 1, "technical_depth": 1, "scope": 1, "review_contribution": 1, "summary": "x"}'))
