import pytest
import requests
from unittest.mock import patch

from storage import retry
from storage.retry import (
    RetryPolicy,
    classify_response,
    configure_retry,
    perform_request_with_retries,
    reset_retry_configuration,
    RATE_LIMITED,
    SUCCESS,
    TERMINAL,
    TRANSIENT,
)


def _policy(sleeps, **kwargs):
    kwargs.setdefault('max_retries', 3)
    kwargs.setdefault('backoff_base', 2.0)
    kwargs.setdefault('max_backoff', 120.0)
    return RetryPolicy(sleep=sleeps.append, uniform=lambda a, b: 0.5, **kwargs)


def test_rate_limited_backend_exhausts_retries_without_raising(make_response):
    sleeps = []
    resp = make_response(429, {'message': 'slow down'})
    with patch('storage.retry.requests.request', return_value=resp) as req:
        res = perform_request_with_retries('GET', 'https://api.example.com/x', policy=_policy(sleeps))
    # first attempt plus exactly max_retries more
    assert req.call_count == 4
    assert len(sleeps) == 3
    assert res['outcome'] == RATE_LIMITED
    assert res['status'] == 429
    assert res['attempts'] == 4


def test_exhaustion_is_logged_at_error_level(make_response, caplog):
    with patch('storage.retry.requests.request', return_value=make_response(503, {'message': 'down'})):
        with caplog.at_level('ERROR', logger='storage.retry'):
            perform_request_with_retries('GET', 'https://api.example.com/x', policy=_policy([], max_retries=1))
    assert any('Giving up' in r.message for r in caplog.records)


def test_transient_then_success(make_response):
    sleeps = []
    responses = [make_response(502, text='<html>bad gateway</html>'), make_response(200, {'ok': True})]
    with patch('storage.retry.requests.request', side_effect=responses) as req:
        res = perform_request_with_retries('GET', 'https://api.example.com/x', policy=_policy(sleeps))
    assert req.call_count == 2
    assert res['outcome'] == SUCCESS
    assert res['response'] == {'ok': True}
    assert sleeps == [2.5]


def test_terminal_is_not_retried(make_response):
    with patch('storage.retry.requests.request', return_value=make_response(404, {'message': 'Not Found'})) as req:
        res = perform_request_with_retries('GET', 'https://api.example.com/x', policy=_policy([]))
    assert req.call_count == 1
    assert res['outcome'] == TERMINAL
    assert res['error'] == 'Not Found'


def test_connection_error_is_transient():
    sleeps = []
    with patch('storage.retry.requests.request', side_effect=requests.exceptions.ConnectionError('refused')) as req:
        res = perform_request_with_retries('GET', 'https://api.example.com/x', policy=_policy(sleeps, max_retries=2))
    assert req.call_count == 3
    assert res['outcome'] == TRANSIENT
    assert res['status'] == 0
    assert 'refused' in res['error']


def test_links_are_returned(make_response):
    resp = make_response(200, [1, 2], links={'next': {'url': 'https://api.example.com/x?page=2'}})
    with patch('storage.retry.requests.request', return_value=resp):
        res = perform_request_with_retries('GET', 'https://api.example.com/x', policy=_policy([]))
    assert res['links']['next']['url'].endswith('page=2')


@pytest.mark.parametrize('status,headers,body,text,expected', [
    (200, {}, {'a': 1}, None, SUCCESS),
    (200, {}, None, '<!DOCTYPE html><html></html>', TRANSIENT),
    (200, {}, {'errors': [{'type': 'RATE_LIMITED', 'message': 'API rate limit exceeded'}]}, None, RATE_LIMITED),
    (429, {}, {'message': 'too many'}, None, RATE_LIMITED),
    (403, {'X-RateLimit-Remaining': '0'}, {'message': 'forbidden'}, None, RATE_LIMITED),
    (403, {}, {'message': 'API rate limit exceeded for user'}, 'API rate limit exceeded for user', RATE_LIMITED),
    (403, {}, {'message': 'Resource not accessible'}, None, TERMINAL),
    (401, {}, {'message': 'Bad credentials'}, None, TERMINAL),
    (500, {}, None, 'oops', TRANSIENT),
    (422, {}, {'message': 'Validation Failed'}, None, TERMINAL),
])
def test_classify_response(make_response, status, headers, body, text, expected):
    outcome, _ = classify_response(make_response(status, body, text=text, headers=headers))
    assert outcome == expected


def test_delay_is_exponential_with_jitter_and_capped():
    policy = RetryPolicy(backoff_base=2.0, max_backoff=5.0, uniform=lambda a, b: 0.5)
    assert policy.delay_for(1) == 2.5
    assert policy.delay_for(2) == 4.5
    assert policy.delay_for(3) == 5.0


def test_retry_after_header_is_honored(make_response):
    sleeps = []
    responses = [make_response(429, {'message': 'slow'}, headers={'Retry-After': '7'}), make_response(200, {})]
    with patch('storage.retry.requests.request', side_effect=responses):
        perform_request_with_retries('GET', 'https://api.example.com/x', policy=_policy(sleeps))
    assert sleeps == [7.0]


def test_configure_retry_sets_runtime_defaults(make_response):
    try:
        configure_retry(max_retries=1, backoff_base=3.0)
        policy = RetryPolicy(sleep=lambda s: None)
        assert policy.max_retries == 1
        assert policy.backoff_base == 3.0
        with patch('storage.retry.requests.request', return_value=make_response(429, {})) as req:
            perform_request_with_retries('GET', 'https://api.example.com/x', policy=policy)
        assert req.call_count == 2
        # explicit per-call settings still win
        assert RetryPolicy(max_retries=5).max_retries == 5
    finally:
        reset_retry_configuration()
    assert RetryPolicy().max_retries == retry.DEFAULT_MAX_RETRIES
