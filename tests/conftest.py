import sys
import os
import pytest

# Add project root to sys.path so tests can import top-level modules like 'storage', 'scoring', 'normalize', etc.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


class FakeResponse:
    """Stand-in for requests.Response with just the attributes the retry helper reads."""

    def __init__(self, status_code=200, json_data=None, text=None, headers=None, links=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text is not None else ('' if json_data is None else str(json_data))
        self.headers = headers or {}
        self.links = links or {}

    def json(self):
        if self._json is None:
            raise ValueError('No JSON object could be decoded')
        return self._json


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture(autouse=True)
def _reset_retry_overrides():
    # cli.main applies process-wide retry overrides
    from storage.retry import reset_retry_configuration
    yield
    reset_retry_configuration()
