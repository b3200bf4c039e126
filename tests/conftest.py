"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides registry fakes shared by the test modules.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)


def make_response(status_code=200, json_data=None, headers=None, json_error=None):
    """Build a fake requests.Response"""
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = headers or {}
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = json_data
    return resp


class FakeSession:
    """Stands in for requests.Session: routes (method, url) to canned responses"""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.auth = None
        self.verify = True

    def request(self, method, url, headers=None, timeout=None):
        self.calls.append((method, url, headers))
        response = self.routes.get((method, url))
        if response is None:
            return make_response(404)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, list):
            item = response.pop(0) if len(response) > 1 else response[0]
            if isinstance(item, Exception):
                raise item
            return item
        return response

    def close(self):
        pass


NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def days_ago(days):
    return NOW - timedelta(days=days)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_tag():
    """Factory for TagRecords: make_tag("t1", "d1", 5) is tag t1 at digest d1 created 5 days before NOW"""
    from clearnear.models import TagRecord

    def _make(tag, digest, age_days=None, repository="app"):
        created = days_ago(age_days) if age_days is not None else None
        return TagRecord(repository=repository, tag=tag, digest=digest, created=created)

    return _make
