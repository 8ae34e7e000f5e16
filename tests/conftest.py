import json

import httpx
import pytest

from promquery.config import Config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PROMETHEUS_URL", "PROMQUERY_TIMEOUT", "PROMQUERY_FORMAT",
                 "PROMQUERY_CSV_DELIMITER", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return Config(server_url="http://prometheus.test:9090", timeout_seconds=5.0)


class RecordingServer:
    """Fake server behind httpx.MockTransport that records every request."""

    def __init__(self, body=None, status_code: int = 200):
        self.body = body
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, (bytes, str)):
            return httpx.Response(self.status_code, content=self.body)
        return httpx.Response(self.status_code, content=json.dumps(self.body).encode())

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def server():
    return RecordingServer()
