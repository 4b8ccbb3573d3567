import io
import json
from urllib.error import HTTPError
from urllib.parse import parse_qs, urlparse

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from finsync.store import init_db


def memory_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self.body = body

    def read(self) -> bytes:
        return self.body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> bool:
        return False


class FakeOpener:
    """Stands in for ``urlopen``; replies with queued ``(status, payload)`` pairs in order."""

    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.full_url}")
        status, payload = self.responses.pop(0)
        body = json.dumps(payload).encode("utf-8")
        if status >= 400:
            raise HTTPError(request.full_url, status, "error", {}, io.BytesIO(body))
        return FakeResponse(body)

    def query(self, index: int) -> dict:
        parsed = urlparse(self.requests[index].full_url)
        return {key: values[0] for key, values in parse_qs(parsed.query).items()}

    def path(self, index: int) -> str:
        return urlparse(self.requests[index].full_url).path
