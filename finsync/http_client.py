from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Callable, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from finsync.errors import TransientError, ValidationError, error_for_status

logger = logging.getLogger(__name__)

Opener = Callable[..., Any]


@dataclass
class JsonHttpClient:
    """Small JSON-over-HTTP helper shared by the provider clients."""

    base_url: str
    source: str
    timeout: float = 15.0
    default_headers: Mapping[str, str] = field(default_factory=dict)
    opener: Opener = urlopen

    def get(self, path: str, *, params: Mapping[str, Any] | None = None,
            headers: Mapping[str, str] | None = None) -> Any:
        return self.request("GET", path, params=params, headers=headers)

    def post(self, path: str, *, body: Any = None,
             headers: Mapping[str, str] | None = None) -> Any:
        return self.request("POST", path, body=body, headers=headers)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        url = self.build_url(path, params)
        merged_headers = {"Accept": "application/json", **self.default_headers, **(headers or {})}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            merged_headers["Content-Type"] = "application/json"

        request = Request(url, data=data, headers=merged_headers, method=method)
        logger.debug("%s %s %s", self.source, method, path)
        try:
            with self.opener(request, timeout=self.timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            message = _error_message(exc, self.source)
            raise error_for_status(exc.code, message, source=self.source) from exc
        except (URLError, TimeoutError, ConnectionError) as exc:
            raise TransientError(f"{self.source} API unavailable", source=self.source) from exc

        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{self.source} API returned invalid JSON", source=self.source) from exc

    def build_url(self, path: str, params: Mapping[str, Any] | None = None) -> str:
        url = f"{self.base_url.rstrip('/')}{path}" if path else self.base_url
        query = {key: value for key, value in (params or {}).items() if value is not None}
        if query:
            url = f"{url}?{urlencode(query)}"
        return url


def _error_message(exc: HTTPError, source: str) -> str:
    fallback = f"{source} API error: {exc.code}"
    try:
        payload = json.loads(exc.read() or b"{}")
    except (json.JSONDecodeError, OSError, ValueError):
        return fallback
    if not isinstance(payload, dict):
        return fallback

    message = payload.get("message") or payload.get("error")
    if not message:
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
    return str(message) if message else fallback
