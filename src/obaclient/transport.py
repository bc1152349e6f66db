"""HTTP transport: URL building, status mapping and decoding."""

import json
import logging
from typing import Any, Callable, Dict, Optional, TypeVar
from urllib.parse import quote, urlencode, urlsplit

import requests

from .errors import (
    BadServerResponseError,
    DecodingError,
    InvalidURLError,
    NotFoundError,
    OtherError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_PREFIX = "/api/where"

# Bodies at most this long are checked for a bare "null" before decoding.
NULL_BODY_MAX_BYTES = 6


def _format_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _envelope_code(payload: Any) -> Optional[int]:
    """
    Status code of a response envelope, or None.

    Only dicts shaped like an envelope count; a bare entity such as a stop
    carries its own unrelated ``code`` field.
    """
    if not isinstance(payload, dict):
        return None
    if "data" not in payload and "version" not in payload and "text" not in payload:
        return None
    code = payload.get("code")
    if isinstance(code, int) and not isinstance(code, bool):
        return code
    return None


class Transport:
    """
    Issues GET requests against one OneBusAway server.

    Every request carries the same base parameters (``key`` when an API key is
    configured), so endpoint code only supplies what is specific to it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Server root, e.g. "https://api.pugetsound.onebusaway.org".
            api_key: Appended as ``key=`` when non-empty.
            timeout: Seconds per request.
            session: Optional pre-built session (tests inject a fake here).
        """
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def url(self, path: str, params: Optional[Dict[str, Any]] = None, *ids: str) -> str:
        """
        Build a request URL.

        ``path`` is relative to /api/where and may contain ``{}`` placeholders
        filled from ``ids`` (percent-encoded as path segments). Parameters whose
        value is None are left out.

        Raises:
            InvalidURLError: If the base URL has no scheme or host.
        """
        parts = urlsplit(self.base_url)
        if not parts.scheme or not parts.netloc:
            raise InvalidURLError(self.base_url)

        if ids:
            path = path.format(*(quote(str(i), safe="") for i in ids))
        full_path = f"{API_PREFIX}/{path.lstrip('/')}"
        url = self.base_url.rstrip("/") + "/" + full_path.lstrip("/")

        query = {}
        if self.api_key:
            query["key"] = self.api_key
        for name, value in (params or {}).items():
            if value is not None:
                query[name] = _format_param(value)
        return f"{url}?{urlencode(query)}" if query else url

    def _request(self, url: str) -> requests.Response:
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise OtherError(e) from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(url)
        if not 200 <= status < 300:
            raise BadServerResponseError(status, url)
        return response

    def get(self, url: str, decoder: Callable[[Any], T]) -> T:
        """
        Fetch ``url`` and decode its JSON body.

        Args:
            url: Full request URL (see ``url()``).
            decoder: Turns the parsed JSON into a raw response model.

        Raises:
            NotFoundError: 404, a bare ``null``/empty body, or an envelope code of 404.
            BadServerResponseError: Any other non-2xx status or envelope code.
            DecodingError: The body is not JSON or matches no known shape.
            OtherError: Connection failures and timeouts.
        """
        response = self._request(url)
        body = response.content or b""
        if len(body) <= NULL_BODY_MAX_BYTES and body.strip() in (b"", b"null"):
            raise NotFoundError(url)

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise DecodingError(e, url) from e

        code = _envelope_code(payload)
        if code is not None:
            if code == 404:
                raise NotFoundError(url)
            if code >= 400:
                raise BadServerResponseError(code, url)

        try:
            return decoder(payload)
        except Exception as e:
            # validators can raise more than ValidationError
            raise DecodingError(e, url) from e

    def send(self, url: str) -> None:
        """Fire-and-check request; only the status code matters."""
        self._request(url)
