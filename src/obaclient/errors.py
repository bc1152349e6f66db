"""Typed errors surfaced by the OneBusAway client."""

from typing import Optional
from urllib.parse import urlsplit


def _last_path_component(url: Optional[str]) -> str:
    if not url:
        return ""
    path = urlsplit(url).path.rstrip("/")
    return path.rsplit("/", 1)[-1] or url


class OBAAPIError(Exception):
    """Base class for every error raised by a leaf endpoint operation."""


class InvalidURLError(OBAAPIError):
    """The request URL could not be built."""

    def __init__(self, url: Optional[str] = None):
        self.url = url
        super().__init__("Invalid request URL.")


class NotFoundError(OBAAPIError):
    """The server reported the resource missing (404, null body or envelope code)."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Resource not found: {_last_path_component(url)}.")


class BadServerResponseError(OBAAPIError):
    """Any other 4xx/5xx response."""

    def __init__(self, status_code: int, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(
            f"Server returned error {status_code} for {_last_path_component(url)}."
        )


class DecodingError(OBAAPIError):
    """The body was not JSON, or matched none of the known response shapes."""

    def __init__(self, underlying: Exception, url: str):
        self.underlying = underlying
        self.url = url
        super().__init__(
            f"Unable to parse response from {_last_path_component(url)}: {underlying}"
        )


class OtherError(OBAAPIError):
    """Transport-level failure such as a refused connection or a timeout."""

    def __init__(self, underlying: Exception):
        self.underlying = underlying
        super().__init__(str(underlying))
