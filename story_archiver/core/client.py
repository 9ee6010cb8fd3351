import threading
import time
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

import requests

from story_archiver.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60
DEFAULT_TIMEOUT_SECONDS = 30
USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36'

QueryParams = Union[Mapping[str, Any], Sequence[Tuple[str, Any]]]


def parse_retry_after(value: Optional[str]) -> int:
    """Seconds to wait according to a retry-after header; 60 when absent or not a number."""
    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    value = value.strip()
    if not value.isdigit():
        return DEFAULT_RETRY_AFTER_SECONDS
    return int(value)


class RateLimitedClient:
    """
    Thin wrapper around a requests.Session that waits out HTTP 429 responses.

    Cookies persist across requests through the session. Any response other
    than 429, and any transport exception, is handed back to the caller as is.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', USER_AGENT)
        self.timeout = timeout
        self._sleep = sleep

    def get(self, url: str) -> requests.Response:
        return self._send(url, None)

    def get_with_query(self, url: str, params: QueryParams) -> requests.Response:
        return self._send(url, params)

    def _send(self, url: str, params: Optional[QueryParams]) -> requests.Response:
        response = self.session.get(url, params=params, timeout=self.timeout)
        while response.status_code == 429:
            wait_seconds = parse_retry_after(response.headers.get('retry-after'))
            logger.warning(f"Too many requests to {urlparse(url).netloc}. Sleeping for {wait_seconds} seconds.")
            response.close()
            self._sleep(wait_seconds)
            response = self.session.get(url, params=params, timeout=self.timeout)
        return response


_client: Optional[RateLimitedClient] = None
_client_lock = threading.Lock()


def get_client() -> RateLimitedClient:
    """Returns the process-wide client, creating it on first use."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = RateLimitedClient()
    return _client


def configure_client(timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS) -> RateLimitedClient:
    """Replaces the shared client; meant to be called once at startup."""
    global _client
    with _client_lock:
        _client = RateLimitedClient(timeout=timeout)
    return _client
