"""
Base API client class for WeRead Sync Service.

Both remote services rate-limit per account, so every call goes through a
throttle (delay before each request) and a fixed-backoff retry policy.
"""

import random
import time
from typing import Optional, Dict, Any, Callable, TypeVar
from dataclasses import dataclass, field
import requests

from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class APIError(Exception):
    """Custom exception for API errors."""
    message: str
    status_code: Optional[int] = None
    response_data: Optional[Dict[str, Any]] = None
    errcode: Optional[int] = None

    def __str__(self) -> str:
        if self.errcode:
            return f"API Error (errcode {self.errcode}): {self.message}"
        if self.status_code:
            return f"API Error {self.status_code}: {self.message}"
        return f"API Error: {self.message}"


@dataclass
class SessionExpiredError(APIError):
    """The WeRead session cookie is expired or invalid."""


@dataclass
class RetryPolicy:
    """
    Fixed-backoff retry applied uniformly to remote calls.

    The last error is re-raised once ``max_attempts`` calls have failed.
    """
    max_attempts: int = 3
    backoff_seconds: float = 5.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "Giving up after retries",
                        operation=getattr(fn, "__name__", repr(fn)),
                        attempts=attempt,
                        error=str(e),
                    )
                    raise
                logger.warning(
                    "Request failed, retrying",
                    operation=getattr(fn, "__name__", repr(fn)),
                    attempt=attempt,
                    backoff_seconds=self.backoff_seconds,
                    error=str(e),
                )
                self.sleep(self.backoff_seconds)


@dataclass
class RequestThrottle:
    """Sleeps before each request: a base delay plus random jitter."""
    delay_ms: int
    max_jitter_ms: int = 100
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def wait(self) -> None:
        jitter = random.randint(0, self.max_jitter_ms) if self.max_jitter_ms else 0
        total_ms = max(self.delay_ms, 0) + jitter
        if total_ms:
            self.sleep(total_ms / 1000)


class BaseClient:
    """
    Base class for API clients with common functionality.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        retry_policy: Optional[RetryPolicy] = None,
        throttle: Optional[RequestThrottle] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.throttle = throttle
        self.session = session or requests.Session()

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        return f"{self.base_url}{endpoint}"

    def _raise_for_error(self, status_code: int, data: Dict[str, Any]) -> None:
        """Hook for service-specific error payloads."""
        if status_code >= 400:
            raise APIError(
                message=str(data.get("error") or data.get("errmsg") or data),
                status_code=status_code,
                response_data=data,
            )

    def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make a single throttled HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint
            **kwargs: Additional arguments for requests

        Returns:
            Response JSON data

        Raises:
            APIError: If the request fails
        """
        url = self._build_url(endpoint)

        # Set default timeout
        kwargs.setdefault("timeout", self.timeout)

        if self.throttle:
            self.throttle.wait()

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise APIError(f"Connection error: {str(e)}")
        except requests.exceptions.Timeout as e:
            raise APIError(f"Request timeout: {str(e)}")
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request failed: {str(e)}")

        try:
            data = response.json()
        except ValueError:
            data = {"error": response.text}

        if not isinstance(data, dict):
            data = {"data": data}

        self._raise_for_error(response.status_code, data)
        return data

    def _call(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a request under the retry policy."""
        return self.retry_policy.call(self._request, method, endpoint, **kwargs)

    def get(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a GET request."""
        return self._call("GET", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a POST request."""
        return self._call("POST", endpoint, **kwargs)

    def close(self) -> None:
        """Close the session."""
        self.session.close()
