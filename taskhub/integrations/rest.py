"""
Shared REST plumbing for the Jira and Bitbucket clients.
"""
from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Any, Callable, Optional, Type, TypeVar

import pydantic
import requests

from taskhub.errors import AuthError, SourceConnectionError, SourceError, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

MAX_BACKOFF_SEC = 30.0


def retry_after_seconds(response: requests.Response, attempt: int) -> float:
    """Wait time for a 429: the Retry-After header, else 1s, 2s, 4s... capped at 30s."""
    header = response.headers.get("Retry-After", "")
    if header.strip().isdigit():
        return float(header.strip())
    return min(float(2 ** attempt), MAX_BACKOFF_SEC)


def retry_on_rate_limit(func):
    """Decorator for retrying requests the server rejected with HTTP 429"""
    @wraps(func)
    def wrapper(self, method: str, path: str, *args, **kwargs):
        for attempt in range(self.max_retries + 1):
            response = func(self, method, path, *args, **kwargs)
            if response.status_code != 429:
                return response
            if attempt == self.max_retries:
                break
            sleep_time = retry_after_seconds(response, attempt)
            logger.warning(
                f"Rate limited on {method} {path}. "
                f"Retry {attempt + 1}/{self.max_retries} after {sleep_time}s..."
            )
            self._sleep(sleep_time)
        raise SourceConnectionError(
            self.source_type,
            f"max retries ({self.max_retries}) exceeded: rate limited (429) on {method} {path}",
        )
    return wrapper


class RestClient:
    """Bearer-token JSON client with rate-limit retries and error classification."""

    def __init__(
        self,
        source_type: str,
        base_url: str,
        token: str,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if timeout is None or max_retries is None:
            from taskhub.config import get_settings
            settings = get_settings()
            timeout = settings.HTTP_TIMEOUT_SEC if timeout is None else timeout
            max_retries = settings.HTTP_MAX_RETRIES if max_retries is None else max_retries
        self.source_type = source_type
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._token = token
        self._session = session or requests.Session()
        self._sleep = sleep

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # -- transport -------------------------------------------------------------

    @retry_on_rate_limit
    def _send(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> requests.Response:
        try:
            return self._session.request(
                method,
                self._url(path),
                headers=self._headers,
                json=json_body,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise SourceConnectionError(
                self.source_type, f"executing request {method} {path}: {e.__class__.__name__}"
            ) from e

    def request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> requests.Response:
        response = self._send(method, path, json_body, params)
        if response.status_code == 401:
            raise AuthError(
                self.source_type,
                f"authentication failed (401): check your Personal Access Token for {self.base_url}",
            )
        if not 200 <= response.status_code < 300:
            raise SourceError(
                self.source_type,
                f"unexpected status {response.status_code} on {method} {path}: "
                f"{self.describe_error(response)}",
            )
        return response

    def describe_error(self, response: requests.Response) -> str:
        """Human-readable body of an error response; subclasses know the dialect."""
        return response.text[:300]

    # -- JSON helpers ----------------------------------------------------------

    def _decode(self, response: requests.Response, method: str, path: str) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ValidationError(
                self.source_type, f"unmarshaling response from {method} {path}: {e}"
            ) from e

    def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return self._decode(self.request("GET", path, params=params), "GET", path)

    def post_json(self, path: str, body: Any = None) -> Any:
        return self._decode(self.request("POST", path, json_body=body), "POST", path)

    def delete(self, path: str) -> None:
        self.request("DELETE", path)

    def get_text(self, path: str) -> str:
        return self.request("GET", path).text.strip()

    def get_model(
        self, path: str, model: Type[ModelT], params: Optional[dict[str, Any]] = None
    ) -> ModelT:
        return parse_model(self.source_type, model, self.get_json(path, params), f"GET {path}")

    def post_model(self, path: str, body: Any, model: Type[ModelT]) -> ModelT:
        return parse_model(self.source_type, model, self.post_json(path, body), f"POST {path}")


def parse_model(source_type: str, model: Type[ModelT], data: Any, what: str) -> ModelT:
    """Validate a decoded payload, raising ValidationError on a shape mismatch."""
    try:
        return model.model_validate(data if data is not None else {})
    except pydantic.ValidationError as e:
        raise ValidationError(
            source_type, f"unexpected response shape from {what}: {e.error_count()} error(s)"
        ) from e


class Payload(pydantic.BaseModel):
    """Base for remote response types; unknown keys are kept so raw snapshots stay complete."""

    model_config = pydantic.ConfigDict(extra="allow", populate_by_name=True)

    def raw_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_unset=True)
