"""
PlatformClient — JSON-first HTTP client for the Genesys Cloud public API.

This module provides a single, reusable HTTP client with:
  * Consistent JSON helpers (`get_json`, `post_json`, `patch_json`, `delete_json`)
  * A urllib3 ``Retry`` mounted on the session: exponential backoff on network
    errors, 429 and 5xx, with Retry-After honored
  * OAuth client-credentials authorization with automatic refresh on 401
  * Request/response debug hooks feeding the ``gc_provider.sdk`` logger
  * A fixed-size pool of authorized clients shared by all resource handlers

Errors are raised as :class:`ApiError` with status, url, body and correlation id;
4xx other than 429 are never retried here.

Example:
    client = PlatformClient("https://api.mypurecloud.com", access_token="...")
    group = client.get_json("/api/v2/routing/skillgroups/abc")
"""
from __future__ import annotations

import json
import os
import queue
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ApiError, ConfigError, RetryableError
from .logging_utils import SDK_LOGGER_NAME, get_logger
from .retry import with_retries

log = get_logger(__name__)
sdk_log = get_logger(SDK_LOGGER_NAME)

JSON = Union[Dict[str, Any], List[Any]]

_LOG_PREVIEW = int(os.getenv("GC_HTTP_PREVIEW", "600"))
_REDACT_KEYS = {"token", "access_token", "authorization", "password", "client_secret"}
_AUTH_RATE_LIMIT = "rate limit exceeded"
RETRY_STATUSES = (429, 500, 502, 503, 504)


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False)
        else:
            s = str(obj)
        return s[:limit]
    except (TypeError, ValueError):
        return f"<unserializable:{type(obj).__name__}>"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


@dataclass
class ClientOptions:
    """Runtime options for :class:`PlatformClient`.

    Attributes:
        verify: If False, SSL certificate verification is disabled.
        timeout_sec: Per-request timeout (seconds).
        retry_max: Extra attempts on 429/5xx/network errors.
        retry_wait_min_sec: First backoff delay.
        retry_wait_max_sec: Backoff ceiling (also caps Retry-After).
        auth_timeout_sec: Window for retrying a rate-limited OAuth login.
        user_agent: Sent on every request.
    """
    verify: bool = True
    timeout_sec: float = 60.0
    retry_max: int = 20
    retry_wait_min_sec: float = 1.0
    retry_wait_max_sec: float = 30.0
    auth_timeout_sec: float = 60.0
    user_agent: str = "gc-provider"


class PlatformClient:
    """High-level HTTP client for the platform API.

    Args:
        base_url: API base URL (e.g. ``https://api.mypurecloud.com``).
        access_token: Pre-issued bearer token; when empty, client credentials are used.
        login_url: OAuth base URL (e.g. ``https://login.mypurecloud.com``).
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        options: Optional :class:`ClientOptions`.
        proxies: Optional :mod:`requests` proxies mapping.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str = "",
        *,
        login_url: str = "",
        client_id: str = "",
        client_secret: str = "",
        options: Optional[ClientOptions] = None,
        proxies: Optional[Dict[str, str]] = None,
    ) -> None:
        if not base_url:
            raise ConfigError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.login_url = login_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.options = options or ClientOptions()
        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self.options.user_agent,
        })
        if proxies:
            self.session.proxies.update(proxies)
        if not self.options.verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        retries = self._retry_policy()
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session.mount("http://", HTTPAdapter(max_retries=retries))

        self._token = ""
        if access_token:
            self._set_token(access_token)

    # ---------------- auth ----------------
    @property
    def can_refresh(self) -> bool:
        return bool(self.login_url and self.client_id and self.client_secret)

    @property
    def authorized(self) -> bool:
        return bool(self._token)

    def _set_token(self, token: str) -> None:
        self._token = token
        self.session.headers["Authorization"] = f"Bearer {token}"

    def authorize_client_credentials(self) -> None:
        """Obtain a bearer token with the client-credentials grant.

        "Rate limit exceeded" answers are retried for ``auth_timeout_sec``;
        any other failure is terminal.

        Raises:
            ApiError: On a terminal login failure.
            RetryTimeoutError: When the login stays rate-limited.
        """
        if not self.can_refresh:
            raise ConfigError("Client credentials and login_url are required to authorize")
        url = f"{self.login_url}/oauth/token"

        def attempt() -> None:
            try:
                resp = self.session.post(
                    url,
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.options.timeout_sec,
                    verify=self.options.verify,
                )
            except requests.RequestException as exc:
                raise ApiError(0, "POST", url, message=f"failed to authorize client credentials: {exc}") from exc
            if resp.status_code >= 400:
                err = ApiError(resp.status_code, "POST", url, resp.text[:200],
                               message="failed to authorize client credentials")
                if resp.status_code == 429 or _AUTH_RATE_LIMIT in resp.text.lower():
                    raise RetryableError(err)
                raise err
            token = (resp.json() or {}).get("access_token")
            if not token:
                raise ApiError(resp.status_code, "POST", url, message="no access_token in OAuth response")
            self._set_token(token)

        with_retries(self.options.auth_timeout_sec, attempt, min_delay=self.options.retry_wait_min_sec)
        log.info("Authorized client credentials against %s", self.login_url)

    # ---------------- low-level ----------------
    def _url(self, path: str) -> str:
        """Resolve an absolute URL from a relative *path*."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _retry_policy(self) -> Retry:
        """urllib3 retry for 429/5xx and connection errors, on every method."""
        return Retry(
            total=max(0, int(self.options.retry_max)),
            backoff_factor=self.options.retry_wait_min_sec,
            backoff_max=self.options.retry_wait_max_sec,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=None,
            respect_retry_after_header=True,
            raise_on_status=False,
        )

    def _req(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[JSON] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> JSON:
        """Perform an HTTP request and return the JSON response (or empty dict).

        Transient failures are retried by the session adapter; what reaches
        this method is the final answer. A 401 triggers one token refresh.

        Raises:
            ApiError: On non-2xx responses, or with status 0 on connection-level
                errors once retries are exhausted.
        """
        method = method.upper()
        url = self._url(path)
        corr = uuid.uuid4().hex[:8]
        refreshed = False

        while True:
            self._log_request(corr, method, url, params, json_body)
            start = time.monotonic()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    json=json_body,
                    params=params,
                    headers={"X-Correlation-Id": corr},
                    timeout=self.options.timeout_sec,
                    verify=self.options.verify,
                )
            except requests.RequestException as exc:
                log.warning("HTTP %s %s failed [%s]: %s", method, url, corr, exc)
                raise ApiError(0, method, url, correlation_id=corr, message=str(exc)) from exc

            elapsed = (time.monotonic() - start) * 1000
            self._log_response(corr, resp, elapsed)

            if resp.status_code == 401 and not refreshed and self.can_refresh:
                log.info("HTTP %s %s -> 401 [%s], refreshing token", method, url, corr)
                self.authorize_client_credentials()
                refreshed = True
                continue

            if resp.status_code >= 400:
                snippet = resp.text[:200]
                level = log.debug if resp.status_code == 404 else log.error
                level("HTTP %s %s -> %s [%s]: %s", method, url, resp.status_code, corr, snippet)
                raise ApiError(resp.status_code, method, url, snippet, correlation_id=corr)

            if not resp.text:
                return {}
            try:
                return resp.json()
            except ValueError:
                log.warning("Non-JSON response from %s %s, returning empty dict", method, url)
                return {}

    def _log_request(self, corr: str, method: str, url: str, params: Any, body: Any) -> None:
        sdk_log.debug(
            "request %s %s %s params=%s body=%s",
            corr, method, url, params or {}, _short_json(_redact(body)) if body is not None else "",
            extra={"sdk": {"kind": "request", "correlation_id": corr, "method": method, "url": url}},
        )

    def _log_response(self, corr: str, resp: requests.Response, elapsed_ms: float) -> None:
        sdk_log.debug(
            "response %s %s in %.1fms body=%s",
            corr, resp.status_code, elapsed_ms, resp.text[:_LOG_PREVIEW],
            extra={"sdk": {"kind": "response", "correlation_id": corr,
                           "status": resp.status_code, "elapsed_ms": round(elapsed_ms, 1)}},
        )

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> JSON:
        """GET a JSON resource (empty dict on no-content)."""
        return self._req("GET", path, params=params)

    def post_json(self, path: str, data: Optional[JSON] = None) -> JSON:
        """POST a JSON payload and return the parsed JSON response."""
        return self._req("POST", path, json_body=data)

    def patch_json(self, path: str, data: JSON) -> JSON:
        """PATCH a JSON payload and return the parsed JSON response."""
        return self._req("PATCH", path, json_body=data)

    def delete_json(self, path: str) -> JSON:
        """DELETE a resource and return the parsed JSON response (if any)."""
        return self._req("DELETE", path)

    def close(self) -> None:
        self.session.close()


class ClientPool:
    """Fixed-size pool of authorized clients (the process-wide token pool).

    Every handler borrows one client for the duration of a lifecycle event
    and gives it back; borrowing blocks when all clients are in use.
    """

    def __init__(self, factory: Callable[[], PlatformClient], size: int) -> None:
        if size < 1:
            raise ConfigError("client pool size must be >= 1")
        self.size = size
        self._clients: "queue.Queue[PlatformClient]" = queue.Queue(maxsize=size)
        self._all: List[PlatformClient] = []
        for _ in range(size):
            client = factory()
            self._all.append(client)
            self._clients.put(client)
        log.debug("Client pool initialised with %d client(s)", size)

    @contextmanager
    def acquire(self, timeout: Optional[float] = None) -> Iterator[PlatformClient]:
        try:
            client = self._clients.get(timeout=timeout)
        except queue.Empty as exc:
            raise TimeoutError(f"no client available in pool after {timeout}s") from exc
        try:
            yield client
        finally:
            self._clients.put(client)

    def close(self) -> None:
        for client in self._all:
            client.close()
