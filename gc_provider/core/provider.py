"""
Provider bootstrap: turn :class:`ProviderSettings` into a :class:`ProviderMeta`.

`ProviderMeta` is the explicit context handed to every resource handler (no
module-level globals): the settings, the pool of authorized API clients, and
the organization the credentials belong to.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .. import __version__
from .api_client import ClientOptions, ClientPool, PlatformClient
from .config import ProviderSettings
from .logging_utils import get_logger, setup_sdk_debug_logging

log = get_logger(__name__)


@dataclass
class ProviderMeta:
    """Per-run provider context."""
    version: str
    settings: ProviderSettings
    pool: ClientPool
    organization: Dict[str, Any] = field(default_factory=dict)

    @property
    def domain(self) -> str:
        return self.settings.domain

    @property
    def default_country_code(self) -> str:
        return str(self.organization.get("defaultCountryCode") or "")

    def close(self) -> None:
        self.pool.close()


def build_client(settings: ProviderSettings, version: str = __version__) -> PlatformClient:
    """Create one client from settings and authorize it."""
    proxies = settings.proxy.as_requests_proxies() if settings.proxy else None
    client = PlatformClient(
        settings.api_base_url,
        settings.access_token,
        login_url=settings.login_base_url,
        client_id=settings.oauthclient_id,
        client_secret=settings.oauthclient_secret,
        options=ClientOptions(user_agent=f"gc-provider/{version}"),
        proxies=proxies,
    )
    if settings.access_token:
        log.debug("Using access token set on configuration")
    else:
        client.authorize_client_credentials()
    return client


def configure(
    settings: ProviderSettings,
    *,
    version: str = __version__,
    client_factory: Optional[Callable[[], PlatformClient]] = None,
) -> ProviderMeta:
    """Initialise SDK logging, the client pool and fetch the current organization."""
    settings.require_credentials()
    if settings.sdk_debug:
        path = setup_sdk_debug_logging(settings.sdk_debug_file_path, settings.sdk_debug_format)
        log.info("SDK debug logging to %s (%s)", path, settings.sdk_debug_format)

    factory = client_factory or (lambda: build_client(settings, version))
    pool = ClientPool(factory, settings.token_pool_size)

    with pool.acquire() as client:
        org = client.get_json("/api/v2/organizations/me") or {}
    log.info("Initialized client pool (size=%d) for organization '%s'",
             settings.token_pool_size, org.get("name", "?"))

    return ProviderMeta(version=version, settings=settings, pool=pool, organization=dict(org))
