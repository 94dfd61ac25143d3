import logging

import pytest

from gc_provider.core.api_client import PlatformClient
from gc_provider.core.config import ProviderSettings
from gc_provider.core.errors import ConfigError
from gc_provider.core.logging_utils import SDK_LOGGER_NAME
from gc_provider.core.provider import build_client, configure

from conftest import CLIENT_ID, CLIENT_SECRET, TOKEN, fast_options


def test_configure_fetches_organization(platform):
    settings = ProviderSettings(access_token=TOKEN, token_pool_size=3)
    created = []

    def factory():
        c = PlatformClient(platform.base_url, TOKEN, options=fast_options())
        created.append(c)
        return c

    meta = configure(settings, version="1.2.3", client_factory=factory)
    try:
        assert len(created) == 3
        assert meta.version == "1.2.3"
        assert meta.default_country_code == "US"
        assert meta.organization["name"] == "Test Org"
    finally:
        meta.close()


def test_configure_requires_credentials():
    with pytest.raises(ConfigError):
        configure(ProviderSettings(), client_factory=lambda: pytest.fail("no client expected"))


def test_build_client_uses_client_credentials(platform):
    settings = ProviderSettings.from_mapping({
        "oauthclient_id": CLIENT_ID,
        "oauthclient_secret": CLIENT_SECRET,
        "gateway": {"host": "127.0.0.1", "port": platform.base_url.rsplit(":", 1)[1], "protocol": "http"},
    })
    client = build_client(settings, "test")
    try:
        assert client.authorized
        assert client.session.headers["User-Agent"] == "gc-provider/test"
        assert platform.count("POST", "/oauth/token") == 1
    finally:
        client.close()


def test_configure_turns_on_sdk_debug(platform, tmp_path):
    target = tmp_path / "sdk.log"
    settings = ProviderSettings(access_token=TOKEN, token_pool_size=1, sdk_debug=True,
                                sdk_debug_file_path=str(target))
    meta = configure(settings, client_factory=lambda: PlatformClient(platform.base_url, TOKEN,
                                                                     options=fast_options()))
    try:
        assert "/api/v2/organizations/me" in target.read_text(encoding="utf-8")
    finally:
        meta.close()
        sdk_log = logging.getLogger(SDK_LOGGER_NAME)
        for h in list(sdk_log.handlers):
            sdk_log.removeHandler(h)
            h.close()
