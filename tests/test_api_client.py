import json
import logging
import threading

import pytest

from gc_provider.core.api_client import ClientPool, PlatformClient
from gc_provider.core.errors import ApiError, ConfigError, RetryTimeoutError
from gc_provider.core.logging_utils import SDK_LOGGER_NAME, setup_sdk_debug_logging

from conftest import CLIENT_ID, CLIENT_SECRET, SKILL_GROUPS, TOKEN, fast_options

ORG = "/api/v2/organizations/me"


def _credentials_client(platform, token=""):
    return PlatformClient(
        platform.base_url,
        token,
        login_url=platform.base_url,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        options=fast_options(),
    )


def test_get_ok(platform, client):
    data = client.get_json(ORG)
    assert data["name"] == "Test Org"
    assert platform.count("GET", ORG) == 1


def test_server_errors_are_retried(platform, client):
    platform.inject("GET", ORG, 500, 503)
    assert client.get_json(ORG)["id"] == "org-1"
    assert platform.count("GET", ORG) == 3


def test_rate_limit_is_retried(platform, client):
    platform.inject("GET", ORG, 429)
    assert client.get_json(ORG)["id"] == "org-1"
    assert platform.count("GET", ORG) == 2


def test_retries_are_bounded(platform, client):
    platform.inject("GET", ORG, 500, 500, 500, 500)
    with pytest.raises(ApiError) as ei:
        client.get_json(ORG)
    assert ei.value.status == 500
    assert ei.value.retryable
    assert platform.count("GET", ORG) == 3


def test_session_mounts_urllib3_retry(client):
    for url in ("http://api.example.test", "https://api.example.test"):
        retries = client.session.get_adapter(url).max_retries
        assert retries.total == 2
        assert set(retries.status_forcelist) == {429, 500, 502, 503, 504}
        assert retries.allowed_methods is None
        assert retries.respect_retry_after_header
        assert not retries.raise_on_status


def test_writes_are_retried_too(platform, client):
    platform.inject("POST", SKILL_GROUPS, 503)
    created = client.post_json(SKILL_GROUPS, {"name": "Support"})
    assert created["name"] == "Support"
    assert platform.count("POST", SKILL_GROUPS) == 2
    assert len(platform.skill_groups) == 1


def test_connection_errors_map_to_status_zero():
    c = PlatformClient("http://127.0.0.1:9", TOKEN, options=fast_options())
    with pytest.raises(ApiError) as ei:
        c.get_json(ORG)
    assert ei.value.status == 0
    assert ei.value.retryable
    c.close()


def test_client_errors_are_not_retried(platform, client):
    platform.inject("GET", ORG, 400)
    with pytest.raises(ApiError) as ei:
        client.get_json(ORG)
    assert ei.value.status == 400
    assert not ei.value.retryable
    assert ei.value.correlation_id
    assert platform.count("GET", ORG) == 1


def test_not_found(client):
    with pytest.raises(ApiError) as ei:
        client.get_json(f"{SKILL_GROUPS}/nope")
    assert ei.value.not_found


def test_empty_body_returns_empty_dict(platform, client):
    sg_id = platform.add_skill_group("Support")
    assert client.delete_json(f"{SKILL_GROUPS}/{sg_id}") == {}


def test_client_credentials_login(platform):
    c = _credentials_client(platform)
    assert not c.authorized
    c.authorize_client_credentials()
    assert c.authorized
    assert c.get_json(ORG)["id"] == "org-1"
    c.close()


def test_rate_limited_login_is_retried(platform):
    platform.token_rate_limited = 2
    c = _credentials_client(platform)
    c.authorize_client_credentials()
    assert c.authorized
    assert platform.count("POST", "/oauth/token") == 3
    c.close()


def test_bad_credentials_fail_immediately(platform):
    c = PlatformClient(platform.base_url, login_url=platform.base_url,
                       client_id="wrong", client_secret="wrong", options=fast_options())
    with pytest.raises(ApiError) as ei:
        c.authorize_client_credentials()
    assert ei.value.status == 401
    assert platform.count("POST", "/oauth/token") == 1
    c.close()


def test_login_stays_rate_limited(platform):
    platform.token_rate_limited = 10_000
    c = _credentials_client(platform)
    c.options.auth_timeout_sec = 0.2
    with pytest.raises(RetryTimeoutError):
        c.authorize_client_credentials()
    c.close()


def test_expired_token_is_refreshed_once(platform):
    c = _credentials_client(platform, token="EXPIRED")
    assert c.get_json(ORG)["id"] == "org-1"
    assert platform.count("POST", "/oauth/token") == 1
    assert platform.count("GET", ORG) == 2
    c.close()


def test_unauthorized_without_credentials_is_terminal(platform):
    c = PlatformClient(platform.base_url, "EXPIRED", options=fast_options())
    with pytest.raises(ApiError) as ei:
        c.get_json(ORG)
    assert ei.value.status == 401
    c.close()


def test_base_url_is_required():
    with pytest.raises(ConfigError):
        PlatformClient("")


def test_pool_lends_each_client_once(platform):
    pool = ClientPool(lambda: PlatformClient(platform.base_url, TOKEN, options=fast_options()), 1)
    with pool.acquire() as first:
        with pytest.raises(TimeoutError):
            with pool.acquire(timeout=0.05):
                pass
    with pool.acquire(timeout=0.05) as again:
        assert again is first
    pool.close()


def test_pool_is_shared_between_threads(platform):
    pool = ClientPool(lambda: PlatformClient(platform.base_url, TOKEN, options=fast_options()), 2)
    errors = []

    def worker():
        try:
            for _ in range(5):
                with pool.acquire(timeout=5) as c:
                    c.get_json(ORG)
        except Exception as exc:  # surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert platform.count("GET", ORG) == 20
    pool.close()


def test_pool_size_must_be_positive():
    with pytest.raises(ConfigError):
        ClientPool(lambda: None, 0)


@pytest.fixture()
def sdk_log_file(tmp_path):
    path = tmp_path / "sdk" / "debug.log"
    yield path
    sdk_log = logging.getLogger(SDK_LOGGER_NAME)
    for h in list(sdk_log.handlers):
        sdk_log.removeHandler(h)
        h.close()


def test_sdk_debug_log_as_json(platform, client, sdk_log_file):
    setup_sdk_debug_logging(str(sdk_log_file), "Json")
    client.post_json(SKILL_GROUPS, {"name": "Support", "password": "hunter2"})

    lines = [json.loads(line) for line in sdk_log_file.read_text(encoding="utf-8").splitlines()]
    kinds = [entry["kind"] for entry in lines]
    assert kinds == ["request", "response"]
    assert lines[0]["correlation_id"] == lines[1]["correlation_id"]
    assert lines[1]["status"] == 200
    assert "hunter2" not in sdk_log_file.read_text(encoding="utf-8")


def test_sdk_debug_log_as_text(platform, client, sdk_log_file):
    setup_sdk_debug_logging(str(sdk_log_file), "Text")
    client.get_json(ORG)
    text = sdk_log_file.read_text(encoding="utf-8")
    assert "request" in text and ORG in text
