import base64
import json
import logging
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

from gc_provider.core.api_client import ClientOptions, ClientPool, PlatformClient
from gc_provider.core.config import ProviderSettings
from gc_provider.core.provider import ProviderMeta
from gc_provider.resources.skill_group import SkillGroupResource

TOKEN = "TEST"
CLIENT_ID = "client-id"
CLIENT_SECRET = "client-secret"
HOME_DIVISION = "div-1"

SKILL_GROUPS = "/api/v2/routing/skillgroups"


class FakePlatform:
    """In-memory stand-in for the skill group, division and ruleset APIs.

    Knobs:
        faults: ``(method, path) -> [status, ...]`` answered before the real route.
        read_lag: 404s served by GET-by-id right after a create.
        stale_reads: GET-by-id answers showing the pre-PATCH snapshot.
        linger: GET-by-id answers still showing a deleted group.
        token_rate_limited: OAuth answers saying "Rate limit exceeded".
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.base_url = ""
        self.token = TOKEN
        self.skill_groups = {}
        self.members = {}
        self.divisions = [{"id": f"div-{i}", "name": f"Division {i}"} for i in range(1, 4)]
        self.rulesets = []
        self.calls = []
        self.faults = {}
        self.read_lag = 0
        self.stale_reads = 0
        self.linger = 0
        self.token_rate_limited = 0
        self._pending_404 = {}
        self._stale = {}
        self._deleted = {}
        self._seq = 0

    # ---------------- helpers for tests ----------------
    def inject(self, method, path, *statuses):
        self.faults.setdefault((method, path), []).extend(statuses)

    def count(self, method, path):
        return sum(1 for m, p, _, _ in self.calls if m == method and p == path)

    def bodies(self, method, path):
        return [b for m, p, _, b in self.calls if m == method and p == path]

    def add_skill_group(self, name, division_id=HOME_DIVISION, **extra):
        with self.lock:
            self._seq += 1
            sg_id = f"sg-{self._seq}"
            group = {"id": sg_id, "name": name, "description": extra.get("description", ""),
                     "skillConditions": extra.get("skillConditions", []),
                     "division": {"id": division_id}}
            self.skill_groups[sg_id] = group
            self.members[sg_id] = [division_id]
        return sg_id

    # ---------------- routes ----------------
    def handle(self, method, path, query, raw, headers):
        with self.lock:
            body = None
            if raw and path != "/oauth/token":
                body = json.loads(raw.decode("utf-8"))
            self.calls.append((method, path, query, body))

            pending = self.faults.get((method, path))
            if pending:
                return pending.pop(0), {"message": "injected failure"}

            if path == "/oauth/token":
                return self._token(headers)
            if headers.get("Authorization", "") != f"Bearer {self.token}":
                return 401, {"message": "unauthorized"}

            if path == "/api/v2/organizations/me":
                return 200, {"id": "org-1", "name": "Test Org", "defaultCountryCode": "US"}
            if path == "/api/v2/authorization/divisions":
                return self._page(self.divisions, query)
            if path == "/api/v2/outbound/rulesets":
                return self._rulesets(query)
            if path == SKILL_GROUPS:
                if method == "POST":
                    return self._create(body)
                return self._list(query)
            if path.startswith(SKILL_GROUPS + "/"):
                rest = path[len(SKILL_GROUPS) + 1:].split("/")
                if len(rest) == 3 and rest[1:] == ["members", "divisions"]:
                    return self._membership(method, rest[0], body)
                if len(rest) == 1:
                    return self._item(method, rest[0], body)
            return 404, {"message": "no route"}

    def _token(self, headers):
        if self.token_rate_limited > 0:
            self.token_rate_limited -= 1
            return 400, {"error": "Rate limit exceeded"}
        expected = base64.b64encode(f"{CLIENT_ID}:{CLIENT_SECRET}".encode()).decode()
        if headers.get("Authorization", "") != f"Basic {expected}":
            return 401, {"error": "invalid_client"}
        return 200, {"access_token": self.token, "token_type": "bearer", "expires_in": 86400}

    def _page(self, items, query):
        size = int(query.get("pageSize", 25))
        number = int(query.get("pageNumber", 1))
        start = (number - 1) * size
        page = items[start:start + size]
        page_count = (len(items) + size - 1) // size
        return 200, {"entities": page, "pageNumber": number, "pageSize": size, "pageCount": page_count}

    def _rulesets(self, query):
        name = query.get("name", "")
        matching = [r for r in self.rulesets if name.lower() in r["name"].lower()]
        return self._page(matching, query)

    def _list(self, query):
        size = int(query.get("pageSize", 25))
        start = int(query.get("after", 0))
        groups = list(self.skill_groups.values())
        page = groups[start:start + size]
        payload = {"entities": page}
        if start + size < len(groups):
            payload["nextUri"] = f"{SKILL_GROUPS}?pageSize={size}&after={start + size}"
        return 200, payload

    def _create(self, body):
        if not body or not body.get("name"):
            return 400, {"message": "name is required"}
        self._seq += 1
        sg_id = f"sg-{self._seq}"
        division_id = (body.get("division") or {}).get("id") or HOME_DIVISION
        group = {"id": sg_id, "name": body["name"], "description": body.get("description", ""),
                 "skillConditions": body.get("skillConditions", []), "division": {"id": division_id}}
        self.skill_groups[sg_id] = group
        self.members[sg_id] = [division_id]
        if self.read_lag:
            self._pending_404[sg_id] = self.read_lag
        return 200, dict(group)

    def _item(self, method, sg_id, body):
        if method == "GET":
            if self._pending_404.get(sg_id):
                self._pending_404[sg_id] -= 1
                return 404, {"message": "not found yet"}
            if sg_id not in self.skill_groups:
                left = self._deleted.get(sg_id, (None, 0))
                if left[1] > 0:
                    self._deleted[sg_id] = (left[0], left[1] - 1)
                    return 200, left[0]
                return 404, {"message": "skill group not found"}
            stale = self._stale.get(sg_id)
            if stale and stale[1] > 0:
                self._stale[sg_id] = (stale[0], stale[1] - 1)
                return 200, stale[0]
            return 200, dict(self.skill_groups[sg_id])

        if sg_id not in self.skill_groups:
            return 404, {"message": "skill group not found"}
        if method == "PATCH":
            before = dict(self.skill_groups[sg_id])
            group = self.skill_groups[sg_id]
            for key in ("name", "description", "skillConditions", "division"):
                if key in body:
                    group[key] = body[key]
            if self.stale_reads:
                self._stale[sg_id] = (before, self.stale_reads)
            return 200, dict(group)
        if method == "DELETE":
            group = self.skill_groups.pop(sg_id)
            self.members.pop(sg_id, None)
            self._deleted[sg_id] = (group, self.linger)
            return 204, None
        return 405, {"message": "method not allowed"}

    def _membership(self, method, sg_id, body):
        if sg_id not in self.skill_groups:
            return 404, {"message": "skill group not found"}
        current = self.members.setdefault(sg_id, [])
        if method == "GET":
            return 200, {"entities": [{"id": d} for d in current]}
        for d in body.get("addDivisionIds", []):
            if d not in current:
                current.append(d)
        for d in body.get("removeDivisionIds", []):
            if d in current:
                current.remove(d)
        return 202, None


class PlatformHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def _send_json(self, status, obj):
        raw = json.dumps(obj).encode("utf-8") if obj is not None else b""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        if status == 429:
            self.send_header("Retry-After", "0")
        self.end_headers()
        if raw:
            self.wfile.write(raw)

    def _dispatch(self, method):
        parsed = urlparse(self.path)
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        length = int(self.headers.get("Content-Length", "0"))
        raw = self.rfile.read(length) if length else b""
        status, payload = self.server.platform.handle(method, parsed.path, query, raw, self.headers)
        self._send_json(status, payload)

    def do_GET(self):  # noqa: N802
        self._dispatch("GET")

    def do_POST(self):  # noqa: N802
        self._dispatch("POST")

    def do_PATCH(self):  # noqa: N802
        self._dispatch("PATCH")

    def do_DELETE(self):  # noqa: N802
        self._dispatch("DELETE")

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


def fast_options():
    return ClientOptions(timeout_sec=5, retry_max=2, retry_wait_min_sec=0.01,
                         retry_wait_max_sec=0.05, auth_timeout_sec=2)


@pytest.fixture()
def platform():
    fake = FakePlatform()
    server = ThreadingHTTPServer(("127.0.0.1", 0), PlatformHandler)
    server.platform = fake
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    fake.base_url = f"http://{host}:{port}"
    yield fake
    server.shutdown()
    server.server_close()
    thread.join(timeout=1.0)


@pytest.fixture()
def client(platform):
    c = PlatformClient(platform.base_url, TOKEN, options=fast_options())
    yield c
    c.close()


@pytest.fixture()
def settings():
    return ProviderSettings(access_token=TOKEN)


@pytest.fixture()
def meta(platform, settings):
    pool = ClientPool(lambda: PlatformClient(platform.base_url, TOKEN, options=fast_options()), 2)
    m = ProviderMeta(version="test", settings=settings, pool=pool,
                     organization={"id": "org-1", "defaultCountryCode": "US"})
    yield m
    m.close()


@pytest.fixture()
def skill_groups(meta):
    return SkillGroupResource(meta, read_timeout=2, delete_timeout=2, min_delay=0.01)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # local stub servers must never be reached through a proxy
    for var in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    # argparse wraps help output to the terminal width; pin it so help text is deterministic
    monkeypatch.setenv("COLUMNS", "200")
    for var in list(os.environ):
        if var.startswith("GENESYSCLOUD_") or var.startswith("GC_"):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        if h not in saved_handlers:
            h.close()
    for h in saved_handlers:
        root.addHandler(h)
    root.setLevel(saved_level)
