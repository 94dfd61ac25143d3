"""
Thin pass-through over the routing skill-group endpoints.

Handlers never build URLs themselves; every call goes through this proxy so
tests can swap it for an in-memory fake.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from ..core.api_client import PlatformClient
from ..core.logging_utils import get_logger

log = get_logger(__name__)

SKILL_GROUPS_PATH = "/api/v2/routing/skillgroups"
PAGE_SIZE = 100


def _next_cursor(payload: Dict[str, Any]) -> Optional[str]:
    """Extract the ``after`` cursor from a page (``nextUri`` or ``after``)."""
    after = payload.get("after")
    if isinstance(after, str) and after:
        return after
    next_uri = payload.get("nextUri")
    if isinstance(next_uri, str) and next_uri:
        values = parse_qs(urlparse(next_uri).query).get("after")
        if values:
            return values[0]
    return None


class SkillGroupProxy:
    def __init__(self, client: PlatformClient) -> None:
        self.client = client

    @staticmethod
    def _item(skill_group_id: str) -> str:
        return f"{SKILL_GROUPS_PATH}/{skill_group_id}"

    def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.post_json(SKILL_GROUPS_PATH, body) or {}

    def update(self, skill_group_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.patch_json(self._item(skill_group_id), body) or {}

    def get(self, skill_group_id: str) -> Dict[str, Any]:
        return self.client.get_json(self._item(skill_group_id)) or {}

    def delete(self, skill_group_id: str) -> None:
        self.client.delete_json(self._item(skill_group_id))

    def get_member_division_ids(self, skill_group_id: str) -> List[str]:
        payload = self.client.get_json(f"{self._item(skill_group_id)}/members/divisions") or {}
        entities = payload.get("entities") if isinstance(payload, dict) else payload
        return [str(e["id"]) for e in entities or [] if isinstance(e, dict) and e.get("id")]

    def post_member_divisions(self, skill_group_id: str, add: List[str], remove: List[str]) -> None:
        body: Dict[str, Any] = {}
        if add:
            body["addDivisionIds"] = list(add)
        if remove:
            body["removeDivisionIds"] = list(remove)
        self.client.post_json(f"{self._item(skill_group_id)}/members/divisions", body)

    def get_all(self) -> List[Dict[str, Any]]:
        """Every skill group, following the ``after`` cursor."""
        out: List[Dict[str, Any]] = []
        after: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"pageSize": PAGE_SIZE}
            if after:
                params["after"] = after
            payload = self.client.get_json(SKILL_GROUPS_PATH, params=params) or {}
            entities = payload.get("entities") or []
            out.extend(e for e in entities if isinstance(e, dict))
            after = _next_cursor(payload)
            if not entities or not after:
                break
        log.debug("skill groups: %d found", len(out))
        return out
