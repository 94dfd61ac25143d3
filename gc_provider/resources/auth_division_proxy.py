"""
Authorization divisions: page through every division visible to the caller.

Used to resolve the ``"*"`` member-division wildcard. Pages of 100 are
requested until the platform returns an empty page; the result is cached for
the lifetime of the proxy (one lifecycle event).
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..core.api_client import PlatformClient
from ..core.errors import ApiError, build_api_error
from ..core.logging_utils import get_logger

log = get_logger(__name__)

DIVISIONS_PATH = "/api/v2/authorization/divisions"
PAGE_SIZE = 100
RESOURCE_NAME = "genesyscloud_auth_division"


def _extract_entities(payload: Any) -> List[Dict[str, Any]]:
    """Accept ``{"entities": [...]}`` or a bare list; anything else is empty."""
    if isinstance(payload, list):
        return [e for e in payload if isinstance(e, dict)]
    if isinstance(payload, dict):
        entities = payload.get("entities")
        if isinstance(entities, list):
            return [e for e in entities if isinstance(e, dict)]
    return []


class AuthDivisionProxy:
    def __init__(self, client: PlatformClient, *, page_size: int = PAGE_SIZE) -> None:
        self.client = client
        self.page_size = page_size
        self._cache: Optional[Dict[str, str]] = None

    def list_divisions(self, page_number: int) -> List[Dict[str, Any]]:
        """Return one page of divisions (1-based page numbers)."""
        payload = self.client.get_json(
            DIVISIONS_PATH, params={"pageSize": self.page_size, "pageNumber": page_number}
        )
        return _extract_entities(payload)

    def get_all_divisions(self) -> Dict[str, str]:
        """Return ``{division_id: name}`` for every visible division.

        Raises:
            ResourceApiError: When a page cannot be fetched.
        """
        if self._cache is not None:
            return dict(self._cache)

        out: Dict[str, str] = {}
        page_number = 1
        while True:
            try:
                entities = self.list_divisions(page_number)
            except ApiError as exc:
                raise build_api_error(RESOURCE_NAME, "Failed to get page of divisions", exc) from exc
            if not entities:
                break
            for division in entities:
                div_id = division.get("id")
                if div_id:
                    out[str(div_id)] = str(division.get("name") or "")
            page_number += 1

        log.debug("divisions: %d visible division(s) over %d page(s)", len(out), page_number - 1)
        self._cache = out
        return dict(out)

    def get_all_division_ids(self) -> List[str]:
        return list(self.get_all_divisions())
