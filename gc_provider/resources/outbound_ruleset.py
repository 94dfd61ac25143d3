"""
Outbound ruleset data source: resolve a ruleset ID from its exact name.

A ruleset created moments earlier may not be listed yet, so "no match" is
retried for 15 seconds; API failures are terminal.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from ..core.api_client import PlatformClient
from ..core.errors import ApiError, ResourceApiError, RetryableError, ValidationError, build_api_error
from ..core.logging_utils import get_logger
from ..core.provider import ProviderMeta
from ..core.retry import DEFAULT_MIN_DELAY, with_retries
from ..core.state import ResourceData
from .base import BaseDataSource

log = get_logger(__name__)

RESOURCE_NAME = "genesyscloud_outbound_ruleset"
RULESETS_PATH = "/api/v2/outbound/rulesets"
PAGE_SIZE = 100
LOOKUP_TIMEOUT = 15.0


class OutboundRulesetProxy:
    def __init__(self, client: PlatformClient, *, page_size: int = PAGE_SIZE) -> None:
        self.client = client
        self.page_size = page_size

    def get_ruleset_id_by_name(self, name: str) -> Optional[str]:
        """Return the ID of the ruleset named exactly *name*, or None.

        Raises:
            ApiError: When a page cannot be fetched.
        """
        page_number = 1
        while True:
            payload = self.client.get_json(
                RULESETS_PATH,
                params={"pageSize": self.page_size, "pageNumber": page_number, "name": name},
            ) or {}
            entities = payload.get("entities") or []
            for ruleset in entities:
                if isinstance(ruleset, dict) and ruleset.get("name") == name and ruleset.get("id"):
                    return str(ruleset["id"])

            page_count = int(payload.get("pageCount") or 0)
            if not entities or page_number >= page_count:
                return None
            page_number += 1


class OutboundRulesetDataSource(BaseDataSource):
    type_key = "outbound_ruleset"
    resource_name = RESOURCE_NAME

    def __init__(
        self,
        meta: ProviderMeta,
        *,
        proxy_factory: Callable[[PlatformClient], OutboundRulesetProxy] = OutboundRulesetProxy,
        timeout: float = LOOKUP_TIMEOUT,
        min_delay: float = DEFAULT_MIN_DELAY,
    ) -> None:
        super().__init__(meta)
        self.proxy_factory = proxy_factory
        self.timeout = timeout
        self.min_delay = min_delay

    def read(self, attributes: Dict[str, Any], *, deadline: Optional[float] = None) -> ResourceData:
        name = str(attributes.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", resource_name=RESOURCE_NAME)

        def attempt() -> str:
            with self.meta.pool.acquire() as client:
                try:
                    ruleset_id = self.proxy_factory(client).get_ruleset_id_by_name(name)
                except ApiError as exc:
                    raise build_api_error(RESOURCE_NAME, f"Error ruleset {name}", exc) from exc
            if not ruleset_id:
                raise RetryableError(ResourceApiError(RESOURCE_NAME, f"No ruleset found with name {name}"))
            return ruleset_id

        ruleset_id = with_retries(self.timeout, attempt, deadline=deadline, min_delay=self.min_delay)
        log.info("Resolved outbound ruleset %s -> %s", name, ruleset_id)
        return ResourceData(id=ruleset_id, attributes={"name": name})
