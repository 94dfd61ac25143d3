"""
Routing skill group resource.

Lifecycle:
- create  : POST the group → record its ID → reconcile member divisions →
            read back inside the consistency window.
- read    : GET by ID; outside the consistency window a 404 means the group
            was deleted out-of-band and its ID is cleared.
- update  : PATCH → reconcile member divisions → read back.
- delete  : DELETE → poll GET until 404 (30s).
- get_all : export ``{id: name}`` for every skill group.

``member_division_ids`` is write-only on the platform side: reads echo the
configured value, and ``None`` means membership is not managed at all.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.api_client import PlatformClient
from ..core.consistency import ConsistencyCheck, new_consistency_check, optional_check
from ..core.errors import (
    ApiError,
    ResourceApiError,
    RetryableError,
    ValidationError,
    build_api_error,
)
from ..core.logging_utils import get_logger
from ..core.provider import ProviderMeta
from ..core.retry import DEFAULT_MIN_DELAY, DEFAULT_READ_TIMEOUT, with_retries, with_retries_for_read
from ..core.state import ResourceData
from .auth_division_proxy import AuthDivisionProxy
from .base import BaseResource
from .member_divisions import MembershipPlan, exclude_home_division, plan_member_divisions, validate_member_division_ids
from .skill_group_proxy import SkillGroupProxy

log = get_logger(__name__)

RESOURCE_NAME = "genesyscloud_routing_skill_group"
DELETE_TIMEOUT = 30.0

TRACKED_FIELDS = ("name", "description", "division_id", "skill_conditions")
JSON_FIELDS = ("skill_conditions",)


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _parse_conditions(raw: Any, name: str) -> str:
    """Normalize ``skill_conditions`` to a compact JSON array string ("" when unset)."""
    if raw is None or raw == "":
        return ""
    if isinstance(raw, str):
        try:
            value = json.loads(raw)
        except ValueError as exc:
            raise ValidationError(
                f"Failed to unmarshal the JSON payload while creating/updating the skills group {name}: {exc}",
                resource_name=RESOURCE_NAME,
            ) from exc
    else:
        value = raw
    if not isinstance(value, list):
        raise ValidationError(
            f"skill_conditions of skill group {name} must be a JSON array",
            resource_name=RESOURCE_NAME,
        )
    return _compact(value)


@dataclass(frozen=True)
class SkillGroupConfig:
    """Validated desired attributes of one skill group."""
    name: str
    description: str = ""
    division_id: str = ""
    skill_conditions: str = ""
    member_division_ids: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_attributes(cls, attrs: Dict[str, Any]) -> "SkillGroupConfig":
        name = str(attrs.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", resource_name=RESOURCE_NAME)

        members = attrs.get("member_division_ids")
        member_ids: Optional[Tuple[str, ...]] = None
        if members is not None:
            if isinstance(members, str) or not isinstance(members, (list, tuple)):
                raise ValidationError("member_division_ids must be a list", resource_name=RESOURCE_NAME)
            member_ids = tuple(str(m) for m in members)
            validate_member_division_ids(member_ids, RESOURCE_NAME)

        return cls(
            name=name,
            description=str(attrs.get("description") or ""),
            division_id=str(attrs.get("division_id") or ""),
            skill_conditions=_parse_conditions(attrs.get("skill_conditions"), name),
            member_division_ids=member_ids,
        )

    def to_request(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "skillConditions": json.loads(self.skill_conditions) if self.skill_conditions else [],
        }
        if self.division_id:
            body["division"] = {"id": self.division_id}
        return body

    def to_attributes(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "division_id": self.division_id,
            "skill_conditions": self.skill_conditions,
            "member_division_ids": list(self.member_division_ids) if self.member_division_ids is not None else None,
        }


def _division_id(group: Dict[str, Any]) -> str:
    division = group.get("division")
    if isinstance(division, dict):
        return str(division.get("id") or "")
    return ""


def flatten_skill_group(group: Dict[str, Any], member_division_ids: Optional[List[str]]) -> Dict[str, Any]:
    """Map a platform payload onto resource attributes."""
    conditions = group.get("skillConditions")
    return {
        "name": str(group.get("name") or ""),
        "description": str(group.get("description") or ""),
        "division_id": _division_id(group),
        "skill_conditions": _compact(conditions) if conditions is not None else "",
        "member_division_ids": member_division_ids,
    }


class SkillGroupResource(BaseResource):
    type_key = "routing_skill_group"
    resource_name = RESOURCE_NAME
    compare_keys = ("name", "description", "division_id", "skill_conditions", "member_division_ids")

    def __init__(
        self,
        meta: ProviderMeta,
        *,
        proxy_factory: Callable[[PlatformClient], SkillGroupProxy] = SkillGroupProxy,
        divisions_factory: Callable[[PlatformClient], AuthDivisionProxy] = AuthDivisionProxy,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        delete_timeout: float = DELETE_TIMEOUT,
        min_delay: float = DEFAULT_MIN_DELAY,
    ) -> None:
        super().__init__(meta)
        self.proxy_factory = proxy_factory
        self.divisions_factory = divisions_factory
        self.read_timeout = read_timeout
        self.delete_timeout = delete_timeout
        self.min_delay = min_delay

    # ------------------------------------------------------------------ diff
    def validate(self, attributes: Dict[str, Any]) -> None:
        SkillGroupConfig.from_attributes(attributes)

    def canon_desired(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        cfg = SkillGroupConfig.from_attributes(attributes)
        members = cfg.member_division_ids
        return {
            "name": cfg.name,
            "description": cfg.description,
            # division is computed when omitted
            "division_id": cfg.division_id or None,
            "skill_conditions": json.loads(cfg.skill_conditions) if cfg.skill_conditions else [],
            "member_division_ids": sorted(set(members)) if members is not None else None,
        }

    def canon_existing(self, data: ResourceData) -> Dict[str, Any]:
        raw = data.get("skill_conditions") or ""
        members = data.get("member_division_ids")
        return {
            "name": data.get("name") or "",
            "description": data.get("description") or "",
            "division_id": data.get("division_id") or "",
            "skill_conditions": json.loads(raw) if raw else [],
            "member_division_ids": sorted(set(members)) if members is not None else None,
        }

    # ------------------------------------------------------------- helpers
    def _consistency(self, cfg: SkillGroupConfig) -> ConsistencyCheck:
        settings = self.meta.settings
        return new_consistency_check(
            RESOURCE_NAME,
            cfg.to_attributes(),
            TRACKED_FIELDS,
            json_fields=JSON_FIELDS,
            max_checks=settings.consistency_checks,
            enabled=settings.consistency_checker_enabled,
        )

    def _reconcile_member_divisions(
        self,
        client: PlatformClient,
        proxy: SkillGroupProxy,
        skill_group_id: str,
        cfg: SkillGroupConfig,
        home_division_id: str,
        *,
        is_create: bool,
    ) -> Optional[MembershipPlan]:
        if cfg.member_division_ids is None:
            return None

        try:
            current = proxy.get_member_division_ids(skill_group_id)
        except ApiError as exc:
            raise build_api_error(
                RESOURCE_NAME, f"Failed to get member divisions for skill group {cfg.name}", exc
            ) from exc

        divisions = self.divisions_factory(client)
        plan = plan_member_divisions(
            cfg.member_division_ids,
            current,
            is_create,
            divisions.get_all_division_ids,
            resource_name=RESOURCE_NAME,
        )
        plan = exclude_home_division(plan, home_division_id)
        if plan.is_empty:
            log.debug("skill group %s: member divisions already up to date", cfg.name)
            return plan

        log.info("Updating member divisions for skill group %s (+%d / -%d)",
                 cfg.name, len(plan.add), len(plan.remove))
        try:
            proxy.post_member_divisions(skill_group_id, plan.add, plan.remove)
        except ApiError as exc:
            verb = "create" if is_create else "update"
            raise build_api_error(
                RESOURCE_NAME, f"Failed to {verb} member divisions for skill group {cfg.name}", exc
            ) from exc
        return plan

    def _read_back(self, data: ResourceData, cfg: SkillGroupConfig, deadline: Optional[float], verb: str) -> ResourceData:
        written_id = data.id
        result = self.read_with_check(data, self._consistency(cfg), deadline=deadline)
        if result is None:
            # the group was written, so the caller must still be able to track it
            data.set_id(written_id)
            raise ResourceApiError(RESOURCE_NAME, f"Skill group {cfg.name} disappeared after {verb}")
        return result

    # ------------------------------------------------------------ handlers
    def create(self, data: ResourceData, *, deadline: Optional[float] = None) -> ResourceData:
        cfg = SkillGroupConfig.from_attributes(data.attributes)
        log.info("Creating skill group %s", cfg.name)

        with self.meta.pool.acquire() as client:
            proxy = self.proxy_factory(client)
            try:
                group = proxy.create(cfg.to_request())
            except ApiError as exc:
                raise build_api_error(RESOURCE_NAME, f"Failed to create skill group {cfg.name}", exc) from exc

            created_id = str(group.get("id") or "")
            if not created_id:
                raise ResourceApiError(RESOURCE_NAME, f"Create of skill group {cfg.name} returned no id")
            data.set_id(created_id)
            log.info("Created skill group %s %s", cfg.name, created_id)

            self._reconcile_member_divisions(
                client, proxy, created_id, cfg, cfg.division_id or _division_id(group), is_create=True
            )

        return self._read_back(data, cfg, deadline, "create")

    def read(self, data: ResourceData, *, deadline: Optional[float] = None) -> Optional[ResourceData]:
        return self.read_with_check(data, None, deadline=deadline)

    def read_with_check(
        self,
        data: ResourceData,
        consistency: Optional[ConsistencyCheck],
        *,
        deadline: Optional[float] = None,
    ) -> Optional[ResourceData]:
        """Read the group; with *consistency* set, a 404 is treated as lag and retried."""
        in_window = consistency is not None
        members = data.get("member_division_ids")
        log.debug("Reading skill group %s", data.id)

        def attempt() -> ResourceData:
            with self.meta.pool.acquire() as client:
                try:
                    group = self.proxy_factory(client).get(data.id)
                except ApiError as exc:
                    err = build_api_error(RESOURCE_NAME, f"Failed to read skill group {data.id}", exc)
                    if exc.not_found and not in_window:
                        raise err from exc
                    if exc.retryable:
                        raise RetryableError(err) from exc
                    raise err from exc

            current = flatten_skill_group(group, list(members) if members is not None else None)
            optional_check(consistency, current)
            data.attributes.update(current)
            log.debug("Read skill group %s %s", data.id, current["name"])
            return data

        return with_retries_for_read(
            data, attempt, timeout=self.read_timeout, deadline=deadline, min_delay=self.min_delay
        )

    def update(self, data: ResourceData, *, deadline: Optional[float] = None) -> ResourceData:
        cfg = SkillGroupConfig.from_attributes(data.attributes)
        log.info("Updating skill group %s %s", cfg.name, data.id)

        with self.meta.pool.acquire() as client:
            proxy = self.proxy_factory(client)
            try:
                group = proxy.update(data.id, cfg.to_request())
            except ApiError as exc:
                raise build_api_error(RESOURCE_NAME, f"Failed to update skill group {cfg.name}", exc) from exc

            self._reconcile_member_divisions(
                client, proxy, data.id, cfg, cfg.division_id or _division_id(group), is_create=False
            )

        log.info("Updated skill group %s", cfg.name)
        return self._read_back(data, cfg, deadline, "update")

    def delete(self, data: ResourceData, *, deadline: Optional[float] = None) -> None:
        name = data.get("name") or data.id
        log.info("Deleting skill group %s", name)

        with self.meta.pool.acquire() as client:
            try:
                self.proxy_factory(client).delete(data.id)
            except ApiError as exc:
                raise build_api_error(RESOURCE_NAME, f"Failed to delete skill group {name}", exc) from exc

        def attempt() -> None:
            with self.meta.pool.acquire() as client:
                try:
                    self.proxy_factory(client).get(data.id)
                except ApiError as exc:
                    if exc.not_found:
                        log.info("Deleted skill group %s", name)
                        return None
                    raise build_api_error(RESOURCE_NAME, f"Error deleting skill group {name}", exc) from exc
            raise RetryableError(ResourceApiError(RESOURCE_NAME, f"Skill group {name} still exists"))

        with_retries(self.delete_timeout, attempt, deadline=deadline, min_delay=self.min_delay)
        data.set_id("")

    def get_all(self) -> Dict[str, str]:
        with self.meta.pool.acquire() as client:
            try:
                groups = self.proxy_factory(client).get_all()
            except ApiError as exc:
                raise build_api_error(RESOURCE_NAME, "Failed to get skill groups", exc) from exc
        return {str(g["id"]): str(g.get("name") or "") for g in groups if g.get("id")}
