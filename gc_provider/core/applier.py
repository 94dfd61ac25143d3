"""
Applier — drives every declared instance through refresh → diff → apply.

`plan()` refreshes each tracked instance (a read outside the consistency
window, so a 404 drops it from state) and decides CREATE / UPDATE / NOOP, or
DELETE for instances still tracked but no longer declared. `apply()` runs the
plan one instance at a time and saves the state after every step, so a
remote ID is never lost even when a later step of the same instance fails.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..resources.base import BaseDataSource, BaseResource
from ..resources.registry import get_data_spec, get_resource_spec
from ..utils.diff_engine import Decision
from .config import DesiredDocument
from .errors import ProviderError
from .logging_utils import get_logger
from .provider import ProviderMeta
from .state import ResourceData, StateStore, address, split_address

log = get_logger(__name__)


@dataclass
class PlannedChange:
    """One instance and what the applier intends to do with it."""
    address: str
    rtype: str
    label: str
    attributes: Optional[Dict[str, Any]]
    current: Optional[ResourceData]
    decision: Optional[Decision] = None
    error: Optional[BaseException] = None

    @property
    def op(self) -> str:
        if self.error is not None:
            return "ERROR"
        return self.decision.op if self.decision else "NOOP"


@dataclass
class ApplyResult:
    """Aggregate result for one run."""
    rows: List[Dict[str, Any]]
    errors: List[BaseException] = field(default_factory=list)

    @property
    def any_error(self) -> bool:
        return bool(self.errors)


def _default_resource_factory(meta: ProviderMeta) -> Callable[[str], BaseResource]:
    return lambda rtype: get_resource_spec(rtype).load_class()(meta)


def _default_data_factory(meta: ProviderMeta) -> Callable[[str], BaseDataSource]:
    return lambda dtype: get_data_spec(dtype).load_class()(meta)


class Applier:
    def __init__(
        self,
        meta: ProviderMeta,
        document: DesiredDocument,
        state: StateStore,
        *,
        resource_factory: Optional[Callable[[str], BaseResource]] = None,
        data_factory: Optional[Callable[[str], BaseDataSource]] = None,
        operation_timeout: Optional[float] = None,
    ) -> None:
        self.meta = meta
        self.document = document
        self.state = state
        self._resource_factory = resource_factory or _default_resource_factory(meta)
        self._data_factory = data_factory or _default_data_factory(meta)
        self.operation_timeout = float(
            operation_timeout if operation_timeout is not None else meta.settings.operation_timeout_sec
        )
        self._resources: Dict[str, BaseResource] = {}
        self._data_sources: Dict[str, BaseDataSource] = {}

    # ------------------------------------------------------------ lookups
    def resource(self, rtype: str) -> BaseResource:
        if rtype not in self._resources:
            self._resources[rtype] = self._resource_factory(rtype)
        return self._resources[rtype]

    def data_source(self, dtype: str) -> BaseDataSource:
        if dtype not in self._data_sources:
            self._data_sources[dtype] = self._data_factory(dtype)
        return self._data_sources[dtype]

    def _deadline(self) -> float:
        return time.monotonic() + self.operation_timeout

    # ------------------------------------------------------------ refresh
    def _refresh(self, resource: BaseResource, addr: str) -> Optional[ResourceData]:
        current = self.state.get(addr)
        if current is None:
            return None
        refreshed = resource.read(current, deadline=self._deadline())
        if refreshed is None:
            log.warning("%s no longer exists remotely, removing from state", addr)
            self.state.remove(addr)
            self.state.save()
            return None
        self.state.put(addr, refreshed)
        return refreshed

    # --------------------------------------------------------------- plan
    def plan(self) -> List[PlannedChange]:
        """Refresh tracked instances and decide what to do with each one."""
        changes: List[PlannedChange] = []
        declared = set()

        for rtype, label, attrs in self.document.iter_resources():
            addr = address(rtype, label)
            declared.add(addr)
            change = PlannedChange(addr, rtype, label, attrs, None)
            try:
                resource = self.resource(rtype)
                resource.validate(attrs)
                change.current = self._refresh(resource, addr)
                change.decision = resource.diff(attrs, change.current)
            except ProviderError as exc:
                log.error("plan: %s failed: %s", addr, exc)
                change.error = exc
            changes.append(change)

        for addr in self.state.addresses():
            if addr in declared:
                continue
            rtype, label = split_address(addr)
            change = PlannedChange(addr, rtype, label, None, None)
            try:
                change.current = self._refresh(self.resource(rtype), addr)
                if change.current is None:
                    change.decision = Decision(op="NOOP", reason="Already gone")
                else:
                    change.decision = Decision(op="DELETE", reason="No longer declared",
                                               existing=dict(change.current.attributes))
            except ProviderError as exc:
                log.error("plan: %s failed: %s", addr, exc)
                change.error = exc
            changes.append(change)

        log.info("plan: %d instance(s), %d change(s)",
                 len(changes), sum(1 for c in changes if c.op not in ("NOOP",)))
        return changes

    # -------------------------------------------------------------- apply
    def _row(self, change: PlannedChange) -> Dict[str, Any]:
        attrs = change.attributes or (change.current.attributes if change.current else {})
        return {
            "resource": change.rtype,
            "label": change.label,
            "name": attrs.get("name"),
            "id": change.current.id if change.current else None,
            "action": change.op.lower(),
            "reason": change.decision.reason if change.decision else None,
        }

    def _execute(self, change: PlannedChange) -> Optional[ResourceData]:
        resource = self.resource(change.rtype)
        op = change.op
        if op == "CREATE":
            data = ResourceData(attributes=dict(change.attributes or {}))
            try:
                return resource.create(data, deadline=self._deadline())
            except ProviderError:
                # keep the remote ID even when a later create step failed
                if data.id:
                    data.tainted = True
                    self.state.put(change.address, data)
                    self.state.save()
                raise
        if op == "UPDATE":
            assert change.current is not None
            data = ResourceData(id=change.current.id, attributes=dict(change.attributes or {}))
            return resource.update(data, deadline=self._deadline())
        if op == "DELETE":
            assert change.current is not None
            resource.delete(change.current, deadline=self._deadline())
            return None
        return change.current

    def resolve_data(self) -> ApplyResult:
        """Resolve every declared data source and record it in the state."""
        result = ApplyResult(rows=[])
        for dtype, label, attrs in self.document.iter_data():
            addr = address(dtype, label)
            row: Dict[str, Any] = {"resource": f"data.{dtype}", "label": label,
                                   "name": attrs.get("name"), "action": "read"}
            try:
                data = self.data_source(dtype).read(attrs, deadline=self._deadline())
                self.state.put_data(addr, data)
                row.update({"id": data.id, "status": "resolved"})
            except ProviderError as exc:
                log.error("data: %s failed: %s", addr, exc)
                row.update({"status": "Failed", "error": str(exc)})
                result.errors.append(exc)
            result.rows.append(row)
        if self.document.data:
            self.state.save()
        return result

    def apply(self, *, dry_run: bool = False) -> ApplyResult:
        """Execute the plan (or only report it with *dry_run*)."""
        result = ApplyResult(rows=[])
        if not dry_run:
            data_result = self.resolve_data()
            result.rows.extend(data_result.rows)
            result.errors.extend(data_result.errors)

        for change in self.plan():
            row = self._row(change)
            if change.error is not None:
                row.update({"status": "Failed", "error": str(change.error)})
                result.errors.append(change.error)
                result.rows.append(row)
                continue

            if dry_run or change.op == "NOOP":
                row["status"] = "planned" if dry_run and change.op != "NOOP" else "unchanged"
                result.rows.append(row)
                continue

            try:
                data = self._execute(change)
                if change.op == "DELETE":
                    self.state.remove(change.address)
                elif data is not None:
                    self.state.put(change.address, data)
                    row["id"] = data.id
                row["status"] = "Success"
                log.info("%s: %s done", change.address, change.op.lower())
            except ProviderError as exc:
                log.error("%s: %s failed: %s", change.address, change.op.lower(), exc)
                if change.op == "UPDATE" and change.current is not None:
                    change.current.tainted = True
                    self.state.put(change.address, change.current)
                row.update({"status": "Failed", "error": str(exc)})
                result.errors.append(exc)
            finally:
                self.state.save()
            result.rows.append(row)

        return result

    def destroy(self, *, dry_run: bool = False) -> ApplyResult:
        """Delete every tracked instance."""
        result = ApplyResult(rows=[])
        for addr in list(self.state.addresses()):
            rtype, label = split_address(addr)
            current = self.state.get(addr)
            change = PlannedChange(addr, rtype, label, None, current,
                                   decision=Decision(op="DELETE", reason="Destroy"))
            row = self._row(change)
            if dry_run:
                row["status"] = "planned"
                result.rows.append(row)
                continue
            try:
                change.current = self._refresh(self.resource(rtype), addr)
                if change.current is None:
                    row.update({"action": "noop", "reason": "Already gone", "status": "Success"})
                else:
                    self._execute(change)
                    self.state.remove(addr)
                    row["status"] = "Success"
            except ProviderError as exc:
                log.error("%s: delete failed: %s", addr, exc)
                row.update({"status": "Failed", "error": str(exc)})
                result.errors.append(exc)
            finally:
                self.state.save()
            result.rows.append(row)
        return result
