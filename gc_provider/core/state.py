"""
Resource state: the per-instance working object and the on-disk state file.

`ResourceData` is what handlers read from and write to during one lifecycle
event (ID + attributes). `StateStore` persists, per ``<type>.<label>`` address,
the only durable handle (the remote ID) plus a cache of the last-read
attributes, in a JSON file written atomically.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from .errors import ConfigError
from .logging_utils import get_logger

log = get_logger(__name__)

STATE_VERSION = 1


@dataclass
class ResourceData:
    """Working state of one resource instance."""
    id: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    # set when an apply failed half-way; forces an update on the next run
    tainted: bool = False

    def set_id(self, value: str) -> None:
        self.id = value or ""

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    @property
    def exists(self) -> bool:
        return bool(self.id)


def address(rtype: str, label: str) -> str:
    return f"{rtype}.{label}"


def split_address(addr: str) -> Tuple[str, str]:
    rtype, _, label = addr.partition(".")
    if not rtype or not label:
        raise ConfigError(f"Invalid state address '{addr}'")
    return rtype, label


class StateStore:
    """JSON state file keyed by resource address.

    Layout::

        {"version": 1,
         "resources": {"routing_skill_group.support": {"id": "...", "attributes": {...}}},
         "data": {"outbound_ruleset.default": {"id": "...", "attributes": {...}}}}
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.data: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def load(cls, path: str | Path) -> "StateStore":
        store = cls(path)
        if not store.path.exists():
            log.debug("state: %s does not exist yet, starting empty", store.path)
            return store
        with open(store.path, "r", encoding="utf-8") as fh:
            try:
                raw = json.load(fh) or {}
            except ValueError as exc:
                raise ConfigError(f"State file {store.path} is not valid JSON: {exc}") from exc
        if raw.get("version", STATE_VERSION) != STATE_VERSION:
            raise ConfigError(f"Unsupported state version {raw.get('version')} in {store.path}")
        store.resources = dict(raw.get("resources") or {})
        store.data = dict(raw.get("data") or {})
        return store

    def save(self) -> None:
        """Write the state atomically (temp file + replace)."""
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        payload = {"version": STATE_VERSION, "resources": self.resources, "data": self.data}
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, sort_keys=True)
        os.replace(tmp, self.path)

    # ---------------- resources ----------------
    def get(self, addr: str) -> Optional[ResourceData]:
        entry = self.resources.get(addr)
        if not entry or not entry.get("id"):
            return None
        return ResourceData(
            id=str(entry["id"]),
            attributes=dict(entry.get("attributes") or {}),
            tainted=bool(entry.get("tainted", False)),
        )

    def put(self, addr: str, data: ResourceData) -> None:
        if not data.id:
            self.remove(addr)
            return
        entry: Dict[str, Any] = {"id": data.id, "attributes": dict(data.attributes)}
        if data.tainted:
            entry["tainted"] = True
        self.resources[addr] = entry

    def remove(self, addr: str) -> None:
        self.resources.pop(addr, None)

    def addresses(self) -> Iterator[str]:
        return iter(sorted(self.resources))

    # ---------------- data sources ----------------
    def put_data(self, addr: str, data: ResourceData) -> None:
        self.data[addr] = {"id": data.id, "attributes": dict(data.attributes)}
