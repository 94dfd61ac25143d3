"""Resource and data-source registry for gc_provider."""

from __future__ import annotations
from dataclasses import dataclass
from importlib import import_module
from typing import Dict, Iterable

from ..core.errors import ConfigError


@dataclass(frozen=True)
class ResourceSpec:
    key: str                # type key in the desired document
    kind: str               # "resource" or "data"
    help: str               # CLI help
    module: str             # module path
    class_name: str         # class symbol in module

    def load_class(self):
        mod = import_module(self.module)
        return getattr(mod, self.class_name)


_RESOURCES: Dict[str, ResourceSpec] = {
    # Routing skill groups
    "routing_skill_group": ResourceSpec(
        key="routing_skill_group",
        kind="resource",
        help="Routing skill groups",
        module="gc_provider.resources.skill_group",
        class_name="SkillGroupResource",
    ),
}

_DATA_SOURCES: Dict[str, ResourceSpec] = {
    # Outbound rulesets (lookup by name)
    "outbound_ruleset": ResourceSpec(
        key="outbound_ruleset",
        kind="data",
        help="Outbound ruleset lookup by name",
        module="gc_provider.resources.outbound_ruleset",
        class_name="OutboundRulesetDataSource",
    ),
}


def get_resource_spec(key: str) -> ResourceSpec:
    try:
        return _RESOURCES[key]
    except KeyError:
        raise ConfigError(f"Unknown resource type '{key}'") from None


def get_data_spec(key: str) -> ResourceSpec:
    try:
        return _DATA_SOURCES[key]
    except KeyError:
        raise ConfigError(f"Unknown data source type '{key}'") from None


def iter_specs() -> Iterable[ResourceSpec]:
    return list(_RESOURCES.values()) + list(_DATA_SOURCES.values())
