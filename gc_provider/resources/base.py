"""BaseResource — the lifecycle contract every managed resource implements.

The applier drives instances through plan → create/read/update/delete; concrete
resources only implement the handlers and the canonicalization hooks used for
diffing. Everything else (state, reporting, deadlines) is handled by the applier.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..core.provider import ProviderMeta
from ..core.state import ResourceData
from ..utils.diff_engine import Decision, decide


class BaseResource:
    """Abstract base class for all managed resources.

    Class Attributes:
        type_key: Key under ``resources:`` in the desired document.
        resource_name: Name used in error messages and logs.
        compare_keys: Keys used for subset comparison in the diff step.
    """

    type_key: str = "resource"
    resource_name: str = "resource"
    compare_keys: Tuple[str, ...] = ()

    def __init__(self, meta: ProviderMeta) -> None:
        self.meta = meta

    # ----- hooks to implement --------------------------------------------
    def validate(self, attributes: Dict[str, Any]) -> None:
        """Raise ValidationError when *attributes* cannot be applied."""
        raise NotImplementedError

    def canon_desired(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Return the comparable subset for desired attributes.

        A ``None`` value means "computed by the platform": not compared.
        """
        raise NotImplementedError

    def canon_existing(self, data: ResourceData) -> Dict[str, Any]:
        """Return the comparable subset for a freshly read state."""
        raise NotImplementedError

    def create(self, data: ResourceData, *, deadline: Optional[float] = None) -> ResourceData:
        raise NotImplementedError

    def read(self, data: ResourceData, *, deadline: Optional[float] = None) -> Optional[ResourceData]:
        """Refresh *data* from the platform; None (ID cleared) when it is gone."""
        raise NotImplementedError

    def update(self, data: ResourceData, *, deadline: Optional[float] = None) -> ResourceData:
        raise NotImplementedError

    def delete(self, data: ResourceData, *, deadline: Optional[float] = None) -> None:
        raise NotImplementedError

    def get_all(self) -> Dict[str, str]:
        """Return ``{id: name}`` for every instance on the platform."""
        raise NotImplementedError

    # ----- diff ----------------------------------------------------------
    def diff(self, attributes: Dict[str, Any], current: Optional[ResourceData]) -> Decision:
        """Decide CREATE / UPDATE / NOOP for one desired instance."""
        desired = self.canon_desired(attributes)
        existing = self.canon_existing(current) if current is not None and current.exists else None
        if existing is not None and current.tainted:
            return Decision(op="UPDATE", reason="Tainted by a failed apply", desired=desired, existing=existing)
        keys: List[str] = [k for k in self.compare_keys if desired.get(k) is not None]
        return decide(desired, existing, compare_keys=keys)


class BaseDataSource:
    """Read-only lookup resolved once per run."""

    type_key: str = "data"
    resource_name: str = "data"

    def __init__(self, meta: ProviderMeta) -> None:
        self.meta = meta

    def read(self, attributes: Dict[str, Any], *, deadline: Optional[float] = None) -> ResourceData:
        raise NotImplementedError
