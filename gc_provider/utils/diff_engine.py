"""
Per-instance change decisions.

An instance is compared as two flat attribute maps: what the document asks
for and what the last refresh saw. Only the keys a resource handler declares
as tracked take part, so computed values never cause churn.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional


Op = Literal["NOOP", "CREATE", "UPDATE", "DELETE"]


@dataclass(frozen=True)
class Decision:
    """What to do with one declared or tracked instance, and why."""
    op: Op
    reason: str
    desired: Optional[Dict[str, Any]] = None
    existing: Optional[Dict[str, Any]] = None


def changed_keys(desired: Dict[str, Any], existing: Dict[str, Any], keys: List[str]) -> List[str]:
    return [k for k in keys if desired.get(k) != existing.get(k)]


def decide(
    desired: Optional[Dict[str, Any]],
    existing: Optional[Dict[str, Any]],
    *,
    compare_keys: List[str],
) -> Decision:
    """Map the (desired, existing) pair onto an operation.

    ``desired`` is None for an instance that is tracked but no longer
    declared; ``existing`` is None when nothing is tracked or the remote
    object is gone. An UPDATE reason names every tracked key that differs.
    """
    if desired is None:
        if existing is None:
            return Decision(op="NOOP", reason="Neither declared nor tracked")
        return Decision(op="DELETE", reason="No longer declared", existing=existing)

    if existing is None:
        return Decision(op="CREATE", reason="Not tracked", desired=desired)

    differing = changed_keys(desired, existing, compare_keys)
    if differing:
        return Decision(op="UPDATE", reason="Field differs: " + ", ".join(differing),
                        desired=desired, existing=existing)
    return Decision(op="NOOP", reason="Up to date", desired=desired, existing=existing)
