"""
Member-division differ for skill groups.

Computes the add/remove lists that bring a skill group's visible divisions
from ``current`` to ``desired``:

* ``["*"]`` means every division in the organization and may not be combined
  with anything else.
* a concrete list on create adds everything; on update it is a set difference.
* an empty list removes every current member.

The result feeds a single add/remove call, skipped when both lists are empty.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from ..core.errors import ValidationError

WILDCARD = "*"


@dataclass(frozen=True)
class MembershipPlan:
    """Disjoint lists of division IDs to add and to remove."""
    add: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.add and not self.remove


def _unique(ids: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def all_divisions_specified(desired: Sequence[str]) -> bool:
    return WILDCARD in desired


def validate_member_division_ids(desired: Sequence[str], resource_name: str = "") -> None:
    """Raise ValidationError when the wildcard is mixed with other entries."""
    if all_divisions_specified(desired) and len(desired) > 1:
        raise ValidationError(
            'member_division_ids should not contain more than one item when the value of an item is "*"',
            resource_name=resource_name,
        )


def plan_member_divisions(
    desired: Sequence[str],
    current: Sequence[str],
    is_create: bool,
    list_all_divisions: Callable[[], Iterable[str]],
    *,
    resource_name: str = "",
) -> MembershipPlan:
    """Compute the membership change for a skill group.

    Args:
        desired: Configured division IDs (may be ``["*"]``).
        current: Division IDs currently assigned on the platform.
        is_create: True right after the skill group was created.
        list_all_divisions: Enumerates every division ID; only called for ``"*"``.

    Raises:
        ValidationError: When ``"*"`` is combined with other entries.
    """
    validate_member_division_ids(desired, resource_name)
    current_ids = _unique(current)

    if all_divisions_specified(desired):
        everything = _unique(list_all_divisions())
        if is_create:
            return MembershipPlan(add=everything, remove=[])
        assigned = set(current_ids)
        return MembershipPlan(add=[d for d in everything if d not in assigned], remove=[])

    desired_ids = _unique(desired)
    if desired_ids:
        if is_create:
            return MembershipPlan(add=desired_ids, remove=[])
        wanted, assigned = set(desired_ids), set(current_ids)
        return MembershipPlan(
            add=[d for d in desired_ids if d not in assigned],
            remove=[d for d in current_ids if d not in wanted],
        )

    # Empty list: clear membership
    return MembershipPlan(add=[], remove=current_ids)


def exclude_home_division(plan: MembershipPlan, home_division_id: Optional[str]) -> MembershipPlan:
    """A skill group always stays visible in its own division."""
    if not home_division_id or home_division_id not in plan.remove:
        return plan
    return MembershipPlan(add=list(plan.add), remove=[d for d in plan.remove if d != home_division_id])
