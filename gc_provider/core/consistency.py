"""
Consistency checker: detect read-after-write lag in the remote platform.

After a create/update, the handler builds a :class:`ConsistencyCheck` from the
attributes it just wrote. Every subsequent read inside the retry loop calls
:meth:`ConsistencyCheck.check_state`; a mismatch raises RetryableError so the
loop re-reads until the platform converges (or the window closes).
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ConsistencyError, RetryableError
from .logging_utils import get_logger

log = get_logger(__name__)


def _normalize(value: Any, *, as_json: bool) -> Any:
    if value is None or value == "":
        return None
    if as_json and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    if isinstance(value, (list, tuple)):
        return list(value)
    return value


@dataclass
class ConsistencyCheck:
    """Compare tracked fields of a freshly read state with what was written.

    Attributes:
        resource_name: Used in error messages.
        expected: Attributes just written; empty/None values are not checked
            (the platform computes them).
        tracked_fields: Field names to compare.
        json_fields: Fields holding JSON strings, compared structurally.
        max_checks: Mismatching reads tolerated before giving up.
        enabled: When False, :meth:`check_state` always passes.
    """
    resource_name: str
    expected: Mapping[str, Any]
    tracked_fields: Tuple[str, ...]
    json_fields: Tuple[str, ...] = ()
    max_checks: int = 5
    enabled: bool = True
    checks: int = field(default=0, init=False)

    def mismatches(self, current: Mapping[str, Any]) -> List[Tuple[str, Any, Any]]:
        """Return ``(field, expected, actual)`` for every differing tracked field."""
        out: List[Tuple[str, Any, Any]] = []
        for name in self.tracked_fields:
            as_json = name in self.json_fields
            want = _normalize(self.expected.get(name), as_json=as_json)
            if want is None:
                continue
            got = _normalize(current.get(name), as_json=as_json)
            if want != got:
                out.append((name, want, got))
        return out

    def check_state(self, current: Mapping[str, Any]) -> None:
        """Pass silently when converged.

        Raises:
            RetryableError: On a mismatch while checks remain.
            ConsistencyError: On a mismatch after ``max_checks`` reads.
        """
        if not self.enabled:
            return
        diffs = self.mismatches(current)
        if not diffs:
            if self.checks:
                log.debug("consistency: %s converged after %d check(s)", self.resource_name, self.checks)
            return

        self.checks += 1
        detail = "; ".join(f"{k}: expected {w!r}, got {g!r}" for k, w, g in diffs)
        if self.checks >= self.max_checks:
            raise ConsistencyError(
                f"mismatch after {self.checks} check(s): {detail}", resource_name=self.resource_name
            )
        log.debug("consistency: %s not converged (check %d/%d): %s",
                  self.resource_name, self.checks, self.max_checks, detail)
        raise RetryableError(ConsistencyError(f"state not yet consistent: {detail}",
                                              resource_name=self.resource_name))


def new_consistency_check(
    resource_name: str,
    expected: Mapping[str, Any],
    tracked_fields: Iterable[str],
    *,
    json_fields: Iterable[str] = (),
    max_checks: int = 5,
    enabled: bool = True,
) -> ConsistencyCheck:
    return ConsistencyCheck(
        resource_name=resource_name,
        expected=dict(expected),
        tracked_fields=tuple(tracked_fields),
        json_fields=tuple(json_fields),
        max_checks=max_checks,
        enabled=enabled,
    )


def optional_check(check: Optional[ConsistencyCheck], current: Dict[str, Any]) -> None:
    if check is not None:
        check.check_state(current)
