"""
Reporting helpers (table or JSON) for applier results.

`print_rows` auto-selects relevant columns and produces a compact table that
fits CLI usage. JSON output is also supported for machine consumption.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

log = logging.getLogger(__name__)


def _normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a raw result row so the table is consistent:
    - status defaults to the action outcome,
    - id shortened only at render time,
    - error trimmed to one line.
    """
    r = dict(row)
    r["status"] = r.get("status") or "—"
    r["id"] = r.get("id") or "—"

    err = r.get("error")
    r["error"] = (str(err).strip().splitlines()[0][:160] if isinstance(err, (str, bytes)) and str(err).strip() else "—")
    return r


def print_rows(rows: List[Dict[str, Any]], fmt: str = "table") -> None:
    """Render applier result rows as a table or JSON.

    Args:
        rows: List of dict rows with common fields (resource, label, id, action).
        fmt: Either ``"table"`` (default) or ``"json"``.
    """
    norm_rows = [_normalize_row(r) for r in rows]

    if fmt == "json":
        print(json.dumps(norm_rows, indent=2))
        return

    def _present(v) -> bool:
        return not (v is None or v == "" or v == "—")

    candidates = ["resource", "label", "name", "id", "action", "reason", "status", "error"]
    mandatory = {"resource", "label", "action", "status"}

    cols: List[str] = []
    for c in candidates:
        if (c in mandatory) or any(_present(r.get(c)) for r in norm_rows):
            cols.append(c)

    def _fmt(v, col):
        s = "" if v is None else str(v)
        if col == "id" and len(s) > 16:
            return f"{s[:8]}…{s[-4:]}"
        if s == "":
            return "—"
        return s

    if not norm_rows:
        log.info("reporting: nothing to report")

    widths = {c: len(c) for c in cols}
    for r in norm_rows:
        for c in cols:
            widths[c] = max(widths[c], len(_fmt(r.get(c), c)))

    header = "| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |"
    sep = "| " + " | ".join("-" * widths[c] for c in cols) + " |"
    print(header)
    print(sep)
    for r in norm_rows:
        print("| " + " | ".join(_fmt(r.get(c), c).ljust(widths[c]) for c in cols) + " |")
