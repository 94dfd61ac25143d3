# gc_provider/main.py
"""CLI — plan / apply / destroy a desired-state document against the platform.

Resource types declare themselves in `gc_provider/resources/registry.py`; the
applier drives them and `print_rows` reports one row per instance.
"""
from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
import yaml

from .core.applier import Applier, ApplyResult
from .core.config import DesiredDocument, ProviderSettings, load_document
from .core.errors import (
    ApiError,
    ConfigError,
    ConsistencyError,
    ResourceApiError,
    RetryTimeoutError,
    ValidationError,
)
from .core.logging_utils import get_logger, record_stack_trace, setup_logging
from .core.provider import configure
from .core.state import StateStore
from .resources.outbound_ruleset import OutboundRulesetDataSource
from .resources.registry import get_resource_spec, iter_specs
from .utils.reporting import print_rows

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_VALIDATION_ERROR = 3
EXIT_NETWORK_ERROR = 4
EXIT_TIMEOUT_ERROR = 5

DEFAULT_CONFIG = "gc_provider.yml"
DEFAULT_STATE = "gc_provider.state.json"

log = get_logger(__name__)


def exit_code_for(exc: BaseException) -> int:
    """Map an error family to the process exit code."""
    if isinstance(exc, ConfigError):
        return EXIT_CONFIG_ERROR
    if isinstance(exc, ValidationError):
        return EXIT_VALIDATION_ERROR
    if isinstance(exc, (RetryTimeoutError, ConsistencyError)):
        return EXIT_TIMEOUT_ERROR
    if isinstance(exc, (ApiError, ResourceApiError, requests.RequestException)):
        return EXIT_NETWORK_ERROR
    return EXIT_GENERIC_ERROR


def _load_document_if_present(path: str, required: bool) -> Optional[DesiredDocument]:
    if required or Path(path).is_file():
        return load_document(path)
    return None


def _prepare_context(args, *, require_document: bool) -> tuple:
    """Resolve the desired document, settings and provider context.

    Returns:
        (document or None, settings, meta)
    """
    document = _load_document_if_present(args.config, require_document)
    workspace = document.workspace if document else Path(args.config).stem
    setup_logging(workspace=workspace, action=args.command)

    settings = ProviderSettings.from_env(document.provider if document else None)
    args.settings = settings
    meta = configure(settings)
    return document, settings, meta


def _report(result: ApplyResult, fmt: str) -> int:
    print_rows(result.rows, fmt)
    if result.any_error:
        log.error("%d operation(s) failed; see rows above.", len(result.errors))
        return exit_code_for(result.errors[0])
    return EXIT_OK


def _sanitize_label(name: str) -> str:
    label = re.sub(r"[^A-Za-z0-9_]+", "_", name.strip()).strip("_").lower()
    if not label or label[0].isdigit():
        label = f"sg_{label}"
    return label


# ----------------------------- Command handlers -----------------------------

def cmd_plan(args) -> int:
    document, _, meta = _prepare_context(args, require_document=True)
    try:
        applier = Applier(meta, document, StateStore.load(args.state))
        return _report(applier.apply(dry_run=True), args.format)
    finally:
        meta.close()


def cmd_apply(args) -> int:
    document, _, meta = _prepare_context(args, require_document=True)
    try:
        applier = Applier(meta, document, StateStore.load(args.state))
        return _report(applier.apply(dry_run=args.dry_run), args.format)
    finally:
        meta.close()


def cmd_destroy(args) -> int:
    document, _, meta = _prepare_context(args, require_document=False)
    document = document or DesiredDocument(path=Path(args.config), provider={}, resources={}, data={})
    try:
        applier = Applier(meta, document, StateStore.load(args.state))
        return _report(applier.destroy(dry_run=args.dry_run), args.format)
    finally:
        meta.close()


def cmd_export(args) -> int:
    _, _, meta = _prepare_context(args, require_document=False)
    try:
        spec = get_resource_spec(args.type)
        resource = spec.load_class()(meta)
        exported = resource.get_all()
    finally:
        meta.close()

    rows: List[Dict[str, Any]] = []
    block: Dict[str, Dict[str, Any]] = {}
    for res_id, name in sorted(exported.items(), key=lambda kv: kv[1]):
        label = _sanitize_label(name)
        while label in block:
            label = f"{label}_"
        block[label] = {"name": name}
        rows.append({"resource": spec.key, "label": label, "name": name, "id": res_id,
                     "action": "export", "status": "Success"})

    if args.output:
        with open(args.output, "w", encoding="utf-8") as fh:
            yaml.safe_dump({"resources": {spec.key: block}}, fh, sort_keys=False)
        log.info("Exported %d %s instance(s) to %s", len(block), spec.key, args.output)

    print_rows(rows, args.format)
    return EXIT_OK


def cmd_lookup_ruleset(args) -> int:
    _, _, meta = _prepare_context(args, require_document=False)
    try:
        data = OutboundRulesetDataSource(meta).read({"name": args.name})
    finally:
        meta.close()
    print_rows([{"resource": "data.outbound_ruleset", "label": args.name, "name": args.name,
                 "id": data.id, "action": "read", "status": "resolved"}], args.format)
    return EXIT_OK


# ---------------------------- Argument parser -------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gc-provider", description="Genesys Cloud desired-state provider")
    parser.add_argument(
        "--config",
        default=os.getenv("GC_CONFIG_FILE", DEFAULT_CONFIG),
        help="Desired-state YAML (default: $GC_CONFIG_FILE or gc_provider.yml)",
    )
    parser.add_argument(
        "--state",
        default=os.getenv("GC_STATE_FILE", DEFAULT_STATE),
        help="State file (default: $GC_STATE_FILE or gc_provider.state.json)",
    )
    parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sp = subparsers.add_parser("plan", help="Show what apply would change")
    sp.set_defaults(func=cmd_plan)

    sp = subparsers.add_parser("apply", help="Create, update and delete instances to match the document")
    sp.add_argument("--dry-run", action="store_true", help="Dry run mode, no changes made")
    sp.set_defaults(func=cmd_apply)

    sp = subparsers.add_parser("destroy", help="Delete every tracked instance")
    sp.add_argument("--dry-run", action="store_true", help="Dry run mode, no changes made")
    sp.set_defaults(func=cmd_destroy)

    sp = subparsers.add_parser("export", help="List remote instances (optionally as a YAML document)")
    exportable = [s for s in iter_specs() if s.kind == "resource"]
    sp.add_argument(
        "--type",
        default="routing_skill_group",
        choices=[s.key for s in exportable],
        help="Resource type to export (" + ", ".join(f"{s.key}: {s.help}" for s in exportable) + ")",
    )
    sp.add_argument("--output", help="Write a desired-state YAML skeleton to this file")
    sp.set_defaults(func=cmd_export)

    sp = subparsers.add_parser("lookup-ruleset", help="Resolve an outbound ruleset ID by name")
    sp.add_argument("--name", required=True, help="Exact ruleset name")
    sp.set_defaults(func=cmd_lookup_ruleset)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except ConfigError as exc:
        log.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR
    except ValidationError as exc:
        log.error("Validation error: %s", exc)
        return EXIT_VALIDATION_ERROR
    except (RetryTimeoutError, ConsistencyError) as exc:
        log.error("Timeout: %s", exc)
        return EXIT_TIMEOUT_ERROR
    except (ApiError, ResourceApiError, requests.RequestException) as exc:
        log.error("Network/HTTP error: %s", exc)
        return EXIT_NETWORK_ERROR
    except Exception as exc:
        settings = getattr(args, "settings", None)
        if settings is not None and settings.log_stack_traces:
            record_stack_trace(settings.log_stack_traces_file_path, exc)
            log.error("Unexpected error: %s (stack trace written to %s)",
                      exc, settings.log_stack_traces_file_path)
        else:
            log.error("Unexpected error: %s", exc, exc_info=True)
        return EXIT_GENERIC_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
