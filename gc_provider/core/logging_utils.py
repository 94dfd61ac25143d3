"""Logging utilities for gc_provider.

Centralized, dual-channel logging:
- Console handler: INFO/WARNING/ERROR to stderr (human-friendly).
- File handler: level driven by environment (.env), written under ./logs by default,
  with filename pattern: <Workspace>-<Action>-YYYY-MM-HH.log.
- Secret redaction on every handler (tokens, client secrets, passwords).

Two optional sinks mirror the provider settings:
- SDK debug: every HTTP request/response logged by ``gc_provider.sdk`` goes to a
  dedicated file, as text or JSON lines.
- Stack traces: unexpected crashes are appended to a file instead of the console.

This module is idempotent: calling `setup_logging(...)` multiple times reconfigures
the root logger cleanly without duplicating handlers.
"""

from __future__ import annotations

import json
import logging
import os
import re
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

# Default formats
DEF_CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
DEF_FILE_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s "
    "[%(filename)s:%(lineno)d %(funcName)s] - %(message)s"
)

SDK_LOGGER_NAME = "gc_provider.sdk"


class MaskSecretsFilter(logging.Filter):
    """Redact bearer tokens, client secrets and passwords from log records."""

    _patterns = [
        re.compile(r"(Authorization:?\s*['\"]?Bearer\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
        re.compile(r"(Authorization:?\s*['\"]?Basic\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
        re.compile(r"(access_token['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
        re.compile(r"(client_secret['\"]?\s*[=:]\s*['\"]?)([^,\s'\"]+)", re.IGNORECASE),
        re.compile(r"(password['\"]?\s*[=:]\s*['\"]?)([^,\s'\"]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(v) if isinstance(v, str) else v for k, v in record.args.items()}
            else:
                record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; used for the SDK debug file in Json mode."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = getattr(record, "sdk", None)
        if isinstance(extra, dict):
            entry.update(extra)
        return json.dumps(entry, ensure_ascii=False)


def _load_env() -> None:
    """Load environment variables from a .env file at repo root if present."""
    env_path = find_dotenv(usecwd=True) or ""
    if env_path:
        load_dotenv(env_path, override=False)


def _resolve_file_level() -> int:
    """Resolve the numeric level for the *file* handler from environment.

    Precedence:
        1) GC_LOG_FILE_LEVEL
        2) GC_LOG_LEVEL
        3) DEBUG
    """
    lvl_name = (
        os.getenv("GC_LOG_FILE_LEVEL")
        or os.getenv("GC_LOG_LEVEL")
        or "DEBUG"
    ).upper()
    return getattr(logging, lvl_name, logging.DEBUG)


def _ensure_logs_dir() -> Path:
    """Return the logs directory path, creating it if necessary."""
    p = Path(os.getenv("GC_LOG_DIR") or "./logs")
    p.mkdir(parents=True, exist_ok=True)
    return p


def _build_log_filename(workspace: str, action: str) -> str:
    """Build log file name: <Workspace>-<Action>-YYYY-MM-HH.log"""
    ts = datetime.now().strftime("%Y-%m-%H")
    return f"{workspace}-{action}-{ts}.log"


def setup_logging(
    level: Optional[str] = None,
    *,
    workspace: Optional[str] = None,
    action: Optional[str] = None,
) -> Optional[Path]:
    """Configure the root logger with console + optional file handlers.

    Args:
        level: Fallback for the root threshold; handler levels are managed
               independently (console/file).
        workspace: Name used as the log filename prefix (usually the desired
               document stem).
        action: CLI subcommand (e.g., 'apply') for the log filename.

    Returns:
        The log file path when a file handler was installed, else None.
    """
    _load_env()
    logging.captureWarnings(True)

    console_level = logging.INFO
    file_level = _resolve_file_level()

    # Root level must be the minimum so that no handler is starved by root filter
    root_level_name = (level or os.getenv("GC_LOG_LEVEL") or "DEBUG").upper()
    root_level_from_level = getattr(logging, root_level_name, logging.DEBUG)
    root_level = min(console_level, file_level, root_level_from_level)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    mask = MaskSecretsFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(DEF_CONSOLE_FORMAT))
    console_handler.addFilter(mask)
    root.addHandler(console_handler)

    logfile: Optional[Path] = None
    if workspace and action:
        logfile = _ensure_logs_dir() / _build_log_filename(workspace, action)
        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(DEF_FILE_FORMAT))
        file_handler.addFilter(mask)
        root.addHandler(file_handler)

    root.setLevel(root_level)
    return logfile


def setup_sdk_debug_logging(file_path: str, fmt: str = "Text") -> Path:
    """Send every request/response logged on ``gc_provider.sdk`` to *file_path*.

    Args:
        file_path: Target file; parent directories are created.
        fmt: ``"Text"`` or ``"Json"``.
    """
    path = Path(file_path)
    if path.parent and str(path.parent) not in ("", "."):
        path.parent.mkdir(parents=True, exist_ok=True)

    sdk_log = logging.getLogger(SDK_LOGGER_NAME)
    for h in list(sdk_log.handlers):
        sdk_log.removeHandler(h)
        h.close()

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    if fmt == "Json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEF_FILE_FORMAT))
    handler.addFilter(MaskSecretsFilter())
    sdk_log.addHandler(handler)
    sdk_log.setLevel(logging.DEBUG)
    return path


def record_stack_trace(file_path: str, exc: BaseException) -> None:
    """Append the traceback of *exc* to *file_path*."""
    path = Path(file_path)
    if str(path.parent) not in ("", "."):
        path.parent.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(f"--- {stamp} {type(exc).__name__}: {exc}\n")
        fh.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
        fh.write("\n")


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a child logger with the given name."""
    return logging.getLogger(name or "gc_provider")
