import logging

import pytest

from gc_provider.core.logging_utils import MaskSecretsFilter, record_stack_trace, setup_logging


def _record(msg, *args):
    return logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)


def test_mask_bearer_token_and_secrets():
    rec = _record("Authorization: Bearer abc.def-123 client_secret=s3cr3t password: hunter2")
    MaskSecretsFilter().filter(rec)
    assert "abc.def-123" not in rec.msg
    assert "s3cr3t" not in rec.msg
    assert "hunter2" not in rec.msg
    assert rec.msg.count("***REDACTED***") == 3


def test_mask_applies_to_args():
    rec = _record("token %s", "access_token=xyz")
    MaskSecretsFilter().filter(rec)
    assert rec.getMessage() == "token access_token=***REDACTED***"


def test_setup_logging_writes_file(tmp_path, monkeypatch, restore_root_logger):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GC_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("GC_LOG_FILE_LEVEL", "INFO")

    logfile = setup_logging(workspace="prod", action="apply")
    setup_logging(workspace="prod", action="apply")  # idempotent
    logging.getLogger("gc_provider.test").info("hello Authorization: Bearer abcdef")
    logging.getLogger("gc_provider.test").debug("not in file")

    assert logfile is not None and logfile.name.startswith("prod-apply-")
    file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1
    file_handlers[0].flush()
    text = logfile.read_text(encoding="utf-8")
    assert "hello Authorization: Bearer ***REDACTED***" in text
    assert "not in file" not in text


def test_setup_logging_without_workspace_has_no_file(tmp_path, monkeypatch, restore_root_logger):
    monkeypatch.chdir(tmp_path)
    assert setup_logging() is None


def test_record_stack_trace(tmp_path):
    target = tmp_path / "traces" / "stack.log"
    try:
        raise RuntimeError("boom")
    except RuntimeError as exc:
        record_stack_trace(str(target), exc)
    text = target.read_text(encoding="utf-8")
    assert "RuntimeError: boom" in text
    assert "Traceback" in text
