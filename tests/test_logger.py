"""
tests/test_logger.py — structlog 설정 + 로그 컨텍스트
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from core.logger import (
    Phase,
    bind_log_context,
    configure_logging,
    ensure_logging,
    get_logger,
    log_context,
)


def _json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.startswith("{")]


def test_log_context_restores_previous_values():
    bind_log_context(batch_id="b1", phase=Phase.BATCH)

    with log_context(url="https://example.com/a", phase=Phase.FETCH):
        ctx = structlog.contextvars.get_contextvars()
        assert ctx == {"batch_id": "b1", "phase": "Fetch", "url": "https://example.com/a"}

    assert structlog.contextvars.get_contextvars() == {"batch_id": "b1", "phase": "Batch"}


def test_bind_ignores_none_values():
    bind_log_context(url=None, strategy="Naver")
    assert structlog.contextvars.get_contextvars() == {"strategy": "Naver"}


def test_json_console_includes_context(capsys):
    configure_logging(level="DEBUG", json_logs=True)

    with log_context(url="https://example.com/a", phase=Phase.FETCH, strategy="General"):
        get_logger("tests").info("fetch_start", attempt=1)

    records = _json_lines(capsys.readouterr().err)
    record = next(r for r in records if r.get("event") == "fetch_start")
    assert record["url"] == "https://example.com/a"
    assert record["phase"] == "Fetch"
    assert record["strategy"] == "General"
    assert record["attempt"] == 1
    assert record["service"] == "news-extractor"
    assert record["level"] == "info"
    assert "@timestamp" in record


def test_rotating_file_log(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    configure_logging(level="INFO", json_logs=True, log_file=True)

    get_logger("tests").warning("browser_disconnected", host_id=3)
    for handler in logging.getLogger().handlers:
        handler.flush()

    lines = (tmp_path / "extractor.log").read_text(encoding="utf-8")
    record = next(r for r in _json_lines(lines) if r.get("message") == "browser_disconnected")
    assert record["host_id"] == 3
    assert record["level"] == "warning"


def test_configured_event_is_tagged_init(capsys):
    configure_logging(level="INFO", json_logs=True)

    records = _json_lines(capsys.readouterr().err)
    record = next(r for r in records if r.get("event") == "logging_configured")
    assert record["phase"] == Phase.INIT
    assert record["file"] == "disabled"


def test_ensure_logging_configures_once(monkeypatch):
    calls: list[tuple] = []
    monkeypatch.setattr(
        "core.logger.configure_logging",
        lambda *args, **kwargs: (calls.append(args), structlog.configure()),
    )

    ensure_logging()
    ensure_logging()

    assert len(calls) == 1
    assert structlog.is_configured()
