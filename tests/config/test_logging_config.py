from __future__ import annotations

import logging

import pytest

from keyrecon.config import configure_logging


def test_configure_logging_passes_format_to_basic_config(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    configure_logging(level=logging.DEBUG, force=True)

    assert captured["level"] == logging.DEBUG
    assert captured["force"] is True
    assert captured["format"] == "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def test_configure_logging_defaults_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    configure_logging()

    assert captured["level"] == logging.INFO
    assert captured["force"] is False
