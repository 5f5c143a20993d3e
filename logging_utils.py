"""
ToneScope - Logging
Tagged console output shared by the estimators, the engine and the CLI.

Lines read ``[LEVEL][Tag] message | key=value ...``. Tags name the component
that logged (Pitch, Key, Beat, Engine, Capture, Config); untagged records
fall back to ``ToneScope``.
"""
from __future__ import annotations

import logging
from typing import Any

LOGGER_NAME = "tonescope"
DEFAULT_TAG = "ToneScope"

_logger = logging.getLogger(LOGGER_NAME)
if not _logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("[%(levelname)s][%(tag)s] %(message)s"))
    _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)
    # Keep the tagged format out of any root handlers an embedding app installs
    _logger.propagate = False


class _ComponentAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        kwargs.setdefault("extra", {})["tag"] = kwargs.pop("tag", None) or DEFAULT_TAG
        return msg, kwargs


_adapter = _ComponentAdapter(_logger, {})


def _level_value(level: str | None) -> int:
    # Config files written by hand often say WARN
    name = (level or "INFO").upper()
    if name == "WARN":
        name = "WARNING"
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def _format_fields(fields: dict[str, Any]) -> str:
    return " ".join(f"{name}={value}" for name, value in fields.items())


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log ``message`` under a component tag; keyword fields are appended as key=value."""
    if fields:
        message = f"{message} | {_format_fields(fields)}"
    _adapter.log(_level_value(level), message, tag=tag)


def set_log_level(level: str | None) -> None:
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    return logging.getLevelName(_logger.level)
