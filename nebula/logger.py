"""Configuration of a standard library logger from the ``logging`` settings."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import Any, Mapping

TRACE = 5
PANIC = logging.CRITICAL + 10

_LEVELS = {
    "panic": PANIC,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}
_ALL_LEVELS = ("panic", "fatal", "error", "warning", "info", "debug", "trace")
_LEVEL_NAMES = (
    (PANIC, "panic"),
    (logging.CRITICAL, "fatal"),
    (logging.ERROR, "error"),
    (logging.WARNING, "warning"),
    (logging.INFO, "info"),
    (logging.DEBUG, "debug"),
)
_FORMATS = ("text", "json")
_RESERVED_KEYS = ("time", "level", "msg")
_BARE_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-._/@^+")


class LoggerConfigError(ValueError):
    """Raised when the logging settings cannot be applied."""


def _lookup(settings: Mapping[str, Any], key: str, default: Any) -> Any:
    node: Any = settings
    for part in key.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return default if node is None else node


def _lookup_bool(settings: Mapping[str, Any], key: str, default: bool) -> bool:
    value = _lookup(settings, key, default)
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "t", "true", "y", "yes"):
        return True
    if text in ("0", "f", "false", "n", "no"):
        return False
    return default


def _level_name(levelno: int) -> str:
    for threshold, name in _LEVEL_NAMES:
        if levelno >= threshold:
            return name
    return "trace"


class _StructuredFormatter(logging.Formatter):
    def __init__(self, timestamp_format: str | None, disable_timestamp: bool) -> None:
        super().__init__()
        self.timestamp_format = timestamp_format
        self.disable_timestamp = disable_timestamp

    def _timestamp(self, record: logging.LogRecord) -> str:
        moment = datetime.fromtimestamp(record.created).astimezone()
        if self.timestamp_format:
            return moment.strftime(self.timestamp_format)
        return moment.isoformat(timespec="seconds")

    def _entries(self, record: logging.LogRecord) -> dict[str, Any]:
        entries: dict[str, Any] = {}
        for key, value in (getattr(record, "fields", None) or {}).items():
            entries[f"fields.{key}" if key in _RESERVED_KEYS else key] = value
        if record.exc_info and record.exc_info[1] is not None:
            entries["error"] = str(record.exc_info[1])
        if not self.disable_timestamp:
            entries["time"] = self._timestamp(record)
        entries["level"] = _level_name(record.levelno)
        entries["msg"] = record.getMessage()
        return entries


def _quote(value: Any) -> str:
    text = value if isinstance(value, str) else str(value)
    if text and all(ch in _BARE_CHARS for ch in text):
        return text
    return json.dumps(text, ensure_ascii=False)


class TextFormatter(_StructuredFormatter):
    """Writes ``key=value`` lines: time, level, msg, then sorted fields."""

    def __init__(
        self, timestamp_format: str | None, full_timestamp: bool, disable_timestamp: bool
    ) -> None:
        super().__init__(timestamp_format, disable_timestamp)
        self.full_timestamp = full_timestamp

    def format(self, record: logging.LogRecord) -> str:
        entries = self._entries(record)
        head = [key for key in _RESERVED_KEYS if key in entries]
        rest = sorted(key for key in entries if key not in _RESERVED_KEYS)
        return " ".join(f"{key}={_quote(entries[key])}" for key in head + rest)


class JsonFormatter(_StructuredFormatter):
    """Writes one JSON object per record with sorted keys."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self._entries(record), sort_keys=True, default=str)


def configure_logger(logger: logging.Logger, settings: Mapping[str, Any]) -> None:
    """Apply ``logging.level``, ``logging.format`` and the timestamp options.

    ``settings`` is the nested configuration mapping. ``timestamp_format`` is
    an ``strftime`` pattern; when unset, RFC 3339 timestamps are written.
    """
    level_name = str(_lookup(settings, "logging.level", "info")).lower()
    level = _LEVELS.get(level_name)
    if level is None:
        raise LoggerConfigError(
            f'not a valid level: "{level_name}"; possible levels: [{" ".join(_ALL_LEVELS)}]'
        )
    logger.setLevel(level)

    disable_timestamp = _lookup_bool(settings, "logging.disable_timestamp", False)
    timestamp_format = str(_lookup(settings, "logging.timestamp_format", ""))
    full_timestamp = timestamp_format != ""

    log_format = str(_lookup(settings, "logging.format", "text")).lower()
    formatter: logging.Formatter
    if log_format == "text":
        formatter = TextFormatter(timestamp_format or None, full_timestamp, disable_timestamp)
    elif log_format == "json":
        formatter = JsonFormatter(timestamp_format or None, disable_timestamp)
    else:
        raise LoggerConfigError(
            f"unknown log format `{log_format}`. possible formats: [{' '.join(_FORMATS)}]"
        )

    if not logger.handlers:
        logger.addHandler(logging.StreamHandler(sys.stderr))
    for handler in logger.handlers:
        handler.setFormatter(formatter)