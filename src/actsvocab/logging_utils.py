from __future__ import annotations

import logging
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote, unquote_plus

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

from .normalize import canonicalize

PACKAGE_LOGGER = "actsvocab"


def set_debug_logging(enabled: bool) -> None:
    """Switch the package loggers between INFO and DEBUG."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if enabled else logging.INFO)
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(name)s] %(levelname)s %(message)s"))
        logger.addHandler(handler)


def _readable_target(target: str) -> str:
    """Decode a request target so Greek search terms show as text.

    The query part is decoded form-style (``+`` is a space) and both parts are
    NFC-composed, so ``/api/search?q=%CE%B5%CE%B9%CF%80`` logs as
    ``/api/search?q=ειπ``.
    """
    path, sep, query = target.partition("?")
    readable = unquote(path, encoding="utf-8", errors="replace")
    if sep:
        readable += sep + unquote_plus(query, encoding="utf-8", errors="replace")
    return canonicalize(readable)


class Utf8AccessFormatter(UvicornAccessFormatter):
    """Access lines for chapter and search requests, with the target decoded."""

    def formatMessage(self, record):  # type: ignore[override]
        args = record.args
        if not isinstance(args, tuple) or len(args) != 5 or not isinstance(args[2], str):
            return super().formatMessage(record)
        client_addr, method, target, http_version, status_code = args
        readable = copy(record)
        readable.args = (client_addr, method, _readable_target(target), http_version, status_code)
        return super().formatMessage(readable)


def build_uvicorn_log_config(debug: bool = False) -> dict[str, Any]:
    """Uvicorn logging config with decoded access paths and the package logger wired in."""
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "actsvocab.logging_utils.Utf8AccessFormatter"
    config.setdefault("loggers", {})[PACKAGE_LOGGER] = {
        "handlers": ["default"],
        "level": "DEBUG" if debug else "INFO",
        "propagate": False,
    }
    return config
