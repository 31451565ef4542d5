from __future__ import annotations

import os
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

DEBUG_ENV_VAR = "FOLIO_DEBUG"

_DEBUG_LOG = os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in {"1", "true", "yes", "on"}


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[folio debug] {message}")


def decode_request_path(full_path: str) -> str:
    """Percent-decode the path of a request target; the query string is kept as sent."""
    path, sep, query = full_path.partition("?")
    return unquote(path, encoding="utf-8", errors="replace") + sep + query


class BookPathAccessFormatter(UvicornAccessFormatter):
    """Access log formatter that shows book ids (EPUB file names) unescaped."""

    def formatMessage(self, record):  # type: ignore[override]
        args = record.args
        if isinstance(args, tuple) and len(args) == 5 and isinstance(args[2], str):
            record = copy(record)
            record.args = args[:2] + (decode_request_path(args[2]),) + args[3:]
        return super().formatMessage(record)


def build_uvicorn_log_config(*, debug: bool | None = None) -> dict[str, Any]:
    """uvicorn logging config using BookPathAccessFormatter.

    uvicorn's loggers drop to DEBUG when ``debug`` is set, or when it is left
    as None and folio debug logging is on.
    """
    config = deepcopy(LOGGING_CONFIG)
    config["formatters"]["access"]["()"] = f"{__name__}.BookPathAccessFormatter"
    if _DEBUG_LOG if debug is None else debug:
        for logger in config["loggers"].values():
            logger["level"] = "DEBUG"
    return config


__all__ = [
    "BookPathAccessFormatter",
    "build_uvicorn_log_config",
    "decode_request_path",
    "debug_enabled",
    "debug_log",
    "set_debug_logging",
]
