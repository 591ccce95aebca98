"""Logging setup and call-logging decorators for the client and store layers."""

from __future__ import annotations

import functools
import inspect
import logging
import os
import threading
import time
from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

LOGGER_NAME = "racehistory"
API_LOGGER_NAME = "racehistory.api"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False
_configure_lock = threading.Lock()


def configure_logging(level: str | int = "INFO", log_file: str | None = None) -> logging.Logger:
    """Attach handlers to the package logger. Safe to call more than once."""
    global _configured
    logger = logging.getLogger(LOGGER_NAME)

    with _configure_lock:
        logger.setLevel(level.upper() if isinstance(level, str) else level)
        if _configured:
            return logger

        formatter = logging.Formatter(LOG_FORMAT)
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        logger.addHandler(stream)

        if log_file is not None:
            os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
            handler = logging.FileHandler(log_file, encoding="utf-8")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.propagate = False
        _configured = True

    return logger


_SECRET_NAMES = frozenset({"code", "code_verifier", "password"})


def _is_secret_name(name: str) -> bool:
    lowered = name.lower()
    return "token" in lowered or "secret" in lowered or lowered in _SECRET_NAMES


def _describe_args(
    signature: inspect.Signature, args: tuple[Any, ...], kwargs: dict[str, Any]
) -> str:
    # Credentials are dropped by parameter name, whatever their value looks like
    try:
        bound = signature.bind(*args, **kwargs)
    except TypeError:
        return "<unbindable arguments>"

    parts: list[str] = []
    for name, value in bound.arguments.items():
        if name in ("self", "cls") or _is_secret_name(name):
            continue
        kind = signature.parameters[name].kind
        if kind is inspect.Parameter.VAR_POSITIONAL:
            parts += [repr(v) for v in value]
        elif kind is inspect.Parameter.VAR_KEYWORD:
            parts += [f"{k}={v!r}" for k, v in value.items() if not _is_secret_name(k)]
        elif name in kwargs:
            parts.append(f"{name}={value!r}")
        else:
            parts.append(repr(value))
    return ", ".join(parts)


def log_api_call(fn: F) -> F:
    """Decorator that logs upstream client calls to the API logger."""
    signature = inspect.signature(fn)

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger = logging.getLogger(API_LOGGER_NAME)
        arg_str = _describe_args(signature, args, kwargs)
        logger.debug("CALL: %s(%s)", fn.__qualname__, arg_str)

        start = time.monotonic()
        try:
            result = fn(*args, **kwargs)
            elapsed = time.monotonic() - start
            count = len(result) if isinstance(result, (list, dict)) else 1
            logger.info(
                "OK: %s(%s) -> %d items (%.3fs)",
                fn.__qualname__, arg_str, count, elapsed,
            )
            return result
        except Exception as exc:
            elapsed = time.monotonic() - start
            logger.error(
                "FAIL: %s(%s) -> %s: %s (%.3fs)",
                fn.__qualname__, arg_str, type(exc).__name__, exc, elapsed,
            )
            raise

    return wrapper  # type: ignore[return-value]


def log_service_call(fn: F) -> F:
    """Decorator that logs coordinator and store operations to the API logger."""
    signature = inspect.signature(fn)

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger = logging.getLogger(API_LOGGER_NAME)
        arg_str = _describe_args(signature, args, kwargs)
        logger.debug("SERVICE CALL: %s(%s)", fn.__qualname__, arg_str)

        start = time.monotonic()
        try:
            result = fn(*args, **kwargs)
            elapsed = time.monotonic() - start
            logger.debug(
                "SERVICE OK: %s -> %.3fs", fn.__qualname__, elapsed,
            )
            return result
        except Exception as exc:
            elapsed = time.monotonic() - start
            logger.warning(
                "SERVICE FAIL: %s -> %s: %s (%.3fs)",
                fn.__qualname__, type(exc).__name__, exc, elapsed,
            )
            raise

    return wrapper  # type: ignore[return-value]
