"""
practice_engines.tracer -- engine invocation tracer emitting PRACTICE_ENGINE_TRACE.

Responsibility:
    Provide the ``@traced_engine`` decorator, which wraps a pure engine
    call with one structured log record carrying engine_name,
    engine_version, an input fingerprint (SHA-256 prefix of selected
    keyword arguments) and duration_ms.

Architecture position:
    Engines -- support for the pure calculation layer.  Only emits a log
    record; never mutates inputs.

Usage:
    from practice_engines.tracer import traced_engine

    @traced_engine("period_planner", "1.0", fingerprint_fields=("today",))
    def plan_periods(*, first_window, rules, today, ...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from datetime import date
from enum import Enum
from typing import Any

_logger = logging.getLogger("practice_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Produce a stable string for fingerprinting.

    Dicts are sorted by key, sequences keep their order, enums use their
    value and dates use ISO format.  Unknown types fall back to ``str``.
    """
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """Deterministic 16-hex-char fingerprint of the named keyword arguments.

    Missing fields are recorded as "null".
    """
    parts = [f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields]
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits PRACTICE_ENGINE_TRACE for engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "period_planner").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Keyword argument names hashed into the
            input fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                fp = compute_input_fingerprint(fingerprint_fields, kwargs)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "PRACTICE_ENGINE_TRACE",
                extra={
                    "trace_type": "PRACTICE_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
