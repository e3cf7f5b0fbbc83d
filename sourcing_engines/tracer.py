"""
``@traced_engine``: one SOURCING_ENGINE_TRACE log record per engine call.

The record names the engine and its version, how long the call took, and a
16-character fingerprint of the keyword arguments listed in
``fingerprint_fields``.  Two calls with equal inputs carry equal
fingerprints, so a suggestion shown to a buyer can be matched to the
catalog it was computed from.

Engines stay pure; the tracer only logs.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from sourcing_kernel.utils.hashing import hash_payload

_logger = logging.getLogger("sourcing_kernel.engines.tracer")

F = TypeVar("F", bound=Callable[..., Any])

TRACE_MESSAGE = "SOURCING_ENGINE_TRACE"


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def input_fingerprint(fields: tuple[str, ...], kwargs: dict[str, Any]) -> str:
    """Fingerprint of the named kwargs; absent ones count as null."""
    return hash_payload({name: _plain(kwargs.get(name)) for name in fields})[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            started = time.perf_counter()
            result = func(*args, **kwargs)
            _logger.info(
                TRACE_MESSAGE,
                extra={
                    "trace_type": TRACE_MESSAGE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
