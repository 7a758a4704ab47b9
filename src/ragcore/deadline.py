"""Deadline enforcement for external capability calls."""

from __future__ import annotations

import contextvars
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CapabilityTimeoutError(TimeoutError):
    """Raised when an embedding, completion or search call misses its deadline."""


class CapabilityRunner:
    """Runs capability calls inline or on a dedicated thread under a timeout.

    A call without an effective timeout runs on the caller's thread. A timed
    call gets its own daemon thread, so a call that overran its deadline never
    delays the next one; the thread is abandoned, not interrupted, when the
    deadline passes.
    """

    def __init__(self, default_timeout: float | None = None) -> None:
        self._default_timeout = default_timeout

    def call(
        self,
        name: str,
        func: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        effective = self._default_timeout if timeout is None else timeout
        if effective is None or effective <= 0:
            return func(*args, **kwargs)

        future: Future[T] = Future()

        def _run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                result = func(*args, **kwargs)
            except BaseException as exc:  # handed back to the caller below
                future.set_exception(exc)
            else:
                future.set_result(result)

        # the worker sees the caller's context vars, including the correlation id
        context = contextvars.copy_context()
        threading.Thread(target=context.run, args=(_run,), name=f"ragcore-{name}", daemon=True).start()
        try:
            return future.result(timeout=effective)
        except FutureTimeoutError as exc:
            LOGGER.warning("Capability %s exceeded %.2fs deadline", name, effective)
            raise CapabilityTimeoutError(f"{name} exceeded {effective:.2f}s deadline") from exc


__all__ = ["CapabilityRunner", "CapabilityTimeoutError"]
