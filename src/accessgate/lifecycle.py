"""Coordinated shutdown for singletons and background tasks.

Modules register cleanup callbacks via ``register()``; the app lifespan
calls ``shutdown_all()`` and tests call ``reset_all()``.

Created: 2026-10-03
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# name → (shutdown_callback_or_None, reset_callback_or_None)
_registry: dict[str, tuple[Callable | None, Callable | None]] = {}


def register(
    name: str,
    *,
    shutdown: Callable[[], Any] | None = None,
    reset: Callable[[], Any] | None = None,
) -> None:
    """Register lifecycle callbacks under a unique *name*.

    Args:
        name: Identifier such as ``"auth_code_sweeper"``.
        shutdown: Async or sync callable for graceful teardown.
        reset: Sync callable that clears a singleton (for tests).
    """
    _registry[name] = (shutdown, reset)


def unregister(name: str) -> None:
    _registry.pop(name, None)


async def shutdown_all() -> None:
    """Run every shutdown callback, awaiting coroutines.

    A failing callback is logged and does not stop the others.
    """
    for name, (shutdown_cb, _) in list(_registry.items()):
        if shutdown_cb is None:
            continue
        try:
            result = shutdown_cb()
            if asyncio.iscoroutine(result):
                await result
            logger.debug("Shut down %s", name)
        except Exception:
            logger.warning("Error shutting down %s", name, exc_info=True)


def reset_all() -> None:
    for name, (_, reset_cb) in list(_registry.items()):
        if reset_cb is None:
            continue
        try:
            reset_cb()
            logger.debug("Reset %s", name)
        except Exception:
            logger.warning("Error resetting %s", name, exc_info=True)
    _registry.clear()
