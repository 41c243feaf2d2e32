"""Singleton lifecycle registry.

Module-level singletons (store, authorization server, webhook engine...)
register here so the API lifespan can close them and tests can drop them.

Created: 2026-03-02
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# name -> (shutdown, reset)
_registry: dict[str, tuple[Callable[[], Any] | None, Callable[[], Any] | None]] = {}


def register(
    name: str,
    *,
    shutdown: Callable[[], Any] | None = None,
    reset: Callable[[], Any] | None = None,
) -> None:
    """Register lifecycle callbacks for a singleton.

    Args:
        name: Unique key, e.g. ``"oauth_store"``. Re-registering replaces it.
        shutdown: Sync or async callable run by ``shutdown_all()``.
        reset: Sync callable run by ``reset_all()``.
    """
    _registry[name] = (shutdown, reset)


def registered() -> list[str]:
    return sorted(_registry)


async def shutdown_all() -> None:
    """Run every shutdown callback. One failing callback does not stop the rest."""
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
    """Run every reset callback and clear the registry."""
    for name, (_, reset_cb) in list(_registry.items()):
        if reset_cb is None:
            continue
        try:
            reset_cb()
        except Exception:
            logger.warning("Error resetting %s", name, exc_info=True)
    _registry.clear()
