# API v1 router aggregation.
# Created: 2026-03-02
#
# mount_v1_routers(app) registers every domain router under /api/v1 and the
# RFC 8414 discovery document at the site root.

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, prefix)
    ("tokenwarden.api.v1.oauth2", "router", API_PREFIX),
    ("tokenwarden.api.v1.oauth2", "well_known_router", ""),
    ("tokenwarden.api.v1.clients", "router", API_PREFIX),
    ("tokenwarden.api.v1.webhooks", "router", API_PREFIX),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 routers on *app*. A router that fails to import is fatal."""
    for module_path, attr_name, prefix in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        app.include_router(getattr(mod, attr_name), prefix=prefix)
        logger.debug("Mounted %s.%s at %r", module_path, attr_name, prefix or "/")
