# API v1 router aggregation.
# Created: 2026-10-09
#
# mount_v1_routers(app) registers all routers at /api/v1/.

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("accessgate.api.v1.auth", "router", "Auth"),
    ("accessgate.api.v1.oauth2", "router", "OAuth2"),
    ("accessgate.api.v1.well_known", "router", "Discovery"),
    ("accessgate.api.v1.admin", "router", "Admin"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount every v1 router on *app* at ``/api/v1``.

    Import errors propagate; a half-mounted auth server is worse than none.
    """
    for module_path, attr_name, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        app.include_router(getattr(mod, attr_name), prefix="/api/v1")
        logger.debug("Mounted v1 router: %s (%s)", module_path, tag)
