"""FilaBridge — System Routes (aggregator)

Sub-router responsibilities:
  routes_health.py      — Health check (Spoolman reachability, monitor status)
  routes_config.py      — Runtime configuration get/update
"""

import logging
from fastapi import APIRouter

log = logging.getLogger("filabridge.api")

router = APIRouter()

from modules.system import (  # noqa: E402
    routes_health,
    routes_config,
)

router.include_router(routes_health.router)
router.include_router(routes_config.router)

# Re-export health_check so core/app.py can call system.health_check()
# (core/app.py registers a root /health handler that delegates here)
from modules.system.routes_health import health_check  # noqa: F401, E402
