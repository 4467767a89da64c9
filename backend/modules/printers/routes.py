"""FilaBridge — Printer Routes (aggregator)

Sub-router responsibilities:
  routes_crud.py        — Printer CRUD, toolhead names, test-connection
  routes_status.py      — Combined status snapshot, per-printer monitor state
"""

import logging
from fastapi import APIRouter

log = logging.getLogger("filabridge.api")

router = APIRouter()

from modules.printers import (  # noqa: E402
    routes_crud,
    routes_status,
)

router.include_router(routes_crud.router)
router.include_router(routes_status.router)
