MODULE_ID = "reconciliation"
MODULE_VERSION = "1.0.0"
MODULE_DESCRIPTION = "Usage extraction, Spoolman usage reconciliation, usage and error ledgers"

ROUTES = [
    "reconciliation.routes",
]

TABLES = [
    "usage_events",
    "reconciliation_errors",
]

PUBLISHES = [
    "print.completed",
    "print.reconcile_failed",
    "print.error_acknowledged",
]

SUBSCRIBES = []

IMPLEMENTS = ["Reconciler"]

REQUIRES = ["BindingStore", "InventoryClient"]

DAEMONS = []


def register(app, registry) -> None:
    """Register the reconciliation module: routes and the Reconciler."""
    from core.db import SessionLocal
    from modules.reconciliation import routes
    from modules.reconciliation.reconciler import Reconciler

    app.include_router(routes.router, prefix="/api")
    app.include_router(routes.router, prefix="/api/v1")

    reconciler = Reconciler(
        SessionLocal,
        registry.require("BindingStore"),
        lambda: registry.require("InventoryClient"),
    )
    registry.register_provider("Reconciler", reconciler)
