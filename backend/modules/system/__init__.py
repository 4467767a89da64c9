MODULE_ID = "system"
MODULE_VERSION = "1.0.0"
MODULE_DESCRIPTION = "Health check and runtime configuration"

ROUTES = [
    "system.routes",           # aggregator
    "system.routes_health",
    "system.routes_config",
]

TABLES = [
    "system_config",
]

PUBLISHES = []

SUBSCRIBES = []

IMPLEMENTS = []

REQUIRES = ["InventoryClient"]

DAEMONS = []


def register(app, registry) -> None:
    """Register the system module routes."""
    from modules.system import routes

    app.include_router(routes.router, prefix="/api")
    app.include_router(routes.router, prefix="/api/v1")
