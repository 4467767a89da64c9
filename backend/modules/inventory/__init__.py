MODULE_ID = "inventory"
MODULE_VERSION = "1.0.0"
MODULE_DESCRIPTION = "Spoolman client, spool and filament listings, location catalogue"

ROUTES = [
    "inventory.routes",
]

TABLES = [
    "locations",
]

PUBLISHES = [
    "inventory.locations_synced",
]

SUBSCRIBES = []

IMPLEMENTS = ["InventoryClient", "LocationService"]

REQUIRES = []

DAEMONS = []


def build_client(settings):
    from modules.inventory.spoolman import SpoolmanClient
    return SpoolmanClient.from_settings(settings)


def register(app, registry) -> None:
    """Register the inventory module routes, the Spoolman client and the location catalogue."""
    from core.config import settings
    from core.db import SessionLocal
    from modules.inventory import routes
    from modules.inventory.locations import LocationService

    app.include_router(routes.router, prefix="/api")
    app.include_router(routes.router, prefix="/api/v1")

    registry.register_provider("InventoryClient", build_client(settings))
    registry.register_provider(
        "LocationService",
        LocationService(SessionLocal, lambda: registry.require("InventoryClient")),
    )
