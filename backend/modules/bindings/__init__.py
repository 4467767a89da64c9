MODULE_ID = "bindings"
MODULE_VERSION = "1.0.0"
MODULE_DESCRIPTION = "Toolhead-to-spool bindings, Spoolman location mirroring, spool assignment"

ROUTES = [
    "bindings.routes",
]

TABLES = [
    "toolhead_bindings",
]

PUBLISHES = [
    "binding.changed",
]

SUBSCRIBES = []

IMPLEMENTS = ["BindingStore", "SpoolAssigner"]

REQUIRES = ["InventoryClient", "LocationService"]

DAEMONS = []


def register(app, registry) -> None:
    """Register the bindings module: routes, BindingStore and SpoolAssigner."""
    from core.config import settings
    from core.db import SessionLocal
    from modules.bindings import routes
    from modules.bindings.assignment import SpoolAssigner
    from modules.bindings.mirror import LocationMirror
    from modules.bindings.store import BindingStore

    app.include_router(routes.router, prefix="/api")
    app.include_router(routes.router, prefix="/api/v1")

    def inventory():
        return registry.require("InventoryClient")

    def location_exists(name: str) -> bool:
        return registry.require("LocationService").exists(name) or inventory().location_exists(name)

    mirror = LocationMirror(SessionLocal, inventory, settings, location_exists=location_exists)
    store = BindingStore(SessionLocal, mirror=mirror)
    registry.register_provider("BindingStore", store)
    registry.register_provider(
        "SpoolAssigner",
        SpoolAssigner(store, inventory, location_service=registry.get_provider("LocationService")),
    )
