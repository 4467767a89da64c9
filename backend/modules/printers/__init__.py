MODULE_ID = "printers"
MODULE_VERSION = "1.0.0"
MODULE_DESCRIPTION = "PrusaLink printers: configuration, adapter, polling monitors, status snapshot"

ROUTES = [
    "printers.routes",           # aggregator
    "printers.routes_crud",
    "printers.routes_status",
]

TABLES = [
    "printers",
    "toolhead_names",
]

PUBLISHES = [
    "printer.state_changed",
    "printer.offline",
    "printer.config_changed",
]

SUBSCRIBES = []

IMPLEMENTS = ["MonitorSupervisor"]

REQUIRES = ["BindingStore", "Reconciler"]

DAEMONS = [
    "printers.monitors.prusalink_monitor",
]


def register(app, registry) -> None:
    """Register the printers module: routes and the MonitorSupervisor."""
    from core.config import settings
    from core.db import SessionLocal
    from modules.printers import routes
    from modules.printers.monitors.prusalink_monitor import MonitorSupervisor

    app.include_router(routes.router, prefix="/api")
    app.include_router(routes.router, prefix="/api/v1")

    supervisor = MonitorSupervisor(
        session_factory=SessionLocal,
        reconciler=registry.require("Reconciler"),
        settings=settings,
    )
    registry.register_provider("MonitorSupervisor", supervisor)
