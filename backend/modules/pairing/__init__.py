MODULE_ID = "pairing"
MODULE_VERSION = "1.0.0"
MODULE_DESCRIPTION = "Two-scan NFC/QR pairing of spools to printer toolheads and storage locations"

ROUTES = [
    "pairing.routes",
]

TABLES = [
    "pairing_sessions",
]

PUBLISHES = [
    "pairing.updated",
    "pairing.completed",
]

SUBSCRIBES = []

IMPLEMENTS = ["PairingSessionManager"]

REQUIRES = ["SpoolAssigner"]

DAEMONS = []


def register(app, registry) -> None:
    """Register the pairing module: routes and the PairingSessionManager."""
    from core.config import settings
    from core.db import SessionLocal
    from modules.pairing import routes
    from modules.pairing.sessions import PairingSessionManager

    app.include_router(routes.router, prefix="/api")
    app.include_router(routes.router, prefix="/api/v1")

    registry.register_provider(
        "PairingSessionManager",
        PairingSessionManager(SessionLocal, registry.require("SpoolAssigner"), settings),
    )
