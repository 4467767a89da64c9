# core/app.py — App factory with dynamic module discovery
#
# Creates and configures the FastAPI application. Discovers all modules under
# backend/modules/, resolves load order from REQUIRES/IMPLEMENTS declarations,
# and calls each module's register(app, registry) function.
#
# main.py becomes: from core.app import create_app; app = create_app()

import asyncio
import hmac
import importlib
import logging
import pathlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

log = logging.getLogger("filabridge.api")

# ---------------------------------------------------------------------------
# Version
# ---------------------------------------------------------------------------

_version_file = pathlib.Path(__file__).parent.parent.parent / "VERSION"
if _version_file.exists():
    __version__ = _version_file.read_text().strip()
else:
    __version__ = "1.0.0"


# ---------------------------------------------------------------------------
# Module discovery helpers
# ---------------------------------------------------------------------------

def _discover_modules() -> list[str]:
    """Return a list of module package names found under backend/modules/.

    A valid module directory contains an __init__.py with a MODULE_ID attribute.
    """
    modules_dir = pathlib.Path(__file__).parent.parent / "modules"
    found = []
    for entry in sorted(modules_dir.iterdir()):
        if not entry.is_dir():
            continue
        init_file = entry / "__init__.py"
        if not init_file.exists():
            continue
        pkg_name = f"modules.{entry.name}"
        try:
            mod = importlib.import_module(pkg_name)
            if hasattr(mod, "MODULE_ID"):
                found.append(pkg_name)
        except Exception as exc:
            log.warning(f"Module discovery: skipping {pkg_name!r} — {exc}")
    return found


def _resolve_load_order(pkg_names: list[str]) -> list[str]:
    """Topologically sort modules so that providers load before their consumers.

    Algorithm:
    1. Build a map of interface_name -> module_pkg for IMPLEMENTS declarations.
    2. For each module's REQUIRES list, find which module pkg provides that interface.
    3. Perform Kahn's topological sort (no-dependency modules first).
    4. Any modules with circular or unresolvable deps load in discovery order at
       the end (with a warning) rather than crashing startup.
    """
    mods: dict[str, dict] = {}
    for pkg in pkg_names:
        m = importlib.import_module(pkg)
        mods[pkg] = {
            "implements": getattr(m, "IMPLEMENTS", []),
            "requires": getattr(m, "REQUIRES", []),
        }

    # interface -> providing pkg
    providers: dict[str, str] = {}
    for pkg, info in mods.items():
        for iface in info["implements"]:
            providers[iface] = pkg

    # pkg -> set of pkgs it depends on
    edges: dict[str, set[str]] = {pkg: set() for pkg in pkg_names}
    for pkg, info in mods.items():
        for iface in info["requires"]:
            provider_pkg = providers.get(iface)
            if provider_pkg and provider_pkg != pkg:
                edges[pkg].add(provider_pkg)

    in_degree: dict[str, int] = {pkg: len(deps) for pkg, deps in edges.items()}

    queue = sorted(pkg for pkg in pkg_names if in_degree[pkg] == 0)
    ordered: list[str] = []

    while queue:
        pkg = queue.pop(0)
        ordered.append(pkg)
        for other_pkg, deps in edges.items():
            if pkg in deps:
                in_degree[other_pkg] -= 1
                if in_degree[other_pkg] == 0:
                    queue.append(other_pkg)
                    queue.sort()

    remaining = [pkg for pkg in pkg_names if pkg not in ordered]
    if remaining:
        log.warning(
            f"Module load order: circular or unresolvable dependencies for "
            f"{remaining} — appending in discovery order."
        )
        ordered.extend(remaining)

    return ordered


# ---------------------------------------------------------------------------
# WebSocket manager
# ---------------------------------------------------------------------------

class ConnectionManager:
    """Manages active WebSocket connections."""

    def __init__(self):
        self.active: list[WebSocket] = []

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.active.append(ws)

    def disconnect(self, ws: WebSocket):
        if ws in self.active:
            self.active.remove(ws)

    async def broadcast(self, message: dict):
        dead = []
        for ws in self.active:
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)


ws_manager = ConnectionManager()


async def _ws_broadcaster():
    """Background task: read events from the ws_hub buffer, broadcast to WebSocket clients."""
    from core.ws_hub import read_events_since

    last_id = 0
    while True:
        await asyncio.sleep(1)
        events, last_id = read_events_since(last_id)
        if not ws_manager.active:
            continue
        for evt in events:
            await ws_manager.broadcast(evt)


async def _location_sync_loop():
    """Background task: refresh the location catalogue from Spoolman."""
    from core.config import settings
    from core.db import SessionLocal
    from core.registry import registry
    from modules.inventory.locations import sync_locations
    from modules.inventory.spoolman import SpoolmanError

    while True:
        service = registry.providers.get("LocationService")
        if service is not None:
            try:
                await asyncio.to_thread(sync_locations, service, SessionLocal)
            except SpoolmanError as e:
                log.warning(f"Location sync skipped, Spoolman unavailable: {e}")
            except Exception:
                log.warning("Location sync failed", exc_info=True)
        await asyncio.sleep(max(30, settings.location_sync_interval))


async def _pairing_sweeper():
    """Background task: delete expired pairing sessions."""
    from core.registry import registry
    from modules.pairing.sessions import SWEEP_INTERVAL

    while True:
        await asyncio.sleep(SWEEP_INTERVAL)
        manager = registry.providers.get("PairingSessionManager")
        if manager is None:
            continue
        try:
            await asyncio.to_thread(manager.sweep_expired)
        except Exception:
            log.warning("Pairing session sweep failed", exc_info=True)


# ---------------------------------------------------------------------------
# Runtime preparation (shared by the HTTP lifespan and --bridge-only)
# ---------------------------------------------------------------------------

def prepare_runtime(registry) -> None:
    """Create tables, apply persisted config overrides, wire the event bus."""
    from core.config import apply_overrides
    from core.db import SessionLocal, init_db
    from core.event_bus import get_event_bus
    from core.ws_hub import subscribe_to_bus as ws_subscribe
    from modules.system.routes_config import _SPOOLMAN_KEYS, load_overrides, rebuild_inventory_client

    init_db()

    db = SessionLocal()
    try:
        overrides = load_overrides(db)
    finally:
        db.close()
    applied = apply_overrides(overrides)
    if applied:
        log.info(f"Applied persisted config overrides: {sorted(applied)}")
    if _SPOOLMAN_KEYS & set(applied):
        rebuild_inventory_client()

    registry.validate_dependencies()

    ws_subscribe(get_event_bus())
    log.info("Event bus initialized with module subscribers")


# ---------------------------------------------------------------------------
# Middleware setup
# ---------------------------------------------------------------------------

def _setup_middleware(app: FastAPI) -> None:
    """Attach CORS middleware to the app."""
    from core.config import settings

    _cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    if "*" in _cors_origins:
        log.warning(
            "CORS origin '*' is incompatible with allow_credentials=True — "
            "falling back to empty origins list. Set explicit origins in CORS_ORIGINS."
        )
        _cors_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key", "Accept"],
    )


# Tag URLs are opened by a phone browser that cannot send headers
_PUBLIC_API_PATHS = ("/nfc/assign", "/nfc/session/status", "/nfc/qr")


def _register_http_middleware(app: FastAPI) -> None:
    """Register the API key check for /api routes."""
    from core.config import settings

    @app.middleware("http")
    async def authenticate_request(request: Request, call_next):
        """Require X-API-Key on /api routes when an API key is configured."""
        path = request.url.path
        _api_path = ""
        if path.startswith("/api/v1/"):
            _api_path = path[7:]
        elif path.startswith("/api/"):
            _api_path = path[4:]

        if (
            not settings.api_key
            or not path.startswith("/api/")
            or _api_path in _PUBLIC_API_PATHS
            or _api_path == "/health"
            or request.method == "OPTIONS"
        ):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key")
        if not api_key or not hmac.compare_digest(api_key, settings.api_key):
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(start_monitors: bool = True, background_tasks: bool = True) -> FastAPI:
    """Create and fully configure the FilaBridge FastAPI application.

    1. Discover all modules under backend/modules/.
    2. Resolve load order by REQUIRES/IMPLEMENTS declarations.
    3. Call each module's register(app, registry) so routes exist before the
       first request arrives.
    4. Lifespan: create tables, apply config overrides, wire the event bus,
       start the printer monitors (unless start_monitors is False) and the
       background tasks.

    Returns the fully configured app object. Uvicorn finds it via main:app.
    """
    from core.config import settings
    from core.registry import registry

    pkg_names = _discover_modules()
    ordered_pkgs = _resolve_load_order(pkg_names)

    log.info(f"Module load order: {[p.split('.')[-1] for p in ordered_pkgs]}")

    # -----------------------------------------------------------------------
    # Lifespan (DB init, event bus, monitors, background tasks)
    # -----------------------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        prepare_runtime(registry)

        if not settings.api_key:
            log.warning(
                "API_KEY is not set — API authentication is DISABLED. "
                "Set API_KEY in your environment for untrusted networks."
            )

        supervisor = registry.providers.get("MonitorSupervisor")
        if start_monitors and supervisor is not None:
            supervisor.start()
        else:
            log.info("Printer monitors disabled (web-only mode)")

        tasks = [asyncio.create_task(_ws_broadcaster())]
        if background_tasks:
            tasks.append(asyncio.create_task(_location_sync_loop()))
            tasks.append(asyncio.create_task(_pairing_sweeper()))
        yield
        for task in tasks:
            task.cancel()
        if supervisor is not None and supervisor.running:
            await asyncio.to_thread(supervisor.stop_all)

    # -----------------------------------------------------------------------
    # FastAPI instance
    # -----------------------------------------------------------------------
    app = FastAPI(
        title="FilaBridge",
        description="PrusaLink to Spoolman filament usage bridge",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
    )

    _setup_middleware(app)
    _register_http_middleware(app)

    # -----------------------------------------------------------------------
    # Health endpoint (registered before module routes to ensure priority)
    # -----------------------------------------------------------------------
    @app.get("/health", tags=["System"], include_in_schema=False)
    async def health_root():
        """Root-level health check — delegates to system module health_check."""
        from modules.system import routes as system
        return await system.health_check()

    # -----------------------------------------------------------------------
    # WebSocket endpoint
    # -----------------------------------------------------------------------
    @app.websocket("/ws/status")
    async def websocket_endpoint(ws: WebSocket, token: str = Query(default=None)):
        """
        Live events (printer state, bindings, completions, pairing).

        When an API key is configured it must be passed as ?token=<api_key>.
        Clients may send "ping" and receive "pong".
        """
        if settings.api_key and not (token and hmac.compare_digest(token, settings.api_key)):
            await ws.close(code=4001, reason="Authentication required")
            return

        await ws_manager.connect(ws)
        try:
            while True:
                try:
                    data = await asyncio.wait_for(ws.receive_text(), timeout=30)
                    if data == "ping":
                        await ws.send_text("pong")
                except asyncio.TimeoutError:
                    await ws.send_json({"type": "ping"})
        except (WebSocketDisconnect, RuntimeError):
            pass
        finally:
            ws_manager.disconnect(ws)

    # -----------------------------------------------------------------------
    # Module registration
    # -----------------------------------------------------------------------
    for pkg in ordered_pkgs:
        mod = importlib.import_module(pkg)
        registry.record_requires(
            getattr(mod, "MODULE_ID", pkg),
            getattr(mod, "REQUIRES", []),
        )
        if hasattr(mod, "register"):
            try:
                mod.register(app, registry)
                log.debug(f"Registered module: {pkg}")
            except Exception as exc:
                log.error(f"Failed to register module {pkg!r}: {exc}", exc_info=True)

    return app
