"""Pairing routes — tag scans, session status, tag URL list, QR rendering."""

from typing import Optional
from urllib.parse import quote
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_db
from core.dependencies import (
    client_ip, get_inventory, get_location_service, get_pairing_manager,
)
from modules.bindings.mirror import printer_location_name
from modules.bindings.routes import conflict_response
from modules.bindings.store import BindingConflict, InvalidToolhead, UnknownPrinter
from modules.inventory.spoolman import SpoolmanError
from modules.pairing.qr import render_label_png, render_qr_base64, render_qr_png
from modules.pairing.sessions import PairingError, session_key_for
from modules.printers.models import Printer

log = logging.getLogger("filabridge.api")
router = APIRouter(prefix="/nfc", tags=["Pairing"])


def _base_url(request: Request) -> str:
    return (settings.public_base_url or str(request.base_url)).rstrip("/")


@router.get("/assign")
def nfc_assign(
    request: Request,
    spool: Optional[str] = None,
    location: Optional[str] = None,
    manager=Depends(get_pairing_manager),
):
    """One tag scan. Two scans from the same client (any order) complete an assignment."""
    spool_id = None
    if spool:
        try:
            spool_id = int(spool)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid spool ID")
        if spool_id <= 0:
            raise HTTPException(status_code=400, detail="Invalid spool ID")

    key = session_key_for(client_ip(request))
    try:
        result = manager.scan(key, spool_id=spool_id, location=location)
    except PairingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BindingConflict as e:
        return conflict_response(e)
    except UnknownPrinter as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidToolhead as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SpoolmanError as e:
        raise HTTPException(status_code=502, detail=f"Assignment failed: {e}")
    return result.to_dict()


@router.get("/session/status")
def nfc_session_status(request: Request, manager=Depends(get_pairing_manager)):
    view = manager.status(session_key_for(client_ip(request)))
    if view is None:
        return {"active": False}
    return view.to_dict()


@router.delete("/session")
def nfc_session_cancel(request: Request, manager=Depends(get_pairing_manager)):
    return {"cancelled": manager.cancel(session_key_for(client_ip(request)))}


@router.get("/urls")
def nfc_urls(
    request: Request,
    include_qr: bool = True,
    db: Session = Depends(get_db),
    inventory=Depends(get_inventory),
    locations=Depends(get_location_service),
):
    """Tag URLs for every spool, storage location and printer toolhead."""
    base = _base_url(request)

    def entry(url: str, **fields) -> dict:
        fields["url"] = url
        fields["qr_code_base64"] = render_qr_base64(url) if include_qr else ""
        return fields

    try:
        spools = inventory.list_spools()
    except SpoolmanError as e:
        raise HTTPException(status_code=502, detail=f"Failed to connect to Spoolman: {e}")

    spool_urls = [
        entry(
            f"{base}/api/nfc/assign?spool={s['id']}",
            type="spool",
            spool_id=s["id"],
            spool_name=s.get("name"),
            material=s.get("material"),
            brand=s.get("brand"),
            color_hex=_hex(s.get("color_hex")),
            remaining_weight=s.get("remaining_weight"),
            display_name=s.get("display_name"),
        )
        for s in spools
    ]

    printers = db.query(Printer).order_by(Printer.display_order, Printer.id).all()
    printer_locations = set()
    location_urls = []
    for printer in printers:
        for tid, display in printer.toolhead_display_names().items():
            name = printer_location_name(printer.name, display)
            printer_locations.add(name)
            location_urls.append(entry(
                f"{base}/api/nfc/assign?location={quote(name)}",
                type="location",
                location_type="printer",
                location_name=name,
                display_name=name,
                printer_id=printer.id,
                printer_name=printer.name,
                toolhead_id=tid,
            ))

    for name in locations.names():
        if name in printer_locations:
            continue
        location_urls.append(entry(
            f"{base}/api/nfc/assign?location={quote(name)}",
            type="location",
            location_type="storage",
            location_name=name,
            display_name=name,
        ))

    location_urls.sort(key=lambda u: u["display_name"].lower())
    return {"urls": spool_urls + location_urls}


@router.get("/qr")
def nfc_qr(data: str = Query(..., min_length=1, max_length=2048)):
    """PNG QR code for arbitrary text (normally a tag URL)."""
    return Response(content=render_qr_png(data), media_type="image/png")


@router.get("/label")
def nfc_label(
    data: str = Query(..., min_length=1, max_length=2048),
    title: str = Query(..., min_length=1, max_length=100),
    subtitle: str = "",
    size: str = "small",
):
    """Printable PNG label: QR code plus caption."""
    png = render_label_png(data, title, subtitle, size=size)
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": 'inline; filename="label.png"'},
    )


def _hex(color: Optional[str]) -> str:
    if not color:
        return ""
    return color if color.startswith("#") else f"#{color}"
