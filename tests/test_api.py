"""
API tests — FastAPI routes through TestClient.

The app is created once with printer monitors and background tasks off;
each test gets a fresh database and a FakeInventory registered as the
Spoolman client.

Run:
    pytest tests/test_api.py -v
"""

from unittest.mock import MagicMock, patch

import pytest
import requests


def _prusalink_response(body):
    resp = MagicMock()
    resp.status_code = 200
    resp.content = b"{...}"
    resp.json.return_value = body
    return resp


def _create_printer(client, name="XL", toolheads=5, **extra):
    body = {"name": name, "address": "192.168.1.60", "model": "XL", "toolheads": toolheads, "api_key": "k"}
    body.update(extra)
    resp = client.post("/api/printers", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestPrinters:
    def test_create_and_list(self, client):
        created = _create_printer(client)
        assert created["has_api_key"] is True
        assert "api_key" not in created
        assert created["toolhead_names"]["0"] == "Toolhead 0"

        listed = client.get("/api/printers").json()
        assert [p["name"] for p in listed] == ["XL"]

    def test_versioned_prefix(self, client):
        _create_printer(client)
        assert client.get("/api/v1/printers").status_code == 200

    def test_duplicate_name_rejected(self, client):
        _create_printer(client)
        resp = client.post("/api/printers", json={"name": "XL", "address": "192.168.1.61"})
        assert resp.status_code == 400

    def test_invalid_address_rejected(self, client):
        resp = client.post("/api/printers", json={"name": "MK4", "address": "not an address!"})
        assert resp.status_code == 422

    def test_missing_printer_404(self, client):
        assert client.get("/api/printers/999").status_code == 404

    def test_shrink_refused_while_toolhead_bound(self, client):
        printer = _create_printer(client)
        client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 4, "spool_id": 42})
        resp = client.put(f"/api/printers/{printer['id']}", json={"toolheads": 2})
        assert resp.status_code == 400
        assert "toolhead 4 (spool 42)" in resp.json()["detail"]

    def test_empty_api_key_keeps_stored_key(self, client):
        printer = _create_printer(client)
        resp = client.put(f"/api/printers/{printer['id']}", json={"api_key": "", "display_order": 3})
        assert resp.status_code == 200
        assert resp.json()["has_api_key"] is True
        assert resp.json()["display_order"] == 3

    def test_toolhead_rename(self, client):
        printer = _create_printer(client)
        resp = client.put(f"/api/printers/{printer['id']}/toolheads/1/name", json={"display_name": "Silk"})
        assert resp.status_code == 200
        assert client.get(f"/api/printers/{printer['id']}").json()["toolhead_names"]["1"] == "Silk"
        bad = client.put(f"/api/printers/{printer['id']}/toolheads/7/name", json={"display_name": "X"})
        assert bad.status_code == 400

    def test_delete_drops_bindings(self, client, fake_inventory):
        printer = _create_printer(client)
        client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 0, "spool_id": 42})
        assert client.delete(f"/api/printers/{printer['id']}").status_code == 204
        assert client.get("/api/bindings").json() == []
        assert fake_inventory.spools[42]["location"] == ""

    def test_models_list(self, client):
        body = client.get("/api/printers/models").json()
        assert "CORE One" in body["models"]
        assert body["default_toolheads"]["XL"] == 5
        assert body["default_toolheads"]["MK4"] == 1


class TestPrinterDetection:
    def test_model_detected_from_hostname(self, client):
        with patch("requests.get", side_effect=[
            _prusalink_response({"printer": {"state": "IDLE"}}),
            _prusalink_response({"hostname": "prusa-xl-garage", "serial": "SN1"}),
        ]):
            resp = client.post("/api/printers/test-connection", json={"address": "192.168.1.60", "api_key": "k"})
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["detected"] is True
        assert body["model"] == "XL"
        assert body["hostname"] == "prusa-xl-garage"
        assert body["default_toolheads"] == 5

    def test_unmatched_hostname_is_unknown(self, client):
        with patch("requests.get", side_effect=[
            _prusalink_response({"printer": {"state": "IDLE"}}),
            _prusalink_response({"hostname": "workshop"}),
        ]):
            body = client.post("/api/printers/test-connection", json={"address": "192.168.1.60"}).json()
        assert body["detected"] is True
        assert body["model"] == "Unknown"
        assert body["default_toolheads"] == 1

    def test_offline_printer_can_still_be_added(self, client):
        with patch("requests.get", side_effect=requests.exceptions.ConnectionError("no route")):
            resp = client.post("/api/printers/test-connection", json={"address": "192.168.1.99"})
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is False
        assert body["detected"] is False
        assert body["model"] == "Unknown"
        assert "add it manually" in body["warning"]


class TestBindings:
    def test_bind_conflict_unbind(self, client, fake_inventory):
        printer = _create_printer(client)
        pid = printer["id"]

        bound = client.post("/api/bindings", json={"printer_id": pid, "toolhead_id": 0, "spool_id": 42})
        assert bound.status_code == 200
        assert bound.json()["status"] == "bound"
        assert fake_inventory.spools[42]["location"] == "XL - Toolhead 0"

        conflict = client.post("/api/bindings", json={"printer_id": pid, "toolhead_id": 1, "spool_id": 42})
        assert conflict.status_code == 409
        assert conflict.json()["existing_printer_id"] == pid
        assert conflict.json()["existing_toolhead_id"] == 0

        unbound = client.post("/api/bindings", json={"printer_id": pid, "toolhead_id": 0, "spool_id": 0})
        assert unbound.json() == {"status": "unbound", "printer_id": pid, "toolhead_id": 0, "spool_id": 42}

    def test_bind_out_of_range_toolhead(self, client):
        printer = _create_printer(client, toolheads=1)
        resp = client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 3, "spool_id": 42})
        assert resp.status_code == 400

    def test_bind_unknown_printer(self, client):
        resp = client.post("/api/bindings", json={"printer_id": 999, "toolhead_id": 0, "spool_id": 42})
        assert resp.status_code == 404

    def test_unbind_unknown_printer_is_noop(self, client):
        resp = client.post("/api/bindings", json={"printer_id": 999, "toolhead_id": 0, "spool_id": 0})
        assert resp.status_code == 200
        assert resp.json() == {"status": "unbound", "printer_id": 999, "toolhead_id": 0, "spool_id": None}

    def test_find_spool(self, client):
        printer = _create_printer(client)
        client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 2, "spool_id": 42})
        assert client.get("/api/bindings/spool/42").json()["toolhead_id"] == 2
        assert client.get("/api/bindings/spool/43").status_code == 404

    def test_location_assign_to_storage(self, client, fake_inventory):
        printer = _create_printer(client)
        client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 0, "spool_id": 42})
        resp = client.post("/api/locations/assign", json={"spool_id": 42, "location": "Dry box"})
        assert resp.status_code == 200
        assert resp.json()["is_printer_location"] is False
        assert fake_inventory.spools[42]["location"] == "Dry box"
        assert client.get("/api/bindings").json() == []

    def test_location_assign_spoolman_down(self, client, fake_inventory):
        fake_inventory.unreachable = True
        resp = client.post("/api/locations/assign", json={"spool_id": 42, "location": "Dry box"})
        assert resp.status_code == 502


class TestStatus:
    def test_no_printers_sentinel(self, client):
        body = client.get("/api/status").json()
        assert list(body["printers"]) == ["no_printers"]
        assert body["printers"]["no_printers"]["state"] == "not_configured"

    def test_status_includes_bindings(self, client):
        printer = _create_printer(client)
        client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 1, "spool_id": 42})
        body = client.get("/api/status").json()
        key = str(printer["id"])
        assert body["printers"][key]["monitored"] is False
        assert body["bindings"][key]["1"]["spool_id"] == 42
        assert body["bindings"][key]["1"]["display_name"] == "Toolhead 1"


class TestReconciliation:
    def test_manual_completion_and_error_flow(self, client, fake_inventory):
        printer = _create_printer(client)
        pid = printer["id"]
        client.post("/api/bindings", json={"printer_id": pid, "toolhead_id": 0, "spool_id": 42})
        client.post("/api/bindings", json={"printer_id": pid, "toolhead_id": 1, "spool_id": 43})
        fake_inventory.fail_spools = {43}

        resp = client.post("/api/test/print_complete", json={
            "printer_id": pid, "usage": {"0": 5.0, "1": 2.0, "3": 1.0}, "job_label": "manual.bgcode",
        })
        body = resp.json()
        assert resp.status_code == 200
        assert body["ok"] is False
        assert body["skipped_toolheads"] == [3]
        assert fake_inventory.spools[42]["used_weight"] == pytest.approx(5.0)

        errors = client.get("/api/print-errors").json()
        assert len(errors) == 1
        ack = client.post(f"/api/print-errors/{errors[0]['id']}/acknowledge")
        assert ack.json() == {"id": errors[0]["id"], "acknowledged": True}
        assert client.get("/api/print-errors").json() == []
        assert len(client.get("/api/print-errors", params={"include_acknowledged": True}).json()) == 1

        events = client.get("/api/usage-events", params={"printer_id": pid}).json()
        assert [e["spool_id"] for e in events] == [42]

    def test_acknowledge_unknown_404(self, client):
        assert client.post("/api/print-errors/999/acknowledge").status_code == 404

    def test_negative_usage_rejected(self, client):
        printer = _create_printer(client)
        resp = client.post("/api/test/print_complete", json={"printer_id": printer["id"], "usage": {"0": -1}})
        assert resp.status_code == 422

    def test_unknown_printer_404(self, client):
        assert client.post("/api/test/print_complete", json={"printer_id": 999}).status_code == 404


class TestPairing:
    def test_two_scans_bind_spool(self, client):
        printer = _create_printer(client)
        first = client.get("/api/nfc/assign", params={"spool": "42"}).json()
        assert first["complete"] is False
        assert first["session"]["has_spool"] is True

        status = client.get("/api/nfc/session/status").json()
        assert status["active"] is True and status["spool_id"] == 42

        second = client.get("/api/nfc/assign", params={"location": "XL - Toolhead 3"}).json()
        assert second["complete"] is True
        assert second["assignment"]["toolhead_id"] == 3
        assert client.get("/api/bindings/spool/42").json()["printer_id"] == printer["id"]
        assert client.get("/api/nfc/session/status").json() == {"active": False}

    def test_conflict_returns_409(self, client):
        printer = _create_printer(client)
        client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 0, "spool_id": 42})
        client.get("/api/nfc/assign", params={"spool": "42"})
        resp = client.get("/api/nfc/assign", params={"location": "XL - Toolhead 1"})
        assert resp.status_code == 409
        assert client.get("/api/nfc/session/status").json() == {"active": False}

    @pytest.mark.parametrize("spool", ["abc", "0", "-5"])
    def test_invalid_spool(self, client, spool):
        resp = client.get("/api/nfc/assign", params={"spool": spool})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid spool ID"

    def test_empty_scan(self, client):
        assert client.get("/api/nfc/assign").status_code == 400

    def test_cancel(self, client):
        client.get("/api/nfc/assign", params={"location": "Dry box"})
        assert client.delete("/api/nfc/session").json() == {"cancelled": True}

    def test_tag_urls(self, client, fake_inventory):
        fake_inventory.add_spool(42)
        _create_printer(client, toolheads=2)
        client.post("/api/locations", json={"name": "Dry box"})
        urls = client.get("/api/nfc/urls", params={"include_qr": False}).json()["urls"]
        kinds = [(u["type"], u.get("location_type")) for u in urls]
        assert kinds[0] == ("spool", None)
        names = [u["display_name"] for u in urls if u["type"] == "location"]
        assert names == ["Dry box", "XL - Toolhead 0", "XL - Toolhead 1"]
        assert urls[0]["url"].endswith("/api/nfc/assign?spool=42")
        assert all(u["qr_code_base64"] == "" for u in urls)

    def test_qr_png(self, client):
        resp = client.get("/api/nfc/qr", params={"data": "http://bridge.local/api/nfc/assign?spool=42"})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert resp.content.startswith(b"\x89PNG")

    def test_label_png(self, client):
        resp = client.get("/api/nfc/label", params={"data": "x", "title": "PLA Galaxy Black", "subtitle": "#42"})
        assert resp.status_code == 200
        assert resp.content.startswith(b"\x89PNG")


class TestInventoryRoutes:
    def test_spools_marked_with_binding(self, client, fake_inventory):
        fake_inventory.add_spool(42)
        fake_inventory.add_spool(43)
        printer = _create_printer(client)
        client.post("/api/bindings", json={"printer_id": printer["id"], "toolhead_id": 0, "spool_id": 42})

        spools = {s["id"]: s for s in client.get("/api/spoolman/spools").json()}
        assert spools[42]["bound_to"] == {"printer_id": printer["id"], "toolhead_id": 0}
        assert spools[43]["bound_to"] is None
        available = client.get("/api/spoolman/spools", params={"available_only": True}).json()
        assert [s["id"] for s in available] == [43]

    def test_spoolman_unreachable(self, client, fake_inventory):
        fake_inventory.unreachable = True
        assert client.get("/api/spoolman/spools").status_code == 502
        assert client.get("/api/spoolman/health").json()["reachable"] is False

    def test_spool_not_found(self, client):
        assert client.get("/api/spoolman/spools/77").status_code == 404

    def test_location_crud(self, client, fake_inventory):
        created = client.post("/api/locations", json={"name": "Shelf A"})
        assert created.status_code == 201
        assert created.json()["in_spoolman"] is True
        loc_id = created.json()["id"]

        assert client.post("/api/locations", json={"name": "Shelf A"}).status_code == 400
        renamed = client.put(f"/api/locations/{loc_id}", json={"name": "Shelf B"})
        assert renamed.json()["name"] == "Shelf B"
        assert fake_inventory.locations == ["Shelf B"]
        assert client.delete(f"/api/locations/{loc_id}").status_code == 204
        assert client.get("/api/locations").json() == []
        assert client.delete(f"/api/locations/{loc_id}").status_code == 404

    def test_location_sync_skips_printer_locations(self, client, fake_inventory):
        _create_printer(client)
        fake_inventory.locations = ["Shelf A", "XL - Toolhead 0"]
        body = client.post("/api/locations/sync").json()
        assert body["added"] == 1
        assert [loc["name"] for loc in body["locations"]] == ["Shelf A"]


class TestSystem:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["spoolman_connected"] is False
        assert body["monitors_running"] is False
        assert client.get("/api/health").status_code == 200

    def test_config_roundtrip(self, client):
        resp = client.put("/api/config", json={"poll_interval": 12, "download_attempts": 5})
        assert resp.status_code == 200
        assert resp.json()["poll_interval"] == 12
        assert client.get("/api/config").json()["download_attempts"] == 5

    def test_config_validation(self, client):
        assert client.put("/api/config", json={"spoolman_url": "ftp://x"}).status_code == 422
        assert client.put("/api/config", json={"poll_interval": 0}).status_code == 422

    def test_config_hides_password(self, client):
        body = client.get("/api/config").json()
        assert "spoolman_password" not in body


class TestApiKey:
    @pytest.fixture
    def api_key(self, client):
        from core.config import settings
        settings.api_key = "s3cret"
        yield "s3cret"
        settings.api_key = None

    def test_missing_key_rejected(self, client, api_key):
        assert client.get("/api/printers").status_code == 401
        assert client.get("/api/printers", headers={"X-API-Key": "wrong"}).status_code == 401

    def test_valid_key_accepted(self, client, api_key):
        assert client.get("/api/printers", headers={"X-API-Key": api_key}).status_code == 200

    def test_tag_scan_and_health_are_open(self, client, api_key):
        assert client.get("/api/nfc/assign", params={"location": "Dry box"}).status_code == 200
        assert client.get("/health").status_code == 200
