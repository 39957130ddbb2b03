import pytest

from app import create_app
from config import TestConfig
from models.audit_log import AuditLog
from services.errors import ConfigurationError

PASSWORD = "correct-horse-1"


def _booking(client, headers, port_id, start="10:00", duration=60, date="2024-06-01"):
    return client.post("/bookings", json={
        "portId": port_id, "date": date, "startTime": start, "duration": duration,
        "vehicleInfo": "Tata Nexon EV",
    }, headers=headers)


# ---------- bookings ----------

def test_create_booking_requires_login(client, seed):
    resp = _booking(client, {}, seed.port_id)
    assert resp.status_code == 401


def test_create_booking_then_conflict(client, seed, auth):
    resp = _booking(client, auth(seed.driver), seed.port_id)
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["status"] == "pending"
    assert body["start_time"] == "10:00"
    assert body["end_time"] == "11:00"
    assert body["station_id"] == seed.station_id

    resp = _booking(client, auth(seed.other), seed.port_id, start="10:30", duration=30)
    assert resp.status_code == 409
    assert resp.get_json()["conflicting_window"]["start"] == "2024-06-01T10:00:00"

    resp = _booking(client, auth(seed.other), seed.port_id, start="11:00", duration=30)
    assert resp.status_code == 201


def test_create_booking_validation(client, seed, auth):
    assert _booking(client, auth(seed.driver), 9999).status_code == 404
    assert _booking(client, auth(seed.driver), seed.port_id, duration=15).status_code == 400
    assert _booking(client, auth(seed.driver), seed.port_id, start="25:00").status_code == 400
    assert _booking(client, auth(seed.driver), "abc").status_code == 400
    resp = client.post("/bookings", json={"portId": seed.port_id}, headers=auth(seed.driver))
    assert resp.status_code == 400


def test_snake_case_payload_and_end_time(client, seed, auth):
    resp = client.post("/bookings", json={
        "port_id": str(seed.port_id), "date": "2024-06-01", "start_time": "09:00", "end_time": "10:30",
    }, headers=auth(seed.driver))
    assert resp.status_code == 201
    assert resp.get_json()["duration"] == 90


def test_my_bookings_are_enriched(client, seed, auth):
    _booking(client, auth(seed.driver), seed.port_id)
    _booking(client, auth(seed.other), seed.port2_id)

    rows = client.get("/bookings", headers=auth(seed.driver)).get_json()
    assert len(rows) == 1
    assert rows[0]["station"]["name"] == "Lonavala Central EV Hub"
    assert rows[0]["port"]["id"] == seed.port_id

    assert client.get(f"/bookings?userId={seed.other.id}", headers=auth(seed.driver)).status_code == 403
    assert len(client.get(f"/bookings?userId={seed.other.id}", headers=auth(seed.admin)).get_json()) == 1


def test_view_booking_permissions(client, seed, auth):
    booking_id = _booking(client, auth(seed.driver), seed.port_id).get_json()["id"]

    assert client.get(f"/bookings/{booking_id}", headers=auth(seed.driver)).status_code == 200
    assert client.get(f"/bookings/{booking_id}", headers=auth(seed.owner)).status_code == 200
    assert client.get(f"/bookings/{booking_id}", headers=auth(seed.other)).status_code == 403
    assert client.get("/bookings/424242", headers=auth(seed.driver)).status_code == 404


def test_status_transitions_over_http(client, seed, auth):
    booking_id = _booking(client, auth(seed.driver), seed.port_id).get_json()["id"]
    url = f"/bookings/{booking_id}/status"

    assert client.patch(url, json={"status": "confirmed"}, headers=auth(seed.driver)).status_code == 403
    assert client.patch(url, json={"status": "completed"}, headers=auth(seed.owner)).status_code == 409
    assert client.patch(url, json={"status": "pending"}, headers=auth(seed.owner)).status_code == 400

    resp = client.patch(url, json={"status": "confirmed"}, headers=auth(seed.owner))
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "confirmed"

    resp = client.patch(url, json={"status": "cancelled", "reason": "car broke down"}, headers=auth(seed.driver))
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "cancelled"

    assert client.patch(url, json={"status": "cancelled"}, headers=auth(seed.driver)).status_code == 409


def test_pay_confirms_or_declines(client, seed, auth):
    first = _booking(client, auth(seed.driver), seed.port_id).get_json()["id"]
    second = _booking(client, auth(seed.driver), seed.port2_id).get_json()["id"]

    resp = client.post(f"/bookings/{first}/pay", json={"paymentMethod": "upi", "upiId": "driver@okaxis"},
                       headers=auth(seed.driver))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["booking"]["status"] == "confirmed"
    assert body["payment"]["amount"] == 53125

    resp = client.post(f"/bookings/{second}/pay", json={"upiId": "declined@upi"}, headers=auth(seed.driver))
    assert resp.status_code == 402
    assert client.get(f"/bookings/{second}", headers=auth(seed.driver)).get_json()["status"] == "pending"

    resp = client.post(f"/bookings/{second}/pay", json={"upiId": "not-a-upi"}, headers=auth(seed.driver))
    assert resp.status_code == 400


# ---------- availability ----------

def test_port_availability_and_intervals(client, seed, auth, clock):
    _booking(client, auth(seed.driver), seed.port_id, start="08:00")

    body = client.get(f"/ports/{seed.port_id}/availability?date=2024-06-01").get_json()
    assert body["status"] == "in-use"
    assert body["busy"] == [{"start": "2024-06-01T08:00:00", "end": "2024-06-01T09:00:00"}]

    windows = client.get(f"/ports/{seed.port_id}/intervals?date=2024-06-01").get_json()
    assert len(windows) == 1
    assert client.get(f"/ports/{seed.port_id}/intervals").status_code == 400
    assert client.get("/ports/9999/availability").status_code == 404

    ports = client.get(f"/stations/{seed.station_id}/ports").get_json()
    assert {p["id"]: p["status"] for p in ports} == {seed.port_id: "in-use", seed.port2_id: "available"}


def test_port_availability_at_a_chosen_instant(client, seed, auth):
    _booking(client, auth(seed.driver), seed.port_id, start="10:00")
    url = f"/ports/{seed.port_id}/availability?date=2024-06-01"

    assert client.get(url).get_json()["status"] == "available"
    assert client.get(url + "&at=2024-06-01T10:15").get_json()["status"] == "in-use"
    # end is exclusive
    assert client.get(url + "&at=2024-06-01T11:00").get_json()["status"] == "available"
    assert client.get(url + "&at=half-past-ten").status_code == 400


def test_station_bookings_for_owner_only(client, seed, auth):
    _booking(client, auth(seed.driver), seed.port_id)

    assert len(client.get(f"/stations/{seed.station_id}/bookings", headers=auth(seed.owner)).get_json()) == 1
    assert client.get(f"/stations/{seed.station_id}/bookings", headers=auth(seed.stranger_owner)).status_code == 403
    assert client.get(f"/stations/{seed.station_id}/bookings", headers=auth(seed.driver)).status_code == 403


# ---------- catalog ----------

STATION = {
    "name": "Khandala Ghat Charging Point",
    "address": "Old Mumbai-Pune Highway, Khandala",
    "latitude": 18.7583,
    "longitude": 73.3784,
    "pricePerKwh": 11.5,
    "powerKw": 30,
    "connectorTypes": ["Type 2"],
    "ports": [{"name": "Port #1", "type": "Type 2", "powerKw": 22}],
}


def test_station_create_needs_owner_role(client, seed, auth):
    assert client.post("/stations", json=STATION, headers=auth(seed.driver)).status_code == 403

    resp = client.post("/stations", json=STATION, headers=auth(seed.owner))
    assert resp.status_code == 201
    station_id = resp.get_json()["stationId"]

    ports = client.get(f"/stations/{station_id}/ports").get_json()
    assert [p["name"] for p in ports] == ["Port #1"]
    assert AuditLog.query.filter_by(action="STATION_CREATE").count() == 1


def test_station_create_missing_fields(client, seed, auth):
    resp = client.post("/stations", json={"name": "Half a station"}, headers=auth(seed.owner))
    assert resp.status_code == 400
    assert "address" in resp.get_json()["missing"]


def test_maintenance_toggle_blocks_booking(client, seed, auth):
    url = f"/ports/{seed.port_id}"
    assert client.patch(url, json={"underMaintenance": True}, headers=auth(seed.stranger_owner)).status_code == 403

    resp = client.patch(url, json={"underMaintenance": True}, headers=auth(seed.owner))
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "maintenance"
    assert _booking(client, auth(seed.driver), seed.port_id).status_code == 409

    client.patch(url, json={"underMaintenance": False}, headers=auth(seed.owner))
    assert _booking(client, auth(seed.driver), seed.port_id).status_code == 201


def test_list_stations_is_public(client, seed):
    rows = client.get("/stations").get_json()
    assert [s["id"] for s in rows] == [seed.station_id]
    assert client.get("/stations/9999").status_code == 404


# ---------- auth ----------

def test_register_login_me(client, app):
    resp = client.post("/auth/register", json={
        "email": "New.Driver@example.com", "password": PASSWORD, "firstName": "Asha",
    })
    assert resp.status_code == 201
    assert resp.get_json()["user"]["role"] == "USER"

    assert client.post("/auth/register", json={"email": "new.driver@example.com", "password": PASSWORD}).status_code == 409
    assert client.post("/auth/register", json={"email": "x@example.com", "password": PASSWORD, "role": "ADMIN"}).status_code == 400
    assert client.post("/auth/register", json={"email": "y@example.com", "password": "short"}).status_code == 400

    assert client.post("/auth/login", json={"email": "new.driver@example.com", "password": "wrong-password"}).status_code == 401
    resp = client.post("/auth/login", json={"email": "new.driver@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.get_json()["token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).get_json()
    assert me["email"] == "new.driver@example.com"


def test_cookie_sessions_need_csrf_token(client, seed):
    resp = client.post("/auth/login", json={"email": "other@example.com", "password": PASSWORD})
    assert resp.status_code == 200

    payload = {"portId": seed.port_id, "date": "2024-06-01", "startTime": "10:00", "duration": 60}
    assert client.post("/bookings", json=payload).status_code == 403

    csrf = client.get_cookie("csrf_token").value
    assert client.post("/bookings", json=payload, headers={"X-CSRF-Token": csrf}).status_code == 201


def test_logout_revokes_token(client, seed, auth):
    headers = auth(seed.driver)
    assert client.post("/auth/logout", headers=headers).status_code == 200
    assert client.get("/auth/me", headers=headers).status_code == 401


# ---------- admin / health ----------

def test_admin_endpoints(client, seed, auth, clock):
    booking_id = _booking(client, auth(seed.driver), seed.port_id, start="08:00").get_json()["id"]
    client.patch(f"/bookings/{booking_id}/status", json={"status": "confirmed"}, headers=auth(seed.owner))

    assert client.get("/admin/bookings", headers=auth(seed.owner)).status_code == 403
    assert len(client.get("/admin/bookings", headers=auth(seed.admin)).get_json()) == 1

    clock.now = clock.now.replace(hour=10)
    resp = client.post("/admin/bookings/complete-elapsed", headers=auth(seed.admin))
    assert resp.get_json()["completed"] == [booking_id]

    logs = client.get("/admin/audit-logs", headers=auth(seed.admin)).get_json()
    assert any(row["action"] == "BOOKING_COMPLETE" for row in logs)


def test_health(client, app):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_unknown_platform_timezone_fails_at_startup():
    class _Config(TestConfig):
        PLATFORM_TIMEZONE = "Mars/Olympus"

    with pytest.raises(ConfigurationError):
        create_app(_Config)


def test_owner_sees_own_stations(client, seed, auth):
    assert [s["id"] for s in client.get("/stations/mine", headers=auth(seed.owner)).get_json()] == [seed.station_id]
    assert client.get("/stations/mine", headers=auth(seed.stranger_owner)).get_json() == []
    assert client.get("/stations/mine", headers=auth(seed.driver)).status_code == 403


def test_admin_lists_users_by_role(client, seed, auth):
    rows = client.get("/admin/users?role=STATION_OWNER", headers=auth(seed.admin)).get_json()
    assert sorted(r["email"] for r in rows) == ["owner2@example.com", "owner@example.com"]
    assert all("password_hash" not in r for r in rows)
