from flask import Blueprint, request, jsonify, g

from models import db
from models.port import PORT_AVAILABLE, Port
from models.station import Station
from security.rbac import authorize, require_roles
from services.availability import project_ports, refresh_port_status
from services.errors import NotFoundError, ReservationError, ValidationError
from services.reservations import get_engine
from utils.auth_context import login_required
from utils.audit import log_event

stations_bp = Blueprint("stations", __name__)

STATION_REQUIRED_FIELDS = ("name", "address", "latitude", "longitude", "pricePerKwh", "powerKw")


def _text(data: dict, name: str, limit: int):
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value.strip()[:limit] or None


def _number(data: dict, name: str, cast=float):
    value = data.get(name)
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} is required")
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")


def _string_list(data: dict, name: str):
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{name} should be an array of strings")
    return [v.strip() for v in value if v.strip()]


def _station_or_404(station_id: int) -> Station:
    station = db.session.get(Station, station_id)
    if station is None:
        raise NotFoundError("Station not found", station_id=station_id)
    return station


def _port_payload(data: dict) -> dict:
    name = _text(data, "name", 60)
    connector_type = _text(data, "type", 40) or _text(data, "connectorType", 40)
    if not name or not connector_type:
        raise ValidationError("name and type are required")
    power_kw = data.get("powerKw")
    return {
        "name": name,
        "connector_type": connector_type,
        "power_kw": _number(data, "powerKw", int) if power_kw is not None else None,
    }


# ---------- PUBLIC: browse catalog ----------
@stations_bp.get("/stations")
def list_stations():
    stations = get_engine().catalog.list_stations()
    return jsonify([s.to_dict() for s in stations]), 200


@stations_bp.get("/stations/<int:station_id>")
def get_station(station_id: int):
    return jsonify(_station_or_404(station_id).to_dict()), 200


@stations_bp.get("/stations/<int:station_id>/ports")
def list_ports(station_id: int):
    engine = get_engine()
    _station_or_404(station_id)
    ports = engine.catalog.ports_for_station(station_id)
    statuses = project_ports(ports, engine.clock())
    return jsonify([p.to_dict(status=statuses[p.id]) for p in ports]), 200


@stations_bp.get("/stations/mine")
@require_roles("STATION_OWNER")
def my_stations():
    rows = g.user.stations.order_by(Station.id.asc()).all()
    return jsonify([s.to_dict() for s in rows]), 200


# ---------- OWNERS: register stations and ports ----------
@stations_bp.post("/stations")
@login_required
def create_station():
    authorize(g.user, "station.create")
    data = request.get_json(silent=True) or {}

    missing = [f for f in STATION_REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        return jsonify(error="All fields are required", missing=missing), 400

    latitude = _number(data, "latitude")
    longitude = _number(data, "longitude")
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        return jsonify(error="latitude/longitude out of range"), 400

    price = _number(data, "pricePerKwh")
    power_kw = _number(data, "powerKw", int)
    if price < 0 or power_kw <= 0:
        return jsonify(error="pricePerKwh must be >= 0 and powerKw > 0"), 400

    station = Station(
        name=_text(data, "name", 120),
        address=_text(data, "address", 255),
        latitude=latitude,
        longitude=longitude,
        price_per_kwh=price,
        power_kw=power_kw,
        connector_types=_string_list(data, "connectorTypes"),
        description=_text(data, "description", 2000),
        amenities=_string_list(data, "amenities"),
        owner_user_id=g.user.id,
    )
    db.session.add(station)
    db.session.flush()

    for port_data in data.get("ports") or []:
        if not isinstance(port_data, dict):
            db.session.rollback()
            return jsonify(error="ports must be a list of objects"), 400
        db.session.add(Port(station_id=station.id, status=PORT_AVAILABLE, **_port_payload(port_data)))

    db.session.commit()
    log_event("STATION_CREATE", user_id=g.user.id, entity="station", entity_id=station.id)
    return jsonify(message="Station created", stationId=station.id, station=station.to_dict()), 201


@stations_bp.patch("/stations/<int:station_id>")
@login_required
def update_station(station_id: int):
    station = _station_or_404(station_id)
    authorize(g.user, "station.update", station=station)
    data = request.get_json(silent=True) or {}

    changed = []
    for field, attr, limit in (("name", "name", 120), ("address", "address", 255), ("description", "description", 2000)):
        if field in data:
            value = _text(data, field, limit)
            if attr != "description" and not value:
                return jsonify(error=f"{field} cannot be empty"), 400
            setattr(station, attr, value)
            changed.append(field)
    if "pricePerKwh" in data:
        price = _number(data, "pricePerKwh")
        if price < 0:
            return jsonify(error="pricePerKwh must be >= 0"), 400
        station.price_per_kwh = price
        changed.append("pricePerKwh")
    if "amenities" in data:
        station.amenities = _string_list(data, "amenities")
        changed.append("amenities")
    if "connectorTypes" in data:
        station.connector_types = _string_list(data, "connectorTypes")
        changed.append("connectorTypes")

    db.session.commit()
    log_event("STATION_UPDATE", user_id=g.user.id, entity="station", entity_id=station.id, metadata={"fields": changed})
    return jsonify(station.to_dict()), 200


@stations_bp.post("/stations/<int:station_id>/ports")
@login_required
def create_port(station_id: int):
    station = _station_or_404(station_id)
    authorize(g.user, "port.create", station=station)
    data = request.get_json(silent=True) or {}

    port = Port(station_id=station.id, status=PORT_AVAILABLE, **_port_payload(data))
    db.session.add(port)
    db.session.commit()

    log_event("PORT_CREATE", user_id=g.user.id, entity="port", entity_id=port.id)
    return jsonify(port.to_dict()), 201


@stations_bp.patch("/ports/<int:port_id>")
@login_required
def set_port_maintenance(port_id: int):
    engine = get_engine()
    port = engine.catalog.require_port(port_id)
    authorize(g.user, "port.maintenance", station=engine.catalog.get_station(port.station_id))

    data = request.get_json(silent=True) or {}
    flag = data.get("underMaintenance", data.get("under_maintenance"))
    if not isinstance(flag, bool):
        return jsonify(error="underMaintenance must be true or false"), 400

    with engine.locks.lock_for(port.id):
        try:
            port = engine.claim_port(port.id)
            port.under_maintenance = flag
            status = refresh_port_status(port, engine.clock())
            db.session.commit()
        except ReservationError:
            db.session.rollback()
            raise

    log_event("PORT_MAINTENANCE", user_id=g.user.id, entity="port", entity_id=port.id, metadata={"under_maintenance": flag})
    return jsonify(port.to_dict(status=status)), 200


@stations_bp.get("/ports/<int:port_id>")
def get_port(port_id: int):
    engine = get_engine()
    port = engine.catalog.require_port(port_id)
    status = project_ports([port], engine.clock())[port.id]
    return jsonify(port.to_dict(status=status)), 200
