from flask import Blueprint, request, jsonify, g

from models import db
from models.booking import BOOKING_STATUSES, CANCELLED, COMPLETED, CONFIRMED
from models.port import Port
from models.station import Station
from security.rbac import authorize
from services.availability import port_availability
from services.errors import NotFoundError, ValidationError
from services.reservations import get_engine
from utils.auth_context import login_required
from utils.timewindow import parse_date, parse_instant

booking_bp = Blueprint("booking", __name__)


def _field(data: dict, *names):
    # clients send camelCase, older tooling snake_case
    for name in names:
        if name in data and data[name] not in (None, ""):
            return data[name]
    return None


def _as_int(value, name: str):
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{name} is required and must be an integer")


def _enrich(bookings):
    """Attach station/port display data (read-only join)."""
    station_ids = {b.station_id for b in bookings}
    port_ids = {b.port_id for b in bookings}
    stations = {s.id: s for s in Station.query.filter(Station.id.in_(station_ids)).all()} if station_ids else {}
    ports = {p.id: p for p in Port.query.filter(Port.id.in_(port_ids)).all()} if port_ids else {}

    out = []
    for b in bookings:
        row = b.to_dict()
        s = stations.get(b.station_id)
        p = ports.get(b.port_id)
        row["station"] = {"id": s.id, "name": s.name, "address": s.address} if s else None
        row["port"] = {"id": p.id, "name": p.name, "connector_type": p.connector_type, "power_kw": p.power_kw} if p else None
        out.append(row)
    return out


# ---------- DRIVERS: reserve a port (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/bookings")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}

    port_id = _as_int(_field(data, "portId", "port_id"), "portId")
    booking = get_engine().request_booking(
        user_id=g.user.id,
        port_id=port_id,
        day=_field(data, "date"),
        start_time=_field(data, "startTime", "start_time"),
        duration=_field(data, "duration", "duration_minutes"),
        end_time=_field(data, "endTime", "end_time"),
        vehicle_info=_field(data, "vehicleInfo", "vehicle_info"),
        special_requests=_field(data, "specialRequests", "special_requests"),
    )
    return jsonify(booking.to_dict()), 201


# ---------- DRIVERS: my bookings ----------
@booking_bp.get("/bookings")
@login_required
def my_bookings():
    status = request.args.get("status")
    if status and status not in BOOKING_STATUSES:
        return jsonify(error="Invalid status"), 400

    user_id = request.args.get("userId", type=int) or g.user.id
    if user_id != g.user.id:
        authorize(g.user, "admin")

    rows = get_engine().bookings_for_user(user_id, status=status)
    return jsonify(_enrich(rows)), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    engine = get_engine()
    booking = engine.get_booking(booking_id)
    authorize(g.user, "booking.view", booking=booking, station=engine.catalog.get_station(booking.station_id))
    return jsonify(_enrich([booking])[0]), 200


# ---------- state machine ----------
@booking_bp.patch("/bookings/<int:booking_id>/status")
@login_required
def update_booking_status(booking_id: int):
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip().lower()
    engine = get_engine()

    if status == CANCELLED:
        booking = engine.cancel_booking(booking_id, g.user, reason=data.get("reason"))
    elif status == CONFIRMED:
        # manual confirmation by the station owner, e.g. paid at the counter
        booking = engine.confirm_booking(booking_id, True, actor=g.user)
    elif status == COMPLETED:
        booking = engine.complete_booking(booking_id, actor=g.user)
    else:
        return jsonify(error="status must be one of confirmed, cancelled, completed"), 400

    return jsonify(booking.to_dict()), 200


@booking_bp.post("/bookings/<int:booking_id>/pay")
@login_required
def pay_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    booking, payment = get_engine().pay_booking(
        booking_id,
        g.user,
        payment_method=(_field(data, "paymentMethod", "payment_method") or "upi").lower(),
        upi_id=_field(data, "upiId", "upi_id"),
        payment_token=_field(data, "paymentToken", "payment_token"),
    )
    return jsonify(booking=booking.to_dict(), payment=payment.to_dict()), 200


# ---------- availability ----------
@booking_bp.get("/ports/<int:port_id>/availability")
def availability(port_id: int):
    engine = get_engine()
    port = engine.catalog.require_port(port_id)

    date_str = request.args.get("date")
    day = parse_date(date_str) if date_str else None
    # status at a chosen instant, platform wall-clock unless an offset is given
    at_str = request.args.get("at")
    at = parse_instant(at_str, engine.zone) if at_str else engine.clock()
    body = port_availability(port, at, day=day)
    return jsonify(body), 200


@booking_bp.get("/ports/<int:port_id>/intervals")
def intervals(port_id: int):
    date_str = request.args.get("date")
    if not date_str:
        raise ValidationError("date is required (YYYY-MM-DD)")
    windows = get_engine().list_active_intervals(port_id, date_str)
    return jsonify([w.to_dict() for w in windows]), 200


@booking_bp.get("/stations/<int:station_id>/bookings")
@login_required
def station_bookings(station_id: int):
    engine = get_engine()
    station = db.session.get(Station, station_id)
    if station is None:
        raise NotFoundError("Station not found", station_id=station_id)
    authorize(g.user, "station.bookings", station=station)

    status = request.args.get("status")
    rows = engine.bookings_for_station(station_id, status=status, day=request.args.get("date"))
    return jsonify(_enrich(rows)), 200
