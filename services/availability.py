"""
Port availability projector.

A port's display status is derived from its active bookings:

    maintenance  - the operator took the port out of service
    in-use       - an active (pending/confirmed) booking covers the instant
    available    - otherwise

Bookings whose window has passed but that were never completed still count
as active; only CompleteBooking/CancelBooking release them. Projection never
writes, except refresh_port_status which the engine calls inside its own
transaction to keep the cached Port.status column in step.
"""
from datetime import datetime

from models.booking import ACTIVE_STATUSES, Booking
from models.port import PORT_AVAILABLE, PORT_IN_USE, PORT_MAINTENANCE, Port
from utils.timewindow import TimeWindow, day_bounds, parse_date


def project_status(port: Port, windows, at: datetime) -> str:
    if port.under_maintenance:
        return PORT_MAINTENANCE
    if any(w.contains(at) for w in windows):
        return PORT_IN_USE
    return PORT_AVAILABLE


def active_windows(port_id: int, within: TimeWindow = None):
    """Ordered windows of the port's active bookings, optionally clipped to `within`."""
    q = Booking.query.filter(
        Booking.port_id == port_id,
        Booking.status.in_(ACTIVE_STATUSES),
    )
    if within is not None:
        q = q.filter(Booking.start_time < within.end, Booking.end_time > within.start)
    rows = q.order_by(Booking.start_time.asc(), Booking.id.asc()).all()
    return [TimeWindow(b.start_time, b.end_time) for b in rows]


def project_ports(ports, at: datetime) -> dict:
    """
    {port_id: status} for many ports in a single query.
    """
    ports = list(ports)
    if not ports:
        return {}
    port_ids = [p.id for p in ports]
    busy = {
        row.port_id
        for row in Booking.query.with_entities(Booking.port_id).filter(
            Booking.port_id.in_(port_ids),
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time <= at,
            Booking.end_time > at,
        ).distinct()
    }
    out = {}
    for p in ports:
        if p.under_maintenance:
            out[p.id] = PORT_MAINTENANCE
        elif p.id in busy:
            out[p.id] = PORT_IN_USE
        else:
            out[p.id] = PORT_AVAILABLE
    return out


def covering_windows(port_id: int, at: datetime):
    rows = Booking.query.filter(
        Booking.port_id == port_id,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.start_time <= at,
        Booking.end_time > at,
    ).all()
    return [TimeWindow(b.start_time, b.end_time) for b in rows]


def port_availability(port: Port, at: datetime, day=None) -> dict:
    """Status at `at` plus the busy intervals of `day` (defaults to the day of `at`)."""
    day = parse_date(day) if day else at.date()
    busy = active_windows(port.id, within=day_bounds(day))
    return {
        "port_id": port.id,
        "date": day.isoformat(),
        "at": at.isoformat(),
        "status": project_status(port, covering_windows(port.id, at), at),
        "busy": [w.to_dict() for w in busy],
    }


def refresh_port_status(port: Port, at: datetime) -> str:
    status = project_status(port, covering_windows(port.id, at), at)
    if port.status != status:
        port.status = status
        port.status_updated_at = datetime.utcnow()
    return status
