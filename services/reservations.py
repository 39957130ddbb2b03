"""
Reservation engine.

Decides whether a (port, window) request may be granted and moves bookings
through their lifecycle:

    pending -> confirmed -> completed
    pending -> cancelled
    confirmed -> cancelled

Active bookings (pending/confirmed) on one port never overlap. The
check-then-insert in request_booking runs while holding two locks on the
port: an in-process lock, and the database write lock taken by bumping
ports.lock_version before the overlap query (BEGIN IMMEDIATE first on
SQLite). Of two concurrent overlapping requests exactly one commits and the
other sees ConflictError, whether they come from one worker or several.
Locks are per port; requests for different ports never wait on each other.
"""
import logging
import threading
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import (
    ACTIVE_STATUSES, CANCELLED, COMPLETED, CONFIRMED, PENDING, Booking, can_transition,
)
from models.payment import PAYMENT_FAILED, PAYMENT_INIT, PAYMENT_PAID, Payment
from models.port import Port
from security.rbac import authorize
from services.availability import active_windows, refresh_port_status
from services.catalog import CatalogStore
from services.errors import (
    ConflictError, DependencyError, InvalidStateError, NotFoundError, PaymentDeclinedError, ReservationError,
    ValidationError,
)
from services.payments import PaymentResult, build_payment_provider, quote_amount, validate_upi_id
from utils.audit import log_event
from utils.retry import call_with_retry, translate_db_errors
from utils.timewindow import TimeWindow, day_bounds, parse_date, parse_window, resolve_zone, zone_clock

logger = logging.getLogger(__name__)


class PortLockRegistry:
    """One lock per port id, created on first use."""

    def __init__(self):
        self._locks = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, port_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(port_id)
            if lock is None:
                lock = self._locks[port_id] = threading.Lock()
            return lock


def _paid(payment_result) -> bool:
    if isinstance(payment_result, PaymentResult):
        return payment_result.success
    return bool(payment_result)


class ReservationEngine:
    def __init__(self, catalog: CatalogStore, payments=None, clock=None,
                 min_minutes: int = 30, max_minutes: int = 120, allow_past: bool = False,
                 retry_attempts: int = 3, retry_backoff: float = 0.05, locks: PortLockRegistry = None, zone=None):
        self.catalog = catalog
        self.payments = payments
        self.zone = zone or resolve_zone("UTC")
        self.clock = clock or zone_clock(self.zone)
        self.min_minutes = min_minutes
        self.max_minutes = max_minutes
        self.allow_past = allow_past
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.locks = locks or PortLockRegistry()

    @classmethod
    def from_config(cls, config, clock=None):
        # a bad zone is an operator mistake; fail at startup, not per request
        zone = resolve_zone(config.get("PLATFORM_TIMEZONE", "UTC"))
        attempts = config.get("DEPENDENCY_RETRY_ATTEMPTS", 3)
        backoff = config.get("DEPENDENCY_RETRY_BACKOFF_SECONDS", 0.05)
        return cls(
            catalog=CatalogStore(retry_attempts=attempts, retry_backoff=backoff),
            payments=build_payment_provider(config),
            clock=clock or zone_clock(zone),
            min_minutes=config.get("BOOKING_MIN_DURATION_MINUTES", 30),
            max_minutes=config.get("BOOKING_MAX_DURATION_MINUTES", 120),
            allow_past=config.get("BOOKING_ALLOW_PAST", False),
            retry_attempts=attempts,
            retry_backoff=backoff,
            zone=zone,
        )

    def _with_retry(self, fn, *args, **kwargs):
        return call_with_retry(fn, *args, attempts=self.retry_attempts,
                               backoff_seconds=self.retry_backoff, **kwargs)

    # ---------- reads ----------

    def get_booking(self, booking_id: int) -> Booking:
        booking = self._with_retry(translate_db_errors("Booking lookup")(db.session.get), Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", booking_id=booking_id)
        return booking

    def list_active_intervals(self, port_id: int, day) -> list:
        self.catalog.require_port(port_id)
        return active_windows(port_id, within=day_bounds(parse_date(day)))

    def bookings_for_user(self, user_id: int, status: str = None):
        q = Booking.query.filter_by(user_id=user_id)
        if status:
            q = q.filter_by(status=status)
        return q.order_by(Booking.created_at.desc(), Booking.id.desc()).all()

    def bookings_for_station(self, station_id: int, status: str = None, day=None):
        q = Booking.query.filter_by(station_id=station_id)
        if status:
            q = q.filter_by(status=status)
        if day:
            bounds = day_bounds(parse_date(day))
            q = q.filter(Booking.start_time < bounds.end, Booking.end_time > bounds.start)
        return q.order_by(Booking.start_time.asc(), Booking.id.asc()).all()

    def all_bookings(self, status: str = None, limit: int = 200):
        q = Booking.query
        if status:
            q = q.filter_by(status=status)
        return q.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).all()

    # ---------- RequestBooking ----------

    def request_booking(self, user_id: int, port_id, day, start_time, duration=None, end_time=None,
                        vehicle_info=None, special_requests=None) -> Booking:
        if not isinstance(port_id, int) or isinstance(port_id, bool):
            raise ValidationError("portId must be an integer")
        window = parse_window(day, start_time, duration=duration, end_time=end_time,
                              min_minutes=self.min_minutes, max_minutes=self.max_minutes)
        now = self.clock()
        if not self.allow_past and window.start < now:
            raise ValidationError("Cannot book a window that has already started")

        port = self.catalog.require_port(port_id)
        if port.under_maintenance:
            raise ConflictError("Port is under maintenance", port_id=port_id)

        try:
            return self._with_retry(
                self._admit, user_id, port_id, port.station_id, window, now,
                vehicle_info=_clean_text(vehicle_info, 255),
                special_requests=_clean_text(special_requests, 2000),
            )
        except ConflictError:
            self._audit_conflict(user_id, port_id, window)
            raise

    def _audit_conflict(self, user_id, port_id, window: TimeWindow):
        # the ConflictError is the answer; a failed audit write must not change it
        try:
            log_event("BOOKING_CONFLICT", user_id=user_id, entity="port", entity_id=port_id,
                      metadata={"start": window.start, "end": window.end})
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not record conflict on port %s", port_id)

    def claim_port(self, port_id: int) -> Port:
        """
        Take the database write lock on a port for the current transaction.
        Call with the port's in-process lock held; the lock is released by
        the next commit or rollback.
        """
        conn = db.session.connection()
        if conn.dialect.name == "sqlite":
            raw = conn.connection.driver_connection
            if not raw.in_transaction:
                # take RESERVED up front so a waiting writer gets the busy timeout
                conn.exec_driver_sql("BEGIN IMMEDIATE")
        bumped = db.session.execute(
            update(Port)
            .where(Port.id == port_id)
            .values(lock_version=Port.lock_version + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not bumped:
            raise NotFoundError("Port not found", port_id=port_id)
        return db.session.get(Port, port_id, populate_existing=True)

    @translate_db_errors("Booking write")
    def _admit(self, user_id, port_id, station_id, window: TimeWindow, now: datetime,
               vehicle_info=None, special_requests=None) -> Booking:
        with self.locks.lock_for(port_id):
            try:
                port = self.claim_port(port_id)
                if port.under_maintenance:
                    raise ConflictError("Port is under maintenance", port_id=port_id)

                clash = self._first_overlap(port_id, window)
                if clash is not None:
                    raise ConflictError(
                        "Port already reserved for an overlapping window",
                        port_id=port_id,
                        conflicting_window={"start": clash.start_time.isoformat(), "end": clash.end_time.isoformat()},
                    )

                booking = Booking(
                    user_id=user_id,
                    station_id=station_id,
                    port_id=port_id,
                    date=window.start.date(),
                    start_time=window.start,
                    end_time=window.end,
                    duration_minutes=window.duration_minutes,
                    status=PENDING,
                    vehicle_info=vehicle_info,
                    special_requests=special_requests,
                )
                db.session.add(booking)
                db.session.flush()

                refresh_port_status(port, now)
                log_event("BOOKING_CREATE", user_id=user_id, entity="booking", entity_id=booking.id,
                          metadata={"port_id": port_id, "start": window.start, "end": window.end}, commit=False)
                db.session.commit()
            except ReservationError:
                db.session.rollback()
                raise
        logger.info("Booking %s admitted on port %s [%s, %s)", booking.id, port_id, window.start, window.end)
        return booking

    def _first_overlap(self, port_id: int, window: TimeWindow):
        return (
            Booking.query
            .filter(
                Booking.port_id == port_id,
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.start_time < window.end,
                Booking.end_time > window.start,
            )
            .order_by(Booking.start_time.asc())
            .first()
        )

    # ---------- state transitions ----------

    def _transition(self, booking_id: int, target: str, actor_id=None, action: str = None, **fields) -> Booking:
        booking = self.get_booking(booking_id)
        return self._with_retry(self._apply_transition, booking.port_id, booking_id, target,
                                actor_id=actor_id, action=action, **fields)

    @translate_db_errors("Booking update")
    def _apply_transition(self, port_id, booking_id, target, actor_id=None, action=None, **fields) -> Booking:
        with self.locks.lock_for(port_id):
            try:
                port = self.claim_port(port_id)
                booking = db.session.get(Booking, booking_id, populate_existing=True)
                if booking is None:
                    raise NotFoundError("Booking not found", booking_id=booking_id)
                if not can_transition(booking.status, target):
                    raise InvalidStateError(
                        f"Cannot change booking from {booking.status} to {target}",
                        status=booking.status,
                    )

                previous = booking.status
                booking.status = target
                for name, value in fields.items():
                    setattr(booking, name, value)
                db.session.flush()

                refresh_port_status(port, self.clock())
                log_event(action or f"BOOKING_{target.upper()}", user_id=actor_id, entity="booking",
                          entity_id=booking.id, metadata={"from": previous, "to": target}, commit=False)
                db.session.commit()
            except ReservationError:
                db.session.rollback()
                raise
        return booking

    def confirm_booking(self, booking_id: int, payment_result, actor=None) -> Booking:
        """
        pending -> confirmed. A failed payment never cancels; the booking stays
        pending and the caller decides whether to cancel it.
        """
        booking = self.get_booking(booking_id)
        if actor is not None:
            authorize(actor, "booking.confirm", booking=booking, station=self.catalog.get_station(booking.station_id))
        if booking.status != PENDING:
            raise InvalidStateError(f"Cannot confirm a {booking.status} booking", status=booking.status)
        if not _paid(payment_result):
            raise PaymentDeclinedError("Payment was not successful; booking remains pending", booking_id=booking_id)
        return self._transition(booking_id, CONFIRMED, actor_id=actor.id if actor else booking.user_id,
                                action="BOOKING_CONFIRM", confirmed_at=datetime.utcnow())

    def cancel_booking(self, booking_id: int, actor, reason: str = None) -> Booking:
        booking = self.get_booking(booking_id)
        authorize(actor, "booking.cancel", booking=booking, station=self.catalog.get_station(booking.station_id))
        if not booking.is_active:
            raise InvalidStateError(f"Cannot cancel a {booking.status} booking", status=booking.status)
        return self._transition(booking_id, CANCELLED, actor_id=actor.id, action="BOOKING_CANCEL",
                                cancelled_at=datetime.utcnow(), cancelled_by=actor.id,
                                cancel_reason=_clean_text(reason, 120))

    def complete_booking(self, booking_id: int, actor=None) -> Booking:
        booking = self.get_booking(booking_id)
        if actor is not None:
            authorize(actor, "booking.complete", booking=booking, station=self.catalog.get_station(booking.station_id))
        if booking.status != CONFIRMED:
            raise InvalidStateError(f"Cannot complete a {booking.status} booking", status=booking.status)
        return self._transition(booking_id, COMPLETED, actor_id=actor.id if actor else None,
                                action="BOOKING_COMPLETE", completed_at=datetime.utcnow())

    def complete_elapsed(self, now: datetime = None) -> list:
        """
        Complete every confirmed booking whose window has ended. Meant for an
        external scheduler; nothing in the request path calls it.
        """
        now = now or self.clock()
        due = (
            Booking.query
            .filter(Booking.status == CONFIRMED, Booking.end_time <= now)
            .order_by(Booking.end_time.asc())
            .all()
        )
        completed = []
        for booking in due:
            try:
                self.complete_booking(booking.id)
            except InvalidStateError:
                # cancelled since we read it
                logger.info("Booking %s changed state before completion; skipped", booking.id)
                continue
            completed.append(booking.id)
        return completed

    # ---------- payment ----------

    def pay_booking(self, booking_id: int, actor, payment_method: str = "upi", upi_id: str = None,
                    payment_token: str = None) -> tuple:
        """
        Charge the server-side quote for a pending booking and confirm it.
        Returns (booking, payment).
        """
        booking = self.get_booking(booking_id)
        authorize(actor, "booking.pay", booking=booking)
        if booking.status != PENDING:
            raise InvalidStateError(f"Cannot pay for a {booking.status} booking", status=booking.status)
        instrument = _payment_instrument(payment_method, upi_id, payment_token)

        station = self.catalog.require_station(booking.station_id)
        port = self.catalog.require_port(booking.port_id)
        amount = quote_amount(station, port, booking.duration_minutes,
                              current_app.config.get("PAYMENT_LOAD_FACTOR", 0.85))
        currency = current_app.config.get("PAYMENT_CURRENCY", "INR")

        payment, attempt = self._with_retry(
            self._open_payment, booking.port_id, booking.id, actor.id, payment_method, amount, currency,
        )

        # same booking and attempt number, same provider idempotency key
        reference = f"{booking.id}-{attempt}"
        try:
            result = self.payments.charge(amount, currency, reference, instrument)
        except DependencyError as exc:
            self._close_payment(payment, PAYMENT_FAILED, actor.id, failure_reason=exc.message)
            raise

        payment.provider_reference = result.reference
        if not result.success:
            self._close_payment(payment, PAYMENT_FAILED, actor.id, failure_reason=result.failure_reason)
            raise PaymentDeclinedError("Payment was declined; booking remains pending",
                                       booking_id=booking.id, payment_id=payment.id)
        self._close_payment(payment, PAYMENT_PAID, actor.id)

        try:
            booking = self.confirm_booking(booking.id, result)
        except InvalidStateError:
            # TODO: issue a refund once PaymentProvider exposes refund()
            payment.failure_reason = "booking no longer pending"
            db.session.commit()
            raise
        return booking, payment

    @translate_db_errors("Payment write")
    def _open_payment(self, port_id, booking_id, user_id, method, amount, currency):
        """
        Record an INIT payment for a pending booking. At most one attempt per
        booking is open or paid at a time; returns (payment, attempt number).
        """
        with self.locks.lock_for(port_id):
            try:
                self.claim_port(port_id)
                booking = db.session.get(Booking, booking_id, populate_existing=True)
                if booking.status != PENDING:
                    raise InvalidStateError(f"Cannot pay for a {booking.status} booking", status=booking.status)

                previous = Payment.query.filter_by(booking_id=booking_id).all()
                if any(p.status in (PAYMENT_INIT, PAYMENT_PAID) for p in previous):
                    raise ConflictError("A payment for this booking is already in progress", booking_id=booking_id)

                payment = Payment(
                    booking_id=booking_id,
                    user_id=user_id,
                    provider=self.payments.name,
                    method=method,
                    amount=amount,
                    currency=currency,
                )
                db.session.add(payment)
                db.session.commit()
            except ReservationError:
                db.session.rollback()
                raise
        return payment, len(previous) + 1

    def _close_payment(self, payment: Payment, status: str, user_id, failure_reason=None):
        payment.status = status
        if status == PAYMENT_PAID:
            payment.paid_at = datetime.utcnow()
            log_event("PAYMENT_PAID", user_id=user_id, entity="payment", entity_id=payment.id,
                      metadata={"booking_id": payment.booking_id, "amount": payment.amount,
                                "currency": payment.currency}, commit=False)
        else:
            payment.failure_reason = (failure_reason or "failed")[:255]
            log_event("PAYMENT_FAILED", user_id=user_id, entity="payment", entity_id=payment.id,
                      metadata={"booking_id": payment.booking_id, "reason": payment.failure_reason}, commit=False)
        db.session.commit()


def _payment_instrument(payment_method: str, upi_id=None, payment_token=None) -> str:
    if payment_method == "upi":
        return validate_upi_id(upi_id)
    if payment_method == "card":
        if not payment_token:
            raise ValidationError("payment_token required for card payments")
        return payment_token
    raise ValidationError("payment_method must be upi or card")


def _clean_text(value, limit: int):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("Expected a string value")
    value = value.strip()
    return value[:limit] or None


def init_engine(app, clock=None) -> ReservationEngine:
    engine = ReservationEngine.from_config(app.config, clock=clock)
    app.extensions["reservation_engine"] = engine
    return engine


def get_engine() -> ReservationEngine:
    return current_app.extensions["reservation_engine"]
