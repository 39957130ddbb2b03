import threading

from app import create_app
from models import db
from models.booking import ACTIVE_STATUSES, Booking
from models.payment import PAYMENT_PAID, Payment
from models.user import User
from services.errors import ConflictError, InvalidStateError


def _race(app, engine, requests, targets=None):
    """
    Fire all (user_id, port_id, start, duration) requests at once; returns
    outcomes in order. `targets` optionally pins request i to its own
    (app, engine) pair.
    """
    targets = targets or [(app, engine)] * len(requests)
    barrier = threading.Barrier(len(requests))
    outcomes = [None] * len(requests)

    def worker(i, user_id, port_id, start, duration):
        target_app, target_engine = targets[i]
        with target_app.app_context():
            try:
                barrier.wait()
                booking = target_engine.request_booking(user_id, port_id, "2024-06-01", start, duration=duration)
                outcomes[i] = ("ok", booking.id)
            except ConflictError:
                outcomes[i] = ("conflict", None)
            except Exception as exc:  # surfaced by the assertions below
                outcomes[i] = ("error", repr(exc))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,) + tuple(r)) for i, r in enumerate(requests)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def _assert_no_overlaps(port_id):
    rows = (
        Booking.query
        .filter(Booking.port_id == port_id, Booking.status.in_(ACTIVE_STATUSES))
        .order_by(Booking.start_time.asc())
        .all()
    )
    for a, b in zip(rows, rows[1:]):
        assert a.end_time <= b.start_time


def test_one_winner_for_overlapping_requests(app, engine, seed):
    requests = [(seed.driver_id, seed.port_id, f"10:{m:02d}", 60) for m in range(0, 50, 5)]
    outcomes = _race(app, engine, requests)

    assert [o for o in outcomes if o[0] == "error"] == []
    assert sum(1 for o in outcomes if o[0] == "ok") == 1
    assert sum(1 for o in outcomes if o[0] == "conflict") == len(requests) - 1
    assert Booking.query.filter_by(port_id=seed.port_id).count() == 1


def test_one_winner_per_overlapping_cluster(app, engine, seed):
    morning = [(seed.driver_id, seed.port_id, "09:00", 60), (seed.other.id, seed.port_id, "09:30", 30),
               (seed.driver_id, seed.port_id, "09:15", 60)]
    evening = [(seed.driver_id, seed.port_id, "18:00", 120), (seed.other.id, seed.port_id, "19:00", 60),
               (seed.driver_id, seed.port_id, "18:30", 60)]
    outcomes = _race(app, engine, morning + evening)

    assert [o for o in outcomes if o[0] == "error"] == []
    assert sum(1 for o in outcomes[:3] if o[0] == "ok") == 1
    assert sum(1 for o in outcomes[3:] if o[0] == "ok") == 1
    _assert_no_overlaps(seed.port_id)


def test_requests_for_different_ports_all_succeed(app, engine, seed):
    requests = [(seed.driver_id, seed.port_id, "10:00", 60), (seed.other.id, seed.port2_id, "10:00", 60)]
    outcomes = _race(app, engine, requests)

    assert [o[0] for o in outcomes] == ["ok", "ok"]


def test_concurrent_cancel_and_rebook(app, engine, seed):
    booking = engine.request_booking(seed.driver_id, seed.port_id, "2024-06-01", "10:00", duration=60)
    engine.cancel_booking(booking.id, seed.driver)

    requests = [(seed.other.id, seed.port_id, "10:00", 60) for _ in range(4)]
    outcomes = _race(app, engine, requests)

    assert sum(1 for o in outcomes if o[0] == "ok") == 1
    _assert_no_overlaps(seed.port_id)


def test_two_app_instances_share_one_winner(app, app_config, clock, engine, seed):
    # a second worker process: same database file, its own in-process locks
    second = create_app(app_config, clock=clock)
    second_engine = second.extensions["reservation_engine"]
    assert second_engine.locks is not engine.locks

    requests, targets = [], []
    for i in range(8):
        user_id = seed.driver_id if i % 2 else seed.other.id
        requests.append((user_id, seed.port_id, "10:00" if i % 2 else "10:30", 60))
        targets.append((app, engine) if i % 2 else (second, second_engine))
    try:
        outcomes = _race(app, engine, requests, targets=targets)
    finally:
        with second.app_context():
            db.engine.dispose()

    assert [o for o in outcomes if o[0] == "error"] == []
    assert sum(1 for o in outcomes if o[0] == "ok") == 1
    assert Booking.query.filter_by(port_id=seed.port_id).count() == 1
    _assert_no_overlaps(seed.port_id)


def test_concurrent_payments_charge_once(app, engine, seed):
    booking_id = engine.request_booking(seed.driver_id, seed.port_id, "2024-06-01", "10:00", duration=60).id
    driver_id = seed.driver_id
    workers = 6
    barrier = threading.Barrier(workers)
    outcomes = [None] * workers

    def worker(i):
        with app.app_context():
            try:
                actor = db.session.get(User, driver_id)
                barrier.wait()
                engine.pay_booking(booking_id, actor, upi_id="driver@okaxis")
                outcomes[i] = "ok"
            except (ConflictError, InvalidStateError):
                outcomes[i] = "refused"
            except Exception as exc:  # surfaced by the assertions below
                outcomes[i] = repr(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["ok"] + ["refused"] * (workers - 1)
    assert len(engine.payments.charges) == 1
    assert Payment.query.filter_by(booking_id=booking_id).count() == 1
    assert Payment.query.filter_by(booking_id=booking_id, status=PAYMENT_PAID).count() == 1
    db.session.expire_all()
    assert engine.get_booking(booking_id).status == "confirmed"
