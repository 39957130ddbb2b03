from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.port import Port
from models.station import Station
from models.user import Role, User
from security.password import hash_password
from security.session import create_session
from utils.seed import seed_roles

PASSWORD = "correct-horse-1"


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 6, 1, 8, 0))


@pytest.fixture
def app_config(tmp_path):
    class _Config(TestConfig):
        # a file DB so worker threads, and a second app, get their own connections
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "chargeport-test.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

    return _Config


@pytest.fixture
def app(app_config, clock):
    app = create_app(app_config, clock=clock)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def engine(app):
    return app.extensions["reservation_engine"]


@pytest.fixture
def client(app):
    return app.test_client()


def _user(email, *role_names):
    user = User(email=email, password_hash=hash_password(PASSWORD, rounds=4))
    user.roles = Role.query.filter(Role.name.in_(role_names)).all()
    db.session.add(user)
    db.session.flush()
    return user


@pytest.fixture
def seed(app):
    driver = _user("driver@example.com", "USER")
    other = _user("other@example.com", "USER")
    owner = _user("owner@example.com", "STATION_OWNER")
    stranger_owner = _user("owner2@example.com", "STATION_OWNER")
    admin = _user("admin@example.com", "ADMIN")

    station = Station(
        name="Lonavala Central EV Hub",
        address="Near Lonavala Railway Station, Lonavala",
        latitude=18.7546,
        longitude=73.4039,
        price_per_kwh=Decimal("12.50"),
        power_kw=50,
        connector_types=["CCS", "CHAdeMO"],
        owner_user_id=owner.id,
    )
    db.session.add(station)
    db.session.flush()
    port = Port(station_id=station.id, name="Port #1", connector_type="CCS Combo", power_kw=50)
    port2 = Port(station_id=station.id, name="Port #2", connector_type="CHAdeMO", power_kw=50)
    db.session.add_all([port, port2])
    db.session.commit()

    return SimpleNamespace(
        driver=driver, other=other, owner=owner, stranger_owner=stranger_owner, admin=admin,
        station=station, port=port, port2=port2,
        driver_id=driver.id, station_id=station.id, port_id=port.id, port2_id=port2.id,
    )


@pytest.fixture
def auth(seed):
    tokens = {}

    def headers(user):
        if user.id not in tokens:
            tokens[user.id] = create_session(user.id)
        return {"Authorization": f"Bearer {tokens[user.id]}"}

    return headers
