from decimal import Decimal

from models import db
from models.port import Port
from models.station import Station
from models.user import Role
from security.rbac import RoleName

DEFAULT_ROLES = [r.value for r in RoleName]

# Demo catalog of the first deployment (Lonavala, Maharashtra)
DEMO_STATIONS = [
    {
        "name": "Lonavala Central EV Hub",
        "address": "Near Lonavala Railway Station, Lonavala",
        "latitude": 18.7546, "longitude": 73.4039,
        "price_per_kwh": Decimal("12.50"), "power_kw": 50,
        "connector_types": ["CCS", "CHAdeMO"],
        "description": "Centrally located charging station near Lonavala railway station",
        "amenities": ["Restrooms", "Cafe", "WiFi"],
        "rating": 4.8, "review_count": 36,
        "ports": [("Port #1", "CCS Combo", 50), ("Port #2", "CCS Combo", 50),
                  ("Port #3", "CHAdeMO", 50), ("Port #4", "CHAdeMO", 50)],
    },
    {
        "name": "Bushi Dam ECO Charging",
        "address": "Near Bushi Dam, Lonavala",
        "latitude": 18.7629, "longitude": 73.4048,
        "price_per_kwh": Decimal("11.75"), "power_kw": 22,
        "connector_types": ["Type 2"],
        "description": "Scenic charging location near Bushi Dam",
        "amenities": ["Parking", "Restaurant", "Scenic View"],
        "rating": 4.5, "review_count": 24,
        "ports": [("Port #1", "Type 2", 22), ("Port #2", "Type 2", 22)],
    },
    {
        "name": "Karla Caves Supercharger",
        "address": "NH4 Highway, Near Karla Caves",
        "latitude": 18.7858, "longitude": 73.4537,
        "price_per_kwh": Decimal("13.25"), "power_kw": 150,
        "connector_types": ["CCS", "CHAdeMO", "Tesla"],
        "description": "Ultra-fast charging with 150kW capability near Karla Caves",
        "amenities": ["Restrooms", "Shop", "Lounge", "WiFi"],
        "rating": 4.9, "review_count": 42,
        "ports": [("Port #1", "CCS Combo", 150), ("Port #2", "CCS Combo", 150),
                  ("Port #3", "CHAdeMO", 100), ("Port #4", "Tesla", 150), ("Port #5", "Tesla", 150)],
    },
    {
        "name": "Tiger Point EV Station",
        "address": "Tiger Point, Lonavala",
        "latitude": 18.7122, "longitude": 73.3882,
        "price_per_kwh": Decimal("12.80"), "power_kw": 75,
        "connector_types": ["CCS", "Type 2"],
        "description": "Convenient charging near Tiger Point with valley views",
        "amenities": ["Restrooms", "Coffee Shop", "Scenic View"],
        "rating": 4.7, "review_count": 28,
        "ports": [("Port #1", "CCS Combo", 75), ("Port #2", "Type 2", 22)],
    },
]

def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()

def seed_demo_catalog() -> int:
    """Insert the demo stations that are missing (matched by name). Returns how many were added."""
    existing = {s.name for s in Station.query.all()}
    added = 0
    for entry in DEMO_STATIONS:
        if entry["name"] in existing:
            continue
        fields = {k: v for k, v in entry.items() if k != "ports"}
        station = Station(**fields)
        db.session.add(station)
        db.session.flush()
        for name, connector_type, power_kw in entry["ports"]:
            db.session.add(Port(station_id=station.id, name=name, connector_type=connector_type, power_kw=power_kw))
        added += 1
    db.session.commit()
    return added
