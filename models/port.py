from datetime import datetime
from models.db import db

PORT_AVAILABLE = "available"
PORT_IN_USE = "in-use"
PORT_MAINTENANCE = "maintenance"

PORT_STATUSES = (PORT_AVAILABLE, PORT_IN_USE, PORT_MAINTENANCE)


class Port(db.Model):
    __tablename__ = "ports"

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)

    name = db.Column(db.String(60), nullable=False)
    connector_type = db.Column(db.String(40), nullable=False)
    power_kw = db.Column(db.Integer, nullable=True)

    # operator switch; the only input to "maintenance"
    under_maintenance = db.Column(db.Boolean, default=False, nullable=False)

    # cached projection of the bookings table, never read for scheduling
    status = db.Column(db.String(20), nullable=False, default=PORT_AVAILABLE)
    status_updated_at = db.Column(db.DateTime, nullable=True)

    # bumped by every booking write on this port; the UPDATE takes the write lock
    lock_version = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    station = db.relationship("Station", back_populates="ports")

    def to_dict(self, status=None):
        return {
            "id": self.id,
            "station_id": self.station_id,
            "name": self.name,
            "connector_type": self.connector_type,
            "power_kw": self.power_kw,
            "under_maintenance": self.under_maintenance,
            "status": status or self.status,
        }
