from datetime import datetime
from models.db import db

class Station(db.Model):
    __tablename__ = "stations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=False)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)

    price_per_kwh = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    power_kw = db.Column(db.Integer, nullable=True)
    connector_types = db.Column(db.JSON, nullable=False, default=list)
    description = db.Column(db.Text, nullable=True)
    amenities = db.Column(db.JSON, nullable=False, default=list)
    rating = db.Column(db.Float, nullable=True)
    review_count = db.Column(db.Integer, nullable=False, default=0)

    # stations seeded by the platform have no owner
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    ports = db.relationship("Port", back_populates="station", order_by="Port.id")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "price_per_kwh": float(self.price_per_kwh) if self.price_per_kwh is not None else None,
            "power_kw": self.power_kw,
            "connector_types": list(self.connector_types or []),
            "description": self.description,
            "amenities": list(self.amenities or []),
            "rating": self.rating,
            "review_count": self.review_count,
            "owner_user_id": self.owner_user_id,
        }
