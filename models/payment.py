from datetime import datetime
from models.db import db

PAYMENT_INIT = "INIT"
PAYMENT_PAID = "PAID"
PAYMENT_FAILED = "FAILED"


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    provider = db.Column(db.String(20), nullable=False)      # FAKE, STRIPE
    method = db.Column(db.String(20), nullable=False, default="upi")
    amount = db.Column(db.Integer, nullable=False)            # smallest unit (paise)
    currency = db.Column(db.String(10), nullable=False, default="INR")

    status = db.Column(db.String(20), nullable=False, default=PAYMENT_INIT)  # INIT, PAID, FAILED
    provider_reference = db.Column(db.String(255), nullable=True, index=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "provider": self.provider,
            "method": self.method,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "provider_reference": self.provider_reference,
            "failure_reason": self.failure_reason,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
