"""
Payment providers.

The engine only sees a PaymentResult (paid or not); the amount is always
quoted here from catalog data, never taken from the client.
"""
import logging
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

import stripe

from services.errors import ConfigurationError, DependencyError, ValidationError

logger = logging.getLogger(__name__)

UPI_ID_RE = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9]+$")


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    provider: str
    reference: str = None
    failure_reason: str = None


def validate_upi_id(upi_id) -> str:
    upi_id = (upi_id or "").strip() if isinstance(upi_id, str) else ""
    if not UPI_ID_RE.match(upi_id):
        raise ValidationError("Invalid UPI ID. Expected something like name@bank")
    return upi_id


def quote_amount(station, port, duration_minutes: int, load_factor: float = 0.85) -> int:
    """
    Estimated charge in the smallest currency unit:
    price/kWh x rated kW x hours x average load factor.
    """
    price = Decimal(str(station.price_per_kwh or 0))
    power = Decimal(port.power_kw or station.power_kw or 0)
    hours = Decimal(duration_minutes) / Decimal(60)
    rupees = price * power * hours * Decimal(str(load_factor))
    return int((rupees * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentProvider:
    name = "BASE"

    def charge(self, amount: int, currency: str, reference: str, payment_method: str) -> PaymentResult:
        raise NotImplementedError


class FakePaymentProvider(PaymentProvider):
    """Deterministic stand-in: every method succeeds unless listed in `declined`."""
    name = "FAKE"

    def __init__(self, declined=None):
        self.declined = set(declined or ())
        self.charges = []

    def charge(self, amount, currency, reference, payment_method):
        self.charges.append((amount, currency, reference, payment_method))
        if payment_method in self.declined:
            return PaymentResult(False, self.name, reference=f"fake_{reference}", failure_reason="declined")
        return PaymentResult(True, self.name, reference=f"fake_{reference}")


class StripePaymentProvider(PaymentProvider):
    name = "STRIPE"

    def __init__(self, api_key: str):
        self.api_key = api_key

    def charge(self, amount, currency, reference, payment_method):
        if not self.api_key:
            raise DependencyError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount,
                currency=currency.lower(),
                payment_method=payment_method,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"booking_reference": reference},
                idempotency_key=f"booking-{reference}",
            )
        except stripe.CardError as exc:
            return PaymentResult(False, self.name, failure_reason=exc.user_message or "card_declined")
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            logger.warning("Stripe unavailable for %s: %s", reference, exc)
            raise DependencyError("Payment provider unavailable") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe rejected payment for %s: %s", reference, exc)
            raise DependencyError("Payment provider error") from exc

        if intent["status"] == "succeeded":
            return PaymentResult(True, self.name, reference=intent["id"])
        return PaymentResult(False, self.name, reference=intent["id"], failure_reason=intent["status"])


def build_payment_provider(config) -> PaymentProvider:
    kind = (config.get("PAYMENT_PROVIDER") or "fake").lower()
    if kind == "stripe":
        return StripePaymentProvider(config.get("STRIPE_SECRET_KEY"))
    if kind == "fake":
        return FakePaymentProvider(config.get("PAYMENT_DECLINED_METHODS"))
    raise ConfigurationError(f"Unknown PAYMENT_PROVIDER {kind!r}")
