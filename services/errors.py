"""
Error taxonomy of the reservation engine.

Handlers never catch these one by one: app.py maps every ReservationError
to a JSON body and its status_code.
"""


class ReservationError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        body.update(self.details)
        return body


class ValidationError(ReservationError):
    status_code = 400


class PaymentDeclinedError(ValidationError):
    status_code = 402


class ForbiddenError(ReservationError):
    status_code = 403


class NotFoundError(ReservationError):
    status_code = 404


class ConflictError(ReservationError):
    status_code = 409


class InvalidStateError(ReservationError):
    status_code = 409


class DependencyError(ReservationError):
    """Catalog, payment or persistence call failed. The only retryable kind."""
    status_code = 503


class ConfigurationError(ValueError):
    """Bad application settings. Raised at startup, never mapped to a response."""
