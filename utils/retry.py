import logging
import time
from functools import wraps

from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError

from models import db
from services.errors import DependencyError

logger = logging.getLogger(__name__)


def call_with_retry(fn, *args, attempts: int = 3, backoff_seconds: float = 0.05, **kwargs):
    """
    Run fn, retrying only DependencyError with exponential backoff.
    Every other error propagates on the first raise.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except DependencyError as exc:
            if attempt >= attempts:
                logger.error("Giving up on %s after %d attempts: %s", getattr(fn, "__name__", fn), attempt, exc)
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning("Transient failure in %s (attempt %d/%d): %s", getattr(fn, "__name__", fn), attempt, attempts, exc)
            if delay:
                time.sleep(delay)


def translate_db_errors(what: str):
    """Roll back and turn driver-level failures into DependencyError."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
                db.session.rollback()
                raise DependencyError(f"{what} failed", reason=exc.__class__.__name__) from exc
        return wrapper
    return decorator
