from enum import Enum
from functools import wraps
from flask import g, jsonify

from services.errors import ForbiddenError


class RoleName(str, Enum):
    USER = "USER"
    STATION_OWNER = "STATION_OWNER"
    ADMIN = "ADMIN"


# strongest first
ROLE_PRECEDENCE = (RoleName.ADMIN, RoleName.STATION_OWNER, RoleName.USER)

SELF_SERVICE_ROLES = (RoleName.USER, RoleName.STATION_OWNER)


def actor_role(user) -> RoleName:
    names = {r.name for r in getattr(user, "roles", None) or []}
    for role in ROLE_PRECEDENCE:
        if role.value in names:
            return role
    return RoleName.USER


def _owns_station(user, station) -> bool:
    return station is not None and station.owner_user_id is not None and station.owner_user_id == user.id


def _owns_booking(user, booking) -> bool:
    return booking is not None and booking.user_id == user.id


def is_allowed(user, action: str, booking=None, station=None) -> bool:
    """
    The one place that decides who may do what.

    actions:
      booking.view, booking.cancel   - booking owner, station owner, admin
      booking.pay                    - booking owner
      booking.confirm, booking.complete, station.bookings,
      station.update, port.create, port.maintenance
                                     - station owner, admin
      station.create                 - station owner role, admin
      admin                          - admin
    """
    if user is None:
        return False
    role = actor_role(user)
    if role is RoleName.ADMIN:
        # admins never pay on behalf of a driver
        return action != "booking.pay"

    if action in ("booking.view", "booking.cancel"):
        return _owns_booking(user, booking) or _owns_station(user, station)
    if action == "booking.pay":
        return _owns_booking(user, booking)
    if action in ("booking.confirm", "booking.complete", "station.bookings",
                  "station.update", "port.create", "port.maintenance"):
        return _owns_station(user, station)
    if action == "station.create":
        return role is RoleName.STATION_OWNER
    return False


def authorize(user, action: str, booking=None, station=None) -> None:
    if not is_allowed(user, action, booking=booking, station=station):
        raise ForbiddenError("You don't have permission to perform this action", action=action)


def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            user_roles = user.role_names
            if RoleName.ADMIN.value not in user_roles and not user_roles.intersection(set(role_names)):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
