from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .station import Station
from .port import Port
from .booking import Booking
from .payment import Payment
