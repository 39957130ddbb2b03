from .health import health_bp
from .auth import auth_bp
from .stations import stations_bp
from .booking import booking_bp
from .admin import admin_bp
