import logging

from flask import Flask, jsonify
from sqlalchemy import inspect
from config import Config
from routes import health_bp, auth_bp, stations_bp, booking_bp, admin_bp

from models import db
from flask_migrate import Migrate
from services.errors import ReservationError
from services.reservations import init_engine
from utils.seed import seed_roles
from utils.auth_context import load_current_user
from security.csrf import csrf_protect

logger = logging.getLogger(__name__)


def create_app(config_object=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(stations_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    init_engine(app, clock=clock)

    # Seed default roles once the schema exists (safe & idempotent)
    with app.app_context():
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        return csrf_protect()

    @app.errorhandler(ReservationError)
    def _reservation_error(exc):
        db.session.rollback()
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.__class__.__name__, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from models.user import User, Role
from security.rbac import RoleName
from services.reservations import get_engine
from utils.seed import seed_demo_catalog

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name=RoleName.ADMIN.value).first()
        if not admin_role:
            admin_role = Role(name=RoleName.ADMIN.value)
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("seed-catalog")
    def seed_catalog():
        """Load the demo stations and ports."""
        seed_roles()
        added = seed_demo_catalog()
        click.echo(f"{added} station(s) added")

    @app.cli.command("complete-elapsed")
    def complete_elapsed():
        """Complete confirmed bookings whose window has ended (run from cron)."""
        completed = get_engine().complete_elapsed()
        click.echo(f"{len(completed)} booking(s) completed")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
