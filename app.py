import logging

import click
from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User, Role
from routes import health_bp, auth_bp, admin_bp
from security import login_flow
from security.challenge import purge_expired_challenges
from security.csrf import csrf_protect
from security.password import UserPasswordVerifier
from security.session import purge_stale_sessions
from utils.auth_context import load_current_user
from utils.emailer import SmtpNotifier
from utils.events import EventBus

logger = logging.getLogger("storefront_guard")


def setup_logging(level: str = "INFO") -> None:
    # create_app may run many times in one process (tests); add the handler once
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)


def create_app(config_object=Config, credential_verifier=None, notifier=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    setup_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Collaborators are swappable; tests inject fakes here
    app.extensions["credential_verifier"] = credential_verifier or UserPasswordVerifier()
    app.extensions["notifier"] = notifier or SmtpNotifier()
    app.extensions["events"] = EventBus()

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _load_user():
        load_current_user()

    app.before_request(csrf_protect)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        resp.headers["Cache-Control"] = "no-store"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("unlock-account")
    @click.argument("email")
    @click.option("--by", default="cli", help="Recorded as the operator that released the lock.")
    def unlock_account(email, by):
        """Release every open lockout for an email."""
        released = login_flow.unlock_account(email, by=by)
        if not released:
            click.echo("No open lockout")
            return
        click.echo(f"{email.strip().lower()} unlocked ({released} lockout(s) released)")

    @app.cli.command("purge-expired")
    def purge_expired():
        """Delete expired, never-verified challenges and long-dead sessions."""
        challenges = purge_expired_challenges()
        sessions = purge_stale_sessions()
        click.echo(f"Removed {challenges} challenge(s) and {sessions} session(s)")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
