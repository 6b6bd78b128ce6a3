import os
import logging

import click
from flask import Flask, jsonify

from donation_api.config import config_by_name
from donation_api.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Report missing env vars (handlers fail fast at first use) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from donation_api import models  # noqa: F401

    # --- Register blueprints ---
    from donation_api.blueprints.paypal import paypal_bp
    from donation_api.blueprints.public import public_bp

    app.register_blueprint(paypal_bp)
    app.register_blueprint(public_bp)

    # --- Error handlers (JSON everywhere, the SPA renders the message) ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="Not found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        response = jsonify(error="Method not allowed")
        allowed = [
            m for m in (getattr(e, "valid_methods", None) or [])
            if m not in ("HEAD", "OPTIONS")
        ]
        if allowed:
            response.headers["Allow"] = ", ".join(sorted(allowed))
        return response, 405

    @app.errorhandler(429)
    def too_many_requests(e):
        return jsonify(error="Too many requests. Please try again later."), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(error="Internal error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only: nothing here should ever load subresources
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Never cache payment state
        response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("sweep-pending")
    @click.option(
        "--older-than",
        "older_than",
        type=int,
        default=None,
        help="Age in minutes (default: PENDING_DONATION_TTL_MINUTES).",
    )
    @click.option("--dry-run", is_flag=True, help="List stale donations without changing them.")
    def sweep_pending(older_than, dry_run):
        """Mark donations stuck in `pending` as failed.

        Catches donations whose order creation crashed before the handler
        could mark them failed. Run on a schedule (e.g. hourly cron).

        Usage:
            flask sweep-pending
            flask sweep-pending --older-than 120 --dry-run
        """
        from donation_api.services.order_service import sweep_stale_pending

        if older_than is None:
            older_than = app.config["PENDING_DONATION_TTL_MINUTES"]

        swept = sweep_stale_pending(older_than, dry_run=dry_run)

        verb = "Would mark" if dry_run else "Marked"
        click.echo(f"{verb} {len(swept)} stale pending donation(s) as failed.")
        for donation_id in swept:
            click.echo(f"  {donation_id}")

    @app.cli.command("seed-project")
    @click.option("--id", "project_id", required=True, help="Project id (also the campaign slug)")
    @click.option("--title", required=True, help="Project title")
    @click.option("--goal", type=float, default=0, help="Goal amount")
    def seed_project(project_id, title, goal):
        """Create or update a project so donations to its slug can seed a campaign.

        Usage:
            flask seed-project --id huni-kuin --title "Huni Kuin" --goal 10000
        """
        from decimal import Decimal

        from donation_api.models.project import Project

        project = db.session.get(Project, project_id)
        if project:
            project.title = title
            project.goal_amount = Decimal(str(goal))
            click.echo(f"Updated project: {project_id}")
        else:
            project = Project(id=project_id, title=title, goal_amount=Decimal(str(goal)))
            db.session.add(project)
            click.echo(f"Created project: {project_id}")
        db.session.commit()
