"""
Application gateway: combines every service blueprint into one Flask app.
This is the local entrypoint for development.
"""

import logging
import os
from decimal import Decimal

from flask import Flask, jsonify, render_template, request, send_from_directory
from werkzeug.exceptions import HTTPException, NotFound

from portal.common import config
from portal.common.errors import NotFoundError, PortalError, StorageError, Unauthorized

# Basic console logging during requests
logging.basicConfig(level=config.LOG_LEVEL, format="[%(levelname)s] %(asctime)s - %(message)s")

TEMPLATE_FOLDER = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")


def load_landing_stats() -> dict:
    """
    Headline numbers for the landing page. Zeros when the database is unavailable.
    """
    from portal.database.db_connection import transaction

    stats = {"participants": 0, "events": 0, "milestones": 0, "donations": Decimal("0")}
    try:
        with transaction() as cur:
            cur.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM users WHERE role = 'participant') AS participants,
                    (SELECT COUNT(*) FROM event_occurrences) AS events,
                    (SELECT COUNT(*) FROM milestones) AS milestones,
                    (SELECT COALESCE(SUM(amount), 0) FROM donations) AS donations;
                """
            )
            row = cur.fetchone()
            if row:
                stats.update(dict(row))
    except StorageError as e:
        logging.warning(f"[Gateway] Landing stats unavailable: {e.__cause__ or e}")
    return stats


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(NotFoundError)
    def handle_not_found(e: NotFoundError):
        return render_template("error.html", message=e.message), 404

    @app.errorhandler(Unauthorized)
    def handle_unauthorized(e: Unauthorized):
        return render_template("error.html", message="Forbidden"), 403

    @app.errorhandler(PortalError)
    def handle_portal_error(e: PortalError):
        if e.http_status >= 500:
            logging.error(f"[Gateway] {type(e).__name__}: {e.message} ({e.__cause__ or 'no cause'})")
            return render_template("error.html", message="Server error"), 500
        return render_template("error.html", message="The request could not be completed"), e.http_status

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return e
        logging.exception("[Gateway] Unhandled error")
        return render_template("error.html", message="Server error"), 500


def create_app() -> Flask:
    """
    Application factory for creating the Flask app.

    Returns:
        Flask: The configured Flask application.
    """
    app = Flask(__name__, template_folder=TEMPLATE_FOLDER)
    app.config["SECRET_KEY"] = config.SESSION_SECRET
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES

    # --- REGISTER BLUEPRINTS ---
    from portal.auth_service.routes import auth_bp
    from portal.auth_service.utils import current_actor, session_user
    from portal.donations_service.routes import donations_bp, support_bp
    from portal.events_service.routes import events_bp
    from portal.milestones_service.routes import milestones_bp
    from portal.registrations_service.routes import registrations_bp
    from portal.surveys_service.routes import surveys_bp
    from portal.users_service.routes import profile_bp, users_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(users_bp, url_prefix="/users")
    app.register_blueprint(profile_bp, url_prefix="/profile")
    app.register_blueprint(events_bp, url_prefix="/events")
    app.register_blueprint(registrations_bp, url_prefix="/registrations")
    app.register_blueprint(surveys_bp, url_prefix="/surveys")
    app.register_blueprint(donations_bp, url_prefix="/donations")
    app.register_blueprint(milestones_bp, url_prefix="/milestones")
    app.register_blueprint(support_bp)

    logging.info("All blueprints registered successfully.")

    register_error_handlers(app)

    @app.context_processor
    def inject_user():
        return {"user": session_user()}

    # --- REQUEST LOGGING ---
    @app.before_request
    def log_request():
        logging.info(f"[Gateway] Incoming {request.method} {request.path}")

    @app.after_request
    def log_response(response):
        logging.info(f"[Gateway] Response {response.status_code}")
        return response

    # --- PAGES ---
    @app.route("/")
    def landing():
        return render_template("landing.html", stats=load_landing_stats())

    @app.route("/dashboard")
    def dashboard():
        actor, err, code = current_actor()
        if err:
            return err, code
        return render_template("dashboard.html", is_admin=actor.is_admin)

    @app.route("/video")
    def video():
        return render_template("video.html", video_url=config.VIDEO_URL)

    @app.route("/teapot")
    def teapot():
        return render_template("teapot.html"), 418

    @app.route("/health")
    def health():
        """
        Health check endpoint.
        """
        return jsonify({"status": "ok"}), 200

    @app.route("/uploads/<path:name>")
    def uploaded_photo(name: str):
        if not config.UPLOAD_FOLDER:
            raise NotFound()
        return send_from_directory(config.UPLOAD_FOLDER, name)

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=config.GATEWAY_PORT, debug=True)
