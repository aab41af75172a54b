"""Initialize the Flask app and its extensions."""

import json
import os

import firebase_admin
from firebase_admin import credentials
from flask import Flask

from .constants import OFFLINE_MAX_RETRIES, OFFLINE_RETENTION_HOURS

CREDENTIALS_FILE = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "firebase_credentials.json"
)


def _load_credentials(app):
    """Return ``(credential, project_id)`` from the first source that works.

    Sources in order: FIREBASE_CREDENTIALS_JSON, firebase_credentials.json at
    the project root, then application default credentials.
    """
    cred_json = os.environ.get("FIREBASE_CREDENTIALS_JSON")
    if cred_json:
        try:
            info = json.loads(cred_json)
            return credentials.Certificate(info), info.get("project_id")
        except (json.JSONDecodeError, ValueError) as e:
            app.logger.error(f"Error parsing FIREBASE_CREDENTIALS_JSON: {e}")

    if os.path.exists(CREDENTIALS_FILE):
        try:
            with open(CREDENTIALS_FILE, "r") as f:
                info = json.load(f)
            return credentials.Certificate(CREDENTIALS_FILE), info.get("project_id")
        except (json.JSONDecodeError, ValueError) as e:
            app.logger.error(f"Error loading {CREDENTIALS_FILE}: {e}")

    try:
        return credentials.ApplicationDefault(), os.environ.get("FIREBASE_PROJECT_ID")
    except Exception as e:
        app.logger.error(f"No usable Firebase credentials: {e}")
    return None, None


def _init_firebase(app):
    """Initialize the Firebase Admin SDK once per process."""
    if firebase_admin._apps:
        return
    cred, project_id = _load_credentials(app)
    if cred is None:
        return
    try:
        firebase_admin.initialize_app(
            cred, {"projectId": project_id} if project_id else None
        )
    except ValueError:
        app.logger.info("Firebase app already initialized.")


def create_app(test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY") or "dev",
        OFFLINE_MAX_RETRIES=int(
            os.environ.get("OFFLINE_MAX_RETRIES") or OFFLINE_MAX_RETRIES
        ),
        OFFLINE_RETENTION_HOURS=int(
            os.environ.get("OFFLINE_RETENTION_HOURS") or OFFLINE_RETENTION_HOURS
        ),
        # JSON API: forms are validated without CSRF tokens
        WTF_CSRF_ENABLED=False,
    )

    if test_config:
        app.config.update(test_config)

    # Initialize Firebase Admin SDK only if not in testing mode
    if not app.config.get("TESTING"):
        _init_firebase(app)

    # Register blueprints
    from . import tournament as tournament_bp

    app.register_blueprint(tournament_bp.bp)

    from . import squads as squads_bp

    app.register_blueprint(squads_bp.bp)
    app.register_blueprint(squads_bp.registrations_bp)

    from . import scoring as scoring_bp

    app.register_blueprint(scoring_bp.bp)

    from . import ranking as ranking_bp

    app.register_blueprint(ranking_bp.bp)

    from . import offline as offline_bp

    app.register_blueprint(offline_bp.bp)

    from . import error_handlers

    app.register_blueprint(error_handlers.error_handlers_bp)

    @app.route("/health")
    def health_check():
        """Perform a simple health check."""
        return {"status": "ok", "version": os.environ.get("APP_VERSION", "dev")}

    return app
