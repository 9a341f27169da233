"""Initialize the Flask app that hosts the tournament engine."""

import os

import firebase_admin
from firebase_admin import credentials
from flask import Flask

from .core.constants import (
    DEFAULT_MAP_POOL,
    PLAYOFF_QUALIFIERS_PER_GROUP,
    READY_CONFIRM_WINDOW_MS,
    VETO_READY_DELAY_MS,
    VETO_TURN_MS,
)
from .core.settings import EXTENSION_KEY, EngineSettings


def _env_map_pool():
    raw = os.environ.get("DEFAULT_MAP_POOL")
    if not raw:
        return list(DEFAULT_MAP_POOL)
    return [name.strip() for name in raw.split(",") if name.strip()]


def _init_firebase(app):
    """Initialize the Firebase Admin SDK from env, file or default credentials."""
    cred = None
    project_id = None
    cred_info = {}

    # First, try to load from environment variable (for production)
    cred_json = os.environ.get("FIREBASE_CREDENTIALS_JSON")
    if cred_json:
        import json

        try:
            cred_info = json.loads(cred_json)
            project_id = cred_info.get("project_id")
            cred = credentials.Certificate(cred_info)
        except (json.JSONDecodeError, ValueError) as e:
            app.logger.error(f"Error parsing FIREBASE_CREDENTIALS_JSON: {e}")

    # If env var fails or is not present, try loading from file (for local dev)
    if not cred:
        cred_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)), "firebase_credentials.json"
        )
        if os.path.exists(cred_path):
            import json

            try:
                with open(cred_path, "r") as f:
                    cred_info = json.load(f)
                project_id = cred_info.get("project_id")
                cred = credentials.Certificate(cred_path)
            except (json.JSONDecodeError, ValueError) as e:
                app.logger.error(f"Error loading credentials from file: {e}")

    # If both methods fail, fallback to default credentials
    if not cred:
        try:
            cred = credentials.ApplicationDefault()
            project_id = os.environ.get("FIREBASE_PROJECT_ID")
        except Exception as e:
            app.logger.error(
                f"Could not find any valid credentials (env, file, or default): {e}"
            )

    if cred and not firebase_admin._apps:
        try:
            firebase_options = {}
            if project_id:
                firebase_options["projectId"] = project_id
            firebase_admin.initialize_app(cred, firebase_options)
        except ValueError:
            # This can happen if the app is already initialized, which is fine.
            app.logger.info("Firebase app already initialized.")


def create_app(test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY") or "dev",
        READY_CONFIRM_WINDOW_MS=int(
            os.environ.get("READY_CONFIRM_WINDOW_MS") or READY_CONFIRM_WINDOW_MS
        ),
        VETO_READY_DELAY_MS=int(
            os.environ.get("VETO_READY_DELAY_MS") or VETO_READY_DELAY_MS
        ),
        VETO_TURN_MS=int(os.environ.get("VETO_TURN_MS") or VETO_TURN_MS),
        DEFAULT_MAP_POOL=_env_map_pool(),
        PLAYOFF_QUALIFIERS_PER_GROUP=int(
            os.environ.get("PLAYOFF_QUALIFIERS_PER_GROUP")
            or PLAYOFF_QUALIFIERS_PER_GROUP
        ),
    )

    if test_config:
        app.config.update(test_config)

    # Initialize Firebase Admin SDK only if not in testing mode
    if not app.config.get("TESTING"):
        _init_firebase(app)

    app.extensions[EXTENSION_KEY] = EngineSettings.from_config(app.config)

    from . import error_handlers

    app.register_blueprint(error_handlers.error_handlers_bp)

    return app
