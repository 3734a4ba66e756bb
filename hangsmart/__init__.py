"""Initialize the Flask app and its extensions."""

import json
import os

import firebase_admin
from firebase_admin import credentials
from flask import Flask, current_app, g, session
from werkzeug.middleware.proxy_fix import ProxyFix

from .core.constants import DEFAULT_RECOMMENDATION_MODEL, DEFAULT_UPSTREAM_TIMEOUT
from .errors import StorageReadError
from .extensions import csrf, mail


def create_app(test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY") or "dev",
        MAIL_SERVER=os.environ.get("MAIL_SERVER") or "smtp.gmail.com",
        MAIL_PORT=int(os.environ.get("MAIL_PORT") or 587),
        MAIL_USE_TLS=(os.environ.get("MAIL_USE_TLS") or "true").lower()
        in ["true", "1", "t"],
        MAIL_USE_SSL=(os.environ.get("MAIL_USE_SSL") or "false").lower()
        in ["true", "1", "t"],
        MAIL_USERNAME=os.environ.get("MAIL_USERNAME"),
        MAIL_PASSWORD=os.environ.get("MAIL_PASSWORD"),
        MAIL_DEFAULT_SENDER=os.environ.get("MAIL_DEFAULT_SENDER")
        or "noreply@hangsmart.app",
        # Web API key of the Firebase project, used for password sign-in
        FIREBASE_API_KEY=os.environ.get("FIREBASE_API_KEY"),
        PERPLEXITY_API_KEY=os.environ.get("PERPLEXITY_API_KEY"),
        PERPLEXITY_MODEL=os.environ.get("PERPLEXITY_MODEL")
        or DEFAULT_RECOMMENDATION_MODEL,
        GOOGLE_PLACES_API_KEY=os.environ.get("GOOGLE_PLACES_API_KEY"),
        UPSTREAM_TIMEOUT=float(
            os.environ.get("UPSTREAM_TIMEOUT") or DEFAULT_UPSTREAM_TIMEOUT
        ),
    )

    if test_config:
        app.config.update(test_config)

    # Initialize Firebase Admin SDK only if not in testing mode
    if not app.config.get("TESTING"):
        _init_firebase(app)

    # Initialize extensions
    mail.init_app(app)
    csrf.init_app(app)

    # Register blueprints
    from . import auth as auth_bp

    app.register_blueprint(auth_bp.bp)

    from . import user as user_bp

    app.register_blueprint(user_bp.bp)

    from . import group as group_bp

    app.register_blueprint(group_bp.bp)

    from . import error_handlers

    app.register_blueprint(error_handlers.error_handlers_bp)

    # The sign-in entry point doubles as the index
    app.add_url_rule("/", endpoint="auth.login", methods=["GET", "POST"])

    @app.before_request
    def load_caller_identity():
        """Resolve the caller identity from the session and their profile."""
        from .auth.session import CallerIdentity, SessionContext
        from .user.services import get_user_by_id

        g.session_context = SessionContext.from_app(current_app, session)
        g.identity = None
        g.user = None

        identity = g.session_context.current_identity
        if identity is None:
            return

        try:
            profile = get_user_by_id(g.session_context.db, identity.uid)
        except StorageReadError as e:
            current_app.logger.error(f"Error loading profile for {identity.uid}: {e}")
            g.identity = identity
            return

        if profile is None:
            # Identity in session but no profile in the database.
            current_app.logger.warning(
                f"User {identity.uid} in session but not found in Firestore."
            )
            session.clear()
            return

        g.user = profile
        g.identity = CallerIdentity(
            uid=identity.uid,
            display_name=profile.get("name") or identity.display_name,
            email=profile.get("email") or identity.email,
            photo_url=profile.get("profilePicture") or identity.photo_url,
        )

    @app.route("/health")
    def health_check():
        """Perform a simple health check."""
        return "OK", 200

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app


def _init_firebase(app):
    """Find credentials (env, file, then defaults) and start the Admin SDK."""
    cred = None
    project_id = None

    # First, try to load from environment variable (for production)
    cred_json = os.environ.get("FIREBASE_CREDENTIALS_JSON")
    if cred_json:
        try:
            cred_info = json.loads(cred_json)
            project_id = cred_info.get("project_id")
            cred = credentials.Certificate(cred_info)
        except ValueError as e:
            app.logger.error(f"Error parsing FIREBASE_CREDENTIALS_JSON: {e}")

    # If env var fails or is not present, try loading from file (for local dev)
    if not cred:
        cred_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)), "firebase_credentials.json"
        )
        if os.path.exists(cred_path):
            try:
                with open(cred_path, "r") as f:
                    cred_info = json.load(f)
                project_id = cred_info.get("project_id")
                cred = credentials.Certificate(cred_path)
            except ValueError as e:
                app.logger.error(f"Error loading credentials from file: {e}")

    # If both methods fail, fall back to application default credentials
    if not cred:
        cred = credentials.ApplicationDefault()
        project_id = os.environ.get("FIREBASE_PROJECT_ID")

    if not firebase_admin._apps:
        options = {"projectId": project_id} if project_id else None
        try:
            firebase_admin.initialize_app(cred, options)
        except ValueError:
            # This can happen if the app is already initialized, which is fine.
            app.logger.info("Firebase app already initialized.")
