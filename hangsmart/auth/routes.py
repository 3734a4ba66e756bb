"""Routes for the auth blueprint."""

from flask import current_app, g, jsonify, redirect, request, session, url_for
from flask_wtf.csrf import generate_csrf

from hangsmart.utils import validate_form

from . import bp
from .decorators import login_required
from .forms import LoginForm, RegisterForm


def _identity_payload(identity):
    return {
        "uid": identity.uid,
        "displayName": identity.display_name,
        "email": identity.email,
        "photoURL": identity.photo_url,
    }


@bp.route("/login", methods=["GET", "POST"])
def login():
    """
    The sign-in entry point.

    GET describes the current session state so a client can render the sign-in
    screen. POST signs in with email and password.
    """
    if request.method == "GET":
        identity = g.get("identity")
        return jsonify(
            {
                "signedIn": identity is not None,
                "user": _identity_payload(identity) if identity else None,
                "csrfToken": generate_csrf(),
            }
        )

    form = validate_form(LoginForm())
    identity = g.session_context.sign_in(form.email.data, form.password.data)
    current_app.logger.info(f"User {identity.uid} signed in with password.")
    return jsonify({"status": "success", "user": _identity_payload(identity)})


@bp.route("/register", methods=["POST"])
def register():
    """Create an account and its profile, then sign the new user in."""
    form = validate_form(RegisterForm())
    identity = g.session_context.sign_up(
        form.name.data.strip(), form.email.data.strip(), form.password.data
    )
    current_app.logger.info(f"User {identity.uid} registered.")
    return jsonify({"status": "success", "user": _identity_payload(identity)}), 201


@bp.route("/session_login", methods=["POST"])
def session_login():
    """
    Called from the client after a successful federated (e.g. Google) sign-in.
    It receives the ID token, verifies it, and creates a server-side session.
    """
    payload = request.get_json(silent=True) or {}
    id_token = payload.get("idToken") or request.form.get("idToken")
    identity = g.session_context.sign_in_with_provider(id_token)
    current_app.logger.info(f"User {identity.uid} signed in with a provider.")
    return jsonify({"status": "success", "user": _identity_payload(identity)})


@bp.route("/logout")
def logout():
    """Clear the session and go back to the sign-in entry point."""
    g.session_context.sign_out()
    session.clear()
    return redirect(url_for("auth.login"))


@bp.route("/me")
@login_required
def me():
    """Return the caller identity."""
    return jsonify({"user": _identity_payload(g.identity), "csrfToken": generate_csrf()})
