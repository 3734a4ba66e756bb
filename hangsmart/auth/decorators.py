"""Decorators for the auth blueprint."""

from functools import wraps

from flask import g, redirect, url_for


def login_required(f):
    """Redirect to the sign-in entry point if there is no caller identity.

    Usage:
    @login_required
    def protected_view():
        ...
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get("identity") is None:
            return redirect(url_for("auth.login"))
        return f(*args, **kwargs)

    return decorated_function
