"""Routes for the user blueprint."""

from firebase_admin import firestore
from flask import current_app, g, jsonify, request, session

from hangsmart.auth.decorators import login_required
from hangsmart.utils import validate_form

from . import bp
from .forms import UpdateProfileForm
from .services import delete_user, get_user_by_id, update_user_profile


def _profile_payload(profile):
    return {
        "uid": profile["id"],
        "name": profile.get("name", ""),
        "email": profile.get("email", ""),
        "profilePicture": profile.get("profilePicture", ""),
        "features": profile.get("features", []),
    }


@bp.route("/profile", methods=["GET", "POST"])
@login_required
def profile():
    """Read the caller's profile, or update its name and email."""
    db = firestore.client()
    if request.method == "POST":
        form = validate_form(UpdateProfileForm())
        updated = update_user_profile(
            db, g.identity.uid, form.name.data, form.email.data
        )
        current_app.logger.info(f"User {g.identity.uid} updated their profile.")
        return jsonify({"status": "success", "profile": _profile_payload(updated)})

    user = g.user or get_user_by_id(db, g.identity.uid)
    if user is None:
        return jsonify({"error": "Profile not found.", "kind": "not_found"}), 404
    return jsonify({"profile": _profile_payload(user)})


@bp.route("/delete", methods=["POST"])
@login_required
def delete_account():
    """Delete the caller's profile and account, then end the session."""
    uid = g.identity.uid
    delete_user(firestore.client(), uid)
    current_app.logger.info(f"User {uid} deleted their account.")
    g.session_context.sign_out()
    session.clear()
    return jsonify({"status": "success"})
