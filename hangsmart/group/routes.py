"""Routes for the group blueprint."""

import json

from firebase_admin import firestore
from flask import Response, current_app, g, jsonify, url_for

from hangsmart.auth.decorators import login_required
from hangsmart.core.constants import EVENTS_HEARTBEAT_SECONDS
from hangsmart.errors import AppError, NotAMemberError
from hangsmart.extensions import recommendation_cache
from hangsmart.recommendations.services import (
    RecommendationGateway,
    get_group_recommendations,
)
from hangsmart.utils import validate_form

from . import bp
from .forms import GroupForm, InviteByEmailForm, JoinGroupForm, PreferencesForm
from .models import PreferenceFields
from .services import GroupService
from .utils import send_invite_email, serialize_group


def _is_member(group, uid):
    return any(member.get("uid") == uid for member in group.get("members") or [])


@bp.route("/", methods=["GET"])
@login_required
def view_groups():
    """List the groups the caller belongs to."""
    db = firestore.client()
    groups = GroupService.list_groups_for_member(db, g.identity.uid)
    return jsonify({"groups": [serialize_group(group) for group in groups]})


@bp.route("/create", methods=["POST"])
@login_required
def create_group():
    """Create a new group with the caller as its founder."""
    form = validate_form(GroupForm())
    db = firestore.client()
    code = GroupService.create_group(db, g.identity, form.name.data)
    current_app.logger.info(f"User {g.identity.uid} created group {code}.")
    group = GroupService.get_group(db, code)
    return jsonify({"code": code, "group": serialize_group(group)}), 201


@bp.route("/join", methods=["POST"])
@login_required
def join_group():
    """Join a group by its code."""
    form = validate_form(JoinGroupForm())
    db = firestore.client()
    group = GroupService.join_group(db, form.code.data, g.identity)
    return jsonify({"code": group["id"], "group": serialize_group(group)})


@bp.route("/<string:code>", methods=["GET"])
@login_required
def view_group(code):
    """Show a group with its members, state and readiness."""
    db = firestore.client()
    group = GroupService.get_group(db, code)
    data = serialize_group(group)
    data["isMember"] = _is_member(group, g.identity.uid)
    return jsonify({"group": data})


@bp.route("/<string:code>/preferences", methods=["POST"])
@login_required
def submit_preferences(code):
    """Replace the caller's preferences in a group."""
    form = validate_form(PreferencesForm())
    fields = PreferenceFields(
        interests=form.interests.data or "",
        availability=form.availability.data or "",
        special_requests=form.special_requests.data or "",
        location=form.location.data or "",
    )
    db = firestore.client()
    group = GroupService.submit_preferences(db, code, g.identity, fields)
    return jsonify({"group": serialize_group(group)})


@bp.route("/<string:code>/events", methods=["GET"])
@login_required
def group_events(code):
    """Stream group snapshots as Server-Sent Events until the client leaves."""
    db = firestore.client()
    subscription = GroupService.open_subscription(db, code)
    logger = current_app.logger

    def generate():
        try:
            for group in subscription.updates(timeout=EVENTS_HEARTBEAT_SECONDS):
                if group is None:
                    yield ": keep-alive\n\n"
                    continue
                payload = json.dumps(serialize_group(group))
                yield f"event: group\ndata: {payload}\n\n"
        except AppError as e:
            logger.warning(
                f"Event stream for group {subscription.group_id} ended: {e.message}"
            )
            error = {"error": e.message, "kind": e.kind}
            yield f"event: error\ndata: {json.dumps(error)}\n\n"
        finally:
            subscription.close()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@bp.route("/<string:code>/recommendations", methods=["GET"])
@login_required
def recommendations(code):
    """Return activity recommendations once every member has submitted."""
    db = firestore.client()
    group = GroupService.get_group(db, code)
    if not _is_member(group, g.identity.uid):
        raise NotAMemberError("You are not a member of this group.")
    if not GroupService.evaluate_readiness(group):
        return (
            jsonify(
                {
                    "error": "Waiting for everyone to submit their preferences.",
                    "kind": "not_ready",
                    "group": serialize_group(group),
                }
            ),
            409,
        )

    gateway = RecommendationGateway.from_config(current_app.config)
    recommendation = get_group_recommendations(gateway, recommendation_cache, group)
    return jsonify({"recommendation": recommendation})


@bp.route("/<string:code>/invite", methods=["POST"])
@login_required
def invite_by_email(code):
    """Email the group's join code to someone."""
    form = validate_form(InviteByEmailForm())
    db = firestore.client()
    group = GroupService.get_group(db, code)
    if not _is_member(group, g.identity.uid):
        raise NotAMemberError("Only members can invite people to this group.")

    join_url = url_for("group.view_group", code=group["id"], _external=True)
    send_invite_email(form.email.data, group, g.identity.display_name, join_url)
    current_app.logger.info(
        f"User {g.identity.uid} invited {form.email.data} to group {group['id']}."
    )
    return jsonify({"status": "success"})
