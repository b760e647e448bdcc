from __future__ import annotations

from flask import current_app, g, jsonify, request

from marksync.api import api_bp
from marksync.extensions import db
from marksync.models import ApiToken, SyncEvent, User
from marksync.services.security import api_auth_required
from marksync.services.sync import sync_data
from marksync.services.sync_errors import SyncPayloadError
from marksync.services.sync_types import parse_sync_request


def _sync_notifier():
    return current_app.extensions["marksync_notifier"]


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "MarkSync"})


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    token_name = (payload.get("token_name") or "MarkSync API Token").strip()

    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@api_bp.route("/sync", methods=["POST"])
@api_auth_required
def sync():
    user = g.api_user
    payload = request.get_json(silent=True)
    try:
        sync_request = parse_sync_request(
            payload, max_changes=current_app.config["SYNC_MAX_CHANGES_PER_REQUEST"]
        )
    except SyncPayloadError as exc:
        current_app.logger.info(
            "Rejected sync payload from user %s: %s", user.id, exc
        )
        return jsonify({"error": str(exc)}), 400

    result = sync_data(user.id, sync_request, notifier=_sync_notifier())
    if not result.success:
        current_app.logger.warning(
            "Sync reported failure for user %s: %s", user.id, result.message
        )
        return jsonify(result.as_dict()), 500
    return jsonify(result.as_dict())


@api_bp.route("/sync/events", methods=["GET"])
@api_auth_required
def sync_events():
    user = g.api_user
    max_limit = current_app.config["SYNC_EVENTS_PAGE_LIMIT"]
    since = request.args.get("since", default=0, type=int)
    limit = request.args.get("limit", default=max_limit, type=int)
    limit = max(1, min(limit, max_limit))
    events = (
        SyncEvent.query.filter_by(user_id=user.id)
        .filter(SyncEvent.id > since)
        .order_by(SyncEvent.id.asc())
        .limit(limit)
        .all()
    )
    latest_cursor = since
    if events:
        latest_cursor = events[-1].id
    return jsonify(
        {
            "events": [event.as_dict() for event in events],
            "cursor": latest_cursor,
            "has_more": len(events) == limit,
        }
    )
