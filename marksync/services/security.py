from functools import wraps

from flask import current_app, g, jsonify
from flask_login import current_user

from marksync.extensions import db, login_manager
from marksync.models import ApiToken, utcnow


def _bearer_token(req) -> str | None:
    auth_header = req.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header.removeprefix("Bearer ").strip() or None


@login_manager.request_loader
def load_user_from_bearer_token(req):
    """Resolve ``current_user`` from an ``Authorization: Bearer`` header.

    Sync clients never hold a session; every request carries a token issued
    by ``/auth/token``. Revoked tokens and disabled accounts stay anonymous.
    """
    token = _bearer_token(req)
    if not token:
        return None
    token_row = ApiToken.query.filter_by(token_hash=ApiToken.hash_token(token)).first()
    if not token_row or token_row.revoked_at is not None:
        current_app.logger.info("Rejected unknown or revoked API token")
        return None
    if not token_row.user.is_active:
        current_app.logger.info(
            "Rejected API token %s of disabled user %s", token_row.id, token_row.user_id
        )
        return None
    token_row.last_used_at = utcnow()
    db.session.commit()
    return token_row.user


def api_auth_required(func):
    @wraps(func)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "authentication required"}), 401
        g.api_user = current_user._get_current_object()
        return func(*args, **kwargs)

    return wrapped
