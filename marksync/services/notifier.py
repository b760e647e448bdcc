from __future__ import annotations

from typing import Protocol

from flask import current_app

from marksync.extensions import db
from marksync.models import SyncEvent


ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_DELETED = "deleted"


def event_name(kind: str, action: str) -> str:
    return f"{kind}:{action}"


class Notifier(Protocol):
    def publish(self, user_id: int, event: str, payload: dict) -> None: ...


class NullNotifier:
    def publish(self, user_id: int, event: str, payload: dict) -> None:
        current_app.logger.debug(
            "Dropping %s event for user %s (event log disabled)", event, user_id
        )


class SyncEventNotifier:
    """Appends owner-scoped change events to the ``sync_events`` log.

    Each publish commits on its own, so callers must only publish after the
    change it describes has been committed.
    """

    def publish(self, user_id: int, event: str, payload: dict) -> None:
        entity_type, _, action = event.partition(":")
        db.session.add(
            SyncEvent(
                user_id=user_id,
                entity_type=entity_type,
                entity_id=payload.get("id"),
                action=action,
                payload=payload,
            )
        )
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.debug("Published %s for user %s", event, user_id)


def build_notifier(app) -> Notifier:
    if app.config.get("SYNC_EVENT_LOG_ENABLED", True):
        return SyncEventNotifier()
    return NullNotifier()
