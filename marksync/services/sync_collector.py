from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from marksync.models import SYNCED_MODELS
from marksync.services.common import EPOCH
from marksync.services.serializers import serialize_bookmarks, serialize_record
from marksync.services.sync_types import (
    KIND_BOOKMARK,
    KIND_ORDER,
    PLURAL_KINDS,
    empty_deleted_ids,
)


@dataclass
class ServerDelta:
    """Server-side changes a client has not seen yet.

    ``changes`` holds serialized records tagged with their ``kind``;
    ``deleted_ids`` maps plural kind names to tombstoned ids.
    """

    changes: list[dict] = field(default_factory=list)
    deleted_ids: dict[str, list[str]] = field(default_factory=empty_deleted_ids)

    def count_changes(self, kind: str) -> int:
        return sum(1 for change in self.changes if change["kind"] == kind)

    def without(self, processed: set[tuple[str, str]]) -> list[dict]:
        return [
            change
            for change in self.changes
            if (change["kind"], change["id"]) not in processed
        ]


def _updated_since(model, user_id: int, since: datetime):
    return (
        model.query.filter_by(user_id=user_id, is_deleted=False)
        .filter(model.updated_at > since)
        .order_by(model.updated_at.asc(), model.id.asc())
        .all()
    )


def _deleted_since(model, user_id: int, since: datetime) -> list[str]:
    rows = (
        model.query.with_entities(model.id)
        .filter_by(user_id=user_id, is_deleted=True)
        .filter(model.deleted_at > since)
        .order_by(model.deleted_at.asc(), model.id.asc())
        .all()
    )
    return [row.id for row in rows]


def collect_server_changes(user_id: int, since: datetime | None) -> ServerDelta:
    """Read every record of ``user_id`` that changed after ``since``.

    ``since=None`` bootstraps a new client with all active records. Records
    are serialized right away so later writes in the same call cannot leak
    into the snapshot.
    """
    since = since or EPOCH
    delta = ServerDelta()
    for kind in KIND_ORDER:
        model = SYNCED_MODELS[kind]
        records = _updated_since(model, user_id, since)
        if kind == KIND_BOOKMARK:
            serialized = serialize_bookmarks(records)
        else:
            serialized = [serialize_record(kind, record) for record in records]
        delta.changes.extend({"kind": kind, **item} for item in serialized)
        delta.deleted_ids[PLURAL_KINDS[kind]] = _deleted_since(model, user_id, since)
    return delta
