from __future__ import annotations

from datetime import datetime

from flask import current_app

from marksync.extensions import db
from marksync.models import SYNCED_MODELS, Bookmark, Collection, Folder, Tag, utcnow
from marksync.services.common import as_utc, isoformat_utc, to_millis
from marksync.services.notifier import (
    ACTION_CREATED,
    ACTION_DELETED,
    ACTION_UPDATED,
    Notifier,
    event_name,
)
from marksync.services.relations import sync_bookmark_relations
from marksync.services.serializers import serialize_record
from marksync.services.sync_collector import collect_server_changes
from marksync.services.sync_errors import error_entry
from marksync.services.sync_types import (
    KIND_BOOKMARK,
    KIND_COLLECTION,
    KIND_FOLDER,
    KIND_ORDER,
    KIND_TAG,
    PLURAL_KINDS,
    BookmarkChange,
    ClientChange,
    CollectionChange,
    Conflict,
    FolderChange,
    SyncRequest,
    SyncResult,
    TagChange,
    fallback_timestamp,
)
from marksync.services.validators import (
    ensure_folder_parent,
    ensure_name,
    ensure_unique_collection_name,
    ensure_unique_folder_name,
    ensure_unique_tag_name,
)


DEFAULT_NAME = "Untitled"
SYNC_FAILED_MESSAGE = "Sync failed due to an unexpected server error."


def _name_for_create(value: str | None) -> str:
    return (value or "").strip() or DEFAULT_NAME


def _mark_written(record, sync_start: datetime) -> None:
    record.updated_at = sync_start
    record.is_deleted = False
    record.deleted_at = None


def _load_existing(model, record_id: str):
    return model.query.filter_by(id=record_id).with_for_update().first()


def _create_bookmark(user_id: int, change: BookmarkChange, sync_start: datetime):
    bookmark = Bookmark(
        id=change.id,
        user_id=user_id,
        url=change.url or "",
        title=change.title or DEFAULT_NAME,
        description=change.description,
        notes=change.notes,
        created_at=sync_start,
    )
    _mark_written(bookmark, sync_start)
    db.session.add(bookmark)
    db.session.flush()
    sync_bookmark_relations(user_id, bookmark.id, change.folder_ids, change.tag_ids)
    return bookmark


def _update_bookmark(
    user_id: int, bookmark: Bookmark, change: BookmarkChange, sync_start: datetime
):
    values = change.field_values()
    if "url" in values:
        bookmark.url = values["url"] or ""
    if "title" in values:
        bookmark.title = values["title"] or DEFAULT_NAME
    for field in ("description", "notes"):
        if field in values:
            setattr(bookmark, field, values[field])
    _mark_written(bookmark, sync_start)
    db.session.flush()
    sync_bookmark_relations(user_id, bookmark.id, change.folder_ids, change.tag_ids)
    return bookmark


def _create_folder(user_id: int, change: FolderChange, sync_start: datetime):
    name = _name_for_create(change.name)
    parent_id = change.parent_id if change.has("parent_id") else None
    ensure_folder_parent(user_id, change.id, parent_id)
    ensure_unique_folder_name(user_id, name, parent_id)
    folder = Folder(
        id=change.id,
        user_id=user_id,
        name=name,
        parent_id=parent_id,
        description=change.description,
        icon=change.icon,
        color=change.color,
        created_at=sync_start,
    )
    _mark_written(folder, sync_start)
    db.session.add(folder)
    return folder


def _update_folder(
    user_id: int, folder: Folder, change: FolderChange, sync_start: datetime
):
    values = change.field_values()
    moving = "parent_id" in values and values["parent_id"] != folder.parent_id
    if moving:
        ensure_folder_parent(user_id, folder.id, values["parent_id"])

    name = folder.name
    if "name" in values:
        name = ensure_name(values["name"], "Folder")
    parent_id = values["parent_id"] if moving else folder.parent_id
    if moving or name != folder.name:
        ensure_unique_folder_name(user_id, name, parent_id, exclude_id=folder.id)

    folder.name = name
    folder.parent_id = parent_id
    for field in ("description", "icon", "color"):
        if field in values:
            setattr(folder, field, values[field])
    _mark_written(folder, sync_start)
    return folder


def _create_tag(user_id: int, change: TagChange, sync_start: datetime):
    name = _name_for_create(change.name)
    ensure_unique_tag_name(user_id, name)
    tag = Tag(
        id=change.id,
        user_id=user_id,
        name=name,
        color=change.color,
        created_at=sync_start,
    )
    _mark_written(tag, sync_start)
    db.session.add(tag)
    return tag


def _update_tag(user_id: int, tag: Tag, change: TagChange, sync_start: datetime):
    values = change.field_values()
    if "name" in values:
        name = ensure_name(values["name"], "Tag")
        if name != tag.name:
            ensure_unique_tag_name(user_id, name, exclude_id=tag.id)
        tag.name = name
    if "color" in values:
        tag.color = values["color"]
    _mark_written(tag, sync_start)
    return tag


def _create_collection(user_id: int, change: CollectionChange, sync_start: datetime):
    name = _name_for_create(change.name)
    ensure_unique_collection_name(user_id, name)
    is_public = bool(change.is_public)
    collection = Collection(
        id=change.id,
        user_id=user_id,
        name=name,
        description=change.description,
        is_public=is_public,
        public_link=Collection.issue_public_link() if is_public else None,
        thumbnail=change.thumbnail,
        created_at=sync_start,
    )
    _mark_written(collection, sync_start)
    db.session.add(collection)
    return collection


def _update_collection(
    user_id: int,
    collection: Collection,
    change: CollectionChange,
    sync_start: datetime,
):
    values = change.field_values()
    if "name" in values:
        name = ensure_name(values["name"], "Collection")
        if name != collection.name:
            ensure_unique_collection_name(user_id, name, exclude_id=collection.id)
        collection.name = name
    for field in ("description", "thumbnail"):
        if field in values:
            setattr(collection, field, values[field])

    is_public = values.get("is_public")
    if is_public is not None and is_public != collection.is_public:
        collection.is_public = is_public
        if is_public:
            collection.public_link = (
                collection.public_link or Collection.issue_public_link()
            )
        else:
            collection.public_link = None
    _mark_written(collection, sync_start)
    return collection


CREATORS = {
    KIND_BOOKMARK: _create_bookmark,
    KIND_FOLDER: _create_folder,
    KIND_TAG: _create_tag,
    KIND_COLLECTION: _create_collection,
}

UPDATERS = {
    KIND_BOOKMARK: _update_bookmark,
    KIND_FOLDER: _update_folder,
    KIND_TAG: _update_tag,
    KIND_COLLECTION: _update_collection,
}


def _is_stale(existing, change: ClientChange) -> bool:
    return as_utc(existing.updated_at) > change.base_version


def _publish(notifier: Notifier, user_id: int, kind: str, action: str, payload):
    name = event_name(kind, action)
    try:
        notifier.publish(user_id, name, payload)
    except Exception as exc:
        current_app.logger.warning(
            "Failed to publish %s for user %s: %s", name, user_id, exc
        )


def reconcile_change(
    user_id: int,
    change: ClientChange,
    sync_start: datetime,
    notifier: Notifier,
) -> Conflict | None:
    """Apply one client change in its own transaction.

    Returns a ``Conflict`` when the change was rejected, either because the
    server record moved past the client's base version or because applying
    it raised. Events are published only after the change has committed.
    """
    kind = change.kind
    model = SYNCED_MODELS[kind]
    try:
        existing = _load_existing(model, change.id)
        if existing is not None and existing.user_id != user_id:
            db.session.rollback()
            current_app.logger.info(
                "Skipping %s change %s from user %s: record has another owner",
                kind,
                change.id,
                user_id,
            )
            return None

        if change.is_deleted:
            if existing is None or existing.is_deleted:
                db.session.rollback()
                return None
            existing.is_deleted = True
            existing.deleted_at = sync_start
            existing.updated_at = sync_start
            if kind == KIND_FOLDER:
                current_app.logger.warning(
                    "Soft deleting folder %s; its bookmarks keep their membership",
                    change.id,
                )
            db.session.commit()
            _publish(notifier, user_id, kind, ACTION_DELETED, {"id": change.id})
            return None

        if existing is not None:
            if existing.is_deleted or _is_stale(existing, change):
                current_app.logger.info(
                    "Conflict on %s %s for user %s: server version %s, client base %s,"
                    " client edit %s",
                    kind,
                    change.id,
                    user_id,
                    isoformat_utc(existing.updated_at),
                    isoformat_utc(change.last_server_updated_at) or "none",
                    isoformat_utc(change.updated_at) or "unknown",
                )
                server_record = serialize_record(kind, existing)
                db.session.rollback()
                return Conflict(kind, change.raw, server_record)
            record = UPDATERS[kind](user_id, existing, change, sync_start)
            action = ACTION_UPDATED
        else:
            record = CREATORS[kind](user_id, change, sync_start)
            action = ACTION_CREATED

        db.session.flush()
        payload = serialize_record(kind, record)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Failed processing %s change %s for user %s: %s",
            kind,
            change.id,
            user_id,
            exc,
        )
        return Conflict(kind, change.raw, error_entry(exc))

    _publish(notifier, user_id, kind, action, payload)
    return None


def sync_data(
    user_id: int,
    request: SyncRequest,
    notifier: Notifier,
    sync_start: datetime | None = None,
) -> SyncResult:
    """Run one sync call for ``user_id``.

    Server deltas are collected first, then every client change is
    reconciled on its own. ``sync_start`` is the write time of every
    accepted change and becomes the client's next watermark.
    """
    logger = current_app.logger
    sync_start = to_millis(as_utc(sync_start) if sync_start else utcnow())
    logger.info(
        "Starting sync for user %s. Last sync: %s. Client changes: %s",
        user_id,
        isoformat_utc(request.last_sync_timestamp) or "Never",
        {PLURAL_KINDS[kind]: len(items) for kind, items in request.changes.items()},
    )

    try:
        delta = collect_server_changes(user_id, request.last_sync_timestamp)
        db.session.rollback()
        logger.info(
            "Found server changes for user %s: %s; deletions: %s",
            user_id,
            {PLURAL_KINDS[kind]: delta.count_changes(kind) for kind in KIND_ORDER},
            {plural: len(ids) for plural, ids in delta.deleted_ids.items()},
        )

        conflicts: list[Conflict] = list(request.rejected)
        if conflicts:
            logger.warning(
                "Rejected %s malformed changes from user %s: %s",
                len(conflicts),
                user_id,
                [conflict.server_record["error"] for conflict in conflicts],
            )

        processed: set[tuple[str, str]] = set()
        for change in request.iter_changes():
            processed.add((change.kind, change.id))
            conflict = reconcile_change(user_id, change, sync_start, notifier)
            if conflict is not None:
                conflicts.append(conflict)

        server_changes = delta.without(processed)
    except Exception:
        db.session.rollback()
        logger.exception("Sync failed catastrophically for user %s", user_id)
        return SyncResult(
            success=False,
            new_sync_timestamp=fallback_timestamp(request),
            message=SYNC_FAILED_MESSAGE,
        )

    logger.info(
        "Sync finished for user %s: %s server changes, %s conflicts",
        user_id,
        len(server_changes),
        len(conflicts),
    )
    return SyncResult(
        success=True,
        new_sync_timestamp=isoformat_utc(sync_start),
        server_changes=server_changes,
        deleted_ids=delta.deleted_ids,
        conflicts=conflicts,
    )
