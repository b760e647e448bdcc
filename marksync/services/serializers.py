from __future__ import annotations

from sqlalchemy import select

from marksync.extensions import db
from marksync.models import (
    Bookmark,
    Collection,
    Folder,
    Tag,
    bookmark_tags,
    folder_bookmarks,
)
from marksync.services.common import isoformat_utc


def _base_fields(record) -> dict:
    return {
        "id": record.id,
        "ownerId": record.user_id,
        "createdAt": isoformat_utc(record.created_at),
        "updatedAt": isoformat_utc(record.updated_at),
        "isDeleted": bool(record.is_deleted),
        "deletedAt": isoformat_utc(record.deleted_at),
    }


def membership_map(
    table, column: str, bookmark_ids: list[str]
) -> dict[str, list[str]]:
    """Map bookmark id -> sorted related ids for one join table."""
    result: dict[str, list[str]] = {bookmark_id: [] for bookmark_id in bookmark_ids}
    if not bookmark_ids:
        return result
    rows = db.session.execute(
        select(table.c.bookmark_id, table.c[column]).where(
            table.c.bookmark_id.in_(bookmark_ids)
        )
    )
    for bookmark_id, related_id in rows:
        result[bookmark_id].append(related_id)
    for related in result.values():
        related.sort()
    return result


def serialize_bookmark(
    bookmark: Bookmark,
    folder_ids: list[str] | None = None,
    tag_ids: list[str] | None = None,
) -> dict:
    if folder_ids is None:
        folder_ids = membership_map(folder_bookmarks, "folder_id", [bookmark.id])[
            bookmark.id
        ]
    if tag_ids is None:
        tag_ids = membership_map(bookmark_tags, "tag_id", [bookmark.id])[bookmark.id]
    return {
        **_base_fields(bookmark),
        "url": bookmark.url,
        "title": bookmark.title,
        "description": bookmark.description,
        "notes": bookmark.notes,
        "folderIds": folder_ids,
        "tagIds": tag_ids,
    }


def serialize_bookmarks(bookmarks: list[Bookmark]) -> list[dict]:
    ids = [bookmark.id for bookmark in bookmarks]
    folders = membership_map(folder_bookmarks, "folder_id", ids)
    tags = membership_map(bookmark_tags, "tag_id", ids)
    return [
        serialize_bookmark(bookmark, folders[bookmark.id], tags[bookmark.id])
        for bookmark in bookmarks
    ]


def serialize_folder(folder: Folder) -> dict:
    return {
        **_base_fields(folder),
        "name": folder.name,
        "parentId": folder.parent_id,
        "description": folder.description,
        "icon": folder.icon,
        "color": folder.color,
    }


def serialize_tag(tag: Tag) -> dict:
    return {**_base_fields(tag), "name": tag.name, "color": tag.color}


def serialize_collection(collection: Collection) -> dict:
    return {
        **_base_fields(collection),
        "name": collection.name,
        "description": collection.description,
        "isPublic": bool(collection.is_public),
        "publicLink": collection.public_link,
        "thumbnail": collection.thumbnail,
    }


def serialize_record(kind: str, record) -> dict:
    if kind == "bookmark":
        return serialize_bookmark(record)
    if kind == "folder":
        return serialize_folder(record)
    if kind == "tag":
        return serialize_tag(record)
    if kind == "collection":
        return serialize_collection(record)
    raise ValueError(f"unknown record kind: {kind}")
