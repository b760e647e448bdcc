from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select

from marksync.extensions import db
from marksync.models import Folder, Tag, bookmark_tags, folder_bookmarks
from marksync.services.sync_errors import PermissionDenied


@dataclass
class RelationDiff:
    added: int = 0
    removed: int = 0

    def __add__(self, other: "RelationDiff") -> "RelationDiff":
        return RelationDiff(self.added + other.added, self.removed + other.removed)


def _sync_membership(
    table,
    column: str,
    target_model,
    user_id: int,
    bookmark_id: str,
    desired_ids: list[str],
    label: str,
) -> RelationDiff:
    current = set(
        db.session.execute(
            select(table.c[column]).where(table.c.bookmark_id == bookmark_id)
        ).scalars()
    )
    desired = list(dict.fromkeys(desired_ids))
    to_add = [related_id for related_id in desired if related_id not in current]
    to_remove = sorted(current - set(desired))

    if to_add:
        owned = db.session.execute(
            select(func.count(target_model.id)).where(
                target_model.id.in_(to_add), target_model.user_id == user_id
            )
        ).scalar_one()
        if owned != len(to_add):
            raise PermissionDenied(
                f"Permission denied for adding bookmark {bookmark_id} "
                f"to one or more {label}"
            )
        db.session.execute(
            table.insert(),
            [{"bookmark_id": bookmark_id, column: related_id} for related_id in to_add],
        )

    if to_remove:
        db.session.execute(
            table.delete().where(
                table.c.bookmark_id == bookmark_id, table.c[column].in_(to_remove)
            )
        )

    return RelationDiff(added=len(to_add), removed=len(to_remove))


def sync_bookmark_relations(
    user_id: int,
    bookmark_id: str,
    folder_ids: list[str] | None = None,
    tag_ids: list[str] | None = None,
) -> RelationDiff:
    """Bring a bookmark's folder and tag memberships to the desired sets.

    A ``None`` set leaves that relation untouched. Raises ``PermissionDenied``
    before writing anything for a relation when one of the ids to add is not
    owned by ``user_id``; the caller's rollback discards earlier writes.
    """
    diff = RelationDiff()
    if folder_ids is not None:
        diff += _sync_membership(
            folder_bookmarks,
            "folder_id",
            Folder,
            user_id,
            bookmark_id,
            folder_ids,
            "folders",
        )
    if tag_ids is not None:
        diff += _sync_membership(
            bookmark_tags, "tag_id", Tag, user_id, bookmark_id, tag_ids, "tags"
        )
    return diff
