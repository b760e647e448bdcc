from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import aliased

from marksync.extensions import db
from marksync.models import Collection, Folder, Tag
from marksync.services.sync_errors import (
    HierarchyViolation,
    InvalidChange,
    NotFound,
    UniquenessViolation,
)


def ensure_name(value, label: str) -> str:
    name = (value or "").strip() if isinstance(value, str) else ""
    if not name:
        raise InvalidChange(f"{label} name must not be empty")
    return name


def collect_descendant_folder_ids(user_id: int, folder_id: str) -> set[str]:
    """Every folder below ``folder_id`` in the owner's tree.

    Runs as a recursive query on the current session so a move is checked
    against the tree as seen by the transaction that performs it.
    """
    descendants = (
        select(Folder.id)
        .where(Folder.user_id == user_id, Folder.parent_id == folder_id)
        .cte(name="folder_descendants", recursive=True)
    )
    child = aliased(Folder)
    descendants = descendants.union(
        select(child.id).where(
            child.user_id == user_id, child.parent_id == descendants.c.id
        )
    )
    return set(db.session.execute(select(descendants.c.id)).scalars())


def ensure_folder_parent(user_id: int, folder_id: str, parent_id: str | None) -> None:
    if parent_id is None:
        return
    if parent_id == folder_id:
        raise HierarchyViolation(f"Folder {folder_id} cannot be its own parent")
    if parent_id in collect_descendant_folder_ids(user_id, folder_id):
        raise HierarchyViolation(
            f"Cannot move folder {folder_id} under {parent_id}: "
            "it would create a circular reference"
        )
    parent_exists = (
        Folder.query.filter_by(id=parent_id, user_id=user_id, is_deleted=False).count()
        > 0
    )
    if not parent_exists:
        raise NotFound(f"Parent folder {parent_id} not found or is deleted")


def ensure_unique_folder_name(
    user_id: int, name: str, parent_id: str | None, exclude_id: str | None = None
) -> None:
    query = Folder.query.filter_by(
        user_id=user_id, name=name, parent_id=parent_id, is_deleted=False
    )
    if exclude_id is not None:
        query = query.filter(Folder.id != exclude_id)
    if query.first() is not None:
        raise UniquenessViolation(f'Folder name "{name}" already exists at this level')


def ensure_unique_tag_name(user_id: int, name: str, exclude_id: str | None = None):
    query = Tag.query.filter_by(user_id=user_id, name=name, is_deleted=False)
    if exclude_id is not None:
        query = query.filter(Tag.id != exclude_id)
    if query.first() is not None:
        raise UniquenessViolation(f'Tag name "{name}" already exists')


def ensure_unique_collection_name(
    user_id: int, name: str, exclude_id: str | None = None
):
    query = Collection.query.filter_by(user_id=user_id, name=name, is_deleted=False)
    if exclude_id is not None:
        query = query.filter(Collection.id != exclude_id)
    if query.first() is not None:
        raise UniquenessViolation(f'Collection name "{name}" already exists')
