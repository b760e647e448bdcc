import pytest

from marksync.extensions import db
from marksync.models import Bookmark, Folder, Tag, User
from marksync.services.relations import RelationDiff, sync_bookmark_relations
from marksync.services.sync_errors import (
    HierarchyViolation,
    NotFound,
    PermissionDenied,
    UniquenessViolation,
)
from marksync.services.validators import (
    collect_descendant_folder_ids,
    ensure_folder_parent,
    ensure_unique_collection_name,
    ensure_unique_folder_name,
)


def _create_user(username: str):
    user = User(username=username, is_active=True)
    user.set_password("secret")
    db.session.add(user)
    db.session.commit()
    return user.id


def _tree(user_id: int):
    # a -> b -> c, a -> d, e (separate root)
    for folder_id, parent_id in [
        ("a", None),
        ("b", "a"),
        ("c", "b"),
        ("d", "a"),
        ("e", None),
    ]:
        db.session.add(
            Folder(id=folder_id, user_id=user_id, name=folder_id, parent_id=parent_id)
        )
    db.session.commit()


def test_descendant_closure_covers_the_whole_subtree(app):
    with app.app_context():
        owner = _create_user("owner")
        _tree(owner)

        assert collect_descendant_folder_ids(owner, "a") == {"b", "c", "d"}
        assert collect_descendant_folder_ids(owner, "b") == {"c"}
        assert collect_descendant_folder_ids(owner, "c") == set()
        assert collect_descendant_folder_ids(owner, "e") == set()


def test_descendant_closure_is_scoped_to_the_owner(app):
    with app.app_context():
        owner = _create_user("owner")
        other = _create_user("other")
        _tree(owner)
        db.session.add(Folder(id="x", user_id=other, name="x", parent_id="c"))
        db.session.commit()

        assert "x" not in collect_descendant_folder_ids(owner, "a")


@pytest.mark.parametrize("parent_id", ["a", "b", "c", "d"])
def test_every_descendant_is_rejected_as_new_parent(app, parent_id):
    with app.app_context():
        owner = _create_user("owner")
        _tree(owner)

        with pytest.raises(HierarchyViolation):
            ensure_folder_parent(owner, "a", parent_id)


def test_folder_parent_must_be_an_owned_live_folder(app):
    with app.app_context():
        owner = _create_user("owner")
        other = _create_user("other")
        _tree(owner)
        db.session.add(Folder(id="foreign", user_id=other, name="foreign"))
        db.session.commit()

        ensure_folder_parent(owner, "c", "e")
        ensure_folder_parent(owner, "c", None)
        with pytest.raises(NotFound):
            ensure_folder_parent(owner, "c", "foreign")


def test_deleted_folders_do_not_block_names(app):
    with app.app_context():
        owner = _create_user("owner")
        db.session.add(
            Folder(id="old", user_id=owner, name="Inbox", is_deleted=True)
        )
        db.session.add(Folder(id="live", user_id=owner, name="Later"))
        db.session.commit()

        ensure_unique_folder_name(owner, "Inbox", None)
        ensure_unique_folder_name(owner, "Later", None, exclude_id="live")
        with pytest.raises(UniquenessViolation):
            ensure_unique_folder_name(owner, "Later", None)
        ensure_unique_collection_name(owner, "Later")


def test_relation_sync_is_idempotent(app):
    with app.app_context():
        owner = _create_user("owner")
        db.session.add(Bookmark(id="b1", user_id=owner, url="https://a.example"))
        db.session.add(Folder(id="f1", user_id=owner, name="f1"))
        db.session.add(Folder(id="f2", user_id=owner, name="f2"))
        db.session.add(Tag(id="t1", user_id=owner, name="t1"))
        db.session.commit()

        first = sync_bookmark_relations(owner, "b1", ["f1", "f2", "f1"], ["t1"])
        db.session.commit()
        second = sync_bookmark_relations(owner, "b1", ["f2", "f1"], ["t1"])
        db.session.commit()
        cleared = sync_bookmark_relations(owner, "b1", [], None)
        db.session.commit()

        assert first == RelationDiff(added=3, removed=0)
        assert second == RelationDiff(added=0, removed=0)
        assert cleared == RelationDiff(added=0, removed=2)


def test_relation_sync_denies_foreign_tags(app):
    with app.app_context():
        owner = _create_user("owner")
        other = _create_user("other")
        db.session.add(Bookmark(id="b1", user_id=owner, url="https://a.example"))
        db.session.add(Tag(id="theirs", user_id=other, name="theirs"))
        db.session.commit()

        with pytest.raises(PermissionDenied):
            sync_bookmark_relations(owner, "b1", None, ["theirs"])
        db.session.rollback()
