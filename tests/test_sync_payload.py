from datetime import datetime, timezone

import pytest

from marksync.services.sync_errors import SyncPayloadError
from marksync.services.sync_types import (
    BookmarkChange,
    CollectionChange,
    FolderChange,
    fallback_timestamp,
    parse_sync_request,
)


def test_changes_are_typed_and_ordered_by_kind():
    request = parse_sync_request(
        {
            "lastSyncTimestamp": "2026-03-01T09:00:00Z",
            "clientChanges": {
                "collections": [{"id": "c1", "isPublic": True}],
                "folders": [{"id": "f1", "name": "Work", "parentId": None}],
                "bookmarks": [
                    {
                        "id": "b1",
                        "title": "Docs",
                        "folderIds": ["f1", "f1", "f2"],
                        "updatedAt": "2026-03-01T10:00:00+02:00",
                    }
                ],
            },
        }
    )

    assert request.last_sync_timestamp == datetime(2026, 3, 1, 9, tzinfo=timezone.utc)
    changes = list(request.iter_changes())
    assert [type(change) for change in changes] == [
        BookmarkChange,
        FolderChange,
        CollectionChange,
    ]
    bookmark, folder, collection = changes
    assert bookmark.kind == "bookmark"
    assert bookmark.folder_ids == ["f1", "f2"]
    assert bookmark.tag_ids is None
    assert bookmark.updated_at == datetime(2026, 3, 1, 8, tzinfo=timezone.utc)
    assert folder.has("parent_id") and folder.parent_id is None
    assert not folder.has("icon")
    assert folder.field_values() == {"name": "Work", "parent_id": None}
    assert collection.is_public is True


def test_missing_base_version_means_epoch():
    request = parse_sync_request({"clientChanges": {"tags": [{"id": "t1"}]}})

    (change,) = request.iter_changes()
    assert change.last_server_updated_at is None
    assert change.base_version == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert request.last_sync_timestamp is None


def test_naive_timestamps_are_read_as_utc():
    request = parse_sync_request({"lastSyncTimestamp": "2026-03-01T09:00:00"})

    assert request.last_sync_timestamp == datetime(2026, 3, 1, 9, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"lastSyncTimestamp": "yesterday"},
        {"clientChanges": []},
        {"clientChanges": {"bookmarks": {"id": "b1"}}},
    ],
)
def test_malformed_request_bodies_are_rejected(payload):
    with pytest.raises(SyncPayloadError):
        parse_sync_request(payload)


@pytest.mark.parametrize(
    "kind, item",
    [
        ("bookmarks", "b1"),
        ("bookmarks", {"title": "no id"}),
        ("bookmarks", {"id": "  "}),
        ("bookmarks", {"id": "b1", "folderIds": "f1"}),
        ("bookmarks", {"id": "b1", "tagIds": [1]}),
        ("tags", {"id": "t1", "isDeleted": "yes"}),
        ("tags", {"id": "t1", "name": 42}),
        ("collections", {"id": "c1", "isPublic": "true"}),
        ("folders", {"id": "f1", "lastServerUpdatedAt": "soon"}),
        ("folders", {"id": "f1", "updatedAt": 1700000000}),
    ],
)
def test_malformed_change_is_set_aside_without_failing_the_request(kind, item):
    request = parse_sync_request(
        {"clientChanges": {kind: [{"id": "good"}, item, {"id": "also-good"}]}}
    )

    assert [change.id for change in request.iter_changes()] == ["good", "also-good"]
    (rejected,) = request.rejected
    assert rejected.client_change == item
    assert rejected.server_record["code"] == "invalid_change"
    assert rejected.server_record["error"].startswith(f"clientChanges.{kind}[1]")


def test_change_limit_is_enforced():
    payload = {"clientChanges": {"tags": [{"id": f"t{i}"} for i in range(3)]}}

    assert len(parse_sync_request(payload, max_changes=3).changes["tag"]) == 3
    with pytest.raises(SyncPayloadError):
        parse_sync_request(payload, max_changes=2)


def test_fallback_timestamp_echoes_the_client_watermark():
    request = parse_sync_request({"lastSyncTimestamp": "2026-03-01T09:00:00Z"})

    assert fallback_timestamp(request) == "2026-03-01T09:00:00Z"
    assert fallback_timestamp(parse_sync_request({})) == "1970-01-01T00:00:00.000+00:00"
    assert fallback_timestamp(None) == "1970-01-01T00:00:00.000+00:00"
