from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Iterator

from marksync.services.common import EPOCH, isoformat_utc, parse_timestamp
from marksync.services.sync_errors import InvalidChange, SyncPayloadError


KIND_BOOKMARK = "bookmark"
KIND_FOLDER = "folder"
KIND_TAG = "tag"
KIND_COLLECTION = "collection"

# Client changes are reconciled kind by kind in this order.
KIND_ORDER = (KIND_BOOKMARK, KIND_FOLDER, KIND_TAG, KIND_COLLECTION)

PLURAL_KINDS = {
    KIND_BOOKMARK: "bookmarks",
    KIND_FOLDER: "folders",
    KIND_TAG: "tags",
    KIND_COLLECTION: "collections",
}


def empty_deleted_ids() -> dict[str, list[str]]:
    return {plural: [] for plural in PLURAL_KINDS.values()}


@dataclass
class ClientChange:
    """One pending change submitted by a client for a single record.

    ``provided`` holds the attribute names the client actually sent, so an
    absent field is left untouched while an explicit ``null`` clears it.
    ``raw`` is the payload exactly as received and is echoed back in
    conflict entries.
    """

    kind: ClassVar[str] = ""
    # wire name -> (attribute, accepted type)
    wire_fields: ClassVar[dict[str, tuple[str, type]]] = {}

    id: str = ""
    updated_at: datetime | None = None
    last_server_updated_at: datetime | None = None
    is_deleted: bool = False
    provided: frozenset = frozenset()
    raw: dict = field(default_factory=dict)

    def has(self, attribute: str) -> bool:
        return attribute in self.provided

    def field_values(self) -> dict:
        return {
            attribute: getattr(self, attribute)
            for attribute, _ in self.wire_fields.values()
            if attribute in self.provided
        }

    @property
    def base_version(self) -> datetime:
        return self.last_server_updated_at or EPOCH


@dataclass
class BookmarkChange(ClientChange):
    kind: ClassVar[str] = KIND_BOOKMARK
    wire_fields: ClassVar[dict[str, tuple[str, type]]] = {
        "url": ("url", str),
        "title": ("title", str),
        "description": ("description", str),
        "notes": ("notes", str),
    }

    url: str | None = None
    title: str | None = None
    description: str | None = None
    notes: str | None = None
    folder_ids: list[str] | None = None
    tag_ids: list[str] | None = None


@dataclass
class FolderChange(ClientChange):
    kind: ClassVar[str] = KIND_FOLDER
    wire_fields: ClassVar[dict[str, tuple[str, type]]] = {
        "name": ("name", str),
        "parentId": ("parent_id", str),
        "description": ("description", str),
        "icon": ("icon", str),
        "color": ("color", str),
    }

    name: str | None = None
    parent_id: str | None = None
    description: str | None = None
    icon: str | None = None
    color: str | None = None


@dataclass
class TagChange(ClientChange):
    kind: ClassVar[str] = KIND_TAG
    wire_fields: ClassVar[dict[str, tuple[str, type]]] = {
        "name": ("name", str),
        "color": ("color", str),
    }

    name: str | None = None
    color: str | None = None


@dataclass
class CollectionChange(ClientChange):
    kind: ClassVar[str] = KIND_COLLECTION
    wire_fields: ClassVar[dict[str, tuple[str, type]]] = {
        "name": ("name", str),
        "description": ("description", str),
        "isPublic": ("is_public", bool),
        "thumbnail": ("thumbnail", str),
    }

    name: str | None = None
    description: str | None = None
    is_public: bool | None = None
    thumbnail: str | None = None


CHANGE_TYPES: dict[str, type[ClientChange]] = {
    KIND_BOOKMARK: BookmarkChange,
    KIND_FOLDER: FolderChange,
    KIND_TAG: TagChange,
    KIND_COLLECTION: CollectionChange,
}


@dataclass
class SyncRequest:
    last_sync_timestamp: datetime | None
    last_sync_raw: str | None = None
    changes: dict[str, list[ClientChange]] = field(default_factory=dict)
    rejected: list[Conflict] = field(default_factory=list)

    def iter_changes(self) -> Iterator[ClientChange]:
        for kind in KIND_ORDER:
            yield from self.changes.get(kind, [])


@dataclass
class Conflict:
    kind: str
    client_change: Any
    server_record: dict

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "clientChange": self.client_change,
            "serverRecord": self.server_record,
        }


@dataclass
class SyncResult:
    success: bool
    new_sync_timestamp: str
    server_changes: list[dict] = field(default_factory=list)
    deleted_ids: dict[str, list[str]] = field(default_factory=empty_deleted_ids)
    conflicts: list[Conflict] = field(default_factory=list)
    message: str | None = None

    def as_dict(self) -> dict:
        payload = {
            "success": self.success,
            "serverChanges": self.server_changes,
            "deletedIds": self.deleted_ids,
            "conflicts": [conflict.as_dict() for conflict in self.conflicts],
            "newSyncTimestamp": self.new_sync_timestamp,
        }
        if self.message:
            payload["message"] = self.message
        return payload


def _parse_time_field(item: dict, key: str, where: str) -> datetime | None:
    try:
        return parse_timestamp(item.get(key))
    except (ValueError, OverflowError) as exc:
        raise InvalidChange(f"{where}.{key} is not a valid timestamp") from exc


def _parse_id_list(value, where: str) -> list[str]:
    if not isinstance(value, list):
        raise InvalidChange(f"{where} must be a list of ids")
    ids = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise InvalidChange(f"{where} must only contain non-empty string ids")
        ids.append(item.strip())
    return list(dict.fromkeys(ids))


def parse_change(kind: str, item, where: str) -> ClientChange:
    change_type = CHANGE_TYPES[kind]
    if not isinstance(item, dict):
        raise InvalidChange(f"{where} must be an object")

    record_id = item.get("id")
    if not isinstance(record_id, str) or not record_id.strip():
        raise InvalidChange(f"{where}.id is required")

    is_deleted = item.get("isDeleted", False)
    if is_deleted is None:
        is_deleted = False
    if not isinstance(is_deleted, bool):
        raise InvalidChange(f"{where}.isDeleted must be a boolean")

    values = {}
    for wire_name, (attribute, accepted) in change_type.wire_fields.items():
        if wire_name not in item:
            continue
        value = item[wire_name]
        if value is not None and not isinstance(value, accepted):
            raise InvalidChange(
                f"{where}.{wire_name} must be a {accepted.__name__} or null"
            )
        values[attribute] = value

    if kind == KIND_BOOKMARK:
        id_lists = (("folderIds", "folder_ids"), ("tagIds", "tag_ids"))
        for wire_name, attribute in id_lists:
            if item.get(wire_name) is not None:
                values[attribute] = _parse_id_list(
                    item[wire_name], f"{where}.{wire_name}"
                )

    return change_type(
        id=record_id.strip(),
        updated_at=_parse_time_field(item, "updatedAt", where),
        last_server_updated_at=_parse_time_field(item, "lastServerUpdatedAt", where),
        is_deleted=is_deleted,
        provided=frozenset(values),
        raw=dict(item),
        **values,
    )


def parse_sync_request(payload, max_changes: int | None = None) -> SyncRequest:
    """Validate a sync request body and turn it into typed changes.

    Problems with the body as a whole raise ``SyncPayloadError``. A single
    malformed change lands in ``rejected`` instead, so it can be reported
    as a conflict entry without holding back the rest of the batch.
    """
    if not isinstance(payload, dict):
        raise SyncPayloadError("request body must be a JSON object")

    raw_timestamp = payload.get("lastSyncTimestamp")
    try:
        last_sync = parse_timestamp(raw_timestamp)
    except (ValueError, OverflowError) as exc:
        raise SyncPayloadError("lastSyncTimestamp is not a valid timestamp") from exc

    client_changes = payload.get("clientChanges")
    if client_changes is None:
        client_changes = {}
    if not isinstance(client_changes, dict):
        raise SyncPayloadError("clientChanges must be an object")

    batches = {}
    for kind in KIND_ORDER:
        plural = PLURAL_KINDS[kind]
        items = client_changes.get(plural)
        if items is None:
            continue
        if not isinstance(items, list):
            raise SyncPayloadError(f"clientChanges.{plural} must be a list")
        batches[kind] = items

    submitted = sum(len(items) for items in batches.values())
    if max_changes is not None and submitted > max_changes:
        raise SyncPayloadError(
            f"too many changes in one request (limit is {max_changes})"
        )

    request = SyncRequest(
        last_sync_timestamp=last_sync,
        last_sync_raw=raw_timestamp or None,
    )
    for kind, items in batches.items():
        plural = PLURAL_KINDS[kind]
        parsed = request.changes.setdefault(kind, [])
        for index, item in enumerate(items):
            try:
                parsed.append(
                    parse_change(kind, item, f"clientChanges.{plural}[{index}]")
                )
            except InvalidChange as exc:
                request.rejected.append(Conflict(kind, item, exc.as_dict()))
    return request


def fallback_timestamp(request: SyncRequest | None) -> str:
    """Watermark to hand back when a sync call fails as a whole."""
    if request is not None and request.last_sync_raw:
        return request.last_sync_raw
    return isoformat_utc(EPOCH)
