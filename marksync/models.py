import hashlib
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from marksync.extensions import db
from marksync.services.common import isoformat_utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


folder_bookmarks = db.Table(
    "folder_bookmarks",
    db.Column(
        "bookmark_id", db.String(64), db.ForeignKey("bookmarks.id"), primary_key=True
    ),
    db.Column(
        "folder_id", db.String(64), db.ForeignKey("folders.id"), primary_key=True
    ),
)


bookmark_tags = db.Table(
    "bookmark_tags",
    db.Column(
        "bookmark_id", db.String(64), db.ForeignKey("bookmarks.id"), primary_key=True
    ),
    db.Column("tag_id", db.String(64), db.ForeignKey("tags.id"), primary_key=True),
)


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)


class SyncedRecordMixin:
    """Columns shared by every entity kind that clients synchronize.

    Ids are generated by the client that first created the record, so they
    are strings rather than database sequences.
    """

    id = db.Column(db.String(64), primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)


class Bookmark(SyncedRecordMixin, db.Model):
    __tablename__ = "bookmarks"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    url = db.Column(db.Text, nullable=False, default="")
    title = db.Column(db.String(512), nullable=False, default="Untitled")
    description = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.Index("ix_bookmark_user_updated", "user_id", "updated_at"),
        db.Index("ix_bookmark_user_deleted", "user_id", "is_deleted", "deleted_at"),
    )


class Folder(SyncedRecordMixin, db.Model):
    __tablename__ = "folders"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    parent_id = db.Column(
        db.String(64), db.ForeignKey("folders.id"), nullable=True, index=True
    )
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(128), nullable=True)
    color = db.Column(db.String(32), nullable=True)

    __table_args__ = (
        db.Index("ix_folder_user_updated", "user_id", "updated_at"),
        db.Index("ix_folder_user_parent_name", "user_id", "parent_id", "name"),
    )


class Tag(SyncedRecordMixin, db.Model):
    __tablename__ = "tags"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(64), nullable=False)
    color = db.Column(db.String(32), nullable=True)

    __table_args__ = (
        db.Index("ix_tag_user_updated", "user_id", "updated_at"),
        db.Index("ix_tag_user_name", "user_id", "name"),
    )


class Collection(SyncedRecordMixin, db.Model):
    __tablename__ = "collections"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    public_link = db.Column(db.String(64), nullable=True, unique=True)
    thumbnail = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.Index("ix_collection_user_updated", "user_id", "updated_at"),
        db.Index("ix_collection_user_name", "user_id", "name"),
    )

    @staticmethod
    def issue_public_link() -> str:
        return secrets.token_urlsafe(16)


class ApiToken(db.Model):
    __tablename__ = "api_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(120), nullable=False)
    token_hash = db.Column(db.String(128), nullable=False, unique=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User", backref="api_tokens")

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @classmethod
    def issue_token(cls, prefix="ms"):
        token = f"{prefix}_{secrets.token_urlsafe(32)}"
        return token, cls.hash_token(token)


class SyncEvent(db.Model):
    __tablename__ = "sync_events"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.Index("ix_sync_user_cursor", "user_id", "id"),)

    def as_dict(self):
        return {
            "cursor": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "payload": self.payload,
            "created_at": isoformat_utc(self.created_at),
        }


SYNCED_MODELS = {
    "bookmark": Bookmark,
    "folder": Folder,
    "tag": Tag,
    "collection": Collection,
}
