"""
Discussion models: threaded comments and tenant tags.

Comments and tag links point at their target through
(``entity_type``, ``entity_id``) rather than a foreign key, so one table
serves frameworks, versions, structural nodes and mappings. The target's
existence is checked by the service on every write.

Neither is part of a version's content: commenting or tagging never
touches the freeze.
"""

from sqlalchemy import func

from curriculum.models import db
from curriculum.models.base import TenantModel, iso
from curriculum.models.soft_delete import SoftDeleteMixin

COMMENTABLE_TYPES = ("framework", "version", "course", "unit", "resource", "mapping")
TAGGABLE_TYPES = ("framework", "course", "unit", "resource")

DEFAULT_TAG_COLOR = "#3B82F6"


class Comment(TenantModel, SoftDeleteMixin):
    """Threaded comment on a curriculum entity.

    ``parent_id`` points at another live comment on the same entity.
    Resolution is shared state: any commenter may resolve or reopen.
    """

    __tablename__ = "comments"
    __table_args__ = (
        db.Index("ix_comments_entity", "tenant_id", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(20), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    parent_id = db.Column(
        db.Integer, db.ForeignKey("comments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    author_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    body = db.Column(db.Text, nullable=False)
    mentions = db.Column(db.JSON, nullable=True)
    attachments = db.Column(db.JSON, nullable=True)
    is_resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    edited_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "parent_id": self.parent_id,
            "author_id": self.author_id,
            "body": self.body,
            "mentions": self.mentions or [],
            "attachments": self.attachments or [],
            "is_resolved": self.is_resolved,
            "resolved_by": self.resolved_by,
            "resolved_at": iso(self.resolved_at),
            "edited_at": iso(self.edited_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Comment {self.id}: {self.entity_type}#{self.entity_id} by {self.author_id}>"


class Tag(TenantModel):
    """Tenant-wide label. ``entity_type`` optionally limits where it attaches."""

    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(200), nullable=True)
    entity_type = db.Column(db.String(20), nullable=True)
    color = db.Column(db.String(7), nullable=False, default=DEFAULT_TAG_COLOR)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "entity_type": self.entity_type,
            "color": self.color,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Tag {self.id}: {self.name}>"


# Case-insensitive name uniqueness per tenant.
db.Index("uq_tags_tenant_name", Tag.tenant_id, func.lower(Tag.name), unique=True)


class TagLink(TenantModel):
    __tablename__ = "tag_links"
    __table_args__ = (
        db.Index("uq_tag_links_target", "tag_id", "entity_type", "entity_id", unique=True),
        db.Index("ix_tag_links_entity", "tenant_id", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tag_id = db.Column(db.Integer, db.ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)
    entity_type = db.Column(db.String(20), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "tag_id": self.tag_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }
