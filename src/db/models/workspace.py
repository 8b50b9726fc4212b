"""
Workspace collection models.

A workspace is a two-level hierarchy: a Nexus groups Notebooks, and each
Notebook holds Chunks, Tags and Conversations. Ordering of content inside a
nexus or notebook lives in ``locus_content_items``; the ``order`` columns on
the entity tables are legacy and only read by the ordering seed.

References between collections are plain string columns without foreign key
constraints. Rows migrated from the hosted store can point at records that no
longer exist, and the migration code has to tolerate that.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Float, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


def new_id() -> str:
    """Generate a fresh record id."""
    return uuid4().hex


class LocusType(str, Enum):
    """Kinds of container scope that can be ordered."""
    NEXUS = "nexus"
    NOTEBOOK = "notebook"


class ContentType(str, Enum):
    """Kinds of content that appear in an ordering group."""
    NOTEBOOK = "notebook"
    CHUNK = "chunk"
    TAG = "tag"
    CONVERSATION_MESSAGE = "conversationMessage"


class ChunkType(str, Enum):
    TEXT = "text"
    CODE = "code"
    DOCUMENT = "document"


# ========================================
# IDENTITY
# ========================================


class User(Base):
    """Application identity (external auth subject in ``user_id``)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(Text)
    name: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<User {self.user_id}>"


# ========================================
# HIERARCHY
# ========================================


class Nexus(Base):
    """Top-level knowledge domain."""

    __tablename__ = "nexi"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    order: Mapped[int | None] = mapped_column(Integer)  # legacy home-page order
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<Nexus {self.id} name={self.name!r} owner={self.owner_id}>"


class Notebook(Base):
    """Focused collection inside a nexus."""

    __tablename__ = "notebooks"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    nexus_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    meta_question: Mapped[str | None] = mapped_column(Text)
    order: Mapped[int | None] = mapped_column(Integer)  # DEPRECATED: see locus_content_items
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<Notebook {self.id} nexus={self.nexus_id} owner={self.owner_id}>"


class Chunk(Base):
    """Atomic piece of knowledge stored in a notebook."""

    __tablename__ = "chunks"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    notebook_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(Text)
    original_text: Mapped[str] = mapped_column(Text, nullable=False)
    user_edited_text: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str | None] = mapped_column(Text)
    chunk_type: Mapped[str] = mapped_column(Text, nullable=False, default=ChunkType.TEXT.value)
    meta_tag_id: Mapped[str | None] = mapped_column(Text, index=True)
    order: Mapped[int | None] = mapped_column(Integer)  # DEPRECATED: see locus_content_items
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<Chunk {self.id} notebook={self.notebook_id} owner={self.owner_id}>"


class Tag(Base):
    """Hierarchical label scoped to a notebook."""

    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    notebook_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    parent_tag_id: Mapped[str | None] = mapped_column(Text, index=True)
    color: Mapped[str | None] = mapped_column(Text)
    # Where the tag was first created
    origin_notebook_id: Mapped[str | None] = mapped_column(Text)
    origin_nexus_id: Mapped[str | None] = mapped_column(Text)
    order: Mapped[int | None] = mapped_column(Integer)  # DEPRECATED: see locus_content_items
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<Tag {self.id} name={self.name!r} parent={self.parent_tag_id}>"


class ChunkTag(Base):
    """Tag assignment (chunk <-> tag join row)."""

    __tablename__ = "chunk_tags"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    chunk_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    tag_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())


class MetaTag(Base):
    """System-wide qualitative classification (shared, never cloned)."""

    __tablename__ = "meta_tags"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_color: Mapped[str] = mapped_column(Text, nullable=False, default="BLUE")
    description: Mapped[str | None] = mapped_column(Text)
    is_system: Mapped[bool] = mapped_column(Boolean, default=True)
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())


# ========================================
# CONVERSATIONS
# ========================================


class Conversation(Base):
    """
    Conversation header.

    ``question`` and ``answer`` are only populated on flattened rows written
    by an early schema, where a message was stored as a conversation. Such
    rows are removed by the migration.
    """

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    notebook_id: Mapped[str | None] = mapped_column(Text, index=True)
    title: Mapped[str | None] = mapped_column(Text)
    model_used: Mapped[str | None] = mapped_column(Text)
    question: Mapped[str | None] = mapped_column(Text)  # legacy flattened rows only
    answer: Mapped[str | None] = mapped_column(Text)  # legacy flattened rows only
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column()


class ConversationMessage(Base):
    """Question/answer pair within a conversation."""

    __tablename__ = "conversation_messages"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    order: Mapped[int | None] = mapped_column(Integer)  # DEPRECATED: see locus_content_items
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())


# ========================================
# ORDERING
# ========================================


class LocusContentItem(Base):
    """
    Position of one piece of content inside a locus.

    A locus is a nexus (ordering notebooks) or a notebook (ordering chunks,
    tags and messages). ``parent_id`` scopes tag ordering to siblings under
    the same parent tag; it is NULL for top-level content.
    """

    __tablename__ = "locus_content_items"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    locus_id: Mapped[str] = mapped_column(Text, nullable=False)
    locus_type: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    content_id: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[float] = mapped_column(Float, nullable=False)
    parent_id: Mapped[str | None] = mapped_column(Text)
    owner_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "locus_id", "locus_type", "content_type", "content_id", name="uq_locus_content"
        ),
        Index("idx_locus_content_locus", "locus_id"),
        Index("idx_locus_content_parent", "locus_id", "parent_id", "position"),
        Index("idx_locus_content_content", "content_type", "content_id"),
        Index("idx_locus_content_owner", "owner_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<LocusContentItem {self.locus_type}:{self.locus_id} "
            f"{self.content_type}:{self.content_id} pos={self.position}>"
        )


# ========================================
# OTHER OWNER-BEARING COLLECTIONS
# ========================================


class Jem(Base):
    """Favorited chunk."""

    __tablename__ = "jems"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    chunk_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())


class PromptTemplate(Base):
    """Prompt template for AI interactions."""

    __tablename__ = "prompt_templates"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    template_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_system_defined: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    created_at: Mapped[datetime | None] = mapped_column(default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(default=func.now())
