# SQLAlchemy models
from .base import Base
from .workspace import (
    Chunk,
    ChunkTag,
    ChunkType,
    ContentType,
    Conversation,
    ConversationMessage,
    Jem,
    LocusContentItem,
    LocusType,
    MetaTag,
    Nexus,
    Notebook,
    PromptTemplate,
    Tag,
    User,
    new_id,
)

__all__ = [
    # Base
    "Base",
    "new_id",
    # Enums
    "LocusType",
    "ContentType",
    "ChunkType",
    # Identity
    "User",
    # Hierarchy
    "Nexus",
    "Notebook",
    "Chunk",
    "Tag",
    "ChunkTag",
    "MetaTag",
    # Conversations
    "Conversation",
    "ConversationMessage",
    # Ordering
    "LocusContentItem",
    # Other owner-bearing collections
    "Jem",
    "PromptTemplate",
]
