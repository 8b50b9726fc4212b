"""
Hierarchical Clone Engine - copies the starter nexus into a user's workspace.

The template is read once into a ``TemplateSnapshot``; each user's clone then
writes a fresh nexus, its notebooks, tags, chunks, tag assignments and
ordering records, recording every old -> new id in a ``CloneArena``. Template
records are only ever read.

Tags are created level by level: all root tags of a notebook first, then every
tag whose parent has already been cloned, until a pass makes no progress.
Tags whose parent never gets cloned (broken reference or cycle) are dropped,
together with their tag assignments and ordering records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from loguru import logger

from config import get_settings
from src.db.models import (
    Base,
    Chunk,
    ChunkTag,
    ContentType,
    LocusContentItem,
    LocusType,
    MetaTag,
    Nexus,
    Notebook,
    Tag,
)
from src.ordering import ContentOrderIndex, Locus, OrderingError
from src.store import DocumentStore, StoreError, utcnow


class CloneError(Exception):
    """A user's clone failed part way; its partial writes were discarded."""

    def __init__(self, user_id: str, cause: Exception) -> None:
        super().__init__(f"Clone for {user_id} failed: {cause}")
        self.user_id = user_id
        self.cause = cause


class CloneOutcome(str, Enum):
    CLONED = "cloned"
    SKIPPED = "skipped"


@dataclass
class NotebookSnapshot:
    notebook: Notebook
    tags: list[Tag]
    chunks: list[Chunk]
    chunk_tags: list[ChunkTag]
    order_items: list[LocusContentItem]


@dataclass
class TemplateSnapshot:
    """Everything under the template nexus, read once per run."""

    nexus: Nexus
    notebooks: list[NotebookSnapshot]
    notebook_order: list[LocusContentItem]
    meta_tag_ids: set[str] = field(default_factory=set)


@dataclass
class CloneArena:
    """Old -> new id tables for one user's clone, plus every record it wrote."""

    nexus_id: str | None = None
    notebooks: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    chunks: dict[str, str] = field(default_factory=dict)
    created: list[tuple[type[Base], str]] = field(default_factory=list)

    def record(self, model: type[Base], record_id: str) -> str:
        self.created.append((model, record_id))
        return record_id


class TemplateCloner:
    """Deep-copies the template nexus for one user at a time."""

    def __init__(
        self,
        store: DocumentStore,
        index: ContentOrderIndex | None = None,
        template_name: str | None = None,
        max_tag_depth: int | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._index = index or ContentOrderIndex(store)
        self.template_name = template_name or settings.template_nexus_name
        self.max_tag_depth = max_tag_depth or settings.max_tag_depth

    # =========================================================================
    # TEMPLATE
    # =========================================================================

    def is_template_name(self, name: str | None) -> bool:
        return (name or "").upper() == self.template_name.upper()

    def find_template(self, nexi: list[Nexus]) -> Nexus | None:
        """The template nexus: prefer one without an owner, else the oldest match."""
        candidates = sorted(
            (n for n in nexi if self.is_template_name(n.name)),
            key=lambda n: n.created_at or datetime.min,
        )
        if not candidates:
            return None
        return next((n for n in candidates if not n.owner_id), candidates[0])

    def load_template(self, template: Nexus) -> TemplateSnapshot:
        """Read the whole template hierarchy."""
        notebooks = self._store.query(Notebook, order_by="created_at", nexus_id=template.id)
        snapshots = []
        for notebook in notebooks:
            chunks = self._store.query(Chunk, order_by="created_at", notebook_id=notebook.id)
            chunk_tags = [
                ct for chunk in chunks for ct in self._store.query(ChunkTag, chunk_id=chunk.id)
            ]
            snapshots.append(
                NotebookSnapshot(
                    notebook=notebook,
                    tags=self._store.query(Tag, order_by="created_at", notebook_id=notebook.id),
                    chunks=chunks,
                    chunk_tags=chunk_tags,
                    order_items=self._store.query(
                        LocusContentItem,
                        order_by="position",
                        locus_id=notebook.id,
                        locus_type=LocusType.NOTEBOOK.value,
                    ),
                )
            )
        return TemplateSnapshot(
            nexus=template,
            notebooks=snapshots,
            notebook_order=self._index.enumerate(Locus.nexus(template.id), ContentType.NOTEBOOK),
            meta_tag_ids={meta.id for meta in self._store.collect(MetaTag)},
        )

    def user_has_hierarchy(self, user_id: str) -> bool:
        owned = self._store.query(Nexus, owner_id=user_id)
        return any(self.is_template_name(n.name) for n in owned)

    # =========================================================================
    # CLONE
    # =========================================================================

    def clone_for_user(self, snapshot: TemplateSnapshot, user_id: str) -> CloneOutcome:
        """Clone the template for ``user_id`` unless they already have it.

        Raises:
            CloneError: a write failed; records written so far were deleted.
        """
        if self.user_has_hierarchy(user_id):
            logger.debug(f"User {user_id} already has {self.template_name!r}; skipping")
            return CloneOutcome.SKIPPED

        arena = CloneArena()
        try:
            self._clone(snapshot, user_id, arena)
        except (StoreError, OrderingError) as e:
            self._discard(arena)
            raise CloneError(user_id, e) from e

        logger.info(
            f"Cloned {self.template_name!r} for {user_id}: {len(arena.notebooks)} notebooks, "
            f"{len(arena.tags)} tags, {len(arena.chunks)} chunks"
        )
        return CloneOutcome.CLONED

    def _clone(self, snapshot: TemplateSnapshot, user_id: str, arena: CloneArena) -> None:
        now = utcnow()
        source = snapshot.nexus
        arena.nexus_id = arena.record(
            Nexus,
            self._store.insert(
                Nexus,
                name=source.name,
                description=source.description,
                order=source.order or 0,
                owner_id=user_id,
                created_at=now,
                updated_at=now,
            ),
        )

        for nb_snapshot in snapshot.notebooks:
            notebook = nb_snapshot.notebook
            arena.notebooks[notebook.id] = arena.record(
                Notebook,
                self._store.insert(
                    Notebook,
                    nexus_id=arena.nexus_id,
                    name=notebook.name,
                    description=notebook.description,
                    meta_question=notebook.meta_question,
                    order=notebook.order or 0,
                    owner_id=user_id,
                    created_at=now,
                    updated_at=now,
                ),
            )

        new_nexus = Locus.nexus(arena.nexus_id)
        for item in snapshot.notebook_order:
            new_notebook_id = arena.notebooks.get(item.content_id)
            if new_notebook_id is None:
                continue
            arena.record(
                LocusContentItem,
                self._index.insert(
                    new_nexus,
                    ContentType.NOTEBOOK,
                    new_notebook_id,
                    owner_id=user_id,
                    position=item.position,
                ),
            )

        for nb_snapshot in snapshot.notebooks:
            new_notebook_id = arena.notebooks[nb_snapshot.notebook.id]
            self._clone_tags(nb_snapshot, new_notebook_id, user_id, arena)
            self._clone_chunks(nb_snapshot, new_notebook_id, user_id, arena, snapshot.meta_tag_ids)
            self._clone_chunk_tags(nb_snapshot, arena)
            self._clone_notebook_order(nb_snapshot, new_notebook_id, user_id, arena)

    def _clone_tags(
        self,
        nb_snapshot: NotebookSnapshot,
        new_notebook_id: str,
        user_id: str,
        arena: CloneArena,
    ) -> None:
        now = utcnow()

        def create(tag: Tag) -> None:
            arena.tags[tag.id] = arena.record(
                Tag,
                self._store.insert(
                    Tag,
                    notebook_id=new_notebook_id,
                    name=tag.name,
                    description=tag.description,
                    parent_tag_id=arena.tags.get(tag.parent_tag_id) if tag.parent_tag_id else None,
                    color=tag.color,
                    origin_notebook_id=new_notebook_id,
                    origin_nexus_id=arena.nexus_id,
                    order=tag.order or 0,
                    owner_id=user_id,
                    created_at=now,
                    updated_at=now,
                ),
            )

        # Every root exists before any child is created.
        for tag in nb_snapshot.tags:
            if not tag.parent_tag_id:
                create(tag)

        remaining = [tag for tag in nb_snapshot.tags if tag.parent_tag_id]
        for _depth in range(1, self.max_tag_depth):
            ready = [tag for tag in remaining if tag.parent_tag_id in arena.tags]
            if not ready:
                break
            for tag in ready:
                create(tag)
            remaining = [tag for tag in remaining if tag.id not in arena.tags]

        if remaining:
            logger.debug(
                f"Skipped {len(remaining)} tags of notebook {nb_snapshot.notebook.id} "
                f"with unresolved parents"
            )

    def _clone_chunks(
        self,
        nb_snapshot: NotebookSnapshot,
        new_notebook_id: str,
        user_id: str,
        arena: CloneArena,
        meta_tag_ids: set[str],
    ) -> None:
        now = utcnow()
        for chunk in nb_snapshot.chunks:
            arena.chunks[chunk.id] = arena.record(
                Chunk,
                self._store.insert(
                    Chunk,
                    notebook_id=new_notebook_id,
                    title=chunk.title,
                    original_text=chunk.original_text,
                    user_edited_text=chunk.user_edited_text,
                    source=chunk.source,
                    chunk_type=chunk.chunk_type,
                    meta_tag_id=self._resolve_tag_reference(chunk.meta_tag_id, arena, meta_tag_ids),
                    order=chunk.order or 0,
                    owner_id=user_id,
                    created_at=now,
                    updated_at=now,
                ),
            )

    @staticmethod
    def _resolve_tag_reference(
        tag_id: str | None, arena: CloneArena, meta_tag_ids: set[str]
    ) -> str | None:
        """Cloned tag id, shared meta tag id as-is, or None if it would dangle."""
        if not tag_id:
            return None
        if tag_id in arena.tags:
            return arena.tags[tag_id]
        if tag_id in meta_tag_ids:
            return tag_id
        return None

    def _clone_chunk_tags(self, nb_snapshot: NotebookSnapshot, arena: CloneArena) -> None:
        now = utcnow()
        for assignment in nb_snapshot.chunk_tags:
            new_chunk_id = arena.chunks.get(assignment.chunk_id)
            new_tag_id = arena.tags.get(assignment.tag_id)
            if not new_chunk_id or not new_tag_id:
                continue
            arena.record(
                ChunkTag,
                self._store.insert(ChunkTag, chunk_id=new_chunk_id, tag_id=new_tag_id, created_at=now),
            )

    def _clone_notebook_order(
        self,
        nb_snapshot: NotebookSnapshot,
        new_notebook_id: str,
        user_id: str,
        arena: CloneArena,
    ) -> None:
        locus = Locus.notebook(new_notebook_id)
        remap = {
            ContentType.CHUNK.value: arena.chunks,
            ContentType.TAG.value: arena.tags,
        }
        for item in nb_snapshot.order_items:
            # Conversations are not copied, so neither is their ordering.
            table = remap.get(item.content_type)
            if table is None:
                continue
            new_content_id = table.get(item.content_id)
            if new_content_id is None:
                continue
            arena.record(
                LocusContentItem,
                self._index.insert(
                    locus,
                    item.content_type,
                    new_content_id,
                    parent_id=arena.tags.get(item.parent_id) if item.parent_id else None,
                    owner_id=user_id,
                    position=item.position,
                ),
            )

    def _discard(self, arena: CloneArena) -> None:
        """Best-effort removal of a failed clone's own records, newest first."""
        for model, record_id in reversed(arena.created):
            try:
                self._store.delete(model, record_id)
            except StoreError as e:
                logger.error(f"Could not discard {model.__tablename__}/{record_id}: {e}")
