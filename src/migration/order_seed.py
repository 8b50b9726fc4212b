"""
Ordering seed - builds ``locus_content_items`` from the legacy order columns.

Content that has no ordering record yet is appended to its group in ascending
legacy ``order`` (ties by creation time). Appending through the ordering index
keeps positions unique within a group even where the legacy values collide.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from loguru import logger

from src.db.models import (
    Chunk,
    ContentType,
    Conversation,
    ConversationMessage,
    LocusContentItem,
    Notebook,
    Tag,
)
from src.migration.report import MigrationReport
from src.ordering import ContentOrderIndex, Locus, OrderingError
from src.store import DocumentStore, StoreError

# (locus, content type, parent id) -> records waiting for a position
GroupKey = tuple[Locus, ContentType, str | None]
Orderable = Notebook | Chunk | Tag | ConversationMessage


def _legacy_sort_key(record: Orderable) -> tuple[int, datetime]:
    order = record.order if isinstance(record.order, int) else 0
    return order, record.created_at or datetime.min


class OrderSeeder:
    """Creates missing ordering records for notebooks, chunks, tags and messages."""

    def __init__(self, store: DocumentStore, index: ContentOrderIndex | None = None) -> None:
        self._store = store
        self._index = index or ContentOrderIndex(store)

    def seed(self) -> MigrationReport:
        report = MigrationReport()
        ordered = {(item.content_type, item.content_id) for item in self._store.collect(LocusContentItem)}

        def unordered(content_type: ContentType, records: Iterable[Orderable]) -> list[Orderable]:
            return [r for r in records if (content_type.value, r.id) not in ordered]

        groups: dict[GroupKey, list[Orderable]] = defaultdict(list)

        for notebook in unordered(ContentType.NOTEBOOK, self._store.collect(Notebook)):
            groups[(Locus.nexus(notebook.nexus_id), ContentType.NOTEBOOK, None)].append(notebook)

        for chunk in unordered(ContentType.CHUNK, self._store.collect(Chunk)):
            groups[(Locus.notebook(chunk.notebook_id), ContentType.CHUNK, None)].append(chunk)

        for tag in unordered(ContentType.TAG, self._store.collect(Tag)):
            groups[(Locus.notebook(tag.notebook_id), ContentType.TAG, tag.parent_tag_id)].append(tag)

        messages = unordered(ContentType.CONVERSATION_MESSAGE, self._store.collect(ConversationMessage))
        if messages:
            notebook_by_conversation = {
                c.id: c.notebook_id for c in self._store.collect(Conversation) if c.notebook_id
            }
            for message in messages:
                notebook_id = notebook_by_conversation.get(message.conversation_id)
                if notebook_id is None:
                    logger.info(f"Message {message.id} has no notebook; not ordered")
                    continue
                groups[
                    (Locus.notebook(notebook_id), ContentType.CONVERSATION_MESSAGE, None)
                ].append(message)

        for (locus, content_type, parent_id), records in groups.items():
            for record in sorted(records, key=_legacy_sort_key):
                try:
                    self._index.append(
                        locus, content_type, record.id, parent_id=parent_id, owner_id=record.owner_id
                    )
                    report.seeded_order_records += 1
                except (StoreError, OrderingError) as e:
                    report.write_failures += 1
                    logger.error(f"Could not order {content_type.value} {record.id} in {locus}: {e}")

        logger.info(f"Seeded {report.seeded_order_records} ordering records from legacy order")
        return report
