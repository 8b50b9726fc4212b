"""
Ownership Resolver - backfills missing ``owner_id`` values.

Ownership is inherited top-down (nexus -> notebook -> chunk/tag), so a missing
owner is inferred by walking up the containment chain:

- Notebook, chunk, tag: owner of the parent record.
- Nexus: owner of one of its notebooks that already has an owner. This is a
  heuristic; when the notebooks disagree the earliest-created one wins and
  the conflict is logged.
- Ordering record: owner of its locus, else owner of the ordered content.

Every lookup and patch is per record and fail-open: a store error is logged
and counted, and the batch continues with the next record.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TypeVar

from loguru import logger

from config import get_settings
from src.db.models import (
    Base,
    Chunk,
    ContentType,
    Conversation,
    ConversationMessage,
    Jem,
    LocusContentItem,
    LocusType,
    Nexus,
    Notebook,
    Tag,
    User,
)
from src.migration.report import MigrationReport
from src.store import DocumentStore, StoreError, utcnow

RecordT = TypeVar("RecordT", bound=Base)

# Collections swept by assign_orphans_to, in the order they are patched.
ORPHAN_COLLECTIONS: dict[str, type[Base]] = {
    "nexi": Nexus,
    "notebooks": Notebook,
    "chunks": Chunk,
    "tags": Tag,
    "conversations": Conversation,
    "messages": ConversationMessage,
    "jems": Jem,
    "content_items": LocusContentItem,
}


def is_malformed_conversation(conversation: Conversation) -> bool:
    """True for flattened question/answer rows stored as conversations."""
    return conversation.question is not None or conversation.answer is not None


class OwnershipResolver:
    """Infers and patches missing owners, one collection at a time."""

    def __init__(self, store: DocumentStore, fallback_owner_id: str | None = None) -> None:
        self._store = store
        self._fallback_owner_id = fallback_owner_id or get_settings().fallback_owner_id

    # =========================================================================
    # INFERENCE
    # =========================================================================

    def infer_nexus_owner(self, nexus: Nexus) -> str | None:
        notebooks = self._store.query(Notebook, order_by="created_at", nexus_id=nexus.id)
        owners = [nb.owner_id for nb in notebooks if nb.owner_id]
        if not owners:
            return None
        distinct = list(dict.fromkeys(owners))
        if len(distinct) > 1:
            logger.warning(
                f"Nexus {nexus.id} ({nexus.name!r}) has notebooks owned by {distinct}; "
                f"using {distinct[0]}"
            )
        return distinct[0]

    def infer_notebook_owner(self, notebook: Notebook) -> str | None:
        parent = self._store.get(Nexus, notebook.nexus_id)
        return parent.owner_id if parent else None

    def infer_chunk_owner(self, chunk: Chunk) -> str | None:
        parent = self._store.get(Notebook, chunk.notebook_id)
        return parent.owner_id if parent else None

    def infer_tag_owner(self, tag: Tag) -> str | None:
        parent = self._store.get(Notebook, tag.notebook_id)
        return parent.owner_id if parent else None

    def infer_order_record_owner(self, item: LocusContentItem) -> str | None:
        if item.locus_type == LocusType.NEXUS.value:
            nexus = self._store.get(Nexus, item.locus_id)
            return nexus.owner_id if nexus else None

        notebook = self._store.get(Notebook, item.locus_id)
        if notebook and notebook.owner_id:
            return notebook.owner_id

        content_model = {
            ContentType.CHUNK.value: Chunk,
            ContentType.TAG.value: Tag,
            ContentType.CONVERSATION_MESSAGE.value: ConversationMessage,
        }.get(item.content_type)
        if content_model is None:
            return None
        content = self._store.get(content_model, item.content_id)
        return content.owner_id if content else None

    def resolve_fallback_owner(self, users: Iterable[User]) -> str:
        """The most recently created user, or the configured last-resort id."""
        candidates = [u for u in users if u.user_id]
        if not candidates:
            return self._fallback_owner_id
        latest = max(candidates, key=lambda u: u.created_at or datetime.min)
        return latest.user_id

    # =========================================================================
    # BATCH STEPS
    # =========================================================================

    def purge_malformed_conversations(self, conversations: Iterable[Conversation]) -> MigrationReport:
        """Delete flattened message rows and repair missing ``updated_at``."""
        report = MigrationReport()
        for conversation in conversations:
            try:
                if is_malformed_conversation(conversation):
                    self._store.delete(Conversation, conversation.id)
                    report.deleted_malformed += 1
                    logger.info(f"Deleted incorrectly structured conversation: {conversation.id}")
                    continue
                if conversation.updated_at is None:
                    self._store.patch(
                        Conversation,
                        conversation.id,
                        updated_at=conversation.created_at or utcnow(),
                    )
                    report.fixed_conversation_timestamps += 1
            except StoreError as e:
                report.write_failures += 1
                logger.error(f"Conversation cleanup failed for {conversation.id}: {e}")
        return report

    def backfill_nexi(self, nexi: Iterable[Nexus]) -> MigrationReport:
        report = MigrationReport()
        report.patched_nexi, report.write_failures = self._backfill(
            Nexus, nexi, self.infer_nexus_owner
        )
        return report

    def backfill_notebooks(self, notebooks: Iterable[Notebook]) -> MigrationReport:
        report = MigrationReport()
        report.patched_notebooks, report.write_failures = self._backfill(
            Notebook, notebooks, self.infer_notebook_owner
        )
        return report

    def backfill_chunks(self, chunks: Iterable[Chunk]) -> MigrationReport:
        report = MigrationReport()
        report.patched_chunks, report.write_failures = self._backfill(
            Chunk, chunks, self.infer_chunk_owner
        )
        return report

    def backfill_tags(self, tags: Iterable[Tag]) -> MigrationReport:
        report = MigrationReport()
        report.patched_tags, report.write_failures = self._backfill(Tag, tags, self.infer_tag_owner)
        return report

    def backfill_order_records(self, items: Iterable[LocusContentItem]) -> MigrationReport:
        report = MigrationReport()
        report.patched_order_records, report.write_failures = self._backfill(
            LocusContentItem, items, self.infer_order_record_owner
        )
        return report

    def assign_fallback(self, fallback_owner_id: str) -> MigrationReport:
        """Give every chunk still lacking an owner to ``fallback_owner_id``.

        Re-reads the chunk collection so patches made earlier in the run count.
        """
        report = MigrationReport(fallback_owner_used=fallback_owner_id)
        patched, failures = self._backfill(
            Chunk, self._store.collect(Chunk), lambda _chunk: fallback_owner_id
        )
        report.patched_chunks = patched
        report.fallback_patched_chunks = patched
        report.write_failures = failures
        if patched:
            logger.info(f"Assigned {patched} orphaned chunks to fallback owner {fallback_owner_id}")
        return report

    def assign_orphans_to(self, user_id: str, dry_run: bool = False) -> dict[str, int]:
        """Assign every owner-less record to ``user_id``.

        The unowned template nexus is left alone so it stays shared. With
        ``dry_run`` only the counts that would change are returned.
        """
        template_name = get_settings().template_nexus_name.upper()
        counts: dict[str, int] = {}
        now = utcnow()
        for label, model in ORPHAN_COLLECTIONS.items():
            orphans = self._store.query(model, owner_id=None)
            if model is Nexus:
                orphans = [n for n in orphans if (n.name or "").upper() != template_name]
            counts[label] = 0
            for record in orphans:
                if dry_run:
                    counts[label] += 1
                    continue
                fields: dict[str, object] = {"owner_id": user_id}
                if hasattr(model, "updated_at"):
                    fields["updated_at"] = now
                try:
                    self._store.patch(model, record.id, **fields)
                    counts[label] += 1
                except StoreError as e:
                    logger.error(f"Failed to assign {model.__tablename__}/{record.id} to {user_id}: {e}")
        counts["total"] = sum(counts.values())
        verb = "Would assign" if dry_run else "Assigned"
        logger.info(f"{verb} ownership of {counts['total']} records to user {user_id}")
        return counts

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _backfill(
        self,
        model: type[RecordT],
        records: Iterable[RecordT],
        infer: Callable[[RecordT], str | None],
    ) -> tuple[int, int]:
        """Patch owner-less ``records`` with ``infer``. Returns (patched, failures)."""
        patched = 0
        failures = 0
        for record in records:
            if record.owner_id:
                continue
            try:
                owner_id = infer(record)
                if not owner_id:
                    logger.info(f"No owner inferable for {model.__tablename__}/{record.id}")
                    continue
                self._store.patch(model, record.id, owner_id=owner_id, updated_at=utcnow())
                patched += 1
            except StoreError as e:
                failures += 1
                logger.error(f"Owner backfill failed for {model.__tablename__}/{record.id}: {e}")
        if patched:
            logger.info(f"Backfilled owner on {patched} {model.__tablename__}")
        return patched, failures
