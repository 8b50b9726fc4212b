"""
Migration Orchestrator - one-shot, re-runnable workspace repair.

Runs, in order:

1. Bulk load of every owner-bearing collection (the only fatal step).
2. Malformed conversation purge and conversation timestamp repair.
3. Owner backfill: nexi, notebooks, chunks, tags. One pass, each level
   reading the owners patched by the level above.
4. Fallback sweep giving still-orphaned chunks to the fallback owner, then
   the ordering-record backfill, which can inherit from those chunks.
5. Ordering seed from legacy order columns.
6. Template clone for every known user id (including the fallback owner once
   it owns chunks), one user at a time.

Everything after step 1 is fail-open per record (per user for cloning).
Already-owned records, already-ordered content and users who already have the
template are left alone, so a second run reports zeros. A dry run reads its
own skipped writes back (see ``DocumentStore``) and reports the same counts.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from src.db.models import (
    Chunk,
    Conversation,
    Jem,
    LocusContentItem,
    MetaTag,
    Nexus,
    Notebook,
    PromptTemplate,
    Tag,
    User,
)
from src.migration.clone import CloneError, CloneOutcome, TemplateCloner
from src.migration.order_seed import OrderSeeder
from src.migration.ownership import OwnershipResolver, is_malformed_conversation
from src.migration.report import MigrationReport
from src.ordering import ContentOrderIndex
from src.store import DocumentStore


@dataclass
class Dataset:
    """Full collection scans taken at the start of a run."""

    nexi: list[Nexus]
    notebooks: list[Notebook]
    chunks: list[Chunk]
    tags: list[Tag]
    conversations: list[Conversation]
    prompt_templates: list[PromptTemplate]
    meta_tags: list[MetaTag]
    jems: list[Jem]
    order_items: list[LocusContentItem]
    users: list[User]
    user_ids: set[str] = field(default_factory=set)

    @classmethod
    def load(cls, store: DocumentStore) -> Dataset:
        return cls(
            nexi=store.collect(Nexus),
            notebooks=store.collect(Notebook),
            chunks=store.collect(Chunk),
            tags=store.collect(Tag),
            conversations=store.collect(Conversation),
            prompt_templates=store.collect(PromptTemplate),
            meta_tags=store.collect(MetaTag),
            jems=store.collect(Jem),
            order_items=store.collect(LocusContentItem),
            users=store.collect(User),
        )

    def known_user_ids(self) -> set[str]:
        """Every populated owner id, plus every registered user."""
        owner_bearing = [
            self.nexi,
            self.notebooks,
            self.chunks,
            [c for c in self.conversations if not is_malformed_conversation(c)],
            self.prompt_templates,
            self.meta_tags,
            self.jems,
        ]
        ids = {record.owner_id for records in owner_bearing for record in records if record.owner_id}
        ids.update(user.user_id for user in self.users if user.user_id)
        return ids


class MigrationOrchestrator:
    """Runs the full migration against one document store."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: OwnershipResolver | None = None,
        cloner: TemplateCloner | None = None,
        seeder: OrderSeeder | None = None,
    ) -> None:
        index = ContentOrderIndex(store)
        self._store = store
        self._resolver = resolver or OwnershipResolver(store)
        self._cloner = cloner or TemplateCloner(store, index=index)
        self._seeder = seeder or OrderSeeder(store, index=index)

    def run(self) -> MigrationReport:
        """Execute every step and return the merged report.

        Raises:
            StoreReadError: the initial bulk load failed.
        """
        report = MigrationReport(dry_run=self._store.dry_run)
        logger.info(f"Starting workspace migration (dry_run={self._store.dry_run})")

        data = Dataset.load(self._store)
        user_ids = data.known_user_ids()
        report.total_users_detected = len(user_ids)

        report.merge(self._resolver.purge_malformed_conversations(data.conversations))
        report.merge(self._resolver.backfill_nexi(data.nexi))
        report.merge(self._resolver.backfill_notebooks(data.notebooks))
        report.merge(self._resolver.backfill_chunks(data.chunks))
        report.merge(self._resolver.backfill_tags(data.tags))

        fallback_owner = self._resolver.resolve_fallback_owner(data.users)
        fallback = self._resolver.assign_fallback(fallback_owner)
        report.merge(fallback)
        if fallback.fallback_patched_chunks and fallback_owner not in user_ids:
            # Owns chunks from now on, so it gets the template like any other user.
            user_ids.add(fallback_owner)
            report.total_users_detected = len(user_ids)
        report.merge(self._resolver.backfill_order_records(data.order_items))

        report.merge(self._seeder.seed())
        report.merge(self.clone_for_users(user_ids))

        report.finish()
        logger.info(f"Migration complete: {report.to_dict()}")
        return report

    def clone_for_users(self, user_ids: set[str]) -> MigrationReport:
        """Clone the template for each user; one failure never stops the loop."""
        report = MigrationReport()
        template = self._cloner.find_template(self._store.collect(Nexus))
        if template is None:
            logger.warning(f"No {self._cloner.template_name!r} nexus found; nothing to clone")
            return report

        snapshot = self._cloner.load_template(template)
        for user_id in sorted(user_ids):
            try:
                outcome = self._cloner.clone_for_user(snapshot, user_id)
            except CloneError as e:
                report.clone_failures += 1
                logger.error(str(e))
                continue
            if outcome is CloneOutcome.CLONED:
                report.clones_created += 1
            else:
                report.clones_skipped += 1
        return report
