"""
Unit tests for OwnershipResolver.

Tests owner inference along the containment chain, fallback ownership,
conversation cleanup and the orphan sweep.
"""

from datetime import datetime

import pytest
from loguru import logger

from src.db.models import (
    Chunk,
    ContentType,
    Conversation,
    LocusContentItem,
    Nexus,
    Notebook,
    Tag,
    User,
)
from src.migration import OwnershipResolver, is_malformed_conversation
from src.ordering import Locus
from src.store import DocumentStore, StoreWriteError


@pytest.fixture
def resolver(store):
    return OwnershipResolver(store, fallback_owner_id="u-last-resort")


@pytest.fixture
def warnings():
    """Collect loguru warnings emitted during the test."""
    messages = []
    handler_id = logger.add(messages.append, level="WARNING", format="{message}")
    yield messages
    logger.remove(handler_id)


class FailingPatchStore(DocumentStore):
    """Store whose patches fail for a fixed set of record ids."""

    def __init__(self, session_factory, failing_ids):
        super().__init__(session_factory)
        self.failing_ids = set(failing_ids)

    def patch(self, model, record_id, **fields):
        if record_id in self.failing_ids:
            raise StoreWriteError(f"simulated failure for {record_id}")
        super().patch(model, record_id, **fields)


class TestInference:
    """Tests for the per-record inference rules."""

    def test_notebook_chunk_tag_inherit_parent(self, factory, store, resolver):
        nexus_id = factory.nexus(owner_id="u-alice")
        notebook_id = factory.notebook(nexus_id, owner_id="u-alice")

        assert resolver.infer_notebook_owner(store.get(Notebook, factory.notebook(nexus_id))) == "u-alice"
        assert resolver.infer_chunk_owner(store.get(Chunk, factory.chunk(notebook_id))) == "u-alice"
        assert resolver.infer_tag_owner(store.get(Tag, factory.tag(notebook_id))) == "u-alice"

    def test_dangling_parent_infers_nothing(self, factory, store, resolver):
        notebook_id = factory.notebook("deleted-nexus")
        chunk_id = factory.chunk("deleted-notebook")

        assert resolver.infer_notebook_owner(store.get(Notebook, notebook_id)) is None
        assert resolver.infer_chunk_owner(store.get(Chunk, chunk_id)) is None

    def test_nexus_owner_from_notebooks(self, factory, store, resolver):
        nexus_id = factory.nexus()
        factory.notebook(nexus_id)
        factory.notebook(nexus_id, owner_id="u-alice")

        assert resolver.infer_nexus_owner(store.get(Nexus, nexus_id)) == "u-alice"

    def test_nexus_owner_conflict_earliest_notebook_wins(self, factory, store, resolver, warnings):
        """Disagreeing notebooks resolve to the earliest and log a warning."""
        nexus_id = factory.nexus(name="Shared")
        factory.notebook(nexus_id, owner_id="u-first")
        factory.notebook(nexus_id, owner_id="u-second")

        assert resolver.infer_nexus_owner(store.get(Nexus, nexus_id)) == "u-first"
        assert len(warnings) == 1
        assert "u-second" in str(warnings[0])

    def test_nexus_without_owned_notebooks(self, factory, store, resolver):
        nexus_id = factory.nexus()
        factory.notebook(nexus_id)

        assert resolver.infer_nexus_owner(store.get(Nexus, nexus_id)) is None

    def test_order_record_owner_from_nexus_locus(self, factory, store, resolver):
        nexus_id = factory.nexus(owner_id="u-alice")
        item_id = factory.order(Locus.nexus(nexus_id), ContentType.NOTEBOOK, "nb", 0)

        item = store.get(LocusContentItem, item_id)
        assert resolver.infer_order_record_owner(item) == "u-alice"

    def test_order_record_owner_from_notebook_then_content(self, factory, store, resolver):
        """An unowned notebook locus falls back to the ordered content's owner."""
        owned = factory.notebook("nx", owner_id="u-alice")
        unowned = factory.notebook("nx")
        chunk_id = factory.chunk(unowned, owner_id="u-bob")

        from_locus = store.get(
            LocusContentItem, factory.order(Locus.notebook(owned), ContentType.CHUNK, "c", 0)
        )
        from_content = store.get(
            LocusContentItem, factory.order(Locus.notebook(unowned), ContentType.CHUNK, chunk_id, 0)
        )

        assert resolver.infer_order_record_owner(from_locus) == "u-alice"
        assert resolver.infer_order_record_owner(from_content) == "u-bob"

    def test_order_record_for_notebook_content_in_unknown_locus(self, factory, store, resolver):
        item_id = factory.order(Locus.notebook("gone"), ContentType.NOTEBOOK, "nb", 0)
        assert resolver.infer_order_record_owner(store.get(LocusContentItem, item_id)) is None


class TestFallbackOwner:
    def test_latest_user_wins(self, factory, store, resolver):
        factory.user("u-old")
        factory.user("u-new")

        assert resolver.resolve_fallback_owner(store.collect(User)) == "u-new"

    def test_configured_id_without_users(self, resolver):
        assert resolver.resolve_fallback_owner([]) == "u-last-resort"

    def test_assign_fallback_patches_only_orphans(self, factory, store, resolver):
        owned = factory.chunk("nb", owner_id="u-alice")
        orphans = [factory.chunk("nb"), factory.chunk("nb")]

        report = resolver.assign_fallback("u-bob")

        assert report.patched_chunks == 2
        assert report.fallback_patched_chunks == 2
        assert report.fallback_owner_used == "u-bob"
        assert store.get(Chunk, owned).owner_id == "u-alice"
        assert {store.get(Chunk, c).owner_id for c in orphans} == {"u-bob"}


class TestBackfill:
    """Tests for the batch backfill steps."""

    def test_backfill_sets_owner_and_updated_at(self, factory, store, resolver):
        nexus_id = factory.nexus(owner_id="u-alice")
        notebook_id = factory.notebook(nexus_id)
        before = store.get(Notebook, notebook_id)

        report = resolver.backfill_notebooks(store.collect(Notebook))

        after = store.get(Notebook, notebook_id)
        assert report.patched_notebooks == 1
        assert after.owner_id == "u-alice"
        assert after.updated_at > before.updated_at

    def test_backfill_skips_owned_and_unresolvable(self, factory, store, resolver):
        factory.notebook("nx", owner_id="u-alice")
        stranded = factory.notebook("missing-nexus")

        report = resolver.backfill_notebooks(store.collect(Notebook))

        assert report.patched_notebooks == 0
        assert store.get(Notebook, stranded).owner_id is None

    def test_backfill_chain_within_one_pass(self, factory, store, resolver):
        """Nexi, then notebooks, then chunks: each step sees the previous one's writes."""
        nexus_id = factory.nexus()
        factory.notebook(nexus_id, owner_id="u-alice")
        second = factory.notebook(nexus_id)
        chunk_id = factory.chunk(second)

        resolver.backfill_nexi(store.collect(Nexus))
        resolver.backfill_notebooks(store.collect(Notebook))
        resolver.backfill_chunks(store.collect(Chunk))

        assert store.get(Nexus, nexus_id).owner_id == "u-alice"
        assert store.get(Chunk, chunk_id).owner_id == "u-alice"

    def test_write_failure_is_counted_and_batch_continues(self, factory, session_factory, store):
        notebook_id = factory.notebook("nx", owner_id="u-alice")
        broken = factory.chunk(notebook_id)
        fine = factory.chunk(notebook_id)
        resolver = OwnershipResolver(FailingPatchStore(session_factory, [broken]))

        report = resolver.backfill_chunks(store.collect(Chunk))

        assert report.patched_chunks == 1
        assert report.write_failures == 1
        assert store.get(Chunk, fine).owner_id == "u-alice"
        assert store.get(Chunk, broken).owner_id is None

    def test_backfill_order_records(self, factory, store, resolver):
        notebook_id = factory.notebook("nx", owner_id="u-alice")
        factory.order(Locus.notebook(notebook_id), ContentType.CHUNK, "c", 0)
        factory.order(Locus.notebook(notebook_id), ContentType.TAG, "t", 0, owner_id="u-alice")

        report = resolver.backfill_order_records(store.collect(LocusContentItem))

        assert report.patched_order_records == 1
        assert {i.owner_id for i in store.collect(LocusContentItem)} == {"u-alice"}


class TestConversationCleanup:
    def test_is_malformed(self, factory, store):
        flat = factory.conversation(question="Q?")
        proper = factory.conversation()

        assert is_malformed_conversation(store.get(Conversation, flat))
        assert not is_malformed_conversation(store.get(Conversation, proper))

    def test_purge_deletes_flattened_and_repairs_timestamps(self, factory, store, resolver):
        flat = factory.conversation(question="Q?", answer="A.")
        missing_ts = factory.conversation(created_at=datetime(2024, 3, 1))
        complete = factory.conversation(updated_at=datetime(2024, 4, 1))

        report = resolver.purge_malformed_conversations(store.collect(Conversation))

        assert report.deleted_malformed == 1
        assert report.fixed_conversation_timestamps == 1
        assert store.get(Conversation, flat) is None
        assert store.get(Conversation, missing_ts).updated_at == datetime(2024, 3, 1)
        assert store.get(Conversation, complete).updated_at == datetime(2024, 4, 1)


class TestAssignOrphans:
    """Tests for handing every owner-less record to one user."""

    @pytest.fixture
    def orphans(self, factory):
        template = factory.nexus(name="User Manual")
        nexus_id = factory.nexus(name="Loose")
        notebook_id = factory.notebook(nexus_id)
        factory.chunk(notebook_id)
        factory.chunk(notebook_id, owner_id="u-alice")
        factory.tag(notebook_id)
        return {"template": template, "nexus": nexus_id, "notebook": notebook_id}

    def test_dry_run_only_counts(self, orphans, store, resolver):
        counts = resolver.assign_orphans_to("u-bob", dry_run=True)

        assert counts["nexi"] == 1
        assert counts["notebooks"] == 1
        assert counts["chunks"] == 1
        assert counts["tags"] == 1
        assert counts["total"] == 4
        assert store.get(Nexus, orphans["nexus"]).owner_id is None

    def test_assigns_everything_but_the_template(self, orphans, store, resolver):
        counts = resolver.assign_orphans_to("u-bob")

        assert counts["total"] == 4
        assert store.get(Nexus, orphans["template"]).owner_id is None
        assert store.get(Nexus, orphans["nexus"]).owner_id == "u-bob"
        assert {c.owner_id for c in store.collect(Chunk)} == {"u-alice", "u-bob"}
        assert resolver.assign_orphans_to("u-bob", dry_run=True)["total"] == 0
