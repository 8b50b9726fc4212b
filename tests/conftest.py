"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Every test gets its own in-memory SQLite database with all tables created.
"""
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.db.database import build_engine, build_session_factory, init_db  # noqa: E402
from src.db.models import (  # noqa: E402
    Chunk,
    ChunkTag,
    ContentType,
    Conversation,
    ConversationMessage,
    LocusContentItem,
    MetaTag,
    Nexus,
    Notebook,
    Tag,
    User,
)
from src.ordering import ContentOrderIndex, Locus  # noqa: E402
from src.store import DocumentStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class WorkspaceFactory:
    """Inserts workspace records with sensible defaults and rising timestamps."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._clock = datetime(2024, 1, 1)

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def _insert(self, model, **fields) -> str:
        fields.setdefault("created_at", self._tick())
        if hasattr(model, "updated_at") and model is not Conversation:
            fields.setdefault("updated_at", fields["created_at"])
        return self.store.insert(model, **fields)

    def user(self, user_id, **fields):
        return self._insert(User, user_id=user_id, **fields)

    def nexus(self, name="Research", owner_id=None, **fields):
        return self._insert(Nexus, name=name, owner_id=owner_id, **fields)

    def notebook(self, nexus_id, name="Notebook", owner_id=None, **fields):
        return self._insert(Notebook, nexus_id=nexus_id, name=name, owner_id=owner_id, **fields)

    def chunk(self, notebook_id, text="Some knowledge", owner_id=None, **fields):
        return self._insert(
            Chunk, notebook_id=notebook_id, original_text=text, owner_id=owner_id, **fields
        )

    def tag(self, notebook_id, name="tag", parent_tag_id=None, owner_id=None, **fields):
        return self._insert(
            Tag,
            notebook_id=notebook_id,
            name=name,
            parent_tag_id=parent_tag_id,
            owner_id=owner_id,
            **fields,
        )

    def chunk_tag(self, chunk_id, tag_id):
        return self._insert(ChunkTag, chunk_id=chunk_id, tag_id=tag_id)

    def meta_tag(self, name="CORE", **fields):
        return self._insert(MetaTag, name=name, **fields)

    def conversation(self, notebook_id=None, **fields):
        return self._insert(Conversation, notebook_id=notebook_id, **fields)

    def message(self, conversation_id, question="Q?", answer="A.", **fields):
        return self._insert(
            ConversationMessage,
            conversation_id=conversation_id,
            question=question,
            answer=answer,
            **fields,
        )

    def order(self, locus: Locus, content_type: ContentType, content_id, position, parent_id=None, **fields):
        return self._insert(
            LocusContentItem,
            locus_id=locus.id,
            locus_type=locus.type.value,
            content_type=content_type.value,
            content_id=content_id,
            position=position,
            parent_id=parent_id,
            **fields,
        )


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def engine():
    """Fresh in-memory database with all tables."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return DocumentStore(session_factory)


@pytest.fixture
def index(store):
    return ContentOrderIndex(store, step=1000)


@pytest.fixture
def factory(store):
    return WorkspaceFactory(store)


@pytest.fixture
def manual_template(factory, index):
    """
    Starter nexus with two notebooks.

    "Basics" holds 3 root tags and 5 child tags, 4 chunks, 4 tag assignments,
    full ordering and a conversation message. "Empty" holds nothing.
    """
    nexus_id = factory.nexus(name="USER MANUAL", description="How to use Nexus")
    basics = factory.notebook(nexus_id, name="Basics", meta_question="What is a chunk?", order=0)
    empty = factory.notebook(nexus_id, name="Empty", order=1)
    index.insert(Locus.nexus(nexus_id), ContentType.NOTEBOOK, basics, position=0)
    index.insert(Locus.nexus(nexus_id), ContentType.NOTEBOOK, empty, position=1000)

    roots = [factory.tag(basics, name=f"root-{i}", color="blue") for i in range(3)]
    children = [
        factory.tag(basics, name=f"child-{i}", parent_tag_id=roots[i % 3]) for i in range(5)
    ]
    meta = factory.meta_tag(name="CORE")
    chunks = [
        factory.chunk(basics, text="Welcome", title="Intro", source="Nexus"),
        factory.chunk(basics, text="print('hi')", chunk_type="code", meta_tag_id=meta),
        factory.chunk(basics, text="Tags group chunks", user_edited_text="Tags group chunks!"),
        factory.chunk(basics, text="Stale ref", meta_tag_id="missing-tag-id"),
    ]
    assignments = [
        factory.chunk_tag(chunks[0], roots[0]),
        factory.chunk_tag(chunks[1], children[0]),
        factory.chunk_tag(chunks[2], children[4]),
        factory.chunk_tag(chunks[2], roots[2]),
    ]

    notebook_locus = Locus.notebook(basics)
    for position, chunk_id in enumerate(chunks):
        index.insert(notebook_locus, ContentType.CHUNK, chunk_id, position=position * 1000)
    for position, tag_id in enumerate(roots):
        index.insert(notebook_locus, ContentType.TAG, tag_id, position=position * 1000)
    for position, tag_id in enumerate(children):
        index.insert(
            notebook_locus,
            ContentType.TAG,
            tag_id,
            parent_id=roots[position % 3],
            position=position * 1000,
        )

    conversation = factory.conversation(basics, title="Hello")
    message = factory.message(conversation)
    index.insert(notebook_locus, ContentType.CONVERSATION_MESSAGE, message, position=0)

    return {
        "nexus": nexus_id,
        "notebooks": [basics, empty],
        "basics": basics,
        "empty": empty,
        "roots": roots,
        "children": children,
        "chunks": chunks,
        "assignments": assignments,
        "meta_tag": meta,
        "message": message,
    }
