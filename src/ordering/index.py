"""
Content Ordering Index.

Orders heterogeneous content inside a locus (a nexus or a notebook) through
``locus_content_items`` instead of per-entity order columns. One ordering
group is identified by (locus, content type, parent id); ``parent_id`` is only
used for tags, to keep siblings under one parent tag in their own sequence.

Positions are floats spaced ``position_step`` apart, so moving an item to the
top or bottom only rewrites that item. ``renormalize`` compacts a group back
to 0, step, 2*step, ... without changing its order. ``move`` and ``remove``
carry an item to another locus or parent group and drop its record.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from config import get_settings
from src.db.models import ContentType, LocusContentItem, LocusType
from src.store import DocumentStore, utcnow


class OrderingError(ValueError):
    """Base class for rejected ordering operations."""


class UnknownContentError(OrderingError):
    """The content id has no ordering record in the target group."""


class DuplicateContentError(OrderingError):
    """The content id is already ordered in the locus, or listed twice."""


class Edge(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"


# Sentinel for "do not filter on parent_id" (None means top-level only).
ANY_PARENT = object()


@dataclass(frozen=True)
class Locus:
    """A container scope being ordered."""

    id: str
    type: LocusType

    @classmethod
    def nexus(cls, nexus_id: str) -> Locus:
        return cls(nexus_id, LocusType.NEXUS)

    @classmethod
    def notebook(cls, notebook_id: str) -> Locus:
        return cls(notebook_id, LocusType.NOTEBOOK)

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"


def _value(content_type: ContentType | str) -> str:
    return content_type.value if isinstance(content_type, ContentType) else content_type


class ContentOrderIndex:
    """Insert, enumerate and reorder ``LocusContentItem`` rows."""

    def __init__(self, store: DocumentStore, step: int | None = None) -> None:
        self._store = store
        self.step = step or get_settings().position_step

    # =========================================================================
    # QUERIES
    # =========================================================================

    def enumerate(
        self,
        locus: Locus,
        content_type: ContentType | str,
        parent_id: object = ANY_PARENT,
    ) -> list[LocusContentItem]:
        """Records of one content type in ``locus``, ascending by position.

        Pass ``parent_id`` (including ``None`` for top-level) to restrict the
        result to one sibling group.
        """
        filters: dict[str, object] = {
            "locus_id": locus.id,
            "locus_type": locus.type.value,
            "content_type": _value(content_type),
        }
        if parent_id is not ANY_PARENT:
            filters["parent_id"] = parent_id
        items = self._store.query(LocusContentItem, order_by=("position", "created_at"), **filters)
        return sorted(items, key=lambda item: item.position)

    def content_ids(
        self,
        locus: Locus,
        content_type: ContentType | str,
        parent_id: object = ANY_PARENT,
    ) -> list[str]:
        return [item.content_id for item in self.enumerate(locus, content_type, parent_id)]

    def find(
        self, locus: Locus, content_type: ContentType | str, content_id: str
    ) -> LocusContentItem | None:
        """The ordering record of ``content_id`` in ``locus``, if any."""
        return self._store.first(
            LocusContentItem,
            locus_id=locus.id,
            locus_type=locus.type.value,
            content_type=_value(content_type),
            content_id=content_id,
        )

    def next_position(
        self, locus: Locus, content_type: ContentType | str, parent_id: str | None = None
    ) -> float:
        """Position just past the end of a group (0 for an empty group)."""
        group = self.enumerate(locus, content_type, parent_id)
        return group[-1].position + self.step if group else 0.0

    # =========================================================================
    # INSERTS
    # =========================================================================

    def insert(
        self,
        locus: Locus,
        content_type: ContentType | str,
        content_id: str,
        parent_id: str | None = None,
        owner_id: str | None = None,
        position: float | None = None,
    ) -> str:
        """Add an ordering record and return its id.

        Without ``position`` the item goes to the end of its group. An explicit
        position already taken in the group is nudged upward, halfway towards
        the next taken position, so it lands after its twin and before
        everything that followed.
        """
        if self.find(locus, content_type, content_id) is not None:
            raise DuplicateContentError(f"{_value(content_type)} {content_id} already ordered in {locus}")

        group = self.enumerate(locus, content_type, parent_id)
        if position is None:
            position = group[-1].position + self.step if group else 0.0
        else:
            position = self._free_position(float(position), [item.position for item in group])

        now = utcnow()
        return self._store.insert(
            LocusContentItem,
            locus_id=locus.id,
            locus_type=locus.type.value,
            content_type=_value(content_type),
            content_id=content_id,
            position=position,
            parent_id=parent_id,
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )

    def append(
        self,
        locus: Locus,
        content_type: ContentType | str,
        content_id: str,
        parent_id: str | None = None,
        owner_id: str | None = None,
    ) -> str:
        return self.insert(locus, content_type, content_id, parent_id=parent_id, owner_id=owner_id)

    def insert_at_top(
        self,
        locus: Locus,
        content_type: ContentType | str,
        content_id: str,
        parent_id: str | None = None,
        owner_id: str | None = None,
    ) -> str:
        group = self.enumerate(locus, content_type, parent_id)
        position = group[0].position - self.step if group else 0.0
        return self.insert(
            locus, content_type, content_id, parent_id=parent_id, owner_id=owner_id, position=position
        )

    def _free_position(self, wanted: float, taken: list[float]) -> float:
        taken_set = set(taken)
        position = wanted
        while position in taken_set:
            higher = [p for p in taken_set if p > position]
            position = (position + min(higher)) / 2 if higher else position + self.step
        return position

    # =========================================================================
    # REORDERING
    # =========================================================================

    def reorder(
        self,
        locus: Locus,
        content_type: ContentType | str,
        content_ids: list[str],
        parent_id: str | None = None,
    ) -> None:
        """Assign sequential positions to exactly ``content_ids``.

        Items of the group that are not listed keep their positions. Every
        listed id must already be ordered in the group.
        """
        if len(set(content_ids)) != len(content_ids):
            raise DuplicateContentError(f"reorder list for {locus} repeats an id")

        by_content = {item.content_id: item for item in self.enumerate(locus, content_type, parent_id)}
        missing = [content_id for content_id in content_ids if content_id not in by_content]
        if missing:
            raise UnknownContentError(
                f"cannot reorder {_value(content_type)} in {locus} (parent={parent_id}): "
                f"not in group: {missing}"
            )

        now = utcnow()
        for index, content_id in enumerate(content_ids):
            item = by_content[content_id]
            position = float(index * self.step)
            if item.position != position:
                self._store.patch(LocusContentItem, item.id, position=position, updated_at=now)
        logger.debug(f"Reordered {len(content_ids)} {_value(content_type)} items in {locus}")

    def move_to_extreme(
        self,
        locus: Locus,
        content_type: ContentType | str,
        content_id: str,
        edge: Edge | str,
    ) -> float:
        """Move one item to the very start or end of its sibling group.

        Returns the item's new position.
        """
        edge = Edge(edge)
        item = self.find(locus, content_type, content_id)
        if item is None:
            raise UnknownContentError(f"{_value(content_type)} {content_id} is not ordered in {locus}")

        others = [
            other.position
            for other in self.enumerate(locus, content_type, item.parent_id)
            if other.id != item.id
        ]
        if not others:
            return item.position

        if edge is Edge.TOP:
            if item.position < min(others):
                return item.position
            position = min(others) - self.step
        else:
            if item.position > max(others):
                return item.position
            position = max(others) + self.step

        self._store.patch(LocusContentItem, item.id, position=position, updated_at=utcnow())
        return position

    def move(
        self,
        locus: Locus,
        content_type: ContentType | str,
        content_id: str,
        to_locus: Locus,
        parent_id: str | None = None,
        position: float | None = None,
    ) -> float:
        """Move an item into another locus and/or parent group.

        Without ``position`` the item goes to the end of the target group.
        Returns the item's new position.
        """
        item = self.find(locus, content_type, content_id)
        if item is None:
            raise UnknownContentError(f"{_value(content_type)} {content_id} is not ordered in {locus}")
        if to_locus != locus and self.find(to_locus, content_type, content_id) is not None:
            raise DuplicateContentError(f"{_value(content_type)} {content_id} already ordered in {to_locus}")

        taken = [
            other.position
            for other in self.enumerate(to_locus, content_type, parent_id)
            if other.id != item.id
        ]
        if position is None:
            position = max(taken) + self.step if taken else 0.0
        else:
            position = self._free_position(float(position), taken)

        self._store.patch(
            LocusContentItem,
            item.id,
            locus_id=to_locus.id,
            locus_type=to_locus.type.value,
            parent_id=parent_id,
            position=position,
            updated_at=utcnow(),
        )
        logger.debug(f"Moved {_value(content_type)} {content_id} from {locus} to {to_locus}")
        return position

    def remove(self, locus: Locus, content_type: ContentType | str, content_id: str) -> bool:
        """Delete an item's ordering record. Returns False if it had none."""
        item = self.find(locus, content_type, content_id)
        if item is None:
            return False
        self._store.delete(LocusContentItem, item.id)
        return True

    def renormalize(
        self,
        locus: Locus,
        content_type: ContentType | str,
        parent_id: str | None = None,
    ) -> int:
        """Rewrite a group to 0, step, 2*step, ... keeping its order.

        Returns the number of records whose position changed.
        """
        changed = 0
        now = utcnow()
        for index, item in enumerate(self.enumerate(locus, content_type, parent_id)):
            position = float(index * self.step)
            if item.position != position:
                self._store.patch(LocusContentItem, item.id, position=position, updated_at=now)
                changed += 1
        return changed
