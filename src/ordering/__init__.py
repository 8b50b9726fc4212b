"""Content ordering inside nexi and notebooks."""

from src.ordering.index import (
    ANY_PARENT,
    ContentOrderIndex,
    DuplicateContentError,
    Edge,
    Locus,
    OrderingError,
    UnknownContentError,
)

__all__ = [
    "ANY_PARENT",
    "ContentOrderIndex",
    "DuplicateContentError",
    "Edge",
    "Locus",
    "OrderingError",
    "UnknownContentError",
]
