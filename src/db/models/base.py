"""Declarative base shared by all ORM models."""
from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    def to_dict(self) -> dict:
        """Column values keyed by attribute name."""
        return {column.key: getattr(self, column.key) for column in self.__mapper__.column_attrs}
