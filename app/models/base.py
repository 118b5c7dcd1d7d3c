"""Declarative base shared by all SQLAlchemy models."""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite).
JsonColumnType = JSON().with_variant(JSONB(), "postgresql")


def enum_values(enum_cls):
    """Persist enum values (``"script_ready"``) rather than member names."""

    return [member.value for member in enum_cls]


__all__ = ["Base", "JsonColumnType", "enum_values"]
