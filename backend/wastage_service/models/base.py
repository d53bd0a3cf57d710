"""Shared declarative base for the ORM models.

Keeping one ``Base`` holds the SQLAlchemy metadata in a single place so that
``create_all`` at startup and any future migrations see every table.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass
