"""SQLAlchemy declarative bases.

The on-device image index and the metadata catalog live in separate
databases, so each gets its own metadata.
"""

from sqlalchemy.orm import DeclarativeBase


class LocalBase(DeclarativeBase):
    """Base for tables of the local (on-device) database."""


class CatalogBase(DeclarativeBase):
    """Base for tables of the metadata catalog database."""
