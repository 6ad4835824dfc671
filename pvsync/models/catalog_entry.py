"""Catalog entry model (one row per logical image known to the cloud)."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pvsync.db.base import CatalogBase


class CatalogEntry(CatalogBase):
    """Saved image database model."""

    __tablename__ = "saved_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    installation_id: Mapped[int] = mapped_column(Integer, index=True)
    required_image_id: Mapped[int] = mapped_column(Integer, index=True)
    location: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    remote_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    time_added: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_id: Mapped[int] = mapped_column(Integer)
    hash: Mapped[str] = mapped_column(String(64), index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
