"""Local image models for the on-device image index."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pvsync.db.base import LocalBase


class LocalImage(LocalBase):
    """Image file held on local disk and its sync state."""

    __tablename__ = "local_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cloud_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    installation_id: Mapped[int] = mapped_column(Integer, index=True)
    required_image_id: Mapped[int] = mapped_column(Integer, index=True)
    local_path: Mapped[str] = mapped_column(String(1024))
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    time_added: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    user_id: Mapped[int] = mapped_column(Integer)
    # Hex SHA-256 of the file contents, never updated after insert
    hash: Mapped[str] = mapped_column(String(64), index=True)
    is_uploaded: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class LocalImageMetadata(LocalBase):
    """Free-form key/value attached to a local image."""

    __tablename__ = "image_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    image_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("local_images.id", ondelete="CASCADE"),
        index=True,
    )
    key: Mapped[str] = mapped_column(String(255))
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
