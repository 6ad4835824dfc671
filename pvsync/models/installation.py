"""PV installation model."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pvsync.db.base import CatalogBase


class Installation(CatalogBase):
    """Site being documented."""

    __tablename__ = "fve_installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    region: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    user_id: Mapped[int] = mapped_column(Integer)
