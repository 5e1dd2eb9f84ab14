"""SQLAlchemy schemas for records with file-backed columns."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from records.fields import fs_column


def utc_now() -> datetime:
    """Return UTC datetime for default timestamps."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base."""


class DocumentRecord(Base):
    """Document table; content and preview live on disk."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(256), default="")
    content: Mapped[str | None] = fs_column("documents")
    preview: Mapped[str | None] = fs_column("previews", rename_on_update=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
