"""SQLAlchemy session management for the record store."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from records.schemas import Base


class SQLStore:
    """Provides SQLAlchemy session management for SQLite persistence."""

    def __init__(self, db_path: Path | None = None, url: str | None = None) -> None:
        if url is None:
            if db_path is None:
                raise ValueError("SQLStore needs a db_path or a url")
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite+pysqlite:///{db_path}"
        self.db_path = db_path
        self.engine = create_engine(url, future=True)
        # Rows handed back to callers stay readable after their session closes.
        self._session_factory = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)

    def create_all(self, base: type[DeclarativeBase] = Base) -> None:
        """Create all schema tables if missing."""
        base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager that commits on success and rolls back on error."""
        sess = self._session_factory()
        try:
            yield sess
            sess.commit()
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()
