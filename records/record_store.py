"""Record store adapter used by the lifecycle hooks.

Wraps SQLAlchemy sessions behind the handful of operations the lifecycle
needs: plain inserts/updates/deletes that know nothing about files, a copy
primitive over a raw value map, and access to dirty and committed values of
an in-flight change.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import StoreError
from records.sql_store import SQLStore


class RecordStore:
    """File-agnostic record mutations over a SQLStore."""

    def __init__(self, sql_store: SQLStore) -> None:
        self.sql_store = sql_store

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session scope; database failures surface as StoreError."""
        try:
            with self.sql_store.session() as sess:
                yield sess
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def get(self, model: type, pk: Any) -> Any | None:
        with self.transaction() as sess:
            return sess.get(model, pk)

    def find(self, model: type, **filters: Any) -> list[Any]:
        """Rows whose columns equal the given values, in primary key order."""
        with self.transaction() as sess:
            query = sess.query(model).filter_by(**filters)
            mapper = inspect(model)
            return query.order_by(*mapper.primary_key).all()

    def insert(self, sess: Session, record: Any) -> Any:
        sess.add(record)
        sess.flush()
        return record

    def update(self, sess: Session, record: Any, values: dict[str, Any]) -> Any:
        sess.add(record)
        for key, value in values.items():
            setattr(record, key, value)
        sess.flush()
        return record

    def delete(self, sess: Session, record: Any) -> None:
        sess.add(record)
        sess.delete(record)
        sess.flush()

    def duplicate(self, sess: Session, model: type, values: dict[str, Any]) -> Any:
        """Insert a new row built only from a raw column value map."""
        return self.insert(sess, model(**values))

    @staticmethod
    def table_name(model: type) -> str:
        return inspect(model).local_table.name

    @staticmethod
    def primary_key_fields(model: type) -> list[str]:
        mapper = inspect(model)
        return [mapper.get_property_by_column(col).key for col in mapper.primary_key]

    @staticmethod
    def column_values(record: Any) -> dict[str, Any]:
        mapper = inspect(type(record))
        return {attr.key: getattr(record, attr.key) for attr in mapper.column_attrs}

    @staticmethod
    def dirty_fields(record: Any) -> set[str]:
        """Column attributes modified since the row was loaded."""
        state = inspect(record)
        column_keys = {attr.key for attr in state.mapper.column_attrs}
        return {
            key for key in column_keys if state.attrs[key].history.has_changes()
        }

    @staticmethod
    def committed_value(record: Any, field: str) -> Any:
        """Value of ``field`` as last persisted, ignoring pending changes."""
        history = inspect(record).attrs[field].history
        if history.deleted:
            return history.deleted[0]
        if history.unchanged:
            return history.unchanged[0]
        return None
