"""Persistence primitives (insert / update / select) over the SQLAlchemy models."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..models import MODELS_BY_TABLE, db
from .errors import PersistenceFailure, RecordNotFound


class SubmissionStore:
    """Table-addressed record store; every call is its own transaction."""

    def __init__(self, database=db):
        self.db = database

    @staticmethod
    def _model(table: str):
        try:
            return MODELS_BY_TABLE[table]
        except KeyError:
            raise ValueError(f'Unknown table: {table}') from None

    def _commit(self, action: str, table: str) -> None:
        try:
            self.db.session.commit()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            current_app.logger.error("Failed to %s %s record: %s", action, table, exc)
            raise PersistenceFailure(f'Could not {action} {table} record') from exc

    def insert(
        self,
        table: str,
        record: Mapping[str, Any],
        also_update: Iterable[Tuple[str, int, Mapping[str, Any]]] = (),
    ) -> Dict[str, Any]:
        """Insert a record and return it with its generated id.

        Each ``(table, id, patch)`` in ``also_update`` is applied in the same
        transaction, so either all of the writes land or none do.
        """
        model = self._model(table)
        row = model(**record)
        self.db.session.add(row)
        try:
            for other_table, other_id, patch in also_update:
                self._stage_update(other_table, other_id, patch)
        except (PersistenceFailure, RecordNotFound):
            self.db.session.rollback()
            raise
        self._commit('insert', table)
        current_app.logger.info("Stored %s record id=%s", table, row.id)
        return row.to_dict()

    def _stage_update(self, table: str, record_id: int, patch: Mapping[str, Any]) -> None:
        model = self._model(table)
        try:
            row = self.db.session.get(model, record_id)
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise PersistenceFailure(f'Could not read {table} record {record_id}') from exc
        if row is None:
            raise RecordNotFound(f'{table} record {record_id} not found')

        for key, value in patch.items():
            setattr(row, key, value)

    def update(self, table: str, record_id: int, patch: Mapping[str, Any]) -> None:
        """Apply ``patch`` to one record by id."""
        self._stage_update(table, record_id, patch)
        self._commit('update', table)
        current_app.logger.info("Updated %s record id=%s fields=%s", table, record_id, sorted(patch))

    def select(self, table: str, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the first record matching ``filters``, or None."""
        model = self._model(table)
        try:
            row = model.query.filter_by(**filters).first()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise PersistenceFailure(f'Could not read {table} records') from exc
        return row.to_dict() if row is not None else None
