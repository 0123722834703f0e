# functions/db_service.py

import firebase_admin.db as db
import logging
import operator
from datetime import datetime
from typing import Any, NamedTuple, Optional

from constants import DATA_ROOT, TABLES

log = logging.getLogger(__name__)

_OPERATORS = {
    'eq': operator.eq,
    'neq': operator.ne,
    'lt': operator.lt,
    'lte': operator.le,
    'gt': operator.gt,
    'gte': operator.ge,
}


class BackendError(Exception):
    """Raised when a call to the hosted database fails."""

    def __init__(self, message: str, table: str = None):
        super().__init__(message)
        self.table = table


class QueryResult(NamedTuple):
    data: Any
    error: Optional[BackendError]

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.data


def _matches(row: dict, filters: list) -> bool:
    for column, op, value in filters:
        row_value = row.get(column)
        if op in ('eq', 'neq'):
            if not _OPERATORS[op](row_value, value):
                return False
            continue
        # Range comparisons never match a missing value
        if row_value is None or value is None:
            return False
        try:
            if not _OPERATORS[op](row_value, value):
                return False
        except TypeError:
            return False
    return True


def _sort_rows(rows: list, order_by: str, descending: bool) -> list:
    present = [r for r in rows if r.get(order_by) is not None]
    missing = [r for r in rows if r.get(order_by) is None]
    present.sort(key=lambda r: r[order_by], reverse=descending)
    return present + missing


class BackendClient:
    """
    Row-level CRUD over the Firebase Realtime Database.

    Every table lives under `/<root>/<table>/<row id>` and each row stores its own `id`.
    Calls never raise: they return a QueryResult whose `error` is set on failure.
    """

    def __init__(self, root: str = DATA_ROOT):
        self.root = root.strip('/')

    def _path(self, table: str, row_id: str = None) -> str:
        if table not in TABLES:
            raise BackendError(f"Unknown table '{table}'", table)
        path = f"/{self.root}/{table}"
        return f"{path}/{row_id}" if row_id else path

    def select(self, table: str, filters: list = None, order_by: str = None,
               descending: bool = False, limit: int = None) -> QueryResult:
        """
        Selects rows from a table.
        `filters` is a list of (column, op, value) tuples, op being one of eq, neq, lt, lte, gt, gte.
        The first `eq` filter is evaluated by the database, the rest in memory.
        """
        filters = list(filters or [])
        for column, op, _ in filters:
            if op not in _OPERATORS:
                return QueryResult(None, BackendError(f"Unsupported filter operator '{op}' on {column}", table))
        try:
            ref = db.reference(self._path(table))
            server_filter = next((f for f in filters if f[1] == 'eq' and f[2] is not None), None)
            if server_filter:
                snapshot = ref.order_by_child(server_filter[0]).equal_to(server_filter[2]).get()
            else:
                snapshot = ref.get()
        except BackendError as e:
            return QueryResult(None, e)
        except Exception as e:
            log.error(f"Error selecting from {table}: {e}")
            return QueryResult(None, BackendError(str(e), table))

        rows = []
        for row_id, row in (snapshot or {}).items():
            if not isinstance(row, dict):
                continue
            row = dict(row)
            row.setdefault('id', row_id)
            rows.append(row)

        rows = [r for r in rows if _matches(r, filters)]
        if order_by:
            rows = _sort_rows(rows, order_by, descending)
        if limit is not None:
            rows = rows[:limit]
        return QueryResult(rows, None)

    def select_one(self, table: str, row_id: str) -> QueryResult:
        """
        Gets a single row by id. `data` is None when the row does not exist.
        """
        if not row_id:
            return QueryResult(None, BackendError(f"Missing id for {table} lookup", table))
        try:
            row = db.reference(self._path(table, row_id)).get()
        except BackendError as e:
            return QueryResult(None, e)
        except Exception as e:
            log.error(f"Error getting {table}/{row_id}: {e}")
            return QueryResult(None, BackendError(str(e), table))
        if not row:
            return QueryResult(None, None)
        row = dict(row)
        row.setdefault('id', row_id)
        return QueryResult(row, None)

    def insert(self, table: str, row: dict, row_id: str = None) -> QueryResult:
        """
        Inserts a row and returns the stored row.
        The row is keyed by `row_id` when given, otherwise by a generated push id.
        """
        try:
            if row_id:
                new_ref = db.reference(self._path(table, row_id))
            else:
                new_ref = db.reference(self._path(table)).push()
            stored = {k: v for k, v in row.items() if v is not None}
            stored['id'] = new_ref.key
            stored.setdefault('created_at', datetime.now().isoformat())
            new_ref.set(stored)
        except BackendError as e:
            return QueryResult(None, e)
        except Exception as e:
            log.error(f"Error inserting into {table}: {e}")
            return QueryResult(None, BackendError(str(e), table))
        log.info(f"Inserted {table}/{stored['id']}")
        return QueryResult(stored, None)

    def update(self, table: str, row_id: str, fields: dict) -> QueryResult:
        """
        Updates the given columns of an existing row and returns the merged row.
        """
        existing = self.select_one(table, row_id)
        if existing.error:
            return existing
        if existing.data is None:
            return QueryResult(None, BackendError(f"{table}/{row_id} not found", table))
        changes = {k: v for k, v in fields.items() if k != 'id'}
        changes['updated_at'] = datetime.now().isoformat()
        try:
            db.reference(self._path(table, row_id)).update(changes)
        except Exception as e:
            log.error(f"Error updating {table}/{row_id}: {e}")
            return QueryResult(None, BackendError(str(e), table))
        merged = {**existing.data, **changes}
        log.info(f"Updated {table}/{row_id}")
        return QueryResult(merged, None)

    def delete(self, table: str, row_id: str) -> QueryResult:
        if not row_id:
            return QueryResult(None, BackendError(f"Missing id for {table} delete", table))
        try:
            db.reference(self._path(table, row_id)).delete()
        except BackendError as e:
            return QueryResult(None, e)
        except Exception as e:
            log.error(f"Error deleting {table}/{row_id}: {e}")
            return QueryResult(None, BackendError(str(e), table))
        log.info(f"Deleted {table}/{row_id}")
        return QueryResult(True, None)

    def delete_where(self, table: str, filters: list) -> QueryResult:
        """
        Deletes every row matching the filters. `data` is the number of rows removed.
        """
        result = self.select(table, filters)
        if result.error:
            return result
        for row in result.data:
            deleted = self.delete(table, row['id'])
            if deleted.error:
                return deleted
        return QueryResult(len(result.data), None)
