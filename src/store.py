"""
YAML-backed persistence gateway.

Each table is one YAML document ``<table>.yaml`` in the data directory::

    next_id: 4
    rows:
      - id: 1
        created_at: '2026-01-01T10:00:00'
        ...

Every call is an independent read-modify-write under a file lock. There are
no transactions and no joins; multi-step sequences are ordered by callers.
"""
import logging
import os
from datetime import datetime

import yaml
from filelock import FileLock, Timeout

from core.errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)

TABLES = ('teams', 'pools', 'matches', 'admin_users', 'login_logs', 'activity_logs')
APPEND_ONLY = ('login_logs', 'activity_logs')


def _sort_key(value):
    # None sorts first; mixed types compare by their string form
    if value is None:
        return (0, '')
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


def _matches(row, where):
    for key, expected in where.items():
        actual = row.get(key)
        if actual == expected:
            continue
        # ids arrive as strings from forms and as ints from storage
        if actual is not None and expected is not None and str(actual) == str(expected):
            continue
        return False
    return True


class LeagueStore:
    def __init__(self, data_dir, lock_timeout=10):
        self.data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)
        self._lock = FileLock(os.path.join(data_dir, '.lock'), timeout=lock_timeout)

    def _path(self, table):
        if table not in TABLES:
            raise ValueError(f'Unknown table: {table}')
        return os.path.join(self.data_dir, f'{table}.yaml')

    def _load(self, table):
        path = self._path(table)
        if not os.path.exists(path):
            return {'next_id': 1, 'rows': []}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f'Failed to read {path}: {e}')
            raise PersistenceError(detail=str(e))
        if not data:
            return {'next_id': 1, 'rows': []}
        if 'rows' not in data or not isinstance(data['rows'], list):
            data['rows'] = []
        if 'next_id' not in data:
            data['next_id'] = max((r.get('id', 0) for r in data['rows']), default=0) + 1
        return data

    def _save(self, table, data):
        path = self._path(table)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f'Failed to write {path}: {e}')
            raise PersistenceError(detail=str(e))

    def _locked(self):
        return _LockContext(self._lock)

    def select(self, table, where=None, order_by=None, descending=False, limit=None):
        """Rows matching all equality filters in `where`, optionally ordered and limited."""
        with self._locked():
            rows = self._load(table)['rows']
        if where:
            rows = [r for r in rows if _matches(r, where)]
        if order_by:
            rows = sorted(rows, key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def get(self, table, row_id):
        for row in self.select(table, where={'id': row_id}):
            return row
        raise NotFound(f'{table} record {row_id} not found')

    def insert(self, table, row):
        now = datetime.now().isoformat()
        with self._locked():
            data = self._load(table)
            new_row = {'id': data['next_id'], **row}
            new_row.setdefault('created_at', now)
            data['next_id'] += 1
            data['rows'].append(new_row)
            self._save(table, data)
        return new_row

    def insert_many(self, table, rows):
        return [self.insert(table, row) for row in rows]

    def update(self, table, row_id, changes):
        if table in APPEND_ONLY:
            raise PersistenceError(f'{table} is append-only')
        with self._locked():
            data = self._load(table)
            for row in data['rows']:
                if str(row.get('id')) == str(row_id):
                    row.update({k: v for k, v in changes.items() if k != 'id'})
                    row['updated_at'] = datetime.now().isoformat()
                    self._save(table, data)
                    return row
        raise NotFound(f'{table} record {row_id} not found')

    def delete(self, table, row_id) -> bool:
        return self.delete_where(table, {'id': row_id}) > 0

    def delete_where(self, table, where) -> int:
        if table in APPEND_ONLY:
            raise PersistenceError(f'{table} is append-only')
        if not where:
            raise ValueError('delete_where needs at least one filter')
        with self._locked():
            data = self._load(table)
            kept = [r for r in data['rows'] if not _matches(r, where)]
            removed = len(data['rows']) - len(kept)
            if removed:
                data['rows'] = kept
                self._save(table, data)
        return removed

    def count(self, table, where=None):
        return len(self.select(table, where=where))


class _LockContext:
    """FileLock context that reports lock timeouts as persistence errors."""

    def __init__(self, lock):
        self._lock = lock

    def __enter__(self):
        try:
            self._lock.acquire()
        except Timeout as e:
            logger.error(f'Timed out waiting for data lock: {e}')
            raise PersistenceError(detail=str(e))
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()
        return False
