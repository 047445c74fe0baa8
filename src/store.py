"""
YAML file store for tournament data.

Each collection lives in ``<data_dir>/<collection>.yaml`` as a list of
rows. All access goes through a FileLock so a read-modify-write of one
request is never interleaved with another. Writes made inside one
transaction are saved together and change events are emitted only after
they hit disk.
"""
import logging
import os
import uuid
from contextlib import contextmanager

import yaml
from filelock import FileLock, Timeout

from core.errors import StoreError, NotFoundError

logger = logging.getLogger(__name__)

COLLECTIONS = ('teams', 'tournaments', 'tournament_teams', 'pools', 'pool_teams', 'matches', 'sets')

EVENT_INSERT = 'insert'
EVENT_UPDATE = 'update'
EVENT_DELETE = 'delete'

# Columns filled in when an insert leaves them out
DEFAULTS = {
    'matches': {'team1_id': None, 'team2_id': None, 'status': 'scheduled', 'stage': 'pool',
                'pool_id': None, 'bracket_slot': None, 'scheduled_at': None, 'winner_team_id': None},
    'sets': {'team1_points': 0, 'team2_points': 0},
    'tournaments': {'start_date': None, 'end_date': None},
    'pools': {'order_index': None},
}

UNIQUE = {
    'teams': [('name',)],
    'sets': [('match_id', 'set_number')],
    'tournament_teams': [('tournament_id', 'team_id')],
    'pool_teams': [('pool_id', 'team_id')],
}

# parent collection -> [(child collection, foreign key)] rows deleted with the parent
CASCADE_DELETE = {
    'teams': [('tournament_teams', 'team_id'), ('pool_teams', 'team_id'),
              ('matches', 'team1_id'), ('matches', 'team2_id')],
    'tournaments': [('tournament_teams', 'tournament_id'), ('pools', 'tournament_id'),
                    ('matches', 'tournament_id')],
    'pools': [('pool_teams', 'pool_id')],
    'matches': [('sets', 'match_id')],
}

# parent collection -> [(child collection, foreign key)] columns cleared with the parent
CASCADE_SET_NULL = {
    'pools': [('matches', 'pool_id')],
}


def _matches_filters(row, filters):
    for key, expected in filters.items():
        value = row.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _sort_rows(rows, order_by):
    """Stable multi-key sort; keys are names or (name, descending) pairs. Nulls sort first."""
    if not order_by:
        return rows
    if isinstance(order_by, str):
        order_by = [order_by]
    for key in reversed(order_by):
        name, descending = (key, False) if isinstance(key, str) else key
        present = [r for r in rows if r.get(name) is not None]
        missing = [r for r in rows if r.get(name) is None]
        present.sort(key=lambda r: r[name], reverse=descending)
        rows = missing + present
    return rows


class Transaction:
    """In-memory view of the collections touched while the store lock is held."""

    def __init__(self, store):
        self._store = store
        self._data = {}
        self._dirty = set()
        self.events = []

    def _rows(self, collection):
        if collection not in COLLECTIONS:
            raise StoreError(f"Unknown collection: {collection}")
        if collection not in self._data:
            self._data[collection] = self._store._read(collection)
        return self._data[collection]

    def select(self, collection, order_by=None, **filters):
        rows = [dict(r) for r in self._rows(collection) if _matches_filters(r, filters)]
        return _sort_rows(rows, order_by)

    def get(self, collection, row_id):
        for row in self._rows(collection):
            if row['id'] == row_id:
                return dict(row)
        raise NotFoundError(f"{collection} row {row_id} not found")

    def _check_unique(self, collection, row):
        rows = self._rows(collection)
        for columns in UNIQUE.get(collection, []):
            key = tuple(row.get(c) for c in columns)
            for other in rows:
                if other['id'] != row['id'] and tuple(other.get(c) for c in columns) == key:
                    raise StoreError(
                        f"duplicate key value violates unique constraint on {collection}({', '.join(columns)})"
                    )

    def insert(self, collection, values):
        row = dict(DEFAULTS.get(collection, {}))
        row.update(values)
        row['id'] = row.get('id') or uuid.uuid4().hex
        self._check_unique(collection, row)
        self._rows(collection).append(row)
        self._dirty.add(collection)
        self.events.append((collection, EVENT_INSERT, dict(row)))
        return dict(row)

    def update(self, collection, row_id, values):
        for row in self._rows(collection):
            if row['id'] == row_id:
                candidate = dict(row)
                candidate.update(values)
                candidate['id'] = row_id
                self._check_unique(collection, candidate)
                row.update(candidate)
                self._dirty.add(collection)
                self.events.append((collection, EVENT_UPDATE, dict(row)))
                return dict(row)
        raise NotFoundError(f"{collection} row {row_id} not found")

    def delete(self, collection, **filters):
        """Delete matching rows and everything depending on them. Returns the number of rows removed."""
        if not filters:
            raise StoreError("Refusing to delete without a filter")
        rows = self._rows(collection)
        doomed = [r for r in rows if _matches_filters(r, filters)]
        if not doomed:
            return 0
        self._data[collection] = [r for r in rows if not _matches_filters(r, filters)]
        self._dirty.add(collection)
        removed = len(doomed)
        doomed_ids = [r['id'] for r in doomed]
        for row in doomed:
            self.events.append((collection, EVENT_DELETE, dict(row)))
        for child, column in CASCADE_SET_NULL.get(collection, []):
            for row in self._rows(child):
                if row.get(column) in doomed_ids:
                    row[column] = None
                    self._dirty.add(child)
                    self.events.append((child, EVENT_UPDATE, dict(row)))
        for child, column in CASCADE_DELETE.get(collection, []):
            removed += self.delete(child, **{column: doomed_ids})
        return removed

    def _commit(self):
        for collection in self._dirty:
            self._store._write(collection, self._data[collection])


class YamlStore:
    def __init__(self, data_dir, lock_timeout=10):
        self.data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)
        self._lock = FileLock(os.path.join(data_dir, '.lock'), timeout=lock_timeout)
        self._subscribers = {}

    def path(self, collection):
        return os.path.join(self.data_dir, f'{collection}.yaml')

    def _read(self, collection):
        path = self.path(collection)
        if not os.path.exists(path):
            return []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error('Failed to read %s: %s', path, e)
            raise StoreError(f"Failed to read {collection}: {e}")
        return data or []

    def _write(self, collection, rows):
        path = self.path(collection)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(rows, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            logger.error('Failed to write %s: %s', path, e)
            raise StoreError(f"Failed to write {collection}: {e}")
        logger.debug('Saved %d %s rows', len(rows), collection)

    @contextmanager
    def transaction(self):
        """Hold the store lock; writes are saved together when the block exits cleanly."""
        try:
            self._lock.acquire()
        except Timeout:
            raise StoreError("Data store is busy, try again")
        try:
            tx = Transaction(self)
            yield tx
            tx._commit()
        finally:
            self._lock.release()
        for collection, event, row in tx.events:
            self._notify(collection, event, row)

    def select(self, collection, order_by=None, **filters):
        with self.transaction() as tx:
            return tx.select(collection, order_by=order_by, **filters)

    def get(self, collection, row_id):
        with self.transaction() as tx:
            return tx.get(collection, row_id)

    def insert(self, collection, values):
        with self.transaction() as tx:
            return tx.insert(collection, values)

    def update(self, collection, row_id, values):
        with self.transaction() as tx:
            return tx.update(collection, row_id, values)

    def delete(self, collection, **filters):
        with self.transaction() as tx:
            return tx.delete(collection, **filters)

    def subscribe(self, collection, event, callback):
        """Call ``callback(row)`` after each committed ``event`` on ``collection``. Returns an unsubscribe function."""
        key = (collection, event)
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
        return unsubscribe

    def _notify(self, collection, event, row):
        for callback in list(self._subscribers.get((collection, event), [])):
            callback(row)

    def mtimes(self):
        """Modification time per collection file (0.0 when missing), for change polling."""
        result = {}
        for collection in COLLECTIONS:
            path = self.path(collection)
            result[collection] = os.path.getmtime(path) if os.path.exists(path) else 0.0
        return result
