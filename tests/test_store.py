"""
Tests for the YAML file store.
"""
import pytest
import sys
import os
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.errors import StoreError, NotFoundError
from store import YamlStore


class TestBasicOperations:
    """Tests for insert, select, update and delete."""

    def test_insert_returns_row_with_id(self, store):
        row = store.insert('teams', {'name': 'Aces'})
        assert row['id']
        assert row['name'] == 'Aces'

    def test_insert_applies_defaults(self, store):
        row = store.insert('sets', {'match_id': 'm1', 'set_number': 1})
        assert row['team1_points'] == 0
        assert row['team2_points'] == 0

    def test_rows_persist_to_yaml(self, store):
        store.insert('teams', {'name': 'Aces'})
        with open(store.path('teams'), encoding='utf-8') as f:
            rows = yaml.safe_load(f)
        assert rows[0]['name'] == 'Aces'
        assert YamlStore(store.data_dir).select('teams')[0]['name'] == 'Aces'

    def test_select_equality_and_in(self, store):
        for name in ('Aces', 'Blockers', 'Cobras'):
            store.insert('teams', {'name': name})
        assert len(store.select('teams', name='Blockers')) == 1
        assert {r['name'] for r in store.select('teams', name=['Aces', 'Cobras'])} == {'Aces', 'Cobras'}
        assert store.select('teams', name=[]) == []

    def test_order_by_with_nulls_first(self, store):
        store.insert('tournaments', {'name': 'B', 'slug': 'b', 'start_date': '2025-09-01'})
        store.insert('tournaments', {'name': 'C', 'slug': 'c'})
        store.insert('tournaments', {'name': 'A', 'slug': 'a', 'start_date': '2025-09-01'})
        store.insert('tournaments', {'name': 'D', 'slug': 'd', 'start_date': '2025-08-01'})
        rows = store.select('tournaments', order_by=['start_date', 'name'])
        assert [r['name'] for r in rows] == ['C', 'D', 'A', 'B']

    def test_order_descending(self, store):
        for n in (2, 3, 1):
            store.insert('sets', {'match_id': 'm1', 'set_number': n})
        rows = store.select('sets', order_by=[('set_number', True)])
        assert [r['set_number'] for r in rows] == [3, 2, 1]

    def test_update(self, store):
        row = store.insert('sets', {'match_id': 'm1', 'set_number': 1})
        updated = store.update('sets', row['id'], {'team1_points': 5})
        assert updated['team1_points'] == 5
        assert store.get('sets', row['id'])['team1_points'] == 5

    def test_update_missing_row(self, store):
        with pytest.raises(NotFoundError):
            store.update('teams', 'nope', {'name': 'X'})

    def test_unknown_collection(self, store):
        with pytest.raises(StoreError):
            store.select('players')

    def test_unique_team_name(self, store):
        store.insert('teams', {'name': 'Aces'})
        with pytest.raises(StoreError, match='unique'):
            store.insert('teams', {'name': 'Aces'})

    def test_unique_set_number_per_match(self, store):
        store.insert('sets', {'match_id': 'm1', 'set_number': 1})
        store.insert('sets', {'match_id': 'm2', 'set_number': 1})
        with pytest.raises(StoreError):
            store.insert('sets', {'match_id': 'm1', 'set_number': 1})

    def test_delete_requires_filter(self, store):
        with pytest.raises(StoreError):
            store.delete('teams')

    def test_corrupt_file_raises_store_error(self, store):
        with open(store.path('teams'), 'w', encoding='utf-8') as f:
            f.write("- name: [unclosed\n")
        with pytest.raises(StoreError):
            store.select('teams')


class TestCascades:
    """Tests for referential deletes."""

    def test_delete_match_removes_sets(self, store):
        match = store.insert('matches', {'tournament_id': 't1'})
        for n in (1, 2, 3):
            store.insert('sets', {'match_id': match['id'], 'set_number': n})
        removed = store.delete('matches', id=match['id'])
        assert removed == 4
        assert store.select('sets') == []

    def test_delete_team_removes_memberships_and_matches(self, store):
        team = store.insert('teams', {'name': 'Aces'})
        other = store.insert('teams', {'name': 'Blockers'})
        store.insert('tournament_teams', {'tournament_id': 't1', 'team_id': team['id']})
        store.insert('pool_teams', {'pool_id': 'p1', 'team_id': team['id']})
        match = store.insert('matches', {'tournament_id': 't1', 'team1_id': other['id'], 'team2_id': team['id']})
        store.insert('sets', {'match_id': match['id'], 'set_number': 1})
        store.delete('teams', id=team['id'])
        assert store.select('tournament_teams') == []
        assert store.select('pool_teams') == []
        assert store.select('matches') == []
        assert store.select('sets') == []
        assert len(store.select('teams')) == 1

    def test_delete_pool_clears_match_pool(self, store):
        pool = store.insert('pools', {'tournament_id': 't1', 'name': 'Pool A'})
        match = store.insert('matches', {'tournament_id': 't1', 'pool_id': pool['id']})
        store.delete('pools', id=pool['id'])
        assert store.get('matches', match['id'])['pool_id'] is None


class TestTransactions:
    """Tests for batched writes and change events."""

    def test_failed_transaction_writes_nothing(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.insert('teams', {'name': 'Aces'})
                raise RuntimeError("boom")
        assert store.select('teams') == []

    def test_events_after_commit(self, store):
        seen = []
        store.subscribe('sets', 'insert', lambda row: seen.append(('insert', row['set_number'])))
        store.subscribe('sets', 'update', lambda row: seen.append(('update', row['team1_points'])))
        with store.transaction() as tx:
            row = tx.insert('sets', {'match_id': 'm1', 'set_number': 1})
            tx.update('sets', row['id'], {'team1_points': 1})
            assert seen == []
        assert seen == [('insert', 1), ('update', 1)]

    def test_no_events_on_failure(self, store):
        seen = []
        store.subscribe('teams', 'insert', seen.append)
        with pytest.raises(StoreError):
            with store.transaction() as tx:
                tx.insert('teams', {'name': 'Aces'})
                tx.insert('teams', {'name': 'Aces'})
        assert seen == []

    def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe('teams', 'insert', seen.append)
        unsubscribe()
        store.insert('teams', {'name': 'Aces'})
        assert seen == []

    def test_mtimes_change_on_write(self, store):
        before = store.mtimes()
        assert before['sets'] == 0.0
        store.insert('sets', {'match_id': 'm1', 'set_number': 1})
        assert store.mtimes()['sets'] > 0.0
