"""
Shared pytest fixtures for VolleyTrack tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.models import Team, Match, SetScore, STATUS_COMPLETED, kind_for_stage
from store import YamlStore


@pytest.fixture
def build_match():
    """Factory for a match and its three sets from a list of (team1, team2) scores."""
    def _build(match_id, team1_id, team2_id, scores, stage='pool', status=STATUS_COMPLETED,
               winner_team_id=None, pool_id=None, slot=None, tournament_id='t1'):
        match = Match(
            id=match_id,
            tournament_id=tournament_id,
            team1_id=team1_id,
            team2_id=team2_id,
            kind=kind_for_stage(stage, pool_id=pool_id, slot=slot),
            status=status,
            winner_team_id=winner_team_id,
        )
        padded = list(scores) + [(0, 0)] * (3 - len(scores))
        sets = [
            SetScore(id=f"{match_id}-s{n}", match_id=match_id, set_number=n,
                     team1_points=p1, team2_points=p2)
            for n, (p1, p2) in enumerate(padded, start=1)
        ]
        return match, sets
    return _build


@pytest.fixture
def sample_teams():
    """Four teams in two pools of two."""
    return [
        Team(id='a1', name='Aces'),
        Team(id='a2', name='Blockers'),
        Team(id='b1', name='Diggers'),
        Team(id='b2', name='Spikers'),
    ]


@pytest.fixture
def store(tmp_path):
    """An empty store in a temporary directory."""
    return YamlStore(str(tmp_path / 'data'))


@pytest.fixture
def two_pool_tournament(store):
    """Tournament with Pool A (Aces, Blockers, Cobras) and Pool B (Diggers, Spikers, Tigers)."""
    import scorekeeper

    tournament = scorekeeper.create_tournament(store, 'Summer Cup')
    teams = {}
    for name in ('Aces', 'Blockers', 'Cobras', 'Diggers', 'Spikers', 'Tigers'):
        team = scorekeeper.create_team(store, name)
        scorekeeper.add_team_to_tournament(store, tournament.id, team.id)
        teams[name] = team
    pool_a = scorekeeper.create_pool(store, tournament.id, 'Pool A')
    pool_b = scorekeeper.create_pool(store, tournament.id, 'Pool B')
    for name in ('Aces', 'Blockers', 'Cobras'):
        scorekeeper.add_team_to_pool(store, pool_a.id, teams[name].id)
    for name in ('Diggers', 'Spikers', 'Tigers'):
        scorekeeper.add_team_to_pool(store, pool_b.id, teams[name].id)
    return {'tournament': tournament, 'teams': teams, 'pool_a': pool_a, 'pool_b': pool_b}


def play(store, match_id, scores):
    """Record final scores for a match through the store and complete it."""
    import scorekeeper

    rows = store.select('sets', order_by='set_number', match_id=match_id)
    for row, (p1, p2) in zip(rows, scores):
        store.update('sets', row['id'], {'team1_points': p1, 'team2_points': p2})
    return scorekeeper.complete_match(store, match_id)


@pytest.fixture
def play_match():
    return play


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the Flask app at a temporary data directory."""
    import app as app_module

    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    monkeypatch.setattr(app_module, 'DATA_DIR', str(data_dir))
    monkeypatch.setattr(app_module, 'USERS_FILE', str(data_dir / 'users.yaml'))
    monkeypatch.setattr(app_module, 'SETTINGS_FILE', str(data_dir / 'settings.yaml'))
    monkeypatch.delenv('VOLLEYTRACK_RULESET', raising=False)
    return data_dir


@pytest.fixture
def client(temp_data_dir):
    """Create an authenticated admin test client."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        with client.session_transaction() as sess:
            sess['user'] = 'admin'
        yield client


@pytest.fixture
def anon_client(temp_data_dir):
    """Create a test client with no admin session."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client
