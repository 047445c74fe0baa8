"""
Tests for the Flask JSON API.
"""
import json
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import app as app_module
import scorekeeper


def create_setup(client):
    """Create a tournament with two pools of two teams via the API."""
    tournament = client.post('/api/tournaments', json={'name': 'City Open'}).get_json()
    tid = tournament['id']
    teams = {}
    for name in ('Aces', 'Blockers', 'Diggers', 'Spikers'):
        team = client.post('/api/teams', json={'name': name}).get_json()
        client.post(f'/api/tournaments/{tid}/teams', json={'team_id': team['id']})
        teams[name] = team['id']
    pools = {}
    for pool_name, members in (('Pool A', ('Aces', 'Blockers')), ('Pool B', ('Diggers', 'Spikers'))):
        pool = client.post(f'/api/tournaments/{tid}/pools', json={'name': pool_name}).get_json()
        for name in members:
            client.post(f"/api/pools/{pool['id']}/teams", json={'team_id': teams[name]})
        pools[pool_name] = pool['id']
    return tid, teams, pools


def score_match(client, match_id, scores):
    detail = client.get(f'/api/matches/{match_id}').get_json()
    for set_info, (p1, p2) in zip(detail['sets'], scores):
        for _ in range(p1):
            client.post(f"/api/sets/{set_info['id']}/points", json={'side': 1, 'delta': 1})
        for _ in range(p2):
            client.post(f"/api/sets/{set_info['id']}/points", json={'side': 2, 'delta': 1})
    return client.post(f'/api/matches/{match_id}/complete')


class TestAuth:
    """Tests for the admin gate and login."""

    def test_anonymous_cannot_create(self, anon_client):
        response = anon_client.post('/api/teams', json={'name': 'Aces'})
        assert response.status_code == 401

    def test_anonymous_can_read(self, anon_client):
        assert anon_client.get('/api/teams').status_code == 200
        assert anon_client.get('/api/session').get_json() == {'user': None, 'is_admin': False}

    def test_login_with_created_account(self, anon_client):
        ok, _ = app_module.create_user('Referee', 'secret')
        assert ok
        bad = anon_client.post('/login', json={'username': 'referee', 'password': 'wrong'})
        assert bad.status_code == 401
        good = anon_client.post('/login', json={'username': 'referee', 'password': 'secret'})
        assert good.get_json()['user'] == 'referee'
        assert anon_client.post('/api/teams', json={'name': 'Aces'}).status_code == 201
        anon_client.post('/logout')
        assert anon_client.post('/api/teams', json={'name': 'Blockers'}).status_code == 401

    def test_create_user_validation(self, temp_data_dir):
        assert app_module.create_user('x', 'secret')[0] is False
        assert app_module.create_user('referee', 'abc')[0] is False
        assert app_module.create_user('referee', 'secret')[0] is True
        assert app_module.create_user('referee', 'other')[1] == 'Username already taken.'


class TestSettings:
    """Tests for the settings endpoint."""

    def test_defaults(self, client):
        assert client.get('/api/settings').get_json() == {'ruleset': 'stage', 'live_poll_seconds': 3}

    def test_switch_ruleset(self, client):
        assert client.post('/api/settings', json={'ruleset': 'classic'}).get_json()['ruleset'] == 'classic'
        assert client.get('/api/settings').get_json()['ruleset'] == 'classic'

    def test_unknown_ruleset_rejected(self, client):
        assert client.post('/api/settings', json={'ruleset': 'beach'}).status_code == 400

    def test_non_numeric_poll_interval_rejected(self, client):
        response = client.post('/api/settings', json={'live_poll_seconds': 'soon'})
        assert response.status_code == 400
        assert client.get('/api/settings').get_json()['live_poll_seconds'] == 3

    def test_environment_override(self, client, monkeypatch):
        monkeypatch.setenv('VOLLEYTRACK_RULESET', 'classic')
        assert client.get('/api/settings').get_json()['ruleset'] == 'classic'


class TestErrors:
    """Tests for error status codes."""

    def test_blank_team_name(self, client):
        response = client.post('/api/teams', json={'name': ''})
        assert response.status_code == 400
        assert 'required' in response.get_json()['error']

    def test_missing_match(self, client):
        assert client.get('/api/matches/nope').status_code == 404

    def test_same_team_twice(self, client):
        tid, teams, _ = create_setup(client)
        response = client.post(f'/api/tournaments/{tid}/matches',
                               json={'team1_id': teams['Aces'], 'team2_id': teams['Aces']})
        assert response.status_code == 400

    def test_bad_point_side(self, client):
        assert client.post('/api/sets/x/points', json={'side': 'left', 'delta': 1}).status_code == 400

    def test_seeding_conflict(self, client):
        tid = client.post('/api/tournaments', json={'name': 'Solo'}).get_json()['id']
        response = client.post(f'/api/tournaments/{tid}/bracket/seed')
        assert response.status_code == 409
        assert 'exactly 2 pools' in response.get_json()['error']

    def test_unknown_tournament_slug(self, client):
        assert client.get('/api/tournaments/by-slug/nothing').status_code == 404


class TestTournamentFlow:
    """End-to-end flow from pool play to the final."""

    def test_scoring_and_leaderboard(self, client):
        tid, teams, _ = create_setup(client)
        match = client.post(f'/api/tournaments/{tid}/matches',
                            json={'team1_id': teams['Aces'], 'team2_id': teams['Blockers']}).get_json()
        assert match['status'] == 'scheduled'
        completed = score_match(client, match['id'], [(21, 15), (21, 18)]).get_json()
        assert completed['winner_team_id'] == teams['Aces']

        rows = client.get(f'/api/tournaments/{tid}/leaderboard').get_json()
        assert rows[0]['name'] == 'Aces'
        assert rows[0]['match_points'] == 6

    def test_match_detail_targets(self, client):
        tid, teams, _ = create_setup(client)
        match = client.post(f'/api/tournaments/{tid}/matches',
                            json={'team1_id': teams['Aces'], 'team2_id': teams['Blockers'],
                                  'stage': 'final'}).get_json()
        detail = client.get(f"/api/matches/{match['id']}").get_json()
        assert [s['target'] for s in detail['sets']] == [25, 25, 15]
        assert detail['active_set'] == 1

    def test_round_robin_and_pool_tables(self, client):
        tid, _, _ = create_setup(client)
        created = client.post(f'/api/tournaments/{tid}/matches/round-robin').get_json()['created']
        assert len(created) == 2
        tables = client.get(f'/api/tournaments/{tid}/pools/standings').get_json()
        assert [t['pool']['name'] for t in tables] == ['Pool A', 'Pool B']

    def test_bracket_flow(self, client):
        tid, teams, _ = create_setup(client)
        first = client.post(f'/api/tournaments/{tid}/bracket/placeholders', json={'F': '2025-08-24T15:00'})
        assert first.get_json()['changed'] == 3
        again = client.post(f'/api/tournaments/{tid}/bracket/placeholders').get_json()
        assert again['message'] == 'Bracket placeholders already exist.'

        for match in client.post(f'/api/tournaments/{tid}/matches/round-robin').get_json()['created']:
            score_match(client, match['id'], [(21, 10), (21, 10)])

        bracket = client.post(f'/api/tournaments/{tid}/bracket/seed').get_json()['bracket']
        assert bracket['SF1']['team1'] == 'Aces'
        assert bracket['SF1']['team2'] == 'Spikers'
        assert bracket['SF2']['team1'] == 'Diggers'
        assert bracket['SF2']['team2'] == 'Blockers'

        score_match(client, bracket['SF1']['id'], [(25, 20), (25, 20)])
        score_match(client, bracket['SF2']['id'], [(20, 25), (20, 25)])
        final = client.get(f'/api/tournaments/{tid}/bracket').get_json()['F']
        assert (final['team1'], final['team2']) == ('Aces', 'Blockers')
        assert final['scheduled_at'] == '2025-08-24T15:00'

    def test_delete_team_removes_its_matches(self, client):
        tid, teams, _ = create_setup(client)
        client.post(f'/api/tournaments/{tid}/matches',
                    json={'team1_id': teams['Aces'], 'team2_id': teams['Blockers']})
        assert client.delete(f"/api/teams/{teams['Aces']}").status_code == 200
        assert client.get(f'/api/tournaments/{tid}/matches').get_json() == []


def read_event(stream):
    event, data = next(stream).decode().strip().split('\n')
    return event[len('event: '):], json.loads(data[len('data: '):])


class TestLiveStandings:
    """Tests for the tournament standings stream."""

    def test_standings_pushed_after_scoring(self, temp_data_dir, play_match):
        store = app_module.get_store()
        tournament = scorekeeper.create_tournament(store, 'Night League')
        teams = {}
        for name in ('Aces', 'Blockers'):
            teams[name] = scorekeeper.create_team(store, name)
            scorekeeper.add_team_to_tournament(store, tournament.id, teams[name].id)

        response = app_module.app.test_client().get(f'/api/tournaments/{tournament.id}/live')
        assert response.mimetype == 'text/event-stream'
        stream = iter(response.response)
        event, payload = read_event(stream)
        assert event == 'standings'
        assert [r['wins'] for r in payload['leaderboard']] == [0, 0]

        match = scorekeeper.schedule_match(store, tournament.id, teams['Blockers'].id, teams['Aces'].id)
        play_match(store, match.id, [(21, 12), (21, 14)])
        event, payload = read_event(stream)
        assert payload['leaderboard'][0]['name'] == 'Blockers'
        assert payload['leaderboard'][0]['match_points'] == 6
        response.close()

    def test_unknown_tournament(self, anon_client):
        assert anon_client.get('/api/tournaments/nope/live').status_code == 404
