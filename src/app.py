"""
Flask web application for VolleyTrack.
"""
import json
import os
import queue
import re
import time
from datetime import datetime
from functools import wraps

import yaml
from flask import Flask, request, jsonify, session, Response, stream_with_context

import scorekeeper
from core.errors import ValidationError, StoreError, NotFoundError, ConsistencyError
from core.rules import get_ruleset
from live import LiveView
from store import YamlStore

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('VOLLEYTRACK_DATA_DIR', os.path.join(BASE_DIR, 'data'))
USERS_FILE = os.path.join(DATA_DIR, 'users.yaml')
SETTINGS_FILE = os.path.join(DATA_DIR, 'settings.yaml')


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode()
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


app.secret_key = _get_or_create_secret_key()

_stores = {}


def get_store() -> YamlStore:
    """Store for the current DATA_DIR (one instance per directory)."""
    if DATA_DIR not in _stores:
        _stores[DATA_DIR] = YamlStore(DATA_DIR)
    return _stores[DATA_DIR]


def get_default_settings() -> dict:
    return {'ruleset': 'stage', 'live_poll_seconds': 3}


def load_settings() -> dict:
    """Load settings.yaml merged over the defaults."""
    settings = get_default_settings()
    if os.path.exists(SETTINGS_FILE):
        try:
            with open(SETTINGS_FILE, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if data:
                settings.update(data)
        except (OSError, yaml.YAMLError) as e:
            app.logger.warning(f'Failed to parse {SETTINGS_FILE}: {e}')
    env_ruleset = os.environ.get('VOLLEYTRACK_RULESET')
    if env_ruleset:
        settings['ruleset'] = env_ruleset
    return settings


def save_settings(settings: dict):
    os.makedirs(DATA_DIR, exist_ok=True)
    with open(SETTINGS_FILE, 'w', encoding='utf-8') as f:
        yaml.dump(settings, f, default_flow_style=False)


def current_rules():
    return get_ruleset(load_settings().get('ruleset'))


# ---- Admin accounts ----

def load_users() -> list:
    """Load admin registry from YAML."""
    if not os.path.exists(USERS_FILE):
        return []
    try:
        with open(USERS_FILE, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return data.get('users', []) if data else []
    except (OSError, yaml.YAMLError) as e:
        app.logger.warning(f'Failed to parse {USERS_FILE}: {e}')
        return []


def save_users(users: list):
    os.makedirs(DATA_DIR, exist_ok=True)
    with open(USERS_FILE, 'w', encoding='utf-8') as f:
        yaml.dump({'users': users}, f, default_flow_style=False)


def create_user(username: str, password: str) -> tuple:
    """Create an admin account. Returns (success, message)."""
    from werkzeug.security import generate_password_hash
    username = username.lower().strip()
    if not re.match(r'^[a-z0-9][a-z0-9-]*$', username) or len(username) < 2:
        return False, 'Username must be at least 2 characters: letters, numbers, hyphens.'
    if len(password) < 4:
        return False, 'Password must be at least 4 characters.'
    users = load_users()
    if any(u['username'] == username for u in users):
        return False, 'Username already taken.'
    users.append({
        'username': username,
        'password_hash': generate_password_hash(password),
        'created': datetime.now().isoformat()
    })
    save_users(users)
    return True, 'Account created successfully.'


def authenticate_user(username: str, password: str) -> bool:
    """Check username/password. Returns True if valid."""
    from werkzeug.security import check_password_hash
    for u in load_users():
        if u['username'] == username.lower().strip():
            return check_password_hash(u['password_hash'], password)
    return False


def is_admin() -> bool:
    return 'user' in session


def admin_required(f):
    """Reject the request with 401 unless an admin is logged in."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_admin():
            return jsonify({'error': 'Admin login required'}), 401
        return f(*args, **kwargs)
    return decorated_function


# ---- Error mapping ----

@app.errorhandler(ValidationError)
def handle_validation_error(e):
    app.logger.info(f'Rejected request: {e}')
    return jsonify({'error': str(e)}), 400


@app.errorhandler(NotFoundError)
def handle_not_found(e):
    return jsonify({'error': str(e)}), 404


@app.errorhandler(ConsistencyError)
def handle_consistency_error(e):
    app.logger.info(f'Operation abandoned: {e}')
    return jsonify({'error': str(e)}), 409


@app.errorhandler(StoreError)
def handle_store_error(e):
    app.logger.warning(f'Store error: {e}')
    return jsonify({'error': str(e)}), 500


def _json():
    return request.get_json(silent=True) or {}


def _serialize(obj):
    if hasattr(obj, 'to_row'):
        return obj.to_row()
    if hasattr(obj, '__dataclass_fields__'):
        return dict(obj.__dict__)
    return obj


# ---- Session ----

@app.route('/login', methods=['POST'])
def login():
    data = _json()
    username = data.get('username', '')
    if not authenticate_user(username, data.get('password', '')):
        return jsonify({'error': 'Invalid username or password'}), 401
    session['user'] = username.lower().strip()
    return jsonify({'success': True, 'user': session['user']})


@app.route('/logout', methods=['POST'])
def logout():
    session.pop('user', None)
    return jsonify({'success': True})


@app.route('/api/session')
def api_session():
    return jsonify({'user': session.get('user'), 'is_admin': is_admin()})


@app.route('/api/settings', methods=['GET', 'POST'])
def api_settings():
    if request.method == 'GET':
        return jsonify(load_settings())
    if not is_admin():
        return jsonify({'error': 'Admin login required'}), 401
    data = _json()
    settings = load_settings()
    if 'ruleset' in data:
        try:
            get_ruleset(data['ruleset'])
        except KeyError as e:
            return jsonify({'error': str(e.args[0])}), 400
        settings['ruleset'] = data['ruleset']
    if 'live_poll_seconds' in data:
        try:
            settings['live_poll_seconds'] = int(data['live_poll_seconds'])
        except (TypeError, ValueError):
            raise ValidationError('live_poll_seconds must be an integer')
    save_settings(settings)
    return jsonify(settings)


# ---- Teams ----

@app.route('/api/teams', methods=['GET'])
def api_list_teams():
    return jsonify([_serialize(t) for t in scorekeeper.list_teams(get_store())])


@app.route('/api/teams', methods=['POST'])
@admin_required
def api_create_team():
    team = scorekeeper.create_team(get_store(), _json().get('name'))
    return jsonify(_serialize(team)), 201


@app.route('/api/teams/<team_id>', methods=['DELETE'])
@admin_required
def api_delete_team(team_id):
    removed = scorekeeper.delete_team(get_store(), team_id)
    return jsonify({'success': True, 'removed': removed})


# ---- Tournaments ----

@app.route('/api/tournaments', methods=['GET'])
def api_list_tournaments():
    return jsonify([_serialize(t) for t in scorekeeper.list_tournaments(get_store())])


@app.route('/api/tournaments', methods=['POST'])
@admin_required
def api_create_tournament():
    data = _json()
    tournament = scorekeeper.create_tournament(get_store(), data.get('name'),
                                               data.get('start_date'), data.get('end_date'))
    return jsonify(_serialize(tournament)), 201


@app.route('/api/tournaments/by-slug/<slug>')
def api_tournament_by_slug(slug):
    tournament = scorekeeper.find_tournament_by_slug(get_store(), slug)
    if tournament is None:
        return jsonify({'error': f'No tournament with slug {slug}'}), 404
    return jsonify(_serialize(tournament))


@app.route('/api/tournaments/<tid>', methods=['DELETE'])
@admin_required
def api_delete_tournament(tid):
    removed = scorekeeper.delete_tournament(get_store(), tid)
    return jsonify({'success': True, 'removed': removed})


@app.route('/api/tournaments/<tid>/teams', methods=['POST'])
@admin_required
def api_add_tournament_team(tid):
    row = scorekeeper.add_team_to_tournament(get_store(), tid, _json().get('team_id'))
    return jsonify(row), 201


@app.route('/api/tournaments/<tid>/teams/<team_id>', methods=['DELETE'])
@admin_required
def api_remove_tournament_team(tid, team_id):
    scorekeeper.remove_team_from_tournament(get_store(), tid, team_id)
    return jsonify({'success': True})


# ---- Pools ----

@app.route('/api/tournaments/<tid>/pools', methods=['POST'])
@admin_required
def api_create_pool(tid):
    data = _json()
    pool = scorekeeper.create_pool(get_store(), tid, data.get('name'), data.get('order_index'))
    return jsonify(_serialize(pool)), 201


@app.route('/api/pools/<pool_id>', methods=['DELETE'])
@admin_required
def api_delete_pool(pool_id):
    scorekeeper.delete_pool(get_store(), pool_id)
    return jsonify({'success': True})


@app.route('/api/pools/<pool_id>/teams', methods=['POST'])
@admin_required
def api_add_pool_team(pool_id):
    row = scorekeeper.add_team_to_pool(get_store(), pool_id, _json().get('team_id'))
    return jsonify(row), 201


@app.route('/api/pools/<pool_id>/teams/<team_id>', methods=['DELETE'])
@admin_required
def api_remove_pool_team(pool_id, team_id):
    scorekeeper.remove_team_from_pool(get_store(), pool_id, team_id)
    return jsonify({'success': True})


# ---- Matches & scoring ----

@app.route('/api/tournaments/<tid>/matches', methods=['GET'])
def api_list_matches(tid):
    snapshot = scorekeeper.load_snapshot(get_store(), tid)
    return jsonify([_serialize(m) for m in snapshot.matches])


@app.route('/api/tournaments/<tid>/matches', methods=['POST'])
@admin_required
def api_schedule_match(tid):
    data = _json()
    match = scorekeeper.schedule_match(
        get_store(), tid, data.get('team1_id'), data.get('team2_id'),
        scheduled_at=data.get('scheduled_at'), stage=data.get('stage') or 'pool',
        pool_id=data.get('pool_id'),
    )
    return jsonify(_serialize(match)), 201


@app.route('/api/tournaments/<tid>/matches/round-robin', methods=['POST'])
@admin_required
def api_generate_round_robin(tid):
    created = scorekeeper.generate_round_robin(get_store(), tid)
    return jsonify({'created': [_serialize(m) for m in created]}), 201


@app.route('/api/matches/<match_id>')
def api_match_detail(match_id):
    return jsonify(scorekeeper.match_detail(get_store(), match_id, current_rules()))


@app.route('/api/sets/<set_id>/points', methods=['POST'])
@admin_required
def api_adjust_point(set_id):
    data = _json()
    try:
        side = int(data.get('side', 0))
        delta = int(data.get('delta', 0))
    except (TypeError, ValueError):
        raise ValidationError('side and delta must be integers')
    updated = scorekeeper.adjust_point(get_store(), set_id, side, delta)
    return jsonify(_serialize(updated))


@app.route('/api/matches/<match_id>/complete', methods=['POST'])
@admin_required
def api_complete_match(match_id):
    match = scorekeeper.complete_match(get_store(), match_id)
    return jsonify(_serialize(match))


@app.route('/api/matches/<match_id>', methods=['DELETE'])
@admin_required
def api_delete_match(match_id):
    scorekeeper.delete_match(get_store(), match_id)
    return jsonify({'success': True})


@app.route('/api/matches/<match_id>/teams', methods=['POST', 'DELETE'])
@admin_required
def api_match_teams(match_id):
    if request.method == 'DELETE':
        match = scorekeeper.clear_match_teams(get_store(), match_id)
    else:
        data = _json()
        match = scorekeeper.assign_match_teams(get_store(), match_id, data.get('team1_id'), data.get('team2_id'))
    return jsonify(_serialize(match))


# ---- Standings & bracket ----

@app.route('/api/tournaments/<tid>/leaderboard')
def api_leaderboard(tid):
    return jsonify(scorekeeper.leaderboard(get_store(), tid, current_rules()))


@app.route('/api/tournaments/<tid>/pools/standings')
def api_pool_standings(tid):
    tables = scorekeeper.pool_leaderboards(get_store(), tid, current_rules())
    return jsonify([{'pool': _serialize(t['pool']), 'standings': t['standings']} for t in tables])


@app.route('/api/tournaments/<tid>/bracket')
def api_bracket(tid):
    return jsonify(scorekeeper.bracket_view(get_store(), tid))


@app.route('/api/tournaments/<tid>/bracket/placeholders', methods=['POST'])
@admin_required
def api_bracket_placeholders(tid):
    times = {k: v for k, v in _json().items() if k in ('SF1', 'SF2', 'F') and v}
    plan = scorekeeper.create_bracket_placeholders(get_store(), tid, times)
    if not plan:
        return jsonify({'success': True, 'changed': 0, 'message': 'Bracket placeholders already exist.'})
    return jsonify({'success': True, 'changed': len(plan)})


@app.route('/api/tournaments/<tid>/bracket/seed', methods=['POST'])
@admin_required
def api_bracket_seed(tid):
    plan = scorekeeper.seed_semifinals(get_store(), tid, current_rules())
    return jsonify({'success': True, 'changed': len(plan), 'bracket': scorekeeper.bracket_view(get_store(), tid)})


@app.route('/api/tournaments/<tid>/bracket/advance', methods=['POST'])
@admin_required
def api_bracket_advance(tid):
    plan = scorekeeper.update_final_from_semis(get_store(), tid)
    return jsonify({'success': True, 'changed': len(plan), 'bracket': scorekeeper.bracket_view(get_store(), tid)})


# ---- Live updates ----

@app.route('/api/live-stream')
def api_live_stream():
    """Server-Sent Events stream that notifies clients when match or set data changes."""
    store = get_store()
    interval = max(1, int(load_settings().get('live_poll_seconds', 3)))

    def generate():
        yield "event: connected\ndata: ok\n\n"

        last_mtimes = store.mtimes()
        heartbeat_counter = 0

        while True:
            time.sleep(interval)
            heartbeat_counter += interval

            current_mtimes = store.mtimes()
            changed = [c for c in ('matches', 'sets') if current_mtimes[c] != last_mtimes[c]]
            last_mtimes = current_mtimes
            for collection in changed:
                yield f"event: {collection}\ndata: {time.time()}\n\n"

            if heartbeat_counter >= 15:
                heartbeat_counter = 0
                yield ": heartbeat\n\n"

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
        },
    )



def _sse(event, payload):
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@app.route('/api/tournaments/<tid>/live')
def api_tournament_live(tid):
    """Server-Sent Events stream pushing recomputed standings after every match or set change."""
    store = get_store()
    scorekeeper.get_tournament(store, tid)
    interval = max(1, int(load_settings().get('live_poll_seconds', 3)))
    updates = queue.Queue()
    view = LiveView(tid, current_rules(), on_change=lambda: updates.put(True))

    def generate():
        view.refresh(store)
        view.attach(store)
        last_mtimes = store.mtimes()
        idle = 0
        try:
            yield _sse('standings', view.summary())
            while True:
                try:
                    updates.get(timeout=interval)
                except queue.Empty:
                    idle += interval
                    current_mtimes = store.mtimes()
                    if current_mtimes != last_mtimes:
                        # Written by another process; no event reached this one
                        last_mtimes = current_mtimes
                        view.refresh(store)
                        idle = 0
                        yield _sse('standings', view.summary())
                    elif idle >= 15:
                        idle = 0
                        yield ": heartbeat\n\n"
                    continue
                while not updates.empty():
                    updates.get_nowait()
                last_mtimes = store.mtimes()
                idle = 0
                yield _sse('standings', view.summary())
        finally:
            view.detach()

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
        },
    )


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG') == '1', port=int(os.environ.get('PORT', 5000)))
