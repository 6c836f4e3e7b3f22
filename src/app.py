"""
Flask web application for the school league admin console.
"""
import os
import secrets
from datetime import timedelta

from flask import Flask, request, jsonify, session, g

from console import AdminConsole, ensure_main_admin
from core.audit import ActivityLog, BestEffortSink, LoginLog, LOGOUT_REASONS
from core.errors import LeagueError, PersistenceError
from core.permissions import default_permissions, parse_role, schema_for_display
from core.session import SessionManager
from store import LeagueStore

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('LEAGUE_DATA_DIR', os.path.join(BASE_DIR, 'data'))

ADMIN_USERNAME = os.environ.get('LEAGUE_ADMIN_USERNAME', 'admin')
ADMIN_PASSWORD = os.environ.get('LEAGUE_ADMIN_PASSWORD')
ADMIN_DISPLAY_NAME = os.environ.get('LEAGUE_ADMIN_DISPLAY_NAME', 'Administrator')


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode() if isinstance(env_key, str) else env_key
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
# The session record carries its own 24h expiry; the cookie only needs to outlive it
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=1)

# Endpoints reachable without a login. api_session_status is polled by the client
# and must not count as user activity.
PUBLIC_ENDPOINTS = {'static', 'api_login', 'api_logout', 'api_session_status',
                    'api_permission_schema', 'api_register_team',
                    'api_public_matches', 'api_public_teams'}


def get_store() -> LeagueStore:
    return LeagueStore(DATA_DIR)


def ensure_admin_account(store: LeagueStore):
    """Seed the main admin on first use."""
    password = ADMIN_PASSWORD
    generated = False
    if not password:
        password = secrets.token_urlsafe(9)
        generated = True
    if ensure_main_admin(store, ADMIN_USERNAME, password, ADMIN_DISPLAY_NAME) and generated:
        app.logger.warning(f'Created main admin "{ADMIN_USERNAME}" with generated password: {password} '
                           f'(set LEAGUE_ADMIN_PASSWORD to choose one)')


def _find_user(store):
    def find(username):
        rows = store.select('admin_users', where={'username': username})
        return rows[0] if rows else None
    return find


def _client_info() -> dict:
    forwarded = request.headers.get('X-Forwarded-For', '')
    ip = forwarded.split(',')[0].strip() if forwarded else (request.remote_addr or 'unknown')
    return {'ip_address': ip, 'user_agent': request.headers.get('User-Agent', '')}


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _team_type_arg():
    return request.args.get('team_type') or None


def _limit_arg(default=100):
    try:
        return max(1, min(int(request.args.get('limit', default)), 1000))
    except (TypeError, ValueError):
        return default


@app.before_request
def set_request_context():
    """Build the per-request console and enforce login plus inactivity timeout."""
    if request.endpoint in ('static', None):
        return

    store = get_store()
    ensure_admin_account(store)
    sessions = SessionManager(
        session,
        _find_user(store),
        LoginLog(BestEffortSink(lambda row: store.insert('login_logs', row), 'login log')),
    )
    activity = ActivityLog(BestEffortSink(lambda row: store.insert('activity_logs', row), 'activity log'))
    g.store = store
    g.sessions = sessions
    g.console = AdminConsole(store, sessions, activity)

    if request.endpoint in PUBLIC_ENDPOINTS:
        return

    if sessions.enforce_inactivity(_client_info()) is None:
        return jsonify({'success': False, 'error': 'Session expired. Please log in again.',
                        'login_required': True}), 401

    sessions.touch()


@app.errorhandler(LeagueError)
def handle_league_error(e):
    """Map the error taxonomy onto JSON responses."""
    if isinstance(e, PersistenceError):
        app.logger.error(f'Persistence failure on {request.path}: {e.detail or e.message}')
    body = {'success': False, 'error': e.message}
    if e.status_code == 403:
        body['close_modal'] = True
    return jsonify(body), e.status_code


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@app.route('/api/login', methods=['POST'])
def api_login():
    """Authenticate and store the session record."""
    data = _payload()
    ok, result = g.sessions.login(data.get('username', ''), data.get('password', ''), _client_info())
    if not ok:
        return jsonify({'success': False, 'error': result}), 401
    session.permanent = True
    return jsonify({'success': True, 'session': result.to_dict()})


@app.route('/api/logout', methods=['POST'])
def api_logout():
    """Clear the session; reason is 'manual' unless the client timed out."""
    reason = _payload().get('reason', 'manual')
    if reason not in LOGOUT_REASONS:
        reason = 'manual'
    g.sessions.logout(reason, _client_info())
    return jsonify({'success': True})


@app.route('/api/session')
def api_session_status():
    """Report authentication and idle state without counting as activity."""
    current = g.sessions.enforce_inactivity(_client_info())
    if current is None:
        return jsonify({'authenticated': False})
    return jsonify({
        'authenticated': True,
        'session': current.to_dict(),
        'idle': g.sessions.idle().to_dict(),
    })


@app.route('/api/session/extend', methods=['POST'])
def api_extend_session():
    """'Stay logged in' from the inactivity warning."""
    idle = g.console.extend_session()
    return jsonify({'success': True, 'idle': idle.to_dict()})


@app.route('/api/permissions/schema')
def api_permission_schema():
    return jsonify(schema_for_display())


@app.route('/api/permissions/defaults/<role>')
def api_role_defaults(role):
    if parse_role(role) is None:
        return jsonify({'success': False, 'error': f'Unknown role: {role}'}), 404
    return jsonify(default_permissions(role).to_dict())


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

@app.route('/api/teams', methods=['GET', 'POST'])
def api_teams():
    if request.method == 'POST':
        row = g.console.create_team(_payload())
        return jsonify({'success': True, 'team': row}), 201
    return jsonify(g.console.list_teams(_team_type_arg()))


@app.route('/api/teams/<int:team_id>', methods=['PUT', 'DELETE'])
def api_team(team_id):
    if request.method == 'DELETE':
        g.console.delete_team(team_id)
        return jsonify({'success': True})
    row = g.console.update_team(team_id, _payload())
    return jsonify({'success': True, 'team': row})


@app.route('/api/teams/search')
def api_search_teams():
    return jsonify(g.console.search_teams(request.args.get('q', ''), _team_type_arg()))


@app.route('/api/register-team', methods=['POST'])
def api_register_team():
    """Public team registration form."""
    row = g.console.register_team(_payload())
    return jsonify({'success': True, 'team': row,
                    'message': 'Team saved successfully! You can add another team.'}), 201


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------

@app.route('/api/pools', methods=['GET', 'POST'])
def api_pools():
    if request.method == 'POST':
        data = _payload()
        row = g.console.create_pool(data.get('name', ''), data.get('team_type', ''), data.get('team_ids', []))
        return jsonify({'success': True, 'pool': row}), 201
    return jsonify(g.console.list_pools(_team_type_arg()))


@app.route('/api/pools/<int:pool_id>', methods=['PUT', 'DELETE'])
def api_pool(pool_id):
    if request.method == 'DELETE':
        removed = g.console.delete_pool(pool_id)
        return jsonify({'success': True, 'matches_removed': removed})
    data = _payload()
    row = g.console.update_pool(pool_id, data.get('name', ''), data.get('team_ids', []))
    return jsonify({'success': True, 'pool': row})


@app.route('/api/pools/<int:pool_id>/fix-match', methods=['POST'])
def api_fix_match(pool_id):
    data = _payload()
    row = g.console.fix_match(pool_id, data.get('team1_id'), data.get('team2_id'))
    return jsonify({'success': True, 'match': row}), 201


@app.route('/api/pools/<int:pool_id>/round-robin', methods=['POST'])
def api_round_robin(pool_id):
    rows = g.console.generate_round_robin(pool_id)
    return jsonify({'success': True, 'matches': rows, 'count': len(rows)}), 201


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

@app.route('/api/matches')
def api_matches():
    return jsonify(g.console.list_matches(_team_type_arg()))


@app.route('/api/matches/order', methods=['POST'])
def api_save_match_order():
    data = _payload()
    plan = g.console.save_match_order(data.get('team_type'), data.get('order', []))
    return jsonify({'success': True, 'order': [
        {'id': match_id, 'match_order': order, 'match_number': number}
        for match_id, order, number in plan
    ]})


@app.route('/api/matches/<int:match_id>/move', methods=['POST'])
def api_move_match(match_id):
    data = _payload()
    plan = g.console.move_match(data.get('team_type'), match_id, data.get('new_index', 0))
    return jsonify({'success': True, 'order': [
        {'id': mid, 'match_order': order, 'match_number': number}
        for mid, order, number in plan
    ]})


@app.route('/api/matches/<int:match_id>/start', methods=['POST'])
def api_start_match(match_id):
    return jsonify({'success': True, 'match': g.console.start_match(match_id)})


@app.route('/api/matches/<int:match_id>/complete', methods=['POST'])
def api_complete_match(match_id):
    data = _payload()
    row = g.console.complete_match(match_id, data.get('winner_id'), data.get('score'),
                                   data.get('team1_score'), data.get('team2_score'))
    return jsonify({'success': True, 'match': row})


@app.route('/api/matches/<int:match_id>', methods=['PUT', 'DELETE'])
def api_match(match_id):
    if request.method == 'DELETE':
        g.console.delete_match(match_id)
        return jsonify({'success': True})
    data = _payload()
    row = g.console.edit_match_result(match_id, data.get('winner_id'), data.get('score'),
                                      data.get('match_number'), data.get('team1_score'),
                                      data.get('team2_score'))
    return jsonify({'success': True, 'match': row})


# ---------------------------------------------------------------------------
# Users and logs
# ---------------------------------------------------------------------------

@app.route('/api/users', methods=['GET', 'POST'])
def api_users():
    if request.method == 'POST':
        return jsonify({'success': True, 'user': g.console.create_user(_payload())}), 201
    return jsonify(g.console.list_users())


@app.route('/api/users/<int:user_id>', methods=['PUT', 'DELETE'])
def api_user(user_id):
    if request.method == 'DELETE':
        g.console.delete_user(user_id)
        return jsonify({'success': True})
    return jsonify({'success': True, 'user': g.console.update_user(user_id, _payload())})


@app.route('/api/users/<int:user_id>/status', methods=['POST'])
def api_user_status(user_id):
    is_active = _payload().get('is_active', True)
    return jsonify({'success': True, 'user': g.console.toggle_user_status(user_id, is_active)})


@app.route('/api/logs/login')
def api_login_logs():
    return jsonify(g.console.login_logs(_limit_arg()))


@app.route('/api/logs/activity')
def api_activity_logs():
    return jsonify(g.console.activity_logs(_limit_arg()))


# ---------------------------------------------------------------------------
# Public pages
# ---------------------------------------------------------------------------

@app.route('/api/public/matches')
def api_public_matches():
    return jsonify(g.console.public_matches(_team_type_arg()))


@app.route('/api/public/teams')
def api_public_teams():
    return jsonify(g.console.public_teams(_team_type_arg()))


if __name__ == '__main__':
    app.run(debug=True, port=5000)
