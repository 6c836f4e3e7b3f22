"""
Tests for the HTTP API: login, inactivity, permissions and the main flows.
"""
import pytest
import sys
import os
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.dirname(__file__))
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

from app import app
from core.session import AUTH_KEY, LAST_ACTIVITY_KEY
from league_helpers import ADMIN_PASSWORD, make_team
from store import LeagueStore


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point the app at an empty data directory with a known admin password."""
    import app as app_module

    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'ADMIN_USERNAME', 'admin')
    monkeypatch.setattr(app_module, 'ADMIN_PASSWORD', ADMIN_PASSWORD)
    return tmp_path


@pytest.fixture
def client(data_dir):
    """Create a test client (unauthenticated by default)."""
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def admin_client(client):
    """Test client logged in as the main admin."""
    resp = client.post('/api/login', json={'username': 'admin', 'password': ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client


def login_as(client, username, password):
    return client.post('/api/login', json={'username': username, 'password': password})


class TestLogin:

    def test_login_success(self, client):
        """Valid credentials return the session record."""
        resp = login_as(client, 'admin', ADMIN_PASSWORD)
        data = resp.get_json()
        assert data['success'] is True
        assert data['session']['role'] == 'admin'
        assert data['session']['authenticated'] is True

    def test_login_failure(self, client, data_dir):
        """Wrong password is rejected and logged as a failed attempt."""
        resp = login_as(client, 'admin', 'nope')
        assert resp.status_code == 401
        assert resp.get_json() == {'success': False, 'error': 'Invalid username or password'}
        rows = LeagueStore(str(data_dir)).select('login_logs')
        assert len(rows) == 1
        assert rows[0]['success'] is False

    def test_session_status_unauthenticated(self, client):
        assert client.get('/api/session').get_json() == {'authenticated': False}

    def test_session_status_authenticated(self, admin_client):
        data = admin_client.get('/api/session').get_json()
        assert data['authenticated'] is True
        assert data['idle']['state'] == 'active'

    def test_logout(self, admin_client, data_dir):
        resp = admin_client.post('/api/logout', json={'reason': 'manual'})
        assert resp.get_json()['success'] is True
        assert admin_client.get('/api/teams').status_code == 401
        rows = LeagueStore(str(data_dir)).select('login_logs', where={'action': 'logout'})
        assert rows[0]['reason'] == 'manual'


class TestAccessControl:

    def test_protected_route_requires_login(self, client):
        """Admin API returns 401 without a session."""
        resp = client.get('/api/teams')
        assert resp.status_code == 401
        assert resp.get_json()['login_required'] is True

    def test_permission_denied_closes_modal(self, admin_client, client):
        admin_client.post('/api/users', json={'username': 'watcher', 'password': 'pass1234',
                                              'role': 'viewer'})
        admin_client.post('/api/logout')
        login_as(client, 'watcher', 'pass1234')
        resp = client.post('/api/teams', json=make_team())
        assert resp.status_code == 403
        data = resp.get_json()
        assert data['success'] is False
        assert data['close_modal'] is True
        assert client.get('/api/teams').status_code == 200

    def test_public_endpoints_open(self, client):
        assert client.get('/api/public/matches').status_code == 200
        assert client.get('/api/public/teams').status_code == 200
        assert client.get('/api/permissions/schema').status_code == 200

    def test_role_defaults(self, client, admin_client):
        data = admin_client.get('/api/permissions/defaults/editor').get_json()
        assert data['pools']['fixMatch'] is True
        assert admin_client.get('/api/permissions/defaults/coach').status_code == 404


class TestInactivity:
    """Auto-logout is driven by the last-activity marker in the session cookie."""

    def test_idle_session_rejected(self, admin_client, data_dir):
        with admin_client.session_transaction() as sess:
            sess[LAST_ACTIVITY_KEY] = time.time() - 11 * 60
        resp = admin_client.get('/api/teams')
        assert resp.status_code == 401
        assert resp.get_json()['error'] == 'Session expired. Please log in again.'
        rows = LeagueStore(str(data_dir)).select('login_logs', where={'action': 'logout'})
        assert rows[0]['reason'] == 'timeout'

    def test_status_poll_does_not_count_as_activity(self, admin_client):
        marker = time.time() - 5 * 60
        with admin_client.session_transaction() as sess:
            sess[LAST_ACTIVITY_KEY] = marker
        admin_client.get('/api/session')
        with admin_client.session_transaction() as sess:
            assert sess[LAST_ACTIVITY_KEY] == marker

    def test_request_resets_idle_timer(self, admin_client):
        marker = time.time() - 5 * 60
        with admin_client.session_transaction() as sess:
            sess[LAST_ACTIVITY_KEY] = marker
        admin_client.get('/api/teams')
        with admin_client.session_transaction() as sess:
            assert sess[LAST_ACTIVITY_KEY] > marker

    def test_warning_state_reported(self, admin_client):
        with admin_client.session_transaction() as sess:
            sess[LAST_ACTIVITY_KEY] = time.time() - 9 * 60 - 30
        data = admin_client.get('/api/session').get_json()
        assert data['idle']['state'] == 'warning'
        data = admin_client.post('/api/session/extend').get_json()
        assert data['idle']['state'] == 'active'

    def test_expired_session_record(self, admin_client):
        with admin_client.session_transaction() as sess:
            record = dict(sess[AUTH_KEY])
            record['expiresAt'] = time.time() - 1
            sess[AUTH_KEY] = record
        assert admin_client.get('/api/teams').status_code == 401


class TestLeagueFlow:
    """End-to-end flow: teams, pool, fixed matches, ordering and results."""

    def test_full_flow(self, admin_client):
        ids = []
        for i in range(1, 4):
            resp = admin_client.post('/api/teams', json=make_team(f'School {i}'))
            assert resp.status_code == 201
            ids.append(str(resp.get_json()['team']['id']))

        resp = admin_client.post('/api/pools', json={'name': 'Pool A', 'team_type': 'male', 'team_ids': ids})
        pool_id = resp.get_json()['pool']['id']
        assert admin_client.get('/api/pools?team_type=male').get_json()[0]['team_ids'] == ids

        resp = admin_client.post(f'/api/pools/{pool_id}/round-robin')
        assert resp.get_json()['count'] == 3
        upcoming = admin_client.get('/api/matches?team_type=male').get_json()['upcoming']
        assert [m['display_number'] for m in upcoming] == ['-', '-', '-']

        order = [m['id'] for m in reversed(upcoming)]
        resp = admin_client.post('/api/matches/order', json={'team_type': 'male', 'order': order})
        assert [o['match_number'] for o in resp.get_json()['order']] == [1, 2, 3]

        first = order[0]
        resp = admin_client.post(f'/api/matches/{first}/complete',
                                 json={'winner_id': ids[1], 'team1_score': 45, 'team2_score': 32})
        assert resp.get_json()['match']['score'] == '45 - 32'

        lists = admin_client.get('/api/matches?team_type=male').get_json()
        assert [m['id'] for m in lists['past']] == [first]
        assert len(lists['upcoming']) == 2

        resp = admin_client.delete(f'/api/pools/{pool_id}')
        assert resp.get_json()['matches_removed'] == 3

    def test_validation_error(self, admin_client):
        data = make_team()
        data['players'] = data['players'][:5]
        resp = admin_client.post('/api/teams', json=data)
        assert resp.status_code == 400
        assert 'exactly 12 players' in resp.get_json()['error']

    def test_missing_match(self, admin_client):
        resp = admin_client.post('/api/matches/99/complete', json={'winner_id': '1', 'score': '1 - 0'})
        assert resp.status_code == 404

    def test_public_registration(self, client):
        resp = client.post('/api/register-team', json=make_team('Walk-in School', 'female'))
        assert resp.status_code == 201
        teams = client.get('/api/public/teams?team_type=female').get_json()
        assert [t['school_name'] for t in teams] == ['Walk-in School']
        assert 'players' not in teams[0]

    def test_pool_rejects_other_division(self, admin_client):
        boys = admin_client.post('/api/teams', json=make_team('Boys School')).get_json()['team']
        girls = admin_client.post('/api/teams', json=make_team('Girls School', 'female')).get_json()['team']
        resp = admin_client.post('/api/pools', json={'name': 'Pool A', 'team_type': 'male',
                                                   'team_ids': [str(boys['id']), str(girls['id']), '999']})
        assert resp.status_code == 400
        assert resp.get_json()['success'] is False
        assert admin_client.get('/api/pools').get_json() == []

    def test_move_with_bad_position(self, admin_client):
        ids = [str(admin_client.post('/api/teams', json=make_team(f'School {i}')).get_json()['team']['id'])
               for i in range(1, 3)]
        pool = admin_client.post('/api/pools', json={'name': 'Pool A', 'team_type': 'male',
                                                   'team_ids': ids}).get_json()['pool']
        match = admin_client.post(f'/api/pools/{pool["id"]}/fix-match',
                                  json={'team1_id': ids[0], 'team2_id': ids[1]}).get_json()['match']
        for position in (None, 'abc'):
            resp = admin_client.post(f'/api/matches/{match["id"]}/move',
                                     json={'team_type': 'male', 'new_index': position})
            assert resp.status_code == 400
            assert resp.get_json()['error'] == 'Invalid position'


class TestUsersApi:

    def test_main_admin_protected(self, admin_client):
        resp = admin_client.delete('/api/users/1')
        assert resp.status_code == 409
        assert resp.get_json()['error'] == 'Cannot delete the main admin'
        resp = admin_client.post('/api/users/1/status', json={'is_active': False})
        assert resp.status_code == 409
        resp = admin_client.put('/api/users/1', json={'role': 'viewer'})
        assert resp.status_code == 409

    def test_status_string_rejected(self, admin_client):
        """A string "false" does not toggle anything."""
        user = admin_client.post('/api/users', json={'username': 'ravi', 'password': 'pass1234'}).get_json()['user']
        resp = admin_client.post(f'/api/users/{user["id"]}/status', json={'is_active': 'false'})
        assert resp.status_code == 400
        users = {u['username']: u for u in admin_client.get('/api/users').get_json()}
        assert users['ravi']['is_active'] is True

    def test_users_list_hides_hashes(self, admin_client):
        users = admin_client.get('/api/users').get_json()
        assert users[0]['username'] == 'admin'
        assert 'password_hash' not in users[0]

    def test_logs(self, admin_client):
        admin_client.post('/api/teams', json=make_team())
        logins = admin_client.get('/api/logs/login').get_json()
        assert logins[0]['action'] == 'login'
        activity = admin_client.get('/api/logs/activity?limit=1').get_json()
        assert len(activity) == 1
        assert activity[0]['module'] == 'teams'
