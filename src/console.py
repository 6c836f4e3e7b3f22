"""
Admin console operations for teams, pools, matches and users.

Every mutating operation follows the same order: permission check,
validation, store calls, audit entry, state refresh. Validation and
permission failures therefore never reach the store, and audit failures
never undo a completed store call.
"""
import logging
import re

from werkzeug.security import generate_password_hash

from core import matches as match_rules
from core.audit import ActivityLog
from core.errors import (AuthenticationError, IntegrityGuardError, NotFound, PermissionDenied,
                         PersistenceError, ValidationError)
from core.models import TEAM_TYPES, Match, Pool, Team, public_user
from core.permissions import (Action, Module, PermissionSet, Role, default_permissions,
                              parse_role)

logger = logging.getLogger(__name__)

MAIN_ADMIN_ID = 1
USERNAME_RE = re.compile(r'^[a-z0-9][a-z0-9_.-]*$')
MIN_SEARCH_LENGTH = 2
PUBLIC_UPCOMING_LIMIT = 5


class AdminState:
    """In-memory copies of each table, refreshed wholesale from the store."""

    ENTITIES = {
        'teams': 'teams',
        'pools': 'pools',
        'matches': 'matches',
        'users': 'admin_users',
    }

    def __init__(self, store):
        self.store = store
        self.teams = []
        self.pools = []
        self.matches = []
        self.users = []
        self._loaded = set()

    def refresh(self, entity):
        table = self.ENTITIES[entity]
        order_by = 'match_order' if entity == 'matches' else 'created_at'
        rows = self.store.select(table, order_by=order_by)
        if entity == 'teams':
            self.teams = rows
        elif entity == 'pools':
            self.pools = [Pool.from_dict(r) for r in rows]
        elif entity == 'matches':
            self.matches = [Match.from_dict(r) for r in rows]
        else:
            self.users = rows
        self._loaded.add(entity)
        return rows

    def ensure(self, *entities):
        for entity in entities:
            if entity not in self._loaded:
                self.refresh(entity)

    def team(self, team_id):
        self.ensure('teams')
        for team in self.teams:
            if str(team.get('id')) == str(team_id):
                return team
        return None

    def team_name(self, team_id, default='Unknown'):
        team = self.team(team_id)
        return team['school_name'] if team else default

    def pool(self, pool_id):
        self.ensure('pools')
        for pool in self.pools:
            if str(pool.id) == str(pool_id):
                return pool
        return None

    def pool_of_team(self, team_id):
        self.ensure('pools')
        for pool in self.pools:
            if pool.has_team(team_id):
                return pool
        return None

    def match(self, match_id):
        self.ensure('matches')
        for match in self.matches:
            if str(match.id) == str(match_id):
                return match
        return None


def ensure_main_admin(store, username, password, display_name='Administrator'):
    """Seed the main admin (id 1) when no users exist yet. Returns True if seeded."""
    if store.count('admin_users') > 0:
        return False
    row = store.insert('admin_users', {
        'username': username.strip().lower(),
        'password_hash': generate_password_hash(password),
        'display_name': display_name,
        'role': Role.ADMIN.value,
        'permissions': default_permissions(Role.ADMIN).to_dict(),
        'is_active': True,
    })
    if row['id'] != MAIN_ADMIN_ID:
        logger.warning(f"Main admin seeded with id {row['id']}; id {MAIN_ADMIN_ID} is protected")
    logger.info(f"Seeded main admin user {row['username']}")
    return True


def _require_team_type(team_type):
    if team_type not in TEAM_TYPES:
        raise ValidationError(f'Team type must be one of: {", ".join(TEAM_TYPES)}.')
    return team_type


def _int_id(value, label='id'):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {label}: {value!r}')


class AdminConsole:
    def __init__(self, store, sessions, activity: ActivityLog):
        self.store = store
        self.sessions = sessions
        self.activity = activity
        self.state = AdminState(store)

    # ---- session helpers ------------------------------------------------

    def actor(self):
        session = self.sessions.current()
        if session is None:
            raise AuthenticationError('Please log in.')
        return session

    def require(self, module, action):
        session = self.actor()
        if not session.allows(module, action):
            raise PermissionDenied()
        return session

    def _log(self, actor, module, action, entity_id, description, details=None):
        self.activity.record(actor, getattr(module, 'value', module), action, entity_id,
                             description, details)

    def extend_session(self):
        session = self.actor()
        self.sessions.touch()
        self._log(session, 'session', 'extend', None, 'Extended session after inactivity warning')
        return self.sessions.idle()

    # ---- teams ----------------------------------------------------------

    def list_teams(self, team_type=None):
        self.require(Module.TEAMS, Action.VIEW)
        rows = self.state.refresh('teams')
        if team_type:
            rows = [t for t in rows if t.get('team_type') == team_type]
        return rows

    def _insert_team(self, data, actor):
        team = Team.from_dict(data)
        team.validate()
        row = self.store.insert('teams', team.to_row())
        self._log(actor, Module.TEAMS, 'create', row['id'], f'Added team: {team.school_name}')
        self.state.refresh('teams')
        return row

    def create_team(self, data):
        actor = self.require(Module.TEAMS, Action.ADD)
        return self._insert_team(data, actor)

    def register_team(self, data):
        """Public registration form: no login required."""
        return self._insert_team(data, None)

    def update_team(self, team_id, data):
        actor = self.require(Module.TEAMS, Action.EDIT)
        team = Team.from_dict(data)
        team.validate()
        row = self.store.update('teams', team_id, team.to_row())
        self._log(actor, Module.TEAMS, 'update', team_id, f'Updated team: {team.school_name or "Unknown"}')
        self.state.refresh('teams')
        return row

    def delete_team(self, team_id):
        actor = self.require(Module.TEAMS, Action.DELETE)
        if not self.store.delete('teams', team_id):
            raise NotFound(f'Team {team_id} not found')
        self._log(actor, Module.TEAMS, 'delete', team_id, 'Deleted team')
        self.state.refresh('teams')

    def search_teams(self, query, team_type=None):
        """Teams whose school or coach name contains query, selected type first."""
        self.require(Module.TEAMS, Action.VIEW)
        if not query or len(query.strip()) < MIN_SEARCH_LENGTH:
            return []
        needle = query.strip().lower()
        self.state.ensure('teams', 'pools', 'matches')
        hits = [t for t in self.state.teams
                if needle in str(t.get('school_name', '')).lower()
                or needle in str(t.get('coach_name', '')).lower()]
        hits.sort(key=lambda t: 0 if t.get('team_type') == team_type else 1)

        results = []
        for team in hits:
            team_id = str(team['id'])
            pool = self.state.pool_of_team(team_id)
            own = [m for m in self.state.matches if m.involves(team_id)]
            results.append({
                'team': team,
                'pool_name': pool.name if pool else None,
                'upcoming': [{
                    'match_id': m.id,
                    'match_number': match_rules.display_number(m),
                    'opponent': self.state.team_name(m.opponent_of(team_id), 'TBD'),
                } for m in own if m.status == match_rules.UPCOMING],
                'past': [{
                    'match_id': m.id,
                    'match_number': match_rules.display_number(m),
                    'opponent': self.state.team_name(m.opponent_of(team_id)),
                    'result': 'WON' if m.winner_id == team_id else 'LOST',
                    'score': m.score or '0-0',
                } for m in own if m.status == match_rules.COMPLETED],
            })
        return results

    # ---- pools ----------------------------------------------------------

    def list_pools(self, team_type=None):
        self.require(Module.POOLS, Action.VIEW)
        self.state.refresh('pools')
        return [self._pool_view(p) for p in self.state.pools
                if not team_type or p.team_type == team_type]

    def _pool_view(self, pool):
        row = {'id': pool.id, **pool.to_row()}
        row['teams'] = [{'id': tid, 'school_name': self.state.team_name(tid)}
                        for tid in pool.team_ids if self.state.team(tid)]
        return row

    def _check_pool_teams(self, pool):
        """Every team in a pool must exist and belong to the pool's division."""
        self.state.refresh('teams')
        for team_id in pool.team_ids:
            team = self.state.team(team_id)
            if team is None:
                raise ValidationError(f'Team {team_id} does not exist.')
            if team.get('team_type') != pool.team_type:
                raise ValidationError(f"{team['school_name']} is not a {pool.team_type} team.")

    def create_pool(self, name, team_type, team_ids):
        actor = self.require(Module.POOLS, Action.ADD)
        pool = Pool.from_dict({'name': name, 'team_type': team_type, 'team_ids': team_ids})
        pool.validate()
        self._check_pool_teams(pool)
        row = self.store.insert('pools', pool.to_row())
        self._log(actor, Module.POOLS, 'create', row['id'], f'Created pool: {pool.name}')
        self.state.refresh('pools')
        return row

    def update_pool(self, pool_id, name, team_ids):
        actor = self.require(Module.POOLS, Action.EDIT)
        existing = Pool.from_dict(self.store.get('pools', pool_id))
        pool = Pool.from_dict({'name': name, 'team_type': existing.team_type, 'team_ids': team_ids})
        pool.validate()
        self._check_pool_teams(pool)
        row = self.store.update('pools', pool_id, {'name': pool.name, 'team_ids': pool.team_ids})
        self._log(actor, Module.POOLS, 'update', pool_id, f'Updated pool: {pool.name}')
        self.state.refresh('pools')
        return row

    def delete_pool(self, pool_id):
        """Delete the pool's matches first, then the pool row."""
        actor = self.require(Module.POOLS, Action.DELETE)
        pool = Pool.from_dict(self.store.get('pools', pool_id))
        removed = self.store.delete_where('matches', {'pool_id': pool.id})
        self.store.delete('pools', pool.id)
        self._log(actor, Module.POOLS, 'delete', pool.id, f'Deleted pool: {pool.name}',
                  {'matches_removed': removed})
        self.state.refresh('matches')
        self.state.refresh('pools')
        return removed

    # ---- matches --------------------------------------------------------

    def _match_view(self, match):
        pool = self.state.pool(match.pool_id)
        row = {'id': match.id, **match.to_row()}
        row.update({
            'display_number': match_rules.display_number(match),
            'team1_name': self.state.team_name(match.team1_id),
            'team2_name': self.state.team_name(match.team2_id),
            'pool_name': pool.name if pool else 'Unknown Pool',
            'winner_name': self.state.team_name(match.winner_id) if match.winner_id else None,
            'created_at': match.created_at,
            'updated_at': match.updated_at,
        })
        return row

    def _match_lists(self, team_type):
        self.state.refresh('matches')
        self.state.ensure('teams', 'pools')
        return {
            'upcoming': [self._match_view(m) for m in
                         match_rules.upcoming_matches(self.state.matches, team_type)],
            'past': [self._match_view(m) for m in
                     match_rules.past_matches(self.state.matches, team_type)],
        }

    def list_matches(self, team_type=None):
        self.require(Module.MATCHES, Action.VIEW)
        return self._match_lists(team_type)

    def _get_match(self, match_id):
        return Match.from_dict(self.store.get('matches', match_id))

    def fix_match(self, pool_id, team1_id, team2_id):
        actor = self.require(Module.POOLS, Action.FIX_MATCH)
        pool = Pool.from_dict(self.store.get('pools', pool_id))
        existing = [Match.from_dict(r) for r in self.store.select('matches', where={'team_type': pool.team_type})]
        row = self.store.insert('matches', match_rules.new_fixed_match(pool, team1_id, team2_id, existing))
        self._log(actor, Module.MATCHES, 'create', row['id'],
                  f'Created match: {self.state.team_name(team1_id, "Team 1")} vs '
                  f'{self.state.team_name(team2_id, "Team 2")}')
        self.state.refresh('matches')
        return row

    def generate_round_robin(self, pool_id):
        actor = self.require(Module.POOLS, Action.FIX_MATCH)
        pool = Pool.from_dict(self.store.get('pools', pool_id))
        existing = [Match.from_dict(r) for r in self.store.select('matches', where={'team_type': pool.team_type})]
        rows = match_rules.round_robin_rows(pool, existing)
        if not rows:
            raise ValidationError('No matches to create')
        created = self.store.insert_many('matches', rows)
        self._log(actor, Module.MATCHES, 'create', pool.id,
                  f'Created {len(created)} round-robin matches for pool: {pool.name}')
        self.state.refresh('matches')
        return created

    def save_match_order(self, team_type, ordered_ids):
        """Persist a new upcoming order and renumber after the completed matches.

        Rows are updated one by one; a failure part way leaves the earlier
        rows updated and is reported once at the end.
        """
        actor = self.require(Module.MATCHES, Action.REORDER)
        _require_team_type(team_type)
        ordered_ids = [_int_id(i, 'match id') for i in ordered_ids or []]
        current = [Match.from_dict(r) for r in self.store.select('matches', where={'team_type': team_type})]
        plan = match_rules.plan_order_save(current, ordered_ids, team_type)

        failed = []
        for match_id, order, number in plan:
            try:
                self.store.update('matches', match_id, {'match_order': order, 'match_number': number})
            except (PersistenceError, NotFound) as e:
                logger.error(f'Failed to update order of match {match_id}: {e}')
                failed.append(match_id)
        self.state.refresh('matches')
        if failed:
            raise PersistenceError('Failed to save order')
        self._log(actor, Module.MATCHES, 'reorder', None, 'Reordered upcoming matches',
                  {'team_type': team_type, 'order': ordered_ids})
        return plan

    def move_match(self, team_type, match_id, new_index):
        """Move one upcoming match to a new position and save the resulting order."""
        self.require(Module.MATCHES, Action.REORDER)
        _require_team_type(team_type)
        current = [Match.from_dict(r) for r in self.store.select('matches', where={'team_type': team_type})]
        ids = [m.id for m in match_rules.upcoming_matches(current, team_type)]
        return self.save_match_order(team_type, match_rules.reorder(ids, _int_id(match_id, 'match id'), new_index))

    def start_match(self, match_id):
        actor = self.require(Module.MATCHES, Action.COMPLETE)
        match = self._get_match(match_id)
        row = self.store.update('matches', match.id, match_rules.start_changes(match))
        self._log(actor, Module.MATCHES, 'update', match.id, 'Started match')
        self.state.refresh('matches')
        return row

    def complete_match(self, match_id, winner_id, score=None, team1_score=None, team2_score=None):
        actor = self.require(Module.MATCHES, Action.COMPLETE)
        match = self._get_match(match_id)
        changes = match_rules.completion_changes(
            match, winner_id, match_rules.resolve_score(score, team1_score, team2_score))
        row = self.store.update('matches', match.id, changes)
        self._log(actor, Module.MATCHES, 'update', match.id,
                  f"Completed match - Winner: {self.state.team_name(changes['winner_id'])}, "
                  f"Score: {changes['score']}")
        self.state.refresh('matches')
        return row

    def edit_match_result(self, match_id, winner_id, score=None, match_number=None,
                          team1_score=None, team2_score=None):
        actor = self.require(Module.MATCHES, Action.EDIT)
        match = self._get_match(match_id)
        changes = match_rules.result_edit_changes(
            match, winner_id, match_rules.resolve_score(score, team1_score, team2_score), match_number)
        row = self.store.update('matches', match.id, changes)
        number = changes.get('match_number', match.match_number)
        self._log(actor, Module.MATCHES, 'update', match.id,
                  f"Updated match #{number} result: {changes['score']}")
        self.state.refresh('matches')
        return row

    def delete_match(self, match_id):
        actor = self.require(Module.MATCHES, Action.DELETE)
        if not self.store.delete('matches', match_id):
            raise NotFound(f'Match {match_id} not found')
        self._log(actor, Module.MATCHES, 'delete', match_id, 'Deleted match')
        self.state.refresh('matches')

    # ---- users ----------------------------------------------------------

    def list_users(self):
        self.require(Module.USERS, Action.VIEW)
        rows = self.state.refresh('users')
        return [public_user(r) for r in sorted(rows, key=lambda r: str(r.get('created_at', '')), reverse=True)]

    def create_user(self, data):
        actor = self.require(Module.USERS, Action.ADD)
        username = str(data.get('username') or '').strip().lower()
        password = data.get('password') or ''
        if len(username) < 2 or not USERNAME_RE.match(username):
            raise ValidationError('Username must be at least 2 characters: letters, numbers, dots, dashes, underscores.')
        if len(password) < 4:
            raise ValidationError('Password must be at least 4 characters.')
        role = parse_role(data.get('role') or Role.EDITOR.value)
        if role is None:
            raise ValidationError(f"Unknown role: {data.get('role')}")
        if self.store.select('admin_users', where={'username': username}):
            raise ValidationError('Username already exists')

        permissions = data.get('permissions')
        permissions = (PermissionSet.from_dict(permissions) if permissions
                       else default_permissions(role))
        row = self.store.insert('admin_users', {
            'username': username,
            'password_hash': generate_password_hash(password),
            'display_name': (data.get('display_name') or '').strip() or username,
            'role': role.value,
            'permissions': permissions.to_dict(),
            'is_active': True,
        })
        self._log(actor, Module.USERS, 'create', row['id'], f'Created user: @{username} ({role.value})')
        self.state.refresh('users')
        return public_user(row)

    def update_user(self, user_id, updates):
        actor = self.require(Module.USERS, Action.EDIT)
        user_id = _int_id(user_id, 'user id')
        changes = {}
        if 'role' in updates and updates['role'] is not None:
            role = parse_role(updates['role'])
            if role is None:
                raise ValidationError(f"Unknown role: {updates['role']}")
            if user_id == MAIN_ADMIN_ID and role is not Role.ADMIN:
                raise IntegrityGuardError("Cannot change the main admin's role")
            changes['role'] = role.value
            if not updates.get('permissions'):
                changes['permissions'] = default_permissions(role).to_dict()
        user = self.store.get('admin_users', user_id)
        if updates.get('permissions'):
            changes['permissions'] = PermissionSet.from_dict(updates['permissions']).to_dict()
        if 'display_name' in updates:
            changes['display_name'] = (updates.get('display_name') or '').strip() or user['username']
        if updates.get('password'):
            if len(updates['password']) < 4:
                raise ValidationError('Password must be at least 4 characters.')
            changes['password_hash'] = generate_password_hash(updates['password'])
        row = self.store.update('admin_users', user_id, changes)
        self._log(actor, Module.USERS, 'update', user_id, f"Updated user: @{user['username']}")
        self.state.refresh('users')
        return public_user(row)

    def toggle_user_status(self, user_id, is_active):
        actor = self.require(Module.USERS, Action.TOGGLE_STATUS)
        user_id = _int_id(user_id, 'user id')
        if not isinstance(is_active, bool):
            raise ValidationError('is_active must be true or false.')
        if user_id == MAIN_ADMIN_ID and not is_active:
            raise IntegrityGuardError('Cannot disable the main admin')
        row = self.store.update('admin_users', user_id, {'is_active': is_active})
        self._log(actor, Module.USERS, 'update', user_id, f"{'Enabled' if is_active else 'Disabled'} user")
        self.state.refresh('users')
        return public_user(row)

    def delete_user(self, user_id):
        actor = self.require(Module.USERS, Action.DELETE)
        user_id = _int_id(user_id, 'user id')
        if user_id == MAIN_ADMIN_ID:
            raise IntegrityGuardError('Cannot delete the main admin')
        user = self.store.get('admin_users', user_id)
        self.store.delete('admin_users', user_id)
        self._log(actor, Module.USERS, 'delete', user_id, f"Deleted user: @{user['username']}")
        self.state.refresh('users')

    def login_logs(self, limit=100):
        self.require(Module.USERS, Action.VIEW_LOGS)
        return self.store.select('login_logs', order_by='timestamp', descending=True, limit=limit)

    def activity_logs(self, limit=100):
        self.require(Module.USERS, Action.VIEW_ACTIVITY)
        return self.store.select('activity_logs', order_by='timestamp', descending=True, limit=limit)

    # ---- public views ---------------------------------------------------

    def public_matches(self, team_type=None):
        lists = self._match_lists(team_type)
        lists['upcoming'] = lists['upcoming'][:PUBLIC_UPCOMING_LIMIT]
        return lists

    def public_teams(self, team_type=None):
        self.state.refresh('teams')
        self.state.ensure('pools')
        teams = [t for t in self.state.teams if not team_type or t.get('team_type') == team_type]
        result = []
        for team in teams:
            pool = self.state.pool_of_team(team['id'])
            result.append({
                'id': team['id'],
                'school_name': team.get('school_name'),
                'team_type': team.get('team_type'),
                'coach_name': team.get('coach_name'),
                'player_count': team.get('player_count'),
                'pool_name': pool.name if pool else None,
            })
        return result
