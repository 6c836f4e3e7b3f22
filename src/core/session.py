"""
Authenticated session record, expiry, and inactivity auto-logout.

The session record and the last-activity marker live in a client-local
mapping (the Flask cookie session in production, a plain dict in tests).
Nothing here keeps a timer: idle state is recomputed from the persisted
marker on every call, so an idle session stays idle across reloads.
"""
import logging
import time

from werkzeug.security import check_password_hash

from core.permissions import PermissionSet, Role, default_permissions, parse_role, role_allows

logger = logging.getLogger(__name__)

AUTH_KEY = 'league_auth'
LAST_ACTIVITY_KEY = 'league_last_activity'

SESSION_DURATION = 24 * 60 * 60  # seconds
INACTIVITY_TIMEOUT = 10 * 60  # seconds of idle time before forced logout
WARNING_SECONDS = 60  # countdown shown before the forced logout

INVALID_CREDENTIALS = 'Invalid username or password'


class Session:
    def __init__(self, user_id, username, display_name, role, permissions, login_at, expires_at,
                 authenticated=True):
        self.authenticated = authenticated
        self.user_id = user_id
        self.username = username
        self.display_name = display_name
        self.role = role
        self.permissions = permissions
        self.login_at = login_at
        self.expires_at = expires_at

    @classmethod
    def for_user(cls, user, now):
        role = user.get('role') or Role.VIEWER.value
        stored = user.get('permissions')
        permissions = PermissionSet.from_dict(stored) if stored else default_permissions(role)
        return cls(
            user_id=user.get('id'),
            username=user['username'],
            display_name=user.get('display_name') or user['username'],
            role=role,
            permissions=permissions,
            login_at=now,
            expires_at=now + SESSION_DURATION,
        )

    @classmethod
    def from_dict(cls, data):
        """Parse a stored record. Raises ValueError if it is not a session."""
        if not isinstance(data, dict):
            raise ValueError('session record is not a mapping')
        try:
            return cls(
                authenticated=data['authenticated'],
                user_id=data.get('userId'),
                username=data['username'],
                display_name=data.get('displayName') or data['username'],
                role=data['role'],
                permissions=PermissionSet.from_dict(data.get('permissions')),
                login_at=float(data['loginAt']),
                expires_at=float(data['expiresAt']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f'malformed session record: {e}')

    def to_dict(self):
        return {
            'authenticated': self.authenticated,
            'userId': self.user_id,
            'username': self.username,
            'displayName': self.display_name,
            'role': self.role,
            'permissions': self.permissions.to_dict(),
            'loginAt': self.login_at,
            'expiresAt': self.expires_at,
        }

    def is_admin(self):
        return parse_role(self.role) is Role.ADMIN

    def allows(self, module, action) -> bool:
        return role_allows(self.role, self.permissions, module, action)

    def __repr__(self):
        return f"Session(username={self.username}, role={self.role}, expires_at={self.expires_at})"


class IdleState:
    ACTIVE = 'active'
    WARNING = 'warning'
    EXPIRED = 'expired'

    def __init__(self, state, seconds_remaining):
        self.state = state
        self.seconds_remaining = seconds_remaining

    def to_dict(self):
        return {'state': self.state, 'seconds_remaining': self.seconds_remaining}

    def __repr__(self):
        return f"IdleState({self.state}, {self.seconds_remaining})"


def idle_state(last_activity, now, timeout=INACTIVITY_TIMEOUT, warning=WARNING_SECONDS):
    """Classify idle time. The warning covers the final `warning` seconds of the timeout."""
    if last_activity is None:
        return IdleState(IdleState.ACTIVE, timeout)
    remaining = timeout - (now - last_activity)
    if remaining <= 0:
        return IdleState(IdleState.EXPIRED, 0)
    if remaining <= warning:
        return IdleState(IdleState.WARNING, int(remaining + 0.999))
    return IdleState(IdleState.ACTIVE, int(remaining))


class SessionManager:
    """Login, logout, and permission checks against a client-local store.

    find_user(username) returns the stored user row or None; login_log is a
    core.audit.LoginLog. clock returns epoch seconds.
    """

    def __init__(self, storage, find_user, login_log, clock=None,
                 inactivity_timeout=INACTIVITY_TIMEOUT, warning_seconds=WARNING_SECONDS):
        self.storage = storage
        self.find_user = find_user
        self.login_log = login_log
        self.clock = clock or time.time
        self.inactivity_timeout = inactivity_timeout
        self.warning_seconds = warning_seconds

    def login(self, username, password, client=None):
        """Returns (True, Session) or (False, message)."""
        username = (username or '').strip().lower()
        user = self.find_user(username) if username else None
        if (user and user.get('is_active', True)
                and password and check_password_hash(user.get('password_hash', ''), password)):
            session = Session.for_user(user, self.clock())
            self.storage[AUTH_KEY] = session.to_dict()
            self.storage[LAST_ACTIVITY_KEY] = session.login_at
            self.login_log.login(session.user_id, session.username, True, client)
            logger.info(f'User {session.username} logged in')
            return True, session
        self.login_log.login(None, username, False, client)
        logger.info(f'Failed login attempt for {username!r}')
        return False, INVALID_CREDENTIALS

    def current(self):
        """The stored session if it parses and has not expired; otherwise None.

        Expired or corrupt records are removed as a side effect.
        """
        raw = self.storage.get(AUTH_KEY)
        if raw is None:
            return None
        try:
            session = Session.from_dict(raw)
        except ValueError as e:
            logger.warning(f'Discarding session record: {e}')
            self._clear()
            return None
        if self.clock() > session.expires_at:
            self._clear()
            return None
        return session if session.authenticated is True else None

    def is_authenticated(self) -> bool:
        return self.current() is not None

    def has_permission(self, module, action) -> bool:
        session = self.current()
        if session is None:
            return False
        return session.allows(module, action)

    def logout(self, reason='manual', client=None):
        raw = self.storage.get(AUTH_KEY)
        if isinstance(raw, dict) and raw.get('username'):
            self.login_log.logout(raw.get('userId'), raw['username'], reason, client)
            logger.info(f"User {raw['username']} logged out ({reason})")
        self._clear()

    def _clear(self):
        self.storage.pop(AUTH_KEY, None)
        self.storage.pop(LAST_ACTIVITY_KEY, None)

    def touch(self):
        """Record a user interaction; resets the idle timer and cancels any warning."""
        self.storage[LAST_ACTIVITY_KEY] = self.clock()

    def idle(self):
        last = self.storage.get(LAST_ACTIVITY_KEY)
        try:
            last = float(last) if last is not None else None
        except (TypeError, ValueError):
            last = None
        return idle_state(last, self.clock(), self.inactivity_timeout, self.warning_seconds)

    def enforce_inactivity(self, client=None):
        """Log out with reason 'timeout' once the idle limit has passed.

        Also logs out with 'session_expired' when the 24h session has lapsed.
        Returns the session that remains valid, or None.
        """
        raw = self.storage.get(AUTH_KEY)
        session = self.current()
        if session is None:
            if isinstance(raw, dict) and raw.get('username'):
                self.login_log.logout(raw.get('userId'), raw['username'], 'session_expired', client)
            return None
        if self.idle().state == IdleState.EXPIRED:
            self.logout('timeout', client)
            return None
        return session
