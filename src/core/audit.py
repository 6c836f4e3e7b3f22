"""
Best-effort audit sinks for login and activity logs.

A sink wraps a writer callable (usually ``store.insert`` bound to a log
table). Writing never raises: failures are logged and dropped, so a broken
audit backend cannot fail or roll back the operation being audited.
"""
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

LOGOUT_REASONS = ('manual', 'timeout', 'session_expired')


def _timestamp(clock=None):
    # clocks return epoch seconds, like SessionManager.clock
    return (datetime.fromtimestamp(clock()) if clock else datetime.now()).isoformat()


class BestEffortSink:
    """Fire-and-forget writer for append-only log rows."""

    def __init__(self, writer, name='audit'):
        self._writer = writer
        self.name = name
        self.dropped = 0

    def emit(self, row: dict) -> bool:
        try:
            self._writer(row)
            return True
        except Exception as e:
            self.dropped += 1
            logger.warning(f'{self.name} entry dropped: {e}')
            return False


class ActivityLog:
    """Records who changed what, for teams/pools/matches/users.

    clock, when given, returns epoch seconds (e.g. time.time).
    """

    def __init__(self, sink: BestEffortSink, clock=None):
        self.sink = sink
        self._clock = clock

    def record(self, actor, module, action, entity_id, description, details=None):
        """actor is a Session, or None for public (unauthenticated) actions."""
        if actor is not None:
            user_id, username = actor.user_id, actor.username
        else:
            user_id, username = None, 'public'
        return self.sink.emit({
            'user_id': user_id,
            'username': username,
            'module': module,
            'action': action,
            'entity_id': str(entity_id) if entity_id is not None else None,
            'description': description,
            'details': details,
            'timestamp': _timestamp(self._clock),
        })


class LoginLog:
    """Records login attempts and logouts.

    clock, when given, returns epoch seconds (e.g. time.time).
    """

    def __init__(self, sink: BestEffortSink, clock=None):
        self.sink = sink
        self._clock = clock

    def login(self, user_id, username, success, client=None):
        client = client or {}
        return self.sink.emit({
            'user_id': user_id,
            'username': username,
            'action': 'login',
            'success': bool(success),
            'reason': None,
            'ip_address': client.get('ip_address', 'unknown'),
            'user_agent': client.get('user_agent', ''),
            'timestamp': _timestamp(self._clock),
        })

    def logout(self, user_id, username, reason='manual', client=None):
        client = client or {}
        if reason not in LOGOUT_REASONS:
            reason = 'manual'
        return self.sink.emit({
            'user_id': user_id,
            'username': username,
            'action': 'logout',
            'success': True,
            'reason': reason,
            'ip_address': client.get('ip_address', 'unknown'),
            'user_agent': client.get('user_agent', ''),
            'timestamp': _timestamp(self._clock),
        })
