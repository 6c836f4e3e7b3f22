"""
Error taxonomy for the league console.

Routes in app.py map each class to an HTTP status; console operations raise
them before touching the store whenever the problem is detectable up front.
"""


class LeagueError(Exception):
    """Base class for every error surfaced to the user."""
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(LeagueError):
    """Missing or malformed input, caught before any store call."""
    status_code = 400


class AuthenticationError(LeagueError):
    status_code = 401


class PermissionDenied(LeagueError):
    status_code = 403

    def __init__(self, message='Permission denied. Contact admin for access.'):
        super().__init__(message)


class NotFound(LeagueError):
    status_code = 404


class IntegrityGuardError(LeagueError):
    """Rejected change to a protected record (e.g. the main admin)."""
    status_code = 409


class PersistenceError(LeagueError):
    """Backend read/write failure. The message shown to users stays generic."""
    status_code = 500

    def __init__(self, message='Storage operation failed. Please try again.', detail=None):
        super().__init__(message)
        self.detail = detail
