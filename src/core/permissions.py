"""
Role-based permission table.

Permissions are indexed by (Module, Action). Stored permission payloads are
plain nested dicts keyed by the enum values so they survive YAML and cookie
serialization; PermissionSet converts between the two and never raises on
missing or unknown keys.
"""
from enum import Enum


class Module(str, Enum):
    TEAMS = 'teams'
    POOLS = 'pools'
    MATCHES = 'matches'
    USERS = 'users'


class Action(str, Enum):
    VIEW = 'view'
    ADD = 'add'
    EDIT = 'edit'
    DELETE = 'delete'
    FIX_MATCH = 'fixMatch'
    REORDER = 'reorder'
    COMPLETE = 'complete'
    TOGGLE_STATUS = 'toggleStatus'
    VIEW_LOGS = 'viewLogs'
    VIEW_ACTIVITY = 'viewActivity'


class Role(str, Enum):
    ADMIN = 'admin'
    EDITOR = 'editor'
    VIEWER = 'viewer'


# Actions that exist for each module, with the label shown in the permission grid
PERMISSION_SCHEMA = {
    Module.TEAMS: {
        'label': 'Teams',
        'actions': {
            Action.VIEW: 'View Teams',
            Action.ADD: 'Add Team',
            Action.EDIT: 'Edit Team',
            Action.DELETE: 'Delete Team',
        },
    },
    Module.POOLS: {
        'label': 'Pools',
        'actions': {
            Action.VIEW: 'View Pools',
            Action.ADD: 'Create Pool',
            Action.EDIT: 'Edit Pool',
            Action.DELETE: 'Delete Pool',
            Action.FIX_MATCH: 'Fix Matches',
        },
    },
    Module.MATCHES: {
        'label': 'Matches',
        'actions': {
            Action.VIEW: 'View Matches',
            Action.REORDER: 'Reorder Matches',
            Action.COMPLETE: 'Complete Match',
            Action.EDIT: 'Edit Match',
            Action.DELETE: 'Delete Match',
        },
    },
    Module.USERS: {
        'label': 'Users',
        'actions': {
            Action.VIEW: 'View Users',
            Action.ADD: 'Add User',
            Action.EDIT: 'Edit User',
            Action.DELETE: 'Delete User',
            Action.TOGGLE_STATUS: 'Enable/Disable User',
            Action.VIEW_LOGS: 'View Login History',
            Action.VIEW_ACTIVITY: 'View Activity Log',
        },
    },
}

_EDITOR_GRANTS = {
    Module.TEAMS: {Action.VIEW, Action.ADD, Action.EDIT},
    Module.POOLS: {Action.VIEW, Action.ADD, Action.EDIT, Action.FIX_MATCH},
    Module.MATCHES: {Action.VIEW, Action.REORDER, Action.COMPLETE, Action.EDIT},
    Module.USERS: set(),
}

_VIEWER_GRANTS = {
    Module.TEAMS: {Action.VIEW},
    Module.POOLS: {Action.VIEW},
    Module.MATCHES: {Action.VIEW},
    Module.USERS: set(),
}


def _coerce(enum_cls, value):
    """Return the enum member for value, or None if it is not one."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def parse_role(value):
    """Parse a role string; unknown roles return None."""
    return _coerce(Role, value)


class PermissionSet:
    """Complete module x action -> bool table."""

    def __init__(self, grants=None):
        grants = grants or {}
        self._table = {}
        for module, entry in PERMISSION_SCHEMA.items():
            allowed = grants.get(module, set())
            self._table[module] = {action: action in allowed for action in entry['actions']}

    @classmethod
    def all_granted(cls):
        return cls({module: set(entry['actions']) for module, entry in PERMISSION_SCHEMA.items()})

    @classmethod
    def from_dict(cls, data):
        """Build from a stored payload, ignoring anything that is not a known module/action."""
        perms = cls()
        if not isinstance(data, dict):
            return perms
        for module_key, actions in data.items():
            module = _coerce(Module, module_key)
            if module is None or not isinstance(actions, dict):
                continue
            for action_key, value in actions.items():
                action = _coerce(Action, action_key)
                if action is None or action not in perms._table[module]:
                    continue
                perms._table[module][action] = value is True
        return perms

    def to_dict(self):
        return {
            module.value: {action.value: granted for action, granted in actions.items()}
            for module, actions in self._table.items()
        }

    def allows(self, module, action) -> bool:
        module = _coerce(Module, module)
        action = _coerce(Action, action)
        if module is None or action is None:
            return False
        return self._table[module].get(action, False)

    def __eq__(self, other):
        return isinstance(other, PermissionSet) and self._table == other._table

    def __repr__(self):
        return f"PermissionSet({self.to_dict()})"


ROLE_DEFAULTS = {
    Role.ADMIN: PermissionSet.all_granted(),
    Role.EDITOR: PermissionSet(_EDITOR_GRANTS),
    Role.VIEWER: PermissionSet(_VIEWER_GRANTS),
}


def default_permissions(role) -> PermissionSet:
    """Role default permissions; unknown roles fall back to viewer."""
    parsed = parse_role(role)
    source = ROLE_DEFAULTS[parsed] if parsed else ROLE_DEFAULTS[Role.VIEWER]
    return PermissionSet.from_dict(source.to_dict())


def role_allows(role, permissions, module, action) -> bool:
    """Evaluate a permission for a role and stored payload. Admin always passes."""
    if parse_role(role) is Role.ADMIN:
        return True
    if not isinstance(permissions, PermissionSet):
        permissions = PermissionSet.from_dict(permissions)
    return permissions.allows(module, action)


def schema_for_display():
    """Permission schema as plain strings, for building a permission grid."""
    return {
        module.value: {
            'label': entry['label'],
            'actions': {action.value: label for action, label in entry['actions'].items()},
        }
        for module, entry in PERMISSION_SCHEMA.items()
    }
