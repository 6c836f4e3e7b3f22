"""
Tests for the role/permission table.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.permissions import (PERMISSION_SCHEMA, Action, Module, PermissionSet, Role,
                              default_permissions, role_allows, schema_for_display)


ALL_PAIRS = [(module, action) for module, entry in PERMISSION_SCHEMA.items() for action in entry['actions']]


class TestAdminRole:
    """Admin passes every check whatever is stored."""

    @pytest.mark.parametrize('module,action', ALL_PAIRS)
    def test_admin_with_empty_permissions(self, module, action):
        assert role_allows('admin', {}, module, action) is True

    def test_admin_with_corrupt_permissions(self):
        assert role_allows('admin', 'garbage', 'users', 'delete') is True
        assert role_allows(Role.ADMIN, None, Module.TEAMS, Action.DELETE) is True


class TestStoredPermissions:
    """Non-admin roles read the stored table, defaulting to False."""

    @pytest.mark.parametrize('role', ['editor', 'viewer'])
    @pytest.mark.parametrize('module,action', ALL_PAIRS)
    def test_matches_stored_value(self, role, module, action):
        granted = {module.value: {action.value: True}}
        assert role_allows(role, granted, module, action) is True
        denied = {module.value: {action.value: False}}
        assert role_allows(role, denied, module, action) is False

    @pytest.mark.parametrize('module,action', ALL_PAIRS)
    def test_unset_defaults_to_false(self, module, action):
        assert role_allows('editor', {}, module, action) is False

    def test_unknown_keys_never_raise(self):
        perms = {'teams': {'view': True}}
        assert role_allows('viewer', perms, 'scores', 'view') is False
        assert role_allows('viewer', perms, 'teams', 'fly') is False
        assert role_allows('viewer', perms, None, None) is False

    def test_corrupt_payloads_deny(self):
        assert role_allows('editor', ['teams'], 'teams', 'view') is False
        assert role_allows('editor', {'teams': 'all'}, 'teams', 'view') is False
        assert role_allows('editor', None, 'teams', 'view') is False

    def test_only_true_grants(self):
        """Truthy strings from a bad payload do not count as grants."""
        assert role_allows('editor', {'teams': {'view': 'true'}}, 'teams', 'view') is False
        assert role_allows('editor', {'teams': {'view': 1}}, 'teams', 'view') is False

    def test_action_not_in_module_is_ignored(self):
        """fixMatch belongs to pools, not teams."""
        perms = PermissionSet.from_dict({'teams': {'fixMatch': True}})
        assert perms.allows('teams', 'fixMatch') is False


class TestRoleDefaults:

    def test_admin_defaults_grant_everything(self):
        perms = default_permissions('admin')
        assert all(perms.allows(m, a) for m, a in ALL_PAIRS)

    def test_editor_defaults(self):
        perms = default_permissions('editor')
        assert perms.allows('teams', 'edit') is True
        assert perms.allows('teams', 'delete') is False
        assert perms.allows('pools', 'fixMatch') is True
        assert perms.allows('pools', 'delete') is False
        assert perms.allows('matches', 'reorder') is True
        assert perms.allows('matches', 'delete') is False
        assert not any(perms.allows('users', a) for a in PERMISSION_SCHEMA[Module.USERS]['actions'])

    def test_viewer_defaults(self):
        perms = default_permissions('viewer')
        assert perms.allows('teams', 'view') is True
        assert perms.allows('matches', 'view') is True
        assert perms.allows('matches', 'complete') is False
        assert perms.allows('users', 'view') is False

    def test_unknown_role_gets_viewer(self):
        assert default_permissions('coach') == default_permissions('viewer')

    def test_defaults_are_independent_copies(self):
        first = default_permissions('editor')
        first._table[Module.TEAMS][Action.DELETE] = True
        assert default_permissions('editor').allows('teams', 'delete') is False

    def test_to_dict_is_complete(self):
        data = default_permissions('viewer').to_dict()
        assert set(data) == {'teams', 'pools', 'matches', 'users'}
        assert set(data['users']) == {'view', 'add', 'edit', 'delete', 'toggleStatus',
                                      'viewLogs', 'viewActivity'}
        assert PermissionSet.from_dict(data) == default_permissions('viewer')


def test_schema_for_display_uses_plain_strings():
    schema = schema_for_display()
    assert schema['pools']['actions']['fixMatch'] == 'Fix Matches'
    assert schema['users']['label'] == 'Users'
