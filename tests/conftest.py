"""
Shared pytest fixtures for league console tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.dirname(__file__))

from console import ensure_main_admin
from league_helpers import ADMIN_PASSWORD, FakeClock, add_user, build_console
from store import LeagueStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """Empty store in a temporary data directory."""
    return LeagueStore(str(tmp_path / 'data'))


@pytest.fixture
def seeded_store(store):
    """Store with the main admin (id 1) already created."""
    ensure_main_admin(store, 'admin', ADMIN_PASSWORD)
    return store


@pytest.fixture
def console(seeded_store, clock):
    """Console logged in as the main admin."""
    c = build_console(seeded_store, {}, clock)
    ok, _ = c.sessions.login('admin', ADMIN_PASSWORD)
    assert ok
    return c


@pytest.fixture
def console_as(seeded_store, clock):
    """Factory: console logged in as a new user with the given role."""
    def make(role, permissions=None, username=None):
        username = username or f'{role}-user'
        add_user(seeded_store, username, 'pass1234', role, permissions)
        c = build_console(seeded_store, {}, clock)
        ok, _ = c.sessions.login(username, 'pass1234')
        assert ok
        return c
    return make
