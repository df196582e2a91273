"""
STEWARD Test Configuration
==========================

Pytest fixtures shared by the pure-function unit tests.
"""

import pytest
from datetime import datetime, timezone

from steward.api.db.models import User


@pytest.fixture
def now():
    """Fixed evaluation instant."""
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_user(now):
    """Build an unsaved user with scoring-relevant fields."""

    def _make(role="member", is_active=True, last_login=None, last_permission_review=None):
        return User(
            username=f"{role}-user",
            role=role,
            is_active=is_active,
            last_login=last_login,
            last_permission_review=last_permission_review,
        )

    return _make
