from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from stackbit_api.tiers.catalog import DEFAULT_TIER_CATALOG_PATH, TierCatalog, reset_tier_catalog

from tests.fakes import (
    ADMIN_USER,
    EDITOR_USER,
    INVITEE,
    OWNER,
    STAFF_ADMIN,
    STAFF_SUPPORT,
    FakeUserStore,
)


@pytest.fixture
def catalog() -> TierCatalog:
    return TierCatalog.from_yaml(DEFAULT_TIER_CATALOG_PATH)


@pytest.fixture
def users() -> FakeUserStore:
    return FakeUserStore([OWNER, EDITOR_USER, ADMIN_USER, INVITEE, STAFF_ADMIN, STAFF_SUPPORT])


@pytest.fixture
def email() -> AsyncMock:
    sender = AsyncMock()
    sender.send_plans_email = AsyncMock(return_value=None)
    sender.invite_collaborator_email = AsyncMock(return_value=None)
    return sender


@pytest.fixture
def analytics() -> MagicMock:
    return MagicMock()


@pytest.fixture(autouse=True)
def _fresh_tier_catalog(monkeypatch):
    monkeypatch.delenv("TIER_CATALOG_PATH", raising=False)
    reset_tier_catalog()
    yield
    reset_tier_catalog()
