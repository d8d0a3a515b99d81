"""
Tests for Search Console property enumeration and caching.
"""

from unittest.mock import Mock

import pytest
from sqlalchemy import select

from adapters.search.gsc_adapter import GSCAdapter
from core.errors import GSCQueryError, QueryErrorKind
from infrastructure.database.models.analytics import GSCProperty
from services.gsc_properties import PropertyEnumerator


@pytest.fixture
def adapter():
    return Mock(spec=GSCAdapter)


@pytest.fixture
def enumerator(adapter):
    return PropertyEnumerator(adapter)


SITES = [
    {"siteUrl": "https://b.example.com/", "permissionLevel": "siteOwner"},
    {"siteUrl": "sc-domain:a.example.com", "permissionLevel": "siteFullUser"},
    {"siteUrl": "https://unverified.example.com/", "permissionLevel": "siteUnverifiedUser"},
]


async def all_properties(db_session, connection_id):
    result = await db_session.execute(
        select(GSCProperty)
        .where(GSCProperty.connection_id == connection_id)
        .order_by(GSCProperty.site_url)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


class TestResolveProperties:
    """Tests for PropertyEnumerator.resolve_properties."""

    async def test_first_use_lists_upstream_and_skips_unverified(
        self, db_session, make_connection, enumerator, adapter
    ):
        connection = await make_connection()
        adapter.list_sites.return_value = SITES

        properties = await enumerator.resolve_properties(db_session, connection, "token")

        assert [p.site_url for p in properties] == [
            "https://b.example.com/",
            "sc-domain:a.example.com",
        ]
        assert properties[1].permission_level == "siteFullUser"
        adapter.list_sites.assert_called_once_with("token")

    async def test_cached_properties_skip_upstream(
        self, db_session, make_connection, make_property, enumerator, adapter
    ):
        connection = await make_connection()
        await make_property(connection, "https://cached.example.com/")

        properties = await enumerator.resolve_properties(db_session, connection, "token")

        assert [p.site_url for p in properties] == ["https://cached.example.com/"]
        adapter.list_sites.assert_not_called()

    async def test_forced_refresh_deactivates_missing_and_reactivates(
        self, db_session, make_connection, make_property, enumerator, adapter
    ):
        connection = await make_connection()
        await make_property(connection, "https://gone.example.com/")
        await make_property(connection, "https://b.example.com/", is_active=False)
        adapter.list_sites.return_value = SITES

        properties = await enumerator.resolve_properties(
            db_session, connection, "token", force_refresh=True
        )

        assert {p.site_url for p in properties} == {
            "https://b.example.com/",
            "sc-domain:a.example.com",
        }
        stored = {p.site_url: p for p in await all_properties(db_session, connection.id)}
        assert stored["https://gone.example.com/"].is_active is False
        assert stored["https://b.example.com/"].is_active is True
        # Reactivated in place, not duplicated
        assert len(stored) == 3

    async def test_listing_failure_propagates(self, db_session, make_connection, enumerator, adapter):
        connection = await make_connection()
        adapter.list_sites.side_effect = GSCQueryError("HTTP 503", kind=QueryErrorKind.TRANSIENT)

        with pytest.raises(GSCQueryError):
            await enumerator.resolve_properties(db_session, connection, "token")

    async def test_cached_properties_only_returns_active(
        self, db_session, make_connection, make_property, enumerator
    ):
        connection = await make_connection()
        await make_property(connection, "https://active.example.com/")
        await make_property(connection, "https://inactive.example.com/", is_active=False)

        properties = await enumerator.cached_properties(db_session, connection)

        assert [p.site_url for p in properties] == ["https://active.example.com/"]
