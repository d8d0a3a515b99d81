"""
Tests for connection storage and deactivation.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from uuid import uuid4

import pytest

from adapters.search.gsc_adapter import GSCAdapter, TokenGrant
from core.errors import GSCAuthError
from services.gsc_connections import (
    connect_with_code,
    deactivate_connection,
    get_active_connection,
    list_active_connections,
    store_connection,
)


def grant(refresh_token="refresh-1"):
    return TokenGrant(
        access_token="access-1",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        refresh_token=refresh_token,
    )


class TestStoreConnection:
    async def test_new_grant_replaces_active_connection(self, db_session, cipher):
        user_id = str(uuid4())

        first = await store_connection(db_session, cipher, user_id, grant())
        second = await store_connection(db_session, cipher, user_id, grant(refresh_token="refresh-2"))

        active = await get_active_connection(db_session, user_id)
        assert active.id == second.id
        await db_session.refresh(first)
        assert first.is_active is False
        assert cipher.decrypt(active.refresh_token_encrypted) == "refresh-2"

    async def test_grant_without_refresh_token_is_rejected(self, db_session, cipher):
        with pytest.raises(GSCAuthError, match="refresh token"):
            await store_connection(db_session, cipher, str(uuid4()), grant(refresh_token=None))

    async def test_connect_with_code_exchanges_and_stores(self, db_session, cipher):
        adapter = Mock(spec=GSCAdapter)
        adapter.exchange_code.return_value = grant()
        user_id = str(uuid4())

        connection = await connect_with_code(db_session, adapter, cipher, user_id, "auth-code")

        adapter.exchange_code.assert_called_once_with("auth-code")
        assert connection.user_id == user_id
        assert cipher.decrypt(connection.access_token_encrypted) == "access-1"


class TestDeactivate:
    async def test_deactivated_connection_is_not_listed(
        self, db_session, make_connection, make_property
    ):
        keep = await make_connection()
        drop = await make_connection()
        await make_property(drop, "https://example.com/")

        await deactivate_connection(db_session, drop)

        listed = await list_active_connections(db_session)
        assert [c.id for c in listed] == [keep.id]

    async def test_list_can_be_restricted_to_ids(self, db_session, make_connection):
        first = await make_connection()
        await make_connection()

        listed = await list_active_connections(db_session, [first.id])

        assert [c.id for c in listed] == [first.id]
