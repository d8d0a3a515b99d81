"""
Tests for the Google Search Console adapter.
"""

import json
from datetime import date, datetime, timezone
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import httplib2
import httpx
import pytest
from googleapiclient.errors import HttpError

from adapters.search.gsc_adapter import (
    GSCAdapter,
    classify_http_error,
    create_gsc_adapter,
    normalize_row,
)
from core.domain.analytics import SyncWindow
from core.errors import GSCAuthError, GSCQueryError, QueryErrorKind, SyncErrorKind
from infrastructure.config import SyncConfig


def http_error(status, reason=None):
    """Build a googleapiclient HttpError with an optional Google error reason."""
    resp = Mock()
    resp.status = status
    resp.reason = "error"
    payload = {"error": {"code": status, "message": "failed"}}
    if reason:
        payload["error"]["errors"] = [{"reason": reason}]
    return HttpError(resp, json.dumps(payload).encode("utf-8"))


@pytest.fixture
def adapter():
    """Create GSCAdapter instance with test credentials."""
    return GSCAdapter(
        client_id="test_client_id",
        client_secret="test_client_secret",
        redirect_uri="http://localhost:8000/callback",
        page_pause_seconds=0,
    )


@pytest.fixture
def window():
    return SyncWindow(
        start_date=date(2026, 10, 10),
        end_date=date(2026, 10, 16),
        dimensions=("query", "page"),
        row_limit=2,
    )


class TestClassifyHttpError:
    """Tests for HTTP failure classification."""

    @pytest.mark.parametrize(
        "status,reason,expected",
        [
            (401, None, QueryErrorKind.AUTH_FAILURE),
            (403, "forbidden", QueryErrorKind.AUTH_FAILURE),
            (403, "quotaExceeded", QueryErrorKind.TRANSIENT),
            (403, "rateLimitExceeded", QueryErrorKind.TRANSIENT),
            (404, None, QueryErrorKind.NOT_FOUND),
            (429, None, QueryErrorKind.TRANSIENT),
            (500, None, QueryErrorKind.TRANSIENT),
            (503, None, QueryErrorKind.TRANSIENT),
            (400, "badRequest", QueryErrorKind.INVALID_REQUEST),
        ],
    )
    def test_status_mapping(self, status, reason, expected):
        assert classify_http_error(http_error(status, reason)) == expected

    def test_only_transient_is_retryable(self):
        assert GSCQueryError("x", kind=QueryErrorKind.TRANSIENT).retryable
        assert not GSCQueryError("x", kind=QueryErrorKind.AUTH_FAILURE).retryable
        assert GSCQueryError("x", kind=QueryErrorKind.NOT_FOUND).kind == SyncErrorKind.NOT_FOUND


class TestNormalizeRow:
    def test_keys_are_mapped_to_dimensions(self):
        row = {"keys": ["shoes", "/shop"], "clicks": 3, "impressions": 40, "ctr": 0.075, "position": 2.5}

        assert normalize_row(["query", "page"], row) == {
            "query": "shoes",
            "page": "/shop",
            "clicks": 3,
            "impressions": 40,
            "ctr": 0.075,
            "position": 2.5,
        }

    def test_missing_keys_become_none(self):
        assert normalize_row(["query", "page"], {"keys": ["shoes"]})["page"] is None


class TestOAuth:
    """Tests for the token endpoint side of the adapter."""

    def test_get_authorization_url(self, adapter):
        auth_url = adapter.get_authorization_url("state-123")

        parsed = urlparse(auth_url)
        params = parse_qs(parsed.query)
        assert parsed.netloc == "accounts.google.com"
        assert params["client_id"][0] == "test_client_id"
        assert params["scope"][0] == "https://www.googleapis.com/auth/webmasters.readonly"
        assert params["access_type"][0] == "offline"
        assert params["prompt"][0] == "consent"
        assert params["state"][0] == "state-123"

    def test_get_authorization_url_without_credentials(self):
        adapter = GSCAdapter(client_id=None, client_secret="secret", redirect_uri=None)

        with pytest.raises(GSCAuthError, match="not configured"):
            adapter.get_authorization_url("state")

    @patch("httpx.post")
    def test_exchange_code_success(self, mock_post, adapter):
        mock_response = Mock()
        mock_response.json.return_value = {
            "access_token": "new_access_token",
            "refresh_token": "new_refresh_token",
            "expires_in": 3600,
        }
        mock_post.return_value = mock_response

        grant = adapter.exchange_code("test_auth_code")

        assert grant.access_token == "new_access_token"
        assert grant.refresh_token == "new_refresh_token"
        assert grant.expires_at > datetime.now(timezone.utc)
        call_args = mock_post.call_args
        assert call_args[0][0] == "https://oauth2.googleapis.com/token"
        assert call_args[1]["data"]["code"] == "test_auth_code"
        assert call_args[1]["data"]["grant_type"] == "authorization_code"

    @patch("httpx.post")
    def test_refresh_access_token_success(self, mock_post, adapter):
        mock_response = Mock()
        mock_response.json.return_value = {"access_token": "refreshed", "expires_in": 1800}
        mock_post.return_value = mock_response

        grant = adapter.refresh_access_token("stored-refresh-token")

        assert grant.access_token == "refreshed"
        assert grant.refresh_token is None
        data = mock_post.call_args[1]["data"]
        assert data["refresh_token"] == "stored-refresh-token"
        assert data["grant_type"] == "refresh_token"

    @patch("httpx.post")
    def test_refresh_access_token_revoked(self, mock_post, adapter):
        request = httpx.Request("POST", GSCAdapter.OAUTH_TOKEN_URL)
        response = httpx.Response(400, json={"error": "invalid_grant"}, request=request)
        mock_post.return_value = response

        with pytest.raises(GSCAuthError, match="invalid_grant"):
            adapter.refresh_access_token("revoked-token")

    @patch("httpx.post")
    def test_refresh_access_token_network_error(self, mock_post, adapter):
        mock_post.side_effect = httpx.ConnectError("Connection failed")

        with pytest.raises(GSCAuthError, match="Failed to refresh"):
            adapter.refresh_access_token("stored-refresh-token")

    @patch("httpx.post")
    def test_invalid_token_response(self, mock_post, adapter):
        mock_response = Mock()
        mock_response.json.return_value = {"unexpected": "payload"}
        mock_post.return_value = mock_response

        with pytest.raises(GSCAuthError, match="Invalid token response"):
            adapter.refresh_access_token("stored-refresh-token")

    def test_refresh_without_refresh_token(self, adapter):
        with pytest.raises(GSCAuthError, match="No refresh token"):
            adapter.refresh_access_token("")


@patch("adapters.search.gsc_adapter.Credentials")
@patch("adapters.search.gsc_adapter.build")
class TestSearchConsoleApi:
    """Tests for site listing and search analytics queries."""

    def test_list_sites(self, mock_build, mock_creds_class, adapter):
        mock_service = Mock()
        mock_service.sites.return_value.list.return_value.execute.return_value = {
            "siteEntry": [
                {"siteUrl": "https://example.com/", "permissionLevel": "siteOwner"},
                {"siteUrl": "sc-domain:example.org", "permissionLevel": "siteFullUser"},
            ]
        }
        mock_build.return_value = mock_service

        sites = adapter.list_sites("access-token")

        assert [s["siteUrl"] for s in sites] == ["https://example.com/", "sc-domain:example.org"]
        mock_creds_class.assert_called_once_with(
            token="access-token",
            token_uri="https://oauth2.googleapis.com/token",
            client_id="test_client_id",
            client_secret="test_client_secret",
        )
        mock_build.assert_called_once_with(
            "searchconsole",
            "v1",
            credentials=mock_creds_class.return_value,
            cache_discovery=False,
        )

    def test_query_single_page(self, mock_build, mock_creds_class, adapter, window):
        mock_service = Mock()
        mock_query = mock_service.searchanalytics.return_value.query
        mock_query.return_value.execute.return_value = {
            "rows": [{"keys": ["shoes", "/shop"], "clicks": 5, "impressions": 100}]
        }
        mock_build.return_value = mock_service

        result = adapter.query_search_analytics("access-token", "https://example.com/", window)

        assert result.truncated is False
        assert result.pages_fetched == 1
        assert result.rows == [{"query": "shoes", "page": "/shop", "clicks": 5, "impressions": 100}]
        mock_query.assert_called_once_with(
            siteUrl="https://example.com/",
            body={
                "startDate": "2026-10-10",
                "endDate": "2026-10-16",
                "dimensions": ["query", "page"],
                "rowLimit": 2,
                "startRow": 0,
            },
        )

    def test_full_page_is_flagged_truncated(self, mock_build, mock_creds_class, adapter, window):
        mock_service = Mock()
        mock_service.searchanalytics.return_value.query.return_value.execute.return_value = {
            "rows": [
                {"keys": ["a", "/a"], "clicks": 1, "impressions": 1},
                {"keys": ["b", "/b"], "clicks": 1, "impressions": 1},
            ]
        }
        mock_build.return_value = mock_service

        result = adapter.query_search_analytics("access-token", "https://example.com/", window)

        assert result.truncated is True
        assert len(result.rows) == 2

    def test_pagination_follows_start_row(self, mock_build, mock_creds_class, adapter, window):
        mock_service = Mock()
        mock_query = mock_service.searchanalytics.return_value.query
        mock_query.return_value.execute.side_effect = [
            {"rows": [{"keys": ["a", "/a"], "clicks": 1, "impressions": 1}] * 2},
            {"rows": [{"keys": ["c", "/c"], "clicks": 1, "impressions": 1}]},
        ]
        mock_build.return_value = mock_service

        result = adapter.query_search_analytics(
            "access-token", "https://example.com/", window, max_pages=5
        )

        assert result.pages_fetched == 2
        assert result.truncated is False
        assert len(result.rows) == 3
        assert mock_query.call_args_list[1][1]["body"]["startRow"] == 2

    def test_query_error_is_classified(self, mock_build, mock_creds_class, adapter, window):
        mock_service = Mock()
        mock_service.searchanalytics.return_value.query.return_value.execute.side_effect = (
            http_error(401)
        )
        mock_build.return_value = mock_service

        with pytest.raises(GSCQueryError) as exc_info:
            adapter.query_search_analytics("expired", "https://example.com/", window)

        assert exc_info.value.query_kind == QueryErrorKind.AUTH_FAILURE
        assert exc_info.value.status_code == 401

    def test_timeout_is_transient(self, mock_build, mock_creds_class, adapter, window):
        mock_service = Mock()
        mock_service.searchanalytics.return_value.query.return_value.execute.side_effect = (
            TimeoutError("read timed out")
        )
        mock_build.return_value = mock_service

        with pytest.raises(GSCQueryError) as exc_info:
            adapter.query_search_analytics("token", "https://example.com/", window)

        assert exc_info.value.retryable

    @pytest.mark.parametrize(
        "error",
        [
            httplib2.ServerNotFoundError("Unable to find the server at searchconsole.googleapis.com"),
            httplib2.RedirectLimit("Redirected more times than redirection_limit allows.", Mock(), b""),
        ],
    )
    def test_transport_errors_are_transient(self, mock_build, mock_creds_class, adapter, error):
        mock_service = Mock()
        mock_service.sites.return_value.list.return_value.execute.side_effect = error
        mock_build.return_value = mock_service

        with pytest.raises(GSCQueryError) as exc_info:
            adapter.list_sites("token")

        assert exc_info.value.query_kind == QueryErrorKind.TRANSIENT
        assert exc_info.value.retryable


def test_create_gsc_adapter_uses_config():
    config = SyncConfig(
        google_client_id="cid",
        google_client_secret="secret",
        google_redirect_uri="http://localhost/callback",
        encryption_key="k",
    )

    adapter = create_gsc_adapter(config)

    assert adapter.client_id == "cid"
    assert adapter.client_secret == "secret"
    assert adapter.redirect_uri == "http://localhost/callback"
