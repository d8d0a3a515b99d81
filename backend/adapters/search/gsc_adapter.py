"""
Google Search Console adapter for the analytics sync engine.

Wraps the OAuth token endpoint (code exchange and refresh-token grants) and the
Search Console API (site listing and search analytics queries). Upstream HTTP
failures are classified into QueryErrorKind so the orchestrator can branch on
the kind of failure instead of on messages.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httplib2
import httpx
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.domain.analytics import MAX_ROW_LIMIT, SyncWindow
from core.errors import GSCAuthError, GSCQueryError, QueryErrorKind
from infrastructure.config.settings import SyncConfig

logger = logging.getLogger(__name__)

# 403 reasons that mean "slow down", not "you may not"
_RATE_LIMIT_REASONS = {
    "quotaExceeded",
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "dailyLimitExceeded",
}


@dataclass
class TokenGrant:
    """Result of an OAuth token endpoint call."""

    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None  # only set when Google rotates/issues one
    scope: Optional[str] = None


@dataclass
class QueryResult:
    """Rows returned for one property and window."""

    rows: List[Dict[str, Any]]
    truncated: bool = False
    pages_fetched: int = 0


def _error_reason(error: HttpError) -> Optional[str]:
    """Extract the first Google error reason (e.g. 'quotaExceeded') if present."""
    try:
        payload = json.loads(error.content.decode("utf-8"))
        errors = payload.get("error", {}).get("errors") or []
        if errors:
            return errors[0].get("reason")
        status_text = payload.get("error", {}).get("status")
        if status_text == "RESOURCE_EXHAUSTED":
            return "rateLimitExceeded"
    except (ValueError, AttributeError, UnicodeDecodeError):
        pass
    return None


def classify_http_error(error: HttpError) -> QueryErrorKind:
    """Map a Google API HttpError onto a QueryErrorKind."""
    status_code = getattr(error.resp, "status", None)
    try:
        status_code = int(status_code)
    except (TypeError, ValueError):
        return QueryErrorKind.TRANSIENT

    if status_code == 401:
        return QueryErrorKind.AUTH_FAILURE
    if status_code == 403:
        if _error_reason(error) in _RATE_LIMIT_REASONS:
            return QueryErrorKind.TRANSIENT
        return QueryErrorKind.AUTH_FAILURE
    if status_code == 404:
        return QueryErrorKind.NOT_FOUND
    if status_code == 429 or status_code >= 500:
        return QueryErrorKind.TRANSIENT
    return QueryErrorKind.INVALID_REQUEST


def normalize_row(dimensions: List[str], row: Dict[str, Any]) -> Dict[str, Any]:
    """Turn an API row ({keys: [...], clicks, ...}) into a dimension-keyed mapping."""
    keys = row.get("keys") or []
    normalized: Dict[str, Any] = {}
    for index, dimension in enumerate(dimensions):
        normalized[dimension] = keys[index] if index < len(keys) else None
    for metric in ("clicks", "impressions", "ctr", "position"):
        if metric in row:
            normalized[metric] = row[metric]
    return normalized


class GSCAdapter:
    """
    Google Search Console API adapter.

    Token lifecycle (expiry checks, persistence, locking) lives in the
    TokenManager; this class only talks to Google.
    """

    # OAuth 2.0 settings
    OAUTH_SCOPE = "https://www.googleapis.com/auth/webmasters.readonly"
    OAUTH_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"

    # API settings
    API_SERVICE_NAME = "searchconsole"
    API_VERSION = "v1"

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str] = None,
        http_timeout: float = 30.0,
        page_pause_seconds: float = 0.5,
    ):
        """
        Initialize Google Search Console adapter.

        Args:
            client_id: Google OAuth client ID
            client_secret: Google OAuth client secret
            redirect_uri: OAuth redirect URI (only needed for the consent flow)
            http_timeout: Timeout for token endpoint calls, in seconds
            page_pause_seconds: Pause between paginated query requests
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.http_timeout = http_timeout
        self.page_pause_seconds = page_pause_seconds

        if not all([self.client_id, self.client_secret]):
            logger.warning(
                "Google OAuth credentials not fully configured. "
                "Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
            )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_authorization_url(self, state: str) -> str:
        """
        Generate OAuth 2.0 authorization URL.

        Args:
            state: Random state string for CSRF protection

        Raises:
            GSCAuthError: If OAuth credentials are not configured
        """
        if not all([self.client_id, self.redirect_uri]):
            raise GSCAuthError(
                "Google OAuth credentials not configured. "
                "Set google_client_id and google_redirect_uri in settings."
            )

        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.OAUTH_SCOPE,
            "state": state,
            "access_type": "offline",  # Request refresh token
            "prompt": "consent",  # Force consent screen to get refresh token
        }
        return f"{self.OAUTH_AUTH_URL}?{urlencode(params)}"

    def _token_request(self, data: Dict[str, str], action: str) -> TokenGrant:
        try:
            response = httpx.post(self.OAUTH_TOKEN_URL, data=data, timeout=self.http_timeout)
            response.raise_for_status()
            tokens = response.json()
        except httpx.HTTPStatusError as e:
            detail = ""
            try:
                detail = e.response.json().get("error", "")
            except ValueError:
                pass
            logger.error("Token endpoint rejected %s: %s %s", action, e.response.status_code, detail)
            raise GSCAuthError(f"Failed to {action}: {detail or e}") from e
        except httpx.HTTPError as e:
            logger.error("HTTP error during %s: %s", action, e)
            raise GSCAuthError(f"Failed to {action}: {e}") from e

        try:
            expires_in = int(tokens.get("expires_in", 3600))
            return TokenGrant(
                access_token=tokens["access_token"],
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
                refresh_token=tokens.get("refresh_token"),
                scope=tokens.get("scope"),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Invalid token response during %s: %s", action, e)
            raise GSCAuthError(f"Invalid token response: missing {e}") from e

    def exchange_code(self, code: str) -> TokenGrant:
        """
        Exchange an authorization code for OAuth tokens.

        Raises:
            GSCAuthError: If token exchange fails
        """
        if not all([self.client_id, self.client_secret, self.redirect_uri]):
            raise GSCAuthError("Google OAuth credentials not configured.")

        logger.info("Exchanging authorization code for tokens")
        return self._token_request(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            "exchange authorization code",
        )

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            GSCAuthError: If the grant is revoked, credentials are wrong, or the
                token endpoint is unreachable
        """
        if not refresh_token:
            raise GSCAuthError("No refresh token available. User must re-authenticate.")
        if not all([self.client_id, self.client_secret]):
            raise GSCAuthError("Google OAuth credentials not configured.")

        logger.info("Refreshing OAuth access token")
        return self._token_request(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "refresh tokens",
        )

    # ------------------------------------------------------------------
    # Search Console API
    # ------------------------------------------------------------------

    def _get_service(self, access_token: str):
        """Build an authenticated Search Console API service."""
        google_creds = Credentials(
            token=access_token,
            token_uri=self.OAUTH_TOKEN_URL,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        return build(
            self.API_SERVICE_NAME,
            self.API_VERSION,
            credentials=google_creds,
            cache_discovery=False,
        )

    def _execute(self, request, action: str) -> Dict[str, Any]:
        try:
            return request.execute()
        except HttpError as e:
            kind = classify_http_error(e)
            status_code = getattr(e.resp, "status", None)
            logger.error("Google API error while %s (%s): %s", action, kind.value, e)
            raise GSCQueryError(
                f"Failed {action}: HTTP {status_code}", kind=kind, status_code=status_code
            ) from e
        except (TimeoutError, OSError, httplib2.HttpLib2Error) as e:
            logger.error("Network error while %s: %s", action, e)
            raise GSCQueryError(f"Failed {action}: {e}", kind=QueryErrorKind.TRANSIENT) from e

    def list_sites(self, access_token: str) -> List[Dict[str, Any]]:
        """
        List all sites/properties visible to the authenticated user.

        Returns:
            List of site objects with siteUrl and permissionLevel

        Raises:
            GSCQueryError: If the API request fails
        """
        service = self._get_service(access_token)
        logger.info("Fetching verified sites from Google Search Console")
        response = self._execute(service.sites().list(), "listing sites")
        sites = response.get("siteEntry", [])
        logger.info("Retrieved %d sites", len(sites))
        return sites

    def query_search_analytics(
        self,
        access_token: str,
        site_url: str,
        window: SyncWindow,
        max_pages: int = 1,
    ) -> QueryResult:
        """
        Fetch search analytics rows for one property and window.

        Issues one request per page of ``window.row_limit`` rows, following
        ``startRow`` for at most ``max_pages`` pages.

        Returns:
            QueryResult with dimension-keyed rows; ``truncated`` is set when
            the last page came back full (more rows may exist upstream)

        Raises:
            GSCQueryError: If any request fails
        """
        service = self._get_service(access_token)
        dimensions = list(window.dimensions)
        row_limit = min(window.row_limit, MAX_ROW_LIMIT)

        rows: List[Dict[str, Any]] = []
        start_row = 0
        truncated = False
        pages = 0

        logger.info(
            "Fetching search analytics for %s from %s to %s (%s)",
            site_url,
            window.start_date,
            window.end_date,
            "+".join(dimensions),
        )

        while pages < max(1, max_pages):
            if pages:
                time.sleep(self.page_pause_seconds)
            request_body = {
                "startDate": window.start_date.isoformat(),
                "endDate": window.end_date.isoformat(),
                "dimensions": dimensions,
                "rowLimit": row_limit,
                "startRow": start_row,
            }
            response = self._execute(
                service.searchanalytics().query(siteUrl=site_url, body=request_body),
                "fetching search analytics",
            )
            batch = response.get("rows", [])
            pages += 1
            rows.extend(normalize_row(dimensions, row) for row in batch)

            if len(batch) < row_limit:
                truncated = False
                break
            truncated = True
            start_row += row_limit

        if truncated:
            logger.warning(
                "Search analytics for %s hit the row cap (%d rows); results are truncated",
                site_url,
                len(rows),
            )
        logger.info("Retrieved %d search analytics rows for %s", len(rows), site_url)
        return QueryResult(rows=rows, truncated=truncated, pages_fetched=pages)


def create_gsc_adapter(config: SyncConfig) -> GSCAdapter:
    """Create a Google Search Console adapter from the sync configuration."""
    return GSCAdapter(
        client_id=config.google_client_id,
        client_secret=config.google_client_secret,
        redirect_uri=config.google_redirect_uri,
    )
