"""
Google OAuth token holder for Sheets access.

Tokens arrive with every request (access, refresh, expiry in epoch ms) and are
never persisted here. Before each round of Sheets calls the access token is
checked against the wall clock; a stale token is refreshed up front instead of
waiting for a 401.

A failed refresh is not retried. It means the refresh token was revoked or is
missing, and the user has to go through consent again.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import requests

import config

logger = logging.getLogger("leadsync.token_store")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _token_payload(response) -> dict:
    """Token endpoint JSON; anything else counts as an empty (failed) grant."""
    try:
        data = response.json()
    except ValueError:
        logger.error(f"Token endpoint returned a non-JSON body: {response.text[:200]}")
        return {}
    return data if isinstance(data, dict) else {}


@dataclass
class AuthTokens:
    access_token: str
    refresh_token: str
    expires_at: int  # epoch milliseconds

    @classmethod
    def from_headers(cls, headers: dict) -> Optional["AuthTokens"]:
        """Build from the x-google-* headers the dashboard sends. None if any is missing."""
        access = headers.get("x-google-access-token")
        refresh = headers.get("x-google-refresh-token")
        expiry = headers.get("x-google-token-expiry")
        if not access or not refresh or not expiry:
            return None
        try:
            expires_at = int(expiry)
        except (TypeError, ValueError):
            expires_at = 0
        return cls(access, refresh, expires_at)


class TokenStore:
    """Holds one access/refresh token pair and refreshes it on demand."""

    def __init__(self,
                 client_id: str = None,
                 client_secret: str = None,
                 token_url: str = None,
                 redirect_uri: str = None,
                 timeout: float = None):
        self.client_id = client_id if client_id is not None else config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.GOOGLE_CLIENT_SECRET
        self.token_url = token_url or config.GOOGLE_TOKEN_URL
        self.redirect_uri = redirect_uri or config.GOOGLE_REDIRECT_URI
        self.timeout = timeout or config.HTTP_TIMEOUT

        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.expires_at: int = 0

    def set_tokens(self, access_token: str, refresh_token: str, expires_at_ms: int):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = int(expires_at_ms or 0)

    def load(self, tokens: AuthTokens):
        self.set_tokens(tokens.access_token, tokens.refresh_token, tokens.expires_at)

    @property
    def tokens(self) -> AuthTokens:
        """Current tokens, so callers can hand refreshed credentials back to the client."""
        return AuthTokens(self.access_token or "", self.refresh_token or "", self.expires_at)

    def is_expired(self) -> bool:
        return _now_ms() >= self.expires_at

    def get_valid_access_token(self) -> Optional[str]:
        """
        Return a usable access token, refreshing first if the cached one is stale.

        Returns None when no token can be obtained (caller must re-authenticate).
        """
        if self.access_token and not self.is_expired():
            return self.access_token

        logger.info("Access token expired or missing, attempting refresh")
        if self.refresh():
            return self.access_token
        return None

    def refresh(self) -> bool:
        """
        Exchange the refresh token for a new access token.

        On failure the old (expired) token is left in place and False is returned.
        """
        if not self.refresh_token:
            logger.warning("Cannot refresh Google token: no refresh token present")
            return False

        try:
            response = requests.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Token refresh request failed: {e}")
            return False

        if not response.ok:
            logger.error(f"Token refresh rejected: {response.status_code} {response.text[:200]}")
            return False

        data = _token_payload(response)
        access_token = data.get("access_token")
        if not access_token:
            logger.error("Token refresh response had no access_token")
            return False

        self.access_token = access_token
        self.expires_at = _now_ms() + int(data.get("expires_in", 0)) * 1000
        # Google only sometimes rotates the refresh token
        if data.get("refresh_token"):
            self.refresh_token = data["refresh_token"]

        logger.info("Refreshed Google Sheets access token")
        return True

    def exchange_code(self, code: str) -> bool:
        """Authorization-code grant, used by the OAuth callback."""
        try:
            response = requests.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Code exchange request failed: {e}")
            return False

        if not response.ok:
            logger.error(f"Code exchange rejected: {response.status_code} {response.text[:200]}")
            return False

        data = _token_payload(response)
        if not data.get("access_token"):
            logger.error("Code exchange response had no access_token")
            return False
        self.set_tokens(
            data.get("access_token"),
            data.get("refresh_token"),
            _now_ms() + int(data.get("expires_in", 0)) * 1000,
        )
        logger.info("Authenticated with Google Sheets API")
        return True

    def get_auth_url(self, project_id: str = None) -> str:
        """Consent URL; the project id rides along in `state` for the post-auth redirect."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": config.GOOGLE_SHEETS_SCOPE,
            "access_type": "offline",
            "prompt": "consent select_account",
        }
        if project_id:
            params["state"] = project_id
        return f"{config.GOOGLE_AUTH_URL}?{urlencode(params)}"

    def is_authenticated(self) -> bool:
        return self.get_valid_access_token() is not None
