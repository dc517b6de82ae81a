"""
OAuth Service

Handles the Google OAuth flow that lets the focus scheduler read a
user's calendar. Tokens are stored per user.
"""

import json
import os
import secrets
from pathlib import Path
from typing import Dict, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from fastmcp.utilities.logging import get_logger
from config.settings import ServerSettings, get_settings

SCOPES = ['https://www.googleapis.com/auth/calendar.readonly']


class OAuthService:
    """
    Service for managing Google OAuth authentication.

    Handles OAuth flow, token storage, and credential management per user.
    """

    def __init__(self, settings: Optional[ServerSettings] = None):
        """Initialize OAuth service."""
        self.logger = get_logger("OAuthService")
        self.settings = settings or get_settings()
        self.tokens_dir = self.settings.data_dir / "tokens"
        self.tokens_dir.mkdir(parents=True, exist_ok=True)

        # Store active OAuth flows (state -> user_id mapping)
        self.active_flows: Dict[str, str] = {}

    def _redirect_uri(self) -> str:
        # GOOGLE_REDIRECT_URI (deployment secret) wins over settings
        redirect_uri = os.getenv("GOOGLE_REDIRECT_URI") or self.settings.oauth_redirect_uri
        if redirect_uri:
            return redirect_uri
        if self.settings.server_url:
            return f"{self.settings.server_url}/oauth/callback"
        raise ValueError(
            "OAuth redirect URI not configured. Set one of: "
            "GOOGLE_REDIRECT_URI, FOCUS_OAUTH_REDIRECT_URI, or FOCUS_SERVER_URL environment variables"
        )

    def _client_config(self, redirect_uri: str) -> Dict:
        client_id = os.getenv("GOOGLE_CLIENT_ID") or self.settings.google_client_id
        client_secret = os.getenv("GOOGLE_CLIENT_SECRET") or self.settings.google_client_secret
        if client_id and client_secret:
            return {
                "web": {
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                    "token_uri": "https://oauth2.googleapis.com/token",
                    "redirect_uris": [redirect_uri]
                }
            }

        credentials_path = Path(self.settings.google_credentials_path)
        if not credentials_path.exists():
            raise FileNotFoundError(
                f"Google credentials not found. Either set GOOGLE_CLIENT_ID and "
                f"GOOGLE_CLIENT_SECRET environment variables, or place credentials.json "
                f"at {credentials_path}"
            )
        with open(credentials_path, 'r') as f:
            return json.load(f)

    def _build_flow(self) -> Flow:
        redirect_uri = self._redirect_uri()
        return Flow.from_client_config(
            self._client_config(redirect_uri),
            scopes=SCOPES,
            redirect_uri=redirect_uri
        )

    def get_authorization_url(self, user_id: str) -> str:
        """
        Generate Google OAuth authorization URL.

        Args:
            user_id: Unique identifier for the user

        Returns:
            Authorization URL to redirect user to
        """
        flow = self._build_flow()

        # Generate state for CSRF protection
        state = secrets.token_urlsafe(32)
        self.active_flows[state] = user_id

        authorization_url, _ = flow.authorization_url(
            access_type='offline',
            include_granted_scopes='true',
            state=state,
            prompt='consent'  # Force consent to get refresh token
        )
        return authorization_url

    def handle_callback(self, authorization_code: str, state: str) -> Optional[str]:
        """
        Handle OAuth callback and exchange code for tokens.

        Args:
            authorization_code: Authorization code from Google
            state: State parameter for CSRF protection

        Returns:
            User ID if successful, None otherwise
        """
        if state not in self.active_flows:
            self.logger.error(f"Invalid state parameter: {state}")
            return None

        user_id = self.active_flows.pop(state)
        flow = self._build_flow()

        try:
            flow.fetch_token(code=authorization_code)
        except Exception as e:
            self.logger.error(f"Error exchanging authorization code: {e}")
            return None

        self.save_user_credentials(user_id, flow.credentials)
        return user_id

    def get_user_credentials(self, user_id: str) -> Optional[Credentials]:
        """
        Get stored credentials for a user, refreshing them if expired.

        Returns:
            Credentials object if found and valid, None otherwise
        """
        token_path = self.tokens_dir / f"{user_id}.json"

        if not token_path.exists():
            return None

        try:
            creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)

            if creds.expired and creds.refresh_token:
                creds.refresh(Request())
                self.save_user_credentials(user_id, creds)

            return creds
        except Exception as e:
            self.logger.error(f"Error loading credentials for user {user_id}: {e}")
            return None

    def save_user_credentials(self, user_id: str, creds: Credentials):
        token_path = self.tokens_dir / f"{user_id}.json"

        with open(token_path, 'w') as token:
            token.write(creds.to_json())

    def is_user_authenticated(self, user_id: str) -> bool:
        creds = self.get_user_credentials(user_id)
        return creds is not None and creds.valid
