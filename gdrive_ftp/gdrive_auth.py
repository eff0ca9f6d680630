"""
Google Drive OAuth 2.0 credentials for the FTP server.

The server runs unattended, so the browser consent flow is a separate
``gdrive-ftp auth google`` step that stores a refresh token. ``serve`` only
loads and refreshes that token.
"""

import json
import logging
from pathlib import Path

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

logger = logging.getLogger(__name__)

# Full drive access: the FTP server creates, moves and trashes files
SCOPES = ["https://www.googleapis.com/auth/drive"]

DEFAULT_TOKEN_DIR = Path.home() / ".gdrive-ftp"
DEFAULT_TOKEN_FILE = DEFAULT_TOKEN_DIR / "token.json"


def get_token_path(token_file: str | None = None) -> Path:
    """Get the token file path, using default if not specified."""
    if token_file:
        return Path(token_file)
    return DEFAULT_TOKEN_FILE


def load_credentials(token_path: Path) -> Credentials | None:
    """
    Load saved OAuth credentials from disk.

    Returns None if no saved credentials exist or they can't be parsed.
    """
    if not token_path.exists():
        logger.debug("No saved token at %s", token_path)
        return None

    try:
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (json.JSONDecodeError, ValueError, KeyError) as e:
        logger.warning("Failed to load saved token %s: %s", token_path, e)
        return None
    logger.debug("Loaded credentials from %s", token_path)
    return creds


def save_credentials(creds: Credentials, token_path: Path) -> None:
    """Write credentials to disk, readable by the owner only where supported."""
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json(), encoding="utf-8")
    try:
        token_path.chmod(0o600)
    except OSError as e:
        logger.debug("Could not restrict permissions on %s: %s", token_path, e)
    logger.info("Saved credentials to %s", token_path)


def refresh_credentials(creds: Credentials) -> Credentials | None:
    """Refresh an expired access token. Returns None when refreshing fails."""
    if not creds or not creds.refresh_token:
        return None
    if creds.valid:
        return creds

    try:
        creds.refresh(Request())
    except (RefreshError, TransportError) as e:
        logger.warning("Token refresh failed: %s", e)
        return None
    logger.debug("Refreshed access token")
    return creds


def run_auth_flow(client_secrets_file: str) -> Credentials:
    """
    Run the installed-app OAuth flow in the user's browser.

    Args:
        client_secrets_file: Path to client_secrets.json from Google Cloud Console.

    Returns:
        Authorized credentials with a refresh token.

    Raises:
        FileNotFoundError: If client_secrets_file doesn't exist.
    """
    secrets_path = Path(client_secrets_file)
    if not secrets_path.exists():
        raise FileNotFoundError(
            f"Client secrets file not found: {client_secrets_file}\n"
            "Download it from Google Cloud Console > APIs & Services > Credentials"
        )

    logger.info("Starting OAuth authorization flow")
    print("[INFO] Opening browser for Google authorization...")
    print("       If the browser doesn't open, copy the URL from the terminal.")

    flow = InstalledAppFlow.from_client_secrets_file(str(secrets_path), scopes=SCOPES)
    creds = flow.run_local_server(port=0, prompt="consent", access_type="offline")

    logger.info("Authorization successful")
    return creds


def get_credentials(token_file: str | None = None) -> Credentials:
    """
    Load the saved token for ``serve``, refreshing it when expired.

    Raises:
        ValueError: If there is no usable saved token.
    """
    token_path = get_token_path(token_file)
    creds = load_credentials(token_path)

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        refreshed = refresh_credentials(creds)
        if refreshed and refreshed.valid:
            save_credentials(refreshed, token_path)
            return refreshed

    raise ValueError(
        "No valid Google Drive credentials found.\n"
        "Run: gdrive-ftp auth google --client-secrets <path-to-client_secrets.json>\n"
        "to authorize access to your Google Drive."
    )
