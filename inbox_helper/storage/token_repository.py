"""Google OAuth token storage

SECURITY:
- Access and refresh tokens are encrypted with Fernet before they hit disk
- The key comes from INBOX_HELPER_ENCRYPTION_KEY
- One row per user; optional fields are only overwritten when supplied
"""

from __future__ import annotations

import os

from cryptography.fernet import Fernet, InvalidToken

from inbox_helper.infrastructure.database import retry_on_db_lock
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import log_event
from inbox_helper.storage import BaseRepository, now_ms
from inbox_helper.storage.models import GoogleOAuthToken

logger = get_logger(__name__)


class CredentialEncryptionError(Exception):
    """Raised when the encryption key is missing/invalid or a token cannot be decrypted"""


def _get_cipher() -> Fernet:
    encryption_key = os.getenv("INBOX_HELPER_ENCRYPTION_KEY")
    if not encryption_key:
        raise CredentialEncryptionError(
            "INBOX_HELPER_ENCRYPTION_KEY environment variable must be set. "
            "Generate one with: python -c "
            "'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )
    try:
        return Fernet(encryption_key.encode())
    except ValueError as e:
        raise CredentialEncryptionError(f"Invalid encryption key format: {e}") from e


class TokenRepository(BaseRepository):
    """Encrypted per-user Google OAuth tokens."""

    def __init__(self) -> None:
        super().__init__("oauth_tokens")
        self._cipher = _get_cipher()

    def _encrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        return self._cipher.encrypt(value.encode()).decode()

    def _decrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            return self._cipher.decrypt(value.encode()).decode()
        except InvalidToken as e:
            logger.error("Failed to decrypt stored token")
            raise CredentialEncryptionError("Decryption failed") from e

    @retry_on_db_lock()
    def save_token(self, user_id: str, token: GoogleOAuthToken) -> None:
        self.execute(
            """
            INSERT INTO oauth_tokens
                (user_id, access_token, refresh_token, expires_at, scope, token_type, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                access_token = excluded.access_token,
                refresh_token = COALESCE(excluded.refresh_token, oauth_tokens.refresh_token),
                expires_at = COALESCE(excluded.expires_at, oauth_tokens.expires_at),
                scope = COALESCE(excluded.scope, oauth_tokens.scope),
                token_type = COALESCE(excluded.token_type, oauth_tokens.token_type),
                updated_at = excluded.updated_at
            """,
            (
                user_id,
                self._encrypt(token.access_token),
                self._encrypt(token.refresh_token),
                token.expires_at,
                token.scope,
                token.token_type,
                now_ms(),
            ),
        )
        log_event("tokens.saved", has_refresh_token=token.refresh_token is not None)

    def get_token(self, user_id: str) -> GoogleOAuthToken | None:
        row = self.query_one("SELECT * FROM oauth_tokens WHERE user_id = ?", (user_id,))
        if row is None:
            return None
        return GoogleOAuthToken(
            access_token=self._decrypt(row["access_token"]) or "",
            refresh_token=self._decrypt(row["refresh_token"]),
            expires_at=row["expires_at"],
            scope=row["scope"],
            token_type=row["token_type"],
        )

    def delete_token(self, user_id: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM oauth_tokens WHERE user_id = ?", (user_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        log_event("tokens.deleted", existed=deleted)
        return deleted
