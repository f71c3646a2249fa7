"""
Persistence for user_integrations (one Google mailbox connection per user).

Tokens are Fernet-encrypted at rest; each ciphertext is stored next to an
HMAC fingerprint of the plaintext so the revocation webhook can find the row
a token belongs to.
"""

from datetime import datetime
from typing import Any

from trackme.db.helpers import (
    DatabaseError,
    execute_query,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from trackme.features.subscription_discovery.domain import Integration, IntegrationStatus
from trackme.infrastructure.observability.logging import get_logger
from trackme.security.hashing import hash_oauth_token
from trackme.services.infrastructure.encryption_service import (
    decrypt_oauth_tokens,
    encrypt_oauth_tokens,
    encrypt_token,
)

logger = get_logger(__name__)

GOOGLE_PROVIDER = "google"
REVOKED_REASON = "User revoked access"


class IntegrationRepositoryError(DatabaseError):
    """More specific exception for integration persistence failures."""


class IntegrationRepository:
    SELECT_COLUMNS = """
        id, user_id, provider, provider_user_id, status,
        access_token, refresh_token, token_expires_at, scopes,
        last_scan_at, last_error
    """

    @classmethod
    def _row_to_integration(cls, row: dict[str, Any] | None) -> Integration | None:
        if not row:
            return None

        access_token, refresh_token = decrypt_oauth_tokens(
            row.get("access_token"), row.get("refresh_token")
        )
        return Integration(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            provider=row["provider"],
            status=row["status"],
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=row.get("token_expires_at"),
            provider_user_id=row.get("provider_user_id"),
            scopes=list(row.get("scopes") or []),
            last_scan_at=row.get("last_scan_at"),
            last_error=row.get("last_error"),
        )

    @classmethod
    @with_db_retry(max_retries=2)
    async def get_active(cls, user_id: str, provider: str = GOOGLE_PROVIDER) -> Integration | None:
        row = await fetch_one(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM user_integrations
            WHERE user_id = %s AND provider = %s AND status = 'active'
            """,
            (user_id, provider),
        )
        return cls._row_to_integration(row)

    @classmethod
    async def upsert(
        cls,
        user_id: str,
        provider_user_id: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime | None,
        scopes: list[str],
        provider: str = GOOGLE_PROVIDER,
    ) -> Integration:
        """
        Create or reactivate the (user, provider) integration.

        A consent that returns no refresh token keeps the stored one.
        """
        encrypted_access, encrypted_refresh = encrypt_oauth_tokens(access_token, refresh_token)

        row = await fetch_one(
            f"""
            INSERT INTO user_integrations (
                user_id, provider, provider_user_id, status,
                access_token, access_token_hash,
                refresh_token, refresh_token_hash,
                token_expires_at, scopes, last_error, updated_at
            )
            VALUES (%s, %s, %s, 'active', %s, %s, %s, %s, %s, %s, NULL, NOW())
            ON CONFLICT (user_id, provider) DO UPDATE SET
                provider_user_id = EXCLUDED.provider_user_id,
                status = 'active',
                access_token = EXCLUDED.access_token,
                access_token_hash = EXCLUDED.access_token_hash,
                refresh_token = COALESCE(EXCLUDED.refresh_token, user_integrations.refresh_token),
                refresh_token_hash = COALESCE(
                    EXCLUDED.refresh_token_hash, user_integrations.refresh_token_hash
                ),
                token_expires_at = EXCLUDED.token_expires_at,
                scopes = EXCLUDED.scopes,
                last_error = NULL,
                updated_at = NOW()
            RETURNING {cls.SELECT_COLUMNS}
            """,
            (
                user_id,
                provider,
                provider_user_id,
                encrypted_access,
                hash_oauth_token(access_token),
                encrypted_refresh,
                hash_oauth_token(refresh_token),
                token_expires_at,
                scopes,
            ),
        )
        if not row:
            raise IntegrationRepositoryError("Failed to upsert integration", operation="upsert")

        logger.info(
            "Integration upserted",
            user_id=user_id,
            provider=provider,
            has_refresh_token=bool(refresh_token),
        )
        return cls._row_to_integration(row)

    @classmethod
    async def update_tokens(
        cls,
        integration_id: str,
        access_token: str,
        token_expires_at: datetime | None,
        refresh_token: str | None = None,
    ) -> None:
        """Persist a refreshed access token (and a rotated refresh token, if any)."""
        if refresh_token:
            query = """
                UPDATE user_integrations
                SET access_token = %s, access_token_hash = %s, token_expires_at = %s,
                    refresh_token = %s, refresh_token_hash = %s,
                    last_error = NULL, updated_at = NOW()
                WHERE id = %s
            """
            params = (
                encrypt_token(access_token),
                hash_oauth_token(access_token),
                token_expires_at,
                encrypt_token(refresh_token),
                hash_oauth_token(refresh_token),
                integration_id,
            )
        else:
            query = """
                UPDATE user_integrations
                SET access_token = %s, access_token_hash = %s, token_expires_at = %s,
                    last_error = NULL, updated_at = NOW()
                WHERE id = %s
            """
            params = (
                encrypt_token(access_token),
                hash_oauth_token(access_token),
                token_expires_at,
                integration_id,
            )

        await execute_query(query, params)
        logger.info("Integration tokens refreshed", integration_id=integration_id)

    @classmethod
    async def record_error(cls, integration_id: str, error: str) -> None:
        await execute_query(
            "UPDATE user_integrations SET last_error = %s, updated_at = NOW() WHERE id = %s",
            ((error or "")[:500], integration_id),
        )

    @classmethod
    async def touch_last_scan(cls, user_id: str, provider: str = GOOGLE_PROVIDER) -> None:
        await execute_query(
            """
            UPDATE user_integrations
            SET last_scan_at = NOW(), updated_at = NOW()
            WHERE user_id = %s AND provider = %s
            """,
            (user_id, provider),
        )

    @classmethod
    async def find_by_token(cls, token: str) -> Integration | None:
        """Look an integration up by access or refresh token value."""
        fingerprint = hash_oauth_token(token)
        row = await fetch_one(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM user_integrations
            WHERE access_token_hash = %s OR refresh_token_hash = %s
            LIMIT 1
            """,
            (fingerprint, fingerprint),
        )
        return cls._row_to_integration(row)

    @classmethod
    async def mark_revoked(cls, integration_id: str, reason: str = REVOKED_REASON) -> bool:
        affected = await execute_query(
            """
            UPDATE user_integrations
            SET status = %s,
                access_token = NULL, access_token_hash = NULL,
                refresh_token = NULL, refresh_token_hash = NULL,
                token_expires_at = NULL,
                last_error = %s,
                updated_at = NOW()
            WHERE id = %s
            """,
            (IntegrationStatus.REVOKED.value, reason, integration_id),
        )
        logger.info("Integration revoked", integration_id=integration_id)
        return affected > 0

    @classmethod
    async def user_exists(cls, user_id: str) -> bool:
        found = await fetch_val("SELECT 1 FROM auth.users WHERE id = %s", (user_id,))
        return found is not None
