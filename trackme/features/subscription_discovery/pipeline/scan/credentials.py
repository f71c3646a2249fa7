"""
Access-token freshness for the scan stage.

Refreshes are serialized per (user, provider) with a short Redis lock. A
worker that loses the lock race, or whose refresh comes back invalid_grant
because another worker already rotated the refresh token, re-reads the
integration and retries once with whatever was persisted.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from trackme.features.subscription_discovery.domain import (
    Integration,
    NoActiveIntegrationError,
    TokenRefreshError,
)
from trackme.infrastructure.observability.logging import get_logger
from trackme.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService
from trackme.services.infrastructure.redis_client import FastRedisClient

logger = get_logger(__name__)

LOCK_KEY_TEMPLATE = "token_refresh:{user_id}:{provider}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialsRefresher:
    def __init__(
        self,
        oauth_service: GoogleOAuthService,
        integrations,
        redis_client: FastRedisClient,
        lock_ttl_seconds: int = 30,
        contention_wait_seconds: float = 1.0,
        clock: Callable[[], datetime] = _utcnow,
        sleep=asyncio.sleep,
    ):
        self.oauth_service = oauth_service
        self.integrations = integrations
        self.redis = redis_client
        self.lock_ttl_seconds = lock_ttl_seconds
        self.contention_wait_seconds = contention_wait_seconds
        self.clock = clock
        self.sleep = sleep

    async def ensure_fresh(self, integration: Integration) -> Integration:
        """Return an integration whose access token is usable right now."""
        if not integration.is_token_expired(self.clock()):
            return integration

        refreshed = await self._attempt_refresh(integration, final=False)
        if refreshed is not None:
            return refreshed

        await self.sleep(self.contention_wait_seconds)
        reloaded = await self.integrations.get_active(integration.user_id, integration.provider)
        if reloaded is None:
            raise NoActiveIntegrationError()
        if not reloaded.is_token_expired(self.clock()):
            logger.info("Using token refreshed by another worker", user_id=integration.user_id)
            return reloaded

        return await self._attempt_refresh(reloaded, final=True)

    async def _attempt_refresh(self, integration: Integration, final: bool) -> Integration | None:
        """
        Refresh under the lock.

        Returns None when the caller should re-read and retry (only when
        final is False); raises TokenRefreshError otherwise.
        """
        if not integration.refresh_token:
            raise TokenRefreshError("No refresh token available - reconnect Gmail")

        lock_key = LOCK_KEY_TEMPLATE.format(
            user_id=integration.user_id, provider=integration.provider
        )
        try:
            lock_token = await self.redis.acquire_lock(lock_key, self.lock_ttl_seconds)
            locked = True
        except ConnectionError:
            logger.warning(
                "Refreshing without lock, Redis unavailable", user_id=integration.user_id
            )
            lock_token, locked = None, False

        if locked and lock_token is None:
            if final:
                raise TokenRefreshError("Token refresh already in progress")
            logger.info("Token refresh in progress elsewhere", user_id=integration.user_id)
            return None

        try:
            try:
                tokens = await self.oauth_service.refresh_access_token(integration.refresh_token)
            except GoogleOAuthError as e:
                if e.is_invalid_grant and not final:
                    logger.warning(
                        "Refresh token rejected, re-reading", user_id=integration.user_id
                    )
                    return None
                await self.integrations.record_error(integration.id, e.message)
                raise TokenRefreshError(f"Token refresh failed: {e.message}") from e

            rotated = (
                tokens.refresh_token
                if tokens.refresh_token and tokens.refresh_token != integration.refresh_token
                else None
            )
            await self.integrations.update_tokens(
                integration.id, tokens.access_token, tokens.expires_at, refresh_token=rotated
            )
        finally:
            if lock_token:
                await self.redis.release_lock(lock_key, lock_token)

        integration.access_token = tokens.access_token
        integration.token_expires_at = tokens.expires_at
        if rotated:
            integration.refresh_token = rotated

        logger.info("Access token refreshed", user_id=integration.user_id, rotated=bool(rotated))
        return integration
