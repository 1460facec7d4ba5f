"""Provider access-token lifecycle.

One bearer token is shared by every tenant. The manager refreshes it ahead
of expiry, lets at most one refresh run at a time, and backs off after a
failed refresh while an unexpired token can still be served.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from src.config import settings
from src.database.session import session_scope
from src.exceptions import ProviderNotConfiguredException, TokenRefreshException
from src.models.enums import AuditAction
from src.models.provider import Provider
from src.modules.audit.service import AuditService
from src.modules.authority.client import AuthorityClient, get_authority_client

logger = logging.getLogger(__name__)


@dataclass
class ProviderCredentials:
    provider_id: uuid.UUID
    client_id: str
    client_secret: str
    base_url: str
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None
    token_updated_at: datetime | None = None


@dataclass(frozen=True)
class ProviderToken:
    access_token: str
    base_url: str
    expires_at: datetime
    refreshed: bool = False


@dataclass(frozen=True)
class TokenStatus:
    configured: bool
    has_token: bool
    expires_at: datetime | None
    expires_in_seconds: int | None
    refresh_due: bool
    backoff_active: bool
    backoff_until: datetime | None
    last_error: str | None


class DatabaseProviderStore:
    """Reads the active provider row and writes tokens back, each call in its own session."""

    async def load(self) -> ProviderCredentials | None:
        async with session_scope() as session:
            result = await session.execute(
                select(Provider)
                .where(Provider.is_active.is_(True))
                .order_by(Provider.created_at.asc())
                .limit(1)
            )
            provider = result.scalar_one_or_none()
            if provider is None:
                return None
            return ProviderCredentials(
                provider_id=provider.id,
                client_id=provider.client_id,
                client_secret=provider.client_secret,
                base_url=provider.base_url or settings.authority_base_url,
                access_token=provider.access_token,
                refresh_token=provider.refresh_token,
                token_expires_at=provider.token_expires_at,
                token_updated_at=provider.token_updated_at,
            )

    async def save_token(
        self,
        provider_id: uuid.UUID,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
        updated_at: datetime,
    ) -> None:
        async with session_scope() as session:
            provider = await session.get(Provider, provider_id)
            if provider is None:
                raise ProviderNotConfiguredException(f"Provider {provider_id} disappeared during token refresh")
            provider.access_token = access_token
            provider.refresh_token = refresh_token
            provider.token_expires_at = expires_at
            provider.token_updated_at = updated_at

    async def record_audit(self, action: AuditAction, provider_id: uuid.UUID, description: str, metadata: dict) -> None:
        async with session_scope() as session:
            await AuditService(session).record(
                action=action,
                entity_type="provider",
                entity_id=provider_id,
                description=description,
                metadata=metadata,
            )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenManager:
    def __init__(
        self,
        store: DatabaseProviderStore | None = None,
        client_factory: Callable[[str], AuthorityClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store or DatabaseProviderStore()
        self.client_factory = client_factory or get_authority_client
        self.clock = clock or _utcnow
        self.reset()

    def reset(self) -> None:
        """Forget in-flight refreshes and backoff state."""
        self._lock = asyncio.Lock()
        self._inflight: asyncio.Task | None = None
        self._backoff_until: datetime | None = None
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    @staticmethod
    def _is_usable(creds: ProviderCredentials, now: datetime) -> bool:
        return bool(creds.access_token) and creds.token_expires_at is not None and creds.token_expires_at > now

    def _needs_refresh(self, creds: ProviderCredentials, now: datetime, early_refresh_seconds: int) -> bool:
        if not creds.access_token or creds.token_expires_at is None:
            return True
        remaining = (creds.token_expires_at - now).total_seconds()
        if remaining <= early_refresh_seconds:
            return True
        if creds.token_updated_at is not None:
            lifetime = (creds.token_expires_at - creds.token_updated_at).total_seconds()
            elapsed = (now - creds.token_updated_at).total_seconds()
            if lifetime > 0 and elapsed >= lifetime * settings.token_lifetime_refresh_ratio:
                return True
        return False

    def _backoff_active(self, now: datetime) -> bool:
        return self._backoff_until is not None and now < self._backoff_until

    @staticmethod
    def _cached(creds: ProviderCredentials) -> ProviderToken:
        return ProviderToken(
            access_token=creds.access_token,
            base_url=creds.base_url,
            expires_at=creds.token_expires_at,
            refreshed=False,
        )

    def _serve_during_backoff(self, creds: ProviderCredentials, now: datetime) -> ProviderToken:
        if self._is_usable(creds, now):
            logger.warning(
                "Token refresh backing off until %s; serving cached token",
                self._backoff_until.isoformat(),
            )
            return self._cached(creds)
        raise TokenRefreshException(
            "Token refresh is backing off after a failure and no valid token is cached",
            details=[{"backoff_until": self._backoff_until.isoformat(), "last_error": self._last_error}],
        )

    async def _load(self) -> ProviderCredentials:
        creds = await self.store.load()
        if creds is None:
            raise ProviderNotConfiguredException("No active Authority provider is configured")
        return creds

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ensure(self, early_refresh_seconds: int | None = None) -> ProviderToken:
        """Return a usable bearer token, refreshing it first when due."""
        early = settings.token_early_refresh_seconds if early_refresh_seconds is None else early_refresh_seconds
        creds = await self._load()
        now = self.clock()

        if not self._needs_refresh(creds, now, early):
            return self._cached(creds)

        if self._backoff_active(now):
            return self._serve_during_backoff(creds, now)

        return await self._shared_refresh(early)

    async def force_refresh(self) -> ProviderToken:
        """Refresh now regardless of expiry or backoff."""
        self._backoff_until = None
        return await self._shared_refresh(early_refresh_seconds=None)

    async def status(self) -> TokenStatus:
        creds = await self.store.load()
        now = self.clock()
        backoff = self._backoff_active(now)
        if creds is None:
            return TokenStatus(False, False, None, None, False, backoff, self._backoff_until, self._last_error)
        expires_in = None
        if creds.token_expires_at is not None:
            expires_in = int((creds.token_expires_at - now).total_seconds())
        return TokenStatus(
            configured=True,
            has_token=bool(creds.access_token),
            expires_at=creds.token_expires_at,
            expires_in_seconds=expires_in,
            refresh_due=self._needs_refresh(creds, now, settings.token_early_refresh_seconds),
            backoff_active=backoff,
            backoff_until=self._backoff_until if backoff else None,
            last_error=self._last_error,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _shared_refresh(self, early_refresh_seconds: int | None) -> ProviderToken:
        """Join the in-flight refresh, or start one.

        ``early_refresh_seconds`` of None forces a refresh; otherwise the
        stored token is re-checked under the lock in case another caller
        refreshed it meanwhile.
        """
        async with self._lock:
            if self._inflight is None or self._inflight.done():
                creds = await self._load()
                if early_refresh_seconds is not None:
                    now = self.clock()
                    if not self._needs_refresh(creds, now, early_refresh_seconds):
                        return self._cached(creds)
                    # A refresh that failed while this caller waited started a backoff
                    if self._backoff_active(now):
                        return self._serve_during_backoff(creds, now)
                self._inflight = asyncio.create_task(self._refresh(creds))
            task = self._inflight
        return await asyncio.shield(task)

    async def _refresh(self, creds: ProviderCredentials) -> ProviderToken:
        client = self.client_factory(creds.base_url)
        grant = "refresh_token" if creds.refresh_token else "client_credentials"
        started = self.clock()
        try:
            response = await client.request_token(
                creds.client_id, creds.client_secret, refresh_token=creds.refresh_token,
            )
            now = self.clock()
            expires_in = response.expires_in or settings.token_default_expires_in_seconds
            expires_at = now + timedelta(seconds=expires_in - settings.token_expiry_safety_margin_seconds)
            refresh_token = response.refresh_token or creds.refresh_token
            # A granted token that cannot be stored counts as a failed refresh
            await self.store.save_token(
                creds.provider_id, response.access_token, refresh_token, expires_at, now,
            )
        except Exception as exc:
            self._backoff_until = started + timedelta(seconds=settings.token_refresh_backoff_seconds)
            self._last_error = str(exc)
            logger.warning("Provider token refresh (%s) failed: %s", grant, exc)
            await self._audit(
                AuditAction.TOKEN_REFRESH_FAILED,
                creds.provider_id,
                f"Token refresh failed: {exc}",
                {"grant_type": grant, "backoff_until": self._backoff_until.isoformat()},
            )
            if self._is_usable(creds, self.clock()):
                logger.warning("Serving cached provider token after failed refresh")
                return self._cached(creds)
            raise TokenRefreshException(
                f"Could not refresh the Authority access token: {exc}",
                details=[{"grant_type": grant}],
            ) from exc

        self._backoff_until = None
        self._last_error = None
        logger.info("Provider token refreshed via %s; expires at %s", grant, expires_at.isoformat())
        await self._audit(
            AuditAction.TOKEN_REFRESHED,
            creds.provider_id,
            "Provider access token refreshed",
            {
                "grant_type": grant,
                "expires_at": expires_at.isoformat(),
                "refresh_token_rotated": bool(response.refresh_token)
                and response.refresh_token != creds.refresh_token,
            },
        )
        return ProviderToken(
            access_token=response.access_token,
            base_url=creds.base_url,
            expires_at=expires_at,
            refreshed=True,
        )

    async def _audit(self, action: AuditAction, provider_id: uuid.UUID, description: str, metadata: dict) -> None:
        try:
            await self.store.record_audit(action, provider_id, description, metadata)
        except Exception:
            logger.exception("Failed to record %s audit entry", action.value)


token_manager = TokenManager()


def get_token_manager() -> TokenManager:
    return token_manager
