"""
Provider authentication.

Nexquare uses the OAuth client-credentials grant; tokens are cached per
tenant in a ``TokenStore`` until shortly before they expire. ManageBac
uses a static API key sent on every request.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from core.config import settings
from core.exceptions import AuthError, PermanentHttpError, TransientHttpError
from ingestion.transport import RetryPolicy, send
from schemas.tenant import TenantConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedToken:
    access_token: str
    expires_at: float  # epoch seconds, safety buffer already subtracted

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenStore:
    """
    Token cache keyed by tenant id.

    Create one per process and hand it to every ``TokenManager``. Entries
    are overwritten on refresh and only removed through ``clear``; nothing
    is written outside the process.
    """

    def __init__(self):
        self._tokens: Dict[str, CachedToken] = {}

    def get(self, tenant_id: str) -> Optional[CachedToken]:
        return self._tokens.get(tenant_id)

    def put(self, tenant_id: str, token: CachedToken) -> None:
        self._tokens[tenant_id] = token

    def clear(self, tenant_id: Optional[str] = None) -> None:
        """Drop one tenant's token, or every token when no id is given."""
        if tenant_id is None:
            self._tokens.clear()
        else:
            self._tokens.pop(tenant_id, None)

    def __len__(self) -> int:
        return len(self._tokens)


class TokenManager:
    """Acquires and caches client-credentials tokens."""

    def __init__(
        self,
        store: TokenStore,
        http: httpx.AsyncClient,
        retry: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.time,
        expiry_buffer: Optional[int] = None,
        default_ttl: Optional[int] = None,
    ):
        self.store = store
        self.http = http
        self.retry = retry or RetryPolicy()
        self._clock = clock
        self.expiry_buffer = settings.TOKEN_EXPIRY_BUFFER if expiry_buffer is None else expiry_buffer
        self.default_ttl = default_ttl or settings.DEFAULT_TOKEN_TTL

    async def get_token(self, tenant: TenantConfig, force_refresh: bool = False) -> str:
        """
        Return a valid access token for the tenant.

        A cached token is reused while ``now < expires_at``; otherwise (or
        when ``force_refresh`` is set) a new one is requested and stored.

        Raises:
            AuthError: The token endpoint failed or returned no access token
        """
        if not force_refresh:
            cached = self.store.get(tenant.id)
            if cached and cached.is_valid(self._clock()):
                return cached.access_token

        token = await self._request_token(tenant)
        self.store.put(tenant.id, token)
        return token.access_token

    async def _request_token(self, tenant: TenantConfig) -> CachedToken:
        url = tenant.token_url
        context = {"tenant_id": tenant.id, "url": url}
        form = {
            "grant_type": "client_credentials",
            "client_id": tenant.client_id or "",
            "client_secret": tenant.client_secret.get_secret_value() if tenant.client_secret else "",
        }

        logger.info(f"Requesting access token for tenant {tenant.id}")
        try:
            response = await self.retry.run(
                lambda: send(self.http, "POST", url, data=form, headers={"Accept": "application/json"}),
                description=f"Token request for {tenant.id}"
            )
        except (TransientHttpError, PermanentHttpError) as e:
            raise AuthError(
                "Token request failed",
                context={**context, "status_code": e.context.get("status_code")},
                original_exception=e
            )

        if response.status_code == 401:
            raise AuthError("Token request rejected", context={**context, "status_code": 401})

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthError("Token response is not JSON", context=context, original_exception=e)

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthError("Token response missing access_token", context=context)

        try:
            ttl = int(payload.get("expires_in") or self.default_ttl)
        except (TypeError, ValueError):
            ttl = self.default_ttl

        expires_at = self._clock() + ttl - self.expiry_buffer
        logger.info(f"Access token for tenant {tenant.id} valid for {ttl}s")
        return CachedToken(access_token=access_token, expires_at=expires_at)


class AuthProvider(ABC):
    """Supplies request headers for a tenant."""

    refreshable = False

    @abstractmethod
    async def headers(self, tenant: TenantConfig, force_refresh: bool = False) -> Dict[str, str]:
        pass


class BearerTokenAuth(AuthProvider):
    refreshable = True

    def __init__(self, tokens: TokenManager):
        self.tokens = tokens

    async def headers(self, tenant: TenantConfig, force_refresh: bool = False) -> Dict[str, str]:
        token = await self.tokens.get_token(tenant, force_refresh=force_refresh)
        return {"Authorization": f"Bearer {token}"}


class ApiKeyAuth(AuthProvider):
    """ManageBac ``auth-token`` header; a 401 cannot be fixed by refreshing."""

    async def headers(self, tenant: TenantConfig, force_refresh: bool = False) -> Dict[str, str]:
        if not tenant.api_key:
            raise AuthError("Tenant has no API key", context={"tenant_id": tenant.id})
        return {"auth-token": tenant.api_key.get_secret_value()}
