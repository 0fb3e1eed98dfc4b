"""
Authenticated API client for one tenant.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.config import settings
from core.exceptions import AuthError, ResponseShapeError
from ingestion.auth import AuthProvider
from ingestion.transport import RetryPolicy, send
from schemas.tenant import TenantConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilePayload:
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


def build_http_client() -> httpx.AsyncClient:
    """Shared transport; the timeout bounds every single request."""
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT, follow_redirects=True)


class ApiClient:
    """
    GET requests against a tenant's API with retry and token refresh.

    Every request goes through the retry policy. A 401 on a token-based
    tenant forces exactly one token refresh and one retry of the request;
    a second 401 is an ``AuthError``.
    """

    def __init__(
        self,
        tenant: TenantConfig,
        http: httpx.AsyncClient,
        auth: AuthProvider,
        retry: Optional[RetryPolicy] = None,
    ):
        self.tenant = tenant
        self.http = http
        self.auth = auth
        self.retry = retry or RetryPolicy()

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.tenant.base_url}/{path.lstrip('/')}"

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._get(path, params, accept="application/json")
        try:
            return response.json()
        except ValueError as e:
            raise ResponseShapeError(
                "Response is not valid JSON",
                context={"url": self.url_for(path), "response_body": response.text[:500]},
                original_exception=e
            )

    async def get_file(self, path: str, params: Optional[Dict[str, Any]] = None) -> FilePayload:
        response = await self._get(path, params, accept="*/*")
        return FilePayload(
            content=response.content,
            content_type=response.headers.get("content-type", "")
        )

    async def _get(self, path: str, params: Optional[Dict[str, Any]], accept: str) -> httpx.Response:
        url = self.url_for(path)

        response = await self._send_authenticated(url, params, accept, force_refresh=False)
        if response.status_code != 401:
            return response

        if not self.auth.refreshable:
            raise AuthError(
                "Request unauthorized",
                context={"tenant_id": self.tenant.id, "url": url, "status_code": 401}
            )

        logger.warning(f"401 from {url}; refreshing token for tenant {self.tenant.id} and retrying once")
        response = await self._send_authenticated(url, params, accept, force_refresh=True)
        if response.status_code == 401:
            raise AuthError(
                "Request unauthorized after token refresh",
                context={"tenant_id": self.tenant.id, "url": url, "status_code": 401}
            )
        return response

    async def _send_authenticated(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        accept: str,
        force_refresh: bool,
    ) -> httpx.Response:
        headers = await self.auth.headers(self.tenant, force_refresh=force_refresh)
        headers["Accept"] = accept
        return await self.retry.run(
            lambda: send(self.http, "GET", url, params=params, headers=headers),
            description=f"GET {url}"
        )
