"""HTTP client for the Authority e-invoicing API."""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from src.config import settings
from src.exceptions import (
    AuthorityPayloadTooLargeException,
    AuthorityTimeoutException,
    AuthorityTransportException,
)
from src.modules.authority.constants import (
    DETAIL_PATH,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_REFRESH_TOKEN,
    PDF_PATH,
    POLL_PATH,
    SEND_PATH,
    SUBMIT_PATH,
    TOKEN_PATH,
)
from src.modules.authority.schemas import (
    DocumentDetail,
    PollResponse,
    SendResponse,
    SubmitResponse,
    TokenResponse,
    normalize_message,
)

logger = logging.getLogger(__name__)


def build_submit_envelope(document_type: str, xml: str) -> dict[str, Any]:
    """The submit request body: one base64-encoded XML document."""
    encoded = base64.b64encode(xml.encode("utf-8")).decode("ascii")
    return {"documents": [{"document_type": document_type, "document": encoded}]}


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()
    return normalize_message(body)


class AuthorityClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.authority_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.authority_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str | None = None,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        """Issue a request and map transport failures onto Authority exceptions.

        Returns None for a 404 when ``allow_not_found`` is set.
        """
        client = await self._get_client()
        if access_token is not None:
            kwargs.setdefault("headers", {})
            kwargs["headers"]["Authorization"] = f"Bearer {access_token}"

        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Authority %s %s timed out after %.1fs", method, path, self.timeout)
            raise AuthorityTimeoutException(
                f"Authority request timed out after {self.timeout:.0f}s",
                details=[{"method": method, "path": path}],
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("Authority %s %s failed: %s", method, path, exc)
            raise AuthorityTransportException(
                f"Could not reach the Authority: {exc}",
                details=[{"method": method, "path": path}],
            ) from exc

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code == 413:
            raise AuthorityPayloadTooLargeException(
                "Request payload too large for the Authority API",
                details=[{"authority_message": _error_detail(response)}],
                http_status=413,
            )
        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning(
                "Authority %s %s returned %d: %s", method, path, response.status_code, detail,
            )
            raise AuthorityTransportException(
                f"Authority API error {response.status_code}"
                + (f" - {detail}" if detail else ""),
                details=[{"method": method, "path": path, "status": response.status_code}],
                http_status=response.status_code,
            )
        return response

    @staticmethod
    def _parse(model: type, response: httpx.Response) -> Any:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthorityTransportException(
                f"Unexpected response shape from the Authority ({model.__name__})",
                http_status=response.status_code,
            ) from exc

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def request_token(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str | None = None,
    ) -> TokenResponse:
        """Exchange client credentials (and a refresh token when held) for an access token."""
        if refresh_token:
            data = {"grant_type": GRANT_REFRESH_TOKEN, "refresh_token": refresh_token}
        else:
            data = {"grant_type": GRANT_CLIENT_CREDENTIALS}
        response = await self._request(
            "POST", TOKEN_PATH, data=data, auth=httpx.BasicAuth(client_id, client_secret),
        )
        return self._parse(TokenResponse, response)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def submit_document(self, access_token: str, document_type: str, xml: str) -> SubmitResponse:
        response = await self._request(
            "POST", SUBMIT_PATH, access_token=access_token,
            json=build_submit_envelope(document_type, xml),
        )
        return self._parse(SubmitResponse, response)

    async def send_documents(self, access_token: str, document_ids: list[str]) -> SendResponse:
        response = await self._request(
            "POST", SEND_PATH, access_token=access_token, json={"documents": document_ids},
        )
        return self._parse(SendResponse, response)

    async def get_document_detail(self, access_token: str, document_id: str) -> DocumentDetail | None:
        """Current Authority view of a document, or None when it is not visible yet."""
        response = await self._request(
            "GET", DETAIL_PATH.format(document_id=document_id),
            access_token=access_token, allow_not_found=True,
        )
        if response is None:
            return None
        return self._parse(DocumentDetail, response)

    async def poll_documents(self, access_token: str, last_synced_at: datetime | None = None) -> PollResponse:
        params = {"last_synced_at": last_synced_at.isoformat()} if last_synced_at else None
        response = await self._request("GET", POLL_PATH, access_token=access_token, params=params)
        return self._parse(PollResponse, response)

    async def download_pdf(self, access_token: str, document_id: str) -> bytes:
        response = await self._request(
            "GET", PDF_PATH.format(document_id=document_id), access_token=access_token,
        )
        return response.content


# ---------------------------------------------------------------------------
# Client cache
# ---------------------------------------------------------------------------

_clients: dict[str, AuthorityClient] = {}


def get_authority_client(base_url: str | None = None) -> AuthorityClient:
    key = (base_url or settings.authority_base_url).rstrip("/")
    if key not in _clients:
        _clients[key] = AuthorityClient(base_url=key)
    return _clients[key]


async def close_all_clients() -> None:
    """Close cached httpx clients.

    Must be called at the end of each asyncio.run() invocation in Celery tasks
    so no client outlives its event loop.
    """
    for client in _clients.values():
        await client.aclose()
