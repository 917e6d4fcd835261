import asyncio
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from .auth import AuthenticationRequiredError, AzureAuthentication
from .errors import GraphRequestError

logger = logging.getLogger(__name__)

BASE_URL = "https://graph.microsoft.com/v1.0"
MAX_RETRY_AFTER = 60


def _error_message(response: httpx.Response) -> str:
    """Pull the Graph error message out of an error response."""
    try:
        error = response.json().get("error") or {}
        return error.get("message") or f"HTTP {response.status_code}"
    except (ValueError, AttributeError):
        return f"HTTP {response.status_code}"


class GraphClient:
    """Async Microsoft Graph client with throttling and 5xx retries."""

    def __init__(
        self,
        auth: AzureAuthentication,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.auth = auth
        self.base_url = base_url
        self.max_retries = max_retries
        self._client = client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=True
        )

    async def _headers(self) -> dict[str, str]:
        # azure-identity is synchronous and may open a browser
        try:
            token = await asyncio.to_thread(self.auth.get_token)
        except ValueError as e:
            # missing client id
            raise AuthenticationRequiredError(str(e)) from e
        return {"Authorization": f"Bearer {token}"}

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        data: Optional[bytes] = None,
    ) -> httpx.Response:
        retry_count = 0
        while True:
            response = await self._client.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json,
                content=data,
            )

            if response.status_code == 429 and retry_count < self.max_retries:
                retry_after = int(response.headers.get("Retry-After", "5"))
                logger.warning(f"Graph throttled {method} {url}, retrying in {retry_after}s")
                await asyncio.sleep(min(retry_after, MAX_RETRY_AFTER))
                retry_count += 1
                continue

            if response.status_code >= 500 and retry_count < self.max_retries:
                await asyncio.sleep(2**retry_count)
                retry_count += 1
                continue

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise GraphRequestError(
                    f"Graph {method} {url} failed: {_error_message(response)}",
                    status_code=response.status_code,
                    category="auth" if response.status_code == 401 else None,
                    context={"method": method, "url": url},
                ) from e
            return response

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        data: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Optional[dict[str, Any]]:
        request_headers = await self._headers()

        if method == "GET":
            if "$search" in (params or {}) or "body" in (params or {}).get("$select", ""):
                request_headers["Prefer"] = 'outlook.body-content-type="text"'
        else:
            request_headers["Content-Type"] = (
                "application/json" if data is None else "application/octet-stream"
            )

        if params and (
            "$search" in params
            or "contains(" in params.get("$filter", "")
            or "/any(" in params.get("$filter", "")
        ):
            request_headers["ConsistencyLevel"] = "eventual"
            params.setdefault("$count", "true")

        request_headers.update(headers or {})

        response = await self._send(
            method,
            f"{self.base_url}{path}",
            request_headers,
            params=params,
            json=json,
            data=data,
        )
        if response.content:
            return response.json()
        return None

    async def request_paginated(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield items following @odata.nextLink"""
        items_returned = 0
        next_link = None

        while True:
            if next_link:
                result = await self.request("GET", next_link.replace(self.base_url, ""))
            else:
                result = await self.request("GET", path, params=params)

            if not result:
                return

            for item in result.get("value", []):
                if limit and items_returned >= limit:
                    return
                yield item
                items_returned += 1

            next_link = result.get("@odata.nextLink")
            if not next_link:
                return

    async def collect(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        return [item async for item in self.request_paginated(path, params, limit)]

    async def download_raw(self, path: str) -> bytes:
        headers = await self._headers()
        response = await self._send("GET", f"{self.base_url}{path}", headers)
        return response.content

    async def aclose(self) -> None:
        await self._client.aclose()
