"""Async httpx client for the content store's read-only query API and the asset CDN."""

import json
from typing import Any, Dict, Optional

import httpx

from ..exceptions import BackendError


class ContentStoreClient:
    """
    Read-only client for the content store.

    Only the query endpoint (``GET /{api_version}/data/query/{dataset}``) is
    exposed; mutations go through a different endpoint this client never
    calls.
    """

    def __init__(
        self,
        base_url: str,
        dataset: str,
        api_version: str = "v2024-01-01",
        token: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.dataset = dataset
        self.api_version = api_version
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            timeout=timeout, headers=headers, transport=transport
        )

    @property
    def query_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/data/query/{self.dataset}"

    async def fetch(self, query: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a query and return its ``result`` payload.

        Raises:
            BackendError: On transport failure, a non-2xx status or a body
                without a ``result`` key

        """
        request_params = {"query": query}
        for key, value in (params or {}).items():
            request_params[f"${key}"] = json.dumps(value)

        try:
            resp = await self._client.get(self.query_url, params=request_params)
        except httpx.TimeoutException as e:
            raise BackendError(f"content store timed out: {e}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"content store unreachable: {e}") from e

        if resp.status_code >= 400:
            detail = resp.text
            try:
                body = resp.json()
                if isinstance(body, dict):
                    error = body.get("error")
                    if isinstance(error, dict):
                        detail = error.get("description") or error.get("type") or detail
                    elif error:
                        detail = str(error)
            except ValueError:
                pass
            raise BackendError(
                f"content store returned HTTP {resp.status_code}: {detail}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise BackendError("content store returned a non-JSON body") from e
        if not isinstance(body, dict) or "result" not in body:
            raise BackendError("content store response has no 'result'")
        return body["result"]

    async def head(self, url: str) -> httpx.Response:
        """Issue a HEAD request against a CDN url, following redirects."""
        try:
            return await self._client.head(url, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise BackendError(f"asset request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"asset request failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
