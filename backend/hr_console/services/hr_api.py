"""Async client for the remote HR REST API.

Thin httpx wrapper: auth header, timeouts, pagination and conversion of every
transport or HTTP failure into a single HRApiError carrying the parsed body.
"""
import logging
from typing import Any

import httpx

from hr_console.core.config import settings

logger = logging.getLogger(__name__)

# ─── Endpoints ───

USERS_ENDPOINT = "/api/accounts/users/"
MAX_LIST_PAGES = 500


# ─── Errors ───

class HRApiError(Exception):
    """A request to the HR API failed.

    status_code is 0 when no response was received. payload is the decoded
    JSON body of an error response, when there was one.
    """

    def __init__(self, message: str, status_code: int = 0, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_error_payload(self) -> Any:
        """Error payload suitable for the error-tree normalizer."""
        if isinstance(self.payload, dict):
            if "errors" in self.payload and self.payload["errors"]:
                return self.payload["errors"]
            return self.payload
        if isinstance(self.payload, list) and self.payload:
            return self.payload
        return {"non_field_errors": [self.message]}


def _network_message(exc: httpx.RequestError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "Request timeout - server took too long to respond"
    if isinstance(exc, httpx.ConnectError):
        text = str(exc).lower()
        if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text:
            return "Cannot reach server - DNS resolution failed"
        return "Connection refused - server may be down"
    return "Network error - please check your connection"


def _error_from_response(response: httpx.Response) -> HRApiError:
    try:
        body = response.json()
    except ValueError:
        body = None
    message = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str):
                message = body[key]
                break
    return HRApiError(
        message or f"Server error ({response.status_code})",
        status_code=response.status_code,
        payload=body,
    )


# ─── Client ───

def build_http_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Shared connection pool for all operators; created once per process."""
    return httpx.AsyncClient(
        base_url=settings.HR_API_BASE_URL,
        timeout=settings.HR_API_TIMEOUT_SECONDS,
        headers={"Accept": "application/json"},
        transport=transport,
    )


class HRApiClient:
    """HR API client acting on behalf of one operator.

    Pass a shared `http` client to reuse its pool (it is then not closed by
    aclose()); otherwise a private client is created and owned.
    """

    def __init__(
        self,
        token: str | None = None,
        http: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._owns_http = http is None
        self._http = http if http is not None else build_http_client(transport)
        self._auth_headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def __aenter__(self) -> "HRApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, url, headers=self._auth_headers, **kwargs)
        except httpx.RequestError as exc:
            logger.warning("HR API %s %s failed: %s", method, url, exc)
            raise HRApiError(_network_message(exc)) from exc

        if response.is_error:
            error = _error_from_response(response)
            logger.info("HR API %s %s returned %d: %s", method, url, response.status_code, error.message)
            raise error

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise HRApiError(
                f"Invalid JSON in response ({response.status_code})",
                status_code=response.status_code,
            ) from exc

    # ─── Imports ───

    async def post_import(
        self,
        endpoint: str,
        filename: str,
        content: bytes,
        content_type: str,
        dry_run: bool,
    ) -> dict[str, Any]:
        """Upload a spreadsheet to an import endpoint; dry runs pass ?dry_run=true."""
        params = {"dry_run": "true"} if dry_run else None
        body = await self._request(
            "POST",
            endpoint,
            params=params,
            files={"file": (filename, content, content_type)},
            timeout=settings.IMPORT_TIMEOUT_SECONDS,
        )
        if not isinstance(body, dict):
            raise HRApiError("Unexpected import response shape", payload=body)
        return body

    # ─── Lists ───

    async def list_records(self, endpoint: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Fetch every record of a list endpoint, following `next` links."""
        records: list[dict[str, Any]] = []
        url: str | None = endpoint
        query = params
        for _ in range(MAX_LIST_PAGES):
            if url is None:
                break
            body = await self._request("GET", url, params=query)
            if isinstance(body, list):
                records.extend(body)
                break
            records.extend(body.get("results") or [])
            url = body.get("next")
            query = None  # `next` already carries the query string
        else:
            logger.warning("Stopped paging %s after %d pages", endpoint, MAX_LIST_PAGES)
        return records

    # ─── Users ───

    async def list_usernames(self) -> set[str]:
        users = await self.list_records(USERS_ENDPOINT)
        return {u["username"].lower() for u in users if isinstance(u.get("username"), str)}

    async def create_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", USERS_ENDPOINT, json=payload)
