from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hr_console.services.hr_api import HRApiClient, build_http_client

bearer_scheme = HTTPBearer(auto_error=False)


async def get_operator_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str:
    """The operator's HR API access token, forwarded as-is."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Process-wide HR API connection pool (created in the app lifespan)."""
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        client = build_http_client()
        request.app.state.http_client = client
    return client


async def get_hr_client(
    token: Annotated[str, Depends(get_operator_token)],
    http: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> HRApiClient:
    return HRApiClient(token=token, http=http)
