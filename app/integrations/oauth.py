"""
Refresh-token exchange shared by OAuth providers.

Providers differ only in endpoint, body encoding and how the client
authenticates; the response handling is the same everywhere. An ``error``
field in the body counts as a failure even on HTTP 200 (GitHub answers
that way).
"""
from typing import Any, Dict, Optional

import httpx

from app.core.exceptions import RefreshFailedError
from app.integrations.adapter import TokenGrant


async def exchange_refresh_token(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    refresh_token: str,
    client_id: Optional[str],
    client_secret: Optional[str],
    encoding: str = "json",
    basic_auth: bool = False,
    extra: Optional[Dict[str, Any]] = None,
) -> TokenGrant:
    """
    POST a ``refresh_token`` grant and parse the new credentials.

    Args:
        encoding: ``"json"`` or ``"form"`` request body
        basic_auth: send client credentials as HTTP Basic instead of in the body

    Raises:
        RefreshFailedError: transport failure, error status, ``error`` body or missing access token
    """
    payload: Dict[str, Any] = {"grant_type": "refresh_token", "refresh_token": refresh_token}
    if not basic_auth:
        if client_id:
            payload["client_id"] = client_id
        if client_secret:
            payload["client_secret"] = client_secret
    if extra:
        payload.update(extra)

    request_kwargs: Dict[str, Any] = {"headers": {"Accept": "application/json"}}
    if encoding == "form":
        request_kwargs["data"] = payload
    else:
        request_kwargs["json"] = payload
    if basic_auth:
        request_kwargs["auth"] = httpx.BasicAuth(client_id or "", client_secret or "")

    try:
        response = await client.post(url, **request_kwargs)
    except httpx.HTTPError as exc:
        raise RefreshFailedError(
            f"Token refresh request to {provider} failed: {type(exc).__name__}",
            provider=provider,
        ) from exc

    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    if response.is_error or body.get("error"):
        reason = body.get("error_description") or body.get("error") or f"HTTP {response.status_code}"
        raise RefreshFailedError(f"{provider} refused token refresh: {reason}", provider=provider)

    access_token = body.get("access_token")
    if not access_token:
        raise RefreshFailedError(f"{provider} token response has no access_token", provider=provider)

    expires_in = body.get("expires_in")
    try:
        expires_in = int(expires_in) if expires_in is not None else None
    except (TypeError, ValueError):
        expires_in = None

    return TokenGrant(
        access_token=access_token,
        refresh_token=body.get("refresh_token") or None,
        expires_in=expires_in,
    )
