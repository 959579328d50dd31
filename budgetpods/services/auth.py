"""
Bearer Token Verification

Two providers implement AuthProviderInterface:
- RemoteAuthProvider asks a hosted auth service (GET <url>/user) who owns a token
- StaticTokenAuthProvider maps known tokens to users, for local runs and tests
"""

import re
from typing import Optional

import httpx
import structlog

from budgetpods.services.storage.interface import (
    AuthenticationError,
    AuthProviderInterface,
    VerifiedUser,
)


logger = structlog.get_logger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an Authorization header.

    Raises:
        AuthenticationError: Header missing, not a Bearer header, or empty token
    """
    if not authorization:
        raise AuthenticationError("Missing Authorization header")

    match = _BEARER_RE.match(authorization)
    if not match:
        raise AuthenticationError(
            "Invalid Authorization header format (expected: Bearer <token>)"
        )

    token = match.group(1).strip()
    if not token:
        raise AuthenticationError("Missing Bearer token")
    return token


class StaticTokenAuthProvider(AuthProviderInterface):
    """Accepts a fixed set of tokens."""

    def __init__(self, tokens: Optional[dict[str, VerifiedUser]] = None):
        self._tokens = dict(tokens or {})

    def add_token(self, token: str, user_id: str, email: Optional[str] = None) -> None:
        self._tokens[token] = VerifiedUser(user_id=user_id, email=email)

    async def verify_user(self, authorization: Optional[str]) -> VerifiedUser:
        token = extract_bearer_token(authorization)
        user = self._tokens.get(token)
        if user is None:
            raise AuthenticationError("Invalid token (no user)")
        return user


class RemoteAuthProvider(AuthProviderInterface):
    """
    Verifies tokens against a hosted auth service.

    The service answers GET <url>/user with the token's user as JSON
    ({"id": ..., "email": ...}) or a 4xx for a bad token.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout_ms: int = 5_000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_ms / 1000
        self._client = client

    async def verify_user(self, authorization: Optional[str]) -> VerifiedUser:
        token = extract_bearer_token(authorization)
        headers = {"Authorization": f"Bearer {token}"}
        if self._api_key:
            headers["apikey"] = self._api_key

        try:
            if self._client is not None:
                response = await self._client.get(
                    f"{self._url}/user", headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(f"{self._url}/user", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("auth_request_failed", error=str(e))
            raise AuthenticationError(f"auth.getUser failed: {e}") from e

        if response.status_code >= 400:
            raise AuthenticationError(
                f"auth.getUser failed: HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AuthenticationError("auth.getUser failed: invalid response body") from e
        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise AuthenticationError("Invalid token (no user)")
        return VerifiedUser(user_id=str(user_id), email=data.get("email"))
