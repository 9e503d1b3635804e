"""GitHub App authentication.

Webhook handling acts on behalf of an installation. The app signs a
short-lived RS256 JWT with its private key and exchanges it for an
installation access token, which is cached until shortly before it
expires.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
import jwt

from src.triage.errors import UpstreamError
from src.triage.github.client import GitHubAPIError, GitHubClient
from src.triage.github.models import InstallationToken

logger = logging.getLogger(__name__)

# GitHub rejects app JWTs valid for more than ten minutes
APP_JWT_LIFETIME_SECONDS = 540
# Backdate iat to tolerate clock drift
APP_JWT_CLOCK_SKEW_SECONDS = 60
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


class GitHubAppAuth:
    """Mints installation-scoped GitHub clients for a GitHub App.

    Attributes:
        app_id: The GitHub App id.
        base_url: Base URL for GitHub API.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        app_id: str,
        private_key: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self._private_key = private_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._tokens: Dict[int, InstallationToken] = {}

    def create_app_jwt(self, now: Optional[float] = None) -> str:
        """Create the JWT that authenticates as the app itself.

        Args:
            now: Unix timestamp to issue the token at (defaults to now).

        Returns:
            An RS256-signed JWT.
        """
        issued_at = int(now if now is not None else time.time())
        payload = {
            "iat": issued_at - APP_JWT_CLOCK_SKEW_SECONDS,
            "exp": issued_at + APP_JWT_LIFETIME_SECONDS,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    async def get_installation_token(self, installation_id: int) -> str:
        """Return a valid access token for an installation.

        Args:
            installation_id: The installation id from the webhook payload.

        Returns:
            The installation access token.

        Raises:
            GitHubAPIError: If GitHub refuses to issue a token.
        """
        cached = self._tokens.get(installation_id)
        if cached is not None and not self._expiring(cached):
            return cached.token

        path = f"/app/installations/{installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {self.create_app_jwt()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(path, headers=headers)
        except httpx.RequestError as e:
            raise UpstreamError(
                f"Installation token request failed: {e}", cause=e
            ) from e

        if response.status_code != 201:
            logger.error(
                "Failed to create installation token",
                extra={
                    "installation_id": installation_id,
                    "status_code": response.status_code,
                },
            )
            raise GitHubAPIError(
                message=f"Could not get installation token: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            )

        token = InstallationToken.model_validate(response.json())
        self._tokens[installation_id] = token
        logger.info(
            "Issued installation token",
            extra={"installation_id": installation_id},
        )
        return token.token

    async def installation_client(self, installation_id: int, **kwargs: Any) -> GitHubClient:
        """Create a GitHubClient authenticated as an installation.

        The caller owns the returned client and must close it.
        """
        token = await self.get_installation_token(installation_id)
        return GitHubClient(token=token, base_url=self.base_url, **kwargs)

    def _expiring(self, token: InstallationToken) -> bool:
        if token.expires_at is None:
            return True
        return token.expires_at - TOKEN_REFRESH_MARGIN <= datetime.now(timezone.utc)
