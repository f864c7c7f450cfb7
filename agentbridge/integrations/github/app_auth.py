"""
GitHub App authentication.

Signs a short-lived RS256 app JWT and exchanges it for installation access
tokens, optionally scoped down to named repositories.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import httpx
import jwt
import structlog

from agentbridge.core.config import Settings
from agentbridge.core.errors import ConfigurationError, UpstreamError

logger = structlog.get_logger(__name__)

# Refresh cached tokens this long before GitHub expires them
_EXPIRY_SKEW_SEC = 120


@dataclass
class InstallationToken:
    token: str
    expires_at: float
    repositories: Optional[List[str]] = None

    def is_fresh(self, now: Optional[float] = None) -> bool:
        return (now or time.time()) < self.expires_at - _EXPIRY_SKEW_SEC


def _parse_expiry(value: Optional[str]) -> float:
    if not value:
        return time.time() + 3600
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


class GitHubAppAuth:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport
        self._cached: Optional[InstallationToken] = None

    def _require_config(self) -> None:
        if not self.settings.github_configured:
            raise ConfigurationError(
                "GitHub App is not configured. Set GITHUB_APP_ID, "
                "GITHUB_APP_PRIVATE_KEY and GITHUB_APP_INSTALLATION_ID."
            )

    def app_jwt(self, now: Optional[int] = None) -> str:
        self._require_config()
        issued = int(now or time.time()) - 60
        payload = {
            "iat": issued,
            "exp": issued + 9 * 60,
            "iss": str(self.settings.github_app_id),
        }
        return jwt.encode(payload, self.settings.github_private_key_pem, algorithm="RS256")

    async def _request_token(self, repositories: Optional[List[str]]) -> InstallationToken:
        self._require_config()
        url = (
            f"{self.settings.github_api_url}/app/installations/"
            f"{self.settings.github_app_installation_id}/access_tokens"
        )
        body = {"repositories": repositories} if repositories else None
        async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
            resp = await client.post(
                url,
                json=body,
                headers={
                    "Authorization": f"Bearer {self.app_jwt()}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
            )
        if resp.status_code >= 400:
            logger.error(
                "GitHub installation token request failed",
                status=resp.status_code,
                error=resp.text[:200],
            )
            raise UpstreamError("GitHub", resp.status_code, resp.text, url=url)
        data = resp.json()
        logger.info("Issued GitHub installation token", repositories=repositories)
        return InstallationToken(
            token=data["token"],
            expires_at=_parse_expiry(data.get("expires_at")),
            repositories=repositories,
        )

    async def installation_token(self) -> str:
        """Installation-wide token, cached until shortly before expiry."""
        if self._cached is None or not self._cached.is_fresh():
            self._cached = await self._request_token(None)
        return self._cached.token

    async def scoped_token(self, repositories: List[str]) -> str:
        """Fresh token limited to ``repositories`` (repo names, no owner). Never cached."""
        token = await self._request_token(sorted(set(repositories)))
        return token.token
