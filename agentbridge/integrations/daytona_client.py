"""Daytona sandbox API client

Covers what the workspace tools need: sandbox create/get/start, one-shot
command execution, background sessions and file transfer through the
sandbox toolbox endpoints.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from agentbridge.core.config import Settings
from agentbridge.core.errors import ConfigurationError, UpstreamError

logger = structlog.get_logger(__name__)


class DaytonaClient:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 120.0,
    ):
        self.settings = settings
        headers = {"Accept": "application/json"}
        if settings.daytona_api_key:
            headers["Authorization"] = f"Bearer {settings.daytona_api_key}"
        self.client = httpx.AsyncClient(
            base_url=settings.daytona_api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return self.settings.daytona_configured

    def _require_config(self) -> None:
        if not self.configured:
            raise ConfigurationError("DAYTONA_API_KEY is required to create a workspace")

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        self._require_config()
        resp = await self.client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            logger.error(
                "Daytona API error",
                method=method,
                path=path,
                status=resp.status_code,
                error=resp.text[:200],
            )
            raise UpstreamError("Daytona", resp.status_code, resp.text, url=path)
        return resp

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._request(method, path, **kwargs)
        if not resp.content:
            return {}
        return resp.json()

    # ---- sandboxes ----

    async def create_sandbox(
        self,
        snapshot: str,
        env: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None,
        ttl_minutes: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"snapshot": snapshot, "env": env or {}, "labels": labels or {}}
        if ttl_minutes:
            body["autoStopInterval"] = ttl_minutes
            body["autoDeleteInterval"] = ttl_minutes
        logger.info("Creating Daytona sandbox", snapshot=snapshot, ttl_minutes=ttl_minutes)
        return await self._json("POST", "/sandbox", json=body)

    async def get_sandbox(self, sandbox_id: str) -> Dict[str, Any]:
        return await self._json("GET", f"/sandbox/{sandbox_id}")

    async def start_sandbox(self, sandbox_id: str) -> Dict[str, Any]:
        logger.info("Starting Daytona sandbox", sandbox_id=sandbox_id)
        return await self._json("POST", f"/sandbox/{sandbox_id}/start")

    # ---- toolbox ----

    def _toolbox(self, sandbox_id: str, path: str) -> str:
        return f"/toolbox/{sandbox_id}/toolbox/{path.lstrip('/')}"

    async def execute(
        self,
        sandbox_id: str,
        command: str,
        cwd: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"command": command}
        if cwd:
            body["cwd"] = cwd
        if timeout:
            body["timeout"] = timeout
        return await self._json("POST", self._toolbox(sandbox_id, "process/execute"), json=body)

    async def create_session(self, sandbox_id: str, session_id: str) -> None:
        await self._request(
            "POST", self._toolbox(sandbox_id, "process/session"), json={"sessionId": session_id}
        )

    async def execute_in_session(
        self, sandbox_id: str, session_id: str, command: str, run_async: bool = True
    ) -> Dict[str, Any]:
        return await self._json(
            "POST",
            self._toolbox(sandbox_id, f"process/session/{session_id}/exec"),
            json={"command": command, "runAsync": run_async},
        )

    async def get_session_command(self, sandbox_id: str, session_id: str, command_id: str) -> Dict[str, Any]:
        return await self._json(
            "GET", self._toolbox(sandbox_id, f"process/session/{session_id}/command/{command_id}")
        )

    async def get_session_command_logs(self, sandbox_id: str, session_id: str, command_id: str) -> str:
        resp = await self._request(
            "GET",
            self._toolbox(sandbox_id, f"process/session/{session_id}/command/{command_id}/logs"),
        )
        return resp.text

    async def delete_session(self, sandbox_id: str, session_id: str) -> None:
        await self._request("DELETE", self._toolbox(sandbox_id, f"process/session/{session_id}"))

    async def download_file(self, sandbox_id: str, path: str) -> bytes:
        resp = await self._request(
            "GET", self._toolbox(sandbox_id, "files/download"), params={"path": path}
        )
        return resp.content

    async def upload_file(self, sandbox_id: str, path: str, content: bytes) -> None:
        await self._request(
            "POST",
            self._toolbox(sandbox_id, "files/upload"),
            params={"path": path},
            files={"file": (path.rsplit("/", 1)[-1] or "file", content)},
        )

    async def close(self):
        await self.client.aclose()
