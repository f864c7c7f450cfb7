"""
Workspace Session Manager

One ephemeral Daytona sandbox per conversation, created lazily and
recovered from the handle persisted in the correlation store. Sandboxes
expire through their own TTL; a handle that no longer connects is replaced
by a fresh sandbox once per call. New and restarted sandboxes are polled
until they report a running state, bounded by DAYTONA_START_TIMEOUT_SEC.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import shlex
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from agentbridge.agent.context_store import ContextRepository, WorkspaceHandle
from agentbridge.core.config import Settings
from agentbridge.core.errors import (
    AgentBridgeError,
    ConfigurationError,
    ToolError,
    UpstreamError,
)
from agentbridge.integrations.daytona_client import DaytonaClient
from agentbridge.integrations.github.app_auth import GitHubAppAuth

logger = logging.getLogger(__name__)

ENV_FILE = "/home/daytona/.agentbridge.env"
CONVERSATION_LABEL = "agentbridge.conversation"
TOKEN_LABEL = "agentbridge.token"

_RUNNING_STATES = {"started", "running"}
_RESUMABLE_STATES = {"stopped", "archived"}
_FAILED_STATES = {"error", "build_failed", "destroyed", "destroying"}

NOT_INITIALIZED = "Workspace not initialized. Call initialize_workspace first."


class WorkspaceUnavailable(AgentBridgeError):
    """The persisted handle no longer points at a usable sandbox."""


def _wrap(command: str) -> str:
    # Every command sees the variables written by authenticate_git
    prelude = f"[ -f {ENV_FILE} ] && . {ENV_FILE}; "
    return f"bash -lc {shlex.quote(prelude + command)}"


def _state(sandbox: Dict[str, Any]) -> str:
    return str(sandbox.get("state") or "").lower()


@dataclass
class WorkspaceConnection:
    handle: WorkspaceHandle
    client: DaytonaClient

    @property
    def workspace_id(self) -> str:
        return self.handle.workspace_id

    async def exec(self, command: str, cwd: Optional[str] = None, timeout: Optional[int] = None) -> Dict[str, Any]:
        result = await self.client.execute(self.workspace_id, _wrap(command), cwd=cwd, timeout=timeout)
        return {"exit_code": result.get("exitCode"), "output": result.get("result", "")}

    async def start_process(self, command: str, cwd: Optional[str] = None) -> Dict[str, Any]:
        session_id = f"proc-{uuid.uuid4().hex[:12]}"
        await self.client.create_session(self.workspace_id, session_id)
        full = f"cd {shlex.quote(cwd)} && {command}" if cwd else command
        started = await self.client.execute_in_session(
            self.workspace_id, session_id, _wrap(full), run_async=True
        )
        command_id = started.get("cmdId") or started.get("commandId")
        return {"process_id": f"{session_id}:{command_id}"}

    def _split(self, process_id: str) -> tuple[str, str]:
        session_id, _, command_id = process_id.partition(":")
        if not session_id or not command_id:
            raise ToolError(f"Unknown process id: {process_id}")
        return session_id, command_id

    async def process_output(self, process_id: str) -> Dict[str, Any]:
        session_id, command_id = self._split(process_id)
        status = await self.client.get_session_command(self.workspace_id, session_id, command_id)
        logs = await self.client.get_session_command_logs(self.workspace_id, session_id, command_id)
        exit_code = status.get("exitCode")
        return {
            "process_id": process_id,
            "running": exit_code is None,
            "exit_code": exit_code,
            "output": logs,
        }

    async def kill(self, process_id: str) -> Dict[str, Any]:
        session_id, _ = self._split(process_id)
        await self.client.delete_session(self.workspace_id, session_id)
        return {"process_id": process_id, "killed": True}

    async def read_file(self, path: str) -> str:
        data = await self.client.download_file(self.workspace_id, path)
        return data.decode("utf-8", errors="replace")

    async def write_file(self, path: str, content: str) -> Dict[str, Any]:
        parent = path.rsplit("/", 1)[0]
        if parent and parent != path:
            await self.client.execute(self.workspace_id, f"mkdir -p {shlex.quote(parent)}")
        payload = content.encode("utf-8")
        await self.client.upload_file(self.workspace_id, path, payload)
        return {"path": path, "bytes": len(payload)}

    async def edit_file(self, path: str, old_text: str, new_text: str) -> Dict[str, Any]:
        current = await self.read_file(path)
        count = current.count(old_text)
        if count == 0:
            raise ToolError(f"old_text not found in {path}")
        if count > 1:
            raise ToolError(f"old_text matches {count} times in {path}; make it unique")
        return await self.write_file(path, current.replace(old_text, new_text, 1))


class WorkspaceSessionManager:
    def __init__(
        self,
        settings: Settings,
        contexts: ContextRepository,
        daytona: DaytonaClient,
        github_auth: Optional[GitHubAppAuth] = None,
    ):
        self.settings = settings
        self.contexts = contexts
        self.daytona = daytona
        self.github_auth = github_auth

    async def is_initialized(self, conversation_key: str) -> bool:
        return await self.contexts.load_workspace(conversation_key) is not None

    async def _fetch(self, workspace_id: str) -> Dict[str, Any]:
        try:
            return await self.daytona.get_sandbox(workspace_id)
        except UpstreamError as exc:
            raise WorkspaceUnavailable(f"sandbox {workspace_id}: {exc}") from exc

    async def _wait_for(
        self, workspace_id: str, targets: Set[str], sandbox: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Poll until the sandbox reaches one of ``targets``; failed or missing states raise."""
        deadline = time.monotonic() + self.settings.daytona_start_timeout_sec
        while True:
            if sandbox is None:
                sandbox = await self._fetch(workspace_id)
            state = _state(sandbox)
            if state in targets:
                return sandbox
            if not state or state in _FAILED_STATES:
                raise WorkspaceUnavailable(f"sandbox {workspace_id} is {state or 'unknown'}")
            if time.monotonic() >= deadline:
                raise WorkspaceUnavailable(
                    f"sandbox {workspace_id} still {state} after "
                    f"{self.settings.daytona_start_timeout_sec:g}s"
                )
            await asyncio.sleep(self.settings.daytona_poll_interval_sec)
            sandbox = None

    async def connect(self, handle: WorkspaceHandle) -> WorkspaceConnection:
        """Attach to the handle's sandbox, starting it and waiting until it runs."""
        workspace_id = handle.workspace_id
        sandbox = await self._fetch(workspace_id)

        labels = sandbox.get("labels") or {}
        if labels.get(TOKEN_LABEL) not in (None, handle.connection_token):
            raise WorkspaceUnavailable(f"sandbox {workspace_id} belongs to another session")

        if _state(sandbox) == "stopping":
            sandbox = await self._wait_for(workspace_id, _RESUMABLE_STATES, sandbox)
        if _state(sandbox) in _RESUMABLE_STATES:
            try:
                await self.daytona.start_sandbox(workspace_id)
            except UpstreamError as exc:
                raise WorkspaceUnavailable(f"sandbox {workspace_id} failed to start") from exc
            sandbox = None
        await self._wait_for(workspace_id, _RUNNING_STATES, sandbox)
        return WorkspaceConnection(handle=handle, client=self.daytona)

    async def _access_token(self) -> Optional[str]:
        if self.github_auth is None or not self.settings.github_configured:
            return None
        return await self.github_auth.installation_token()

    async def create(self, conversation_key: str) -> WorkspaceConnection:
        if not self.daytona.configured:
            raise ConfigurationError("DAYTONA_API_KEY is required to create a workspace")

        env: Dict[str, str] = {}
        token = await self._access_token()
        if token:
            env["GITHUB_TOKEN"] = token
            env["GH_TOKEN"] = token

        connection_token = secrets.token_urlsafe(24)
        sandbox = await self.daytona.create_sandbox(
            snapshot=self.settings.daytona_snapshot,
            env=env,
            labels={CONVERSATION_LABEL: conversation_key, TOKEN_LABEL: connection_token},
            ttl_minutes=self.settings.daytona_ttl_minutes,
        )
        handle = WorkspaceHandle(workspace_id=str(sandbox["id"]), connection_token=connection_token)
        await self.contexts.save_workspace(conversation_key, handle)
        logger.info(
            "workspace.created",
            extra={"conversation_key": conversation_key, "status": handle.workspace_id},
        )
        return await self.connect(handle)

    async def ensure(self, conversation_key: str) -> WorkspaceConnection:
        handle = await self.contexts.load_workspace(conversation_key)
        if handle is not None:
            try:
                return await self.connect(handle)
            except WorkspaceUnavailable as exc:
                logger.info(
                    "workspace.stale_handle",
                    extra={"conversation_key": conversation_key, "reason": str(exc)},
                )
        return await self.create(conversation_key)

    async def require(self, conversation_key: str) -> WorkspaceConnection:
        """Connection for tools that must not create a workspace implicitly."""
        if not await self.is_initialized(conversation_key):
            raise ToolError(NOT_INITIALIZED)
        return await self.ensure(conversation_key)

    async def authenticate_git(
        self, conversation_key: str, owner: str, repos: List[str]
    ) -> Dict[str, Any]:
        if self.github_auth is None:
            raise ConfigurationError("GitHub App is not configured")
        names = [r.split("/", 1)[-1] for r in repos if r]
        if not names:
            raise ToolError("At least one repository is required")

        connection = await self.ensure(conversation_key)
        token = await self.github_auth.scoped_token(names)
        env_lines = [
            f"export GITHUB_TOKEN={shlex.quote(token)}",
            f"export GH_TOKEN={shlex.quote(token)}",
        ]
        await connection.client.upload_file(
            connection.workspace_id, ENV_FILE, ("\n".join(env_lines) + "\n").encode("utf-8")
        )
        helper = "!f() { echo username=x-access-token; echo password=$GITHUB_TOKEN; }; f"
        await connection.exec(
            f"git config --global credential.https://github.com.helper {shlex.quote(helper)}"
        )
        logger.info(
            "workspace.git_authenticated",
            extra={"conversation_key": conversation_key, "status": f"{owner}:{','.join(names)}"},
        )
        return {"owner": owner, "repositories": names, "workspace_id": connection.workspace_id}
