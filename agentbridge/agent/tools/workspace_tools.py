"""
Workspace tools: a per-conversation sandbox for shell commands, background
processes, and file edits.

Only ``initialize_workspace`` may create a sandbox. Every other tool fails
with a "not initialized" error until it has been called for the conversation.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from agentbridge.agent.tools.base import NoInput, Tool, ToolContext, ToolInput, tool
from agentbridge.core.errors import ConfigurationError, ToolError
from agentbridge.services.workspace_manager import WorkspaceConnection, WorkspaceSessionManager

INITIALIZE_TOOL = "initialize_workspace"
MAX_OUTPUT_CHARS = 30000


class AuthenticateGitInput(ToolInput):
    owner: Optional[str] = Field(default=None, description="Repository owner; defaults to the current repository owner")
    repos: List[str] = Field(default_factory=list, description="Repository names to grant push access to")


class BashInput(ToolInput):
    command: str = Field(min_length=1)
    cwd: Optional[str] = None
    timeout: Optional[int] = Field(default=None, gt=0, le=3600, description="Seconds")


class BackgroundInput(ToolInput):
    command: str = Field(min_length=1)
    cwd: Optional[str] = None


class ProcessInput(ToolInput):
    process_id: str = Field(min_length=1)


class ReadFileInput(ToolInput):
    path: str = Field(min_length=1)


class WriteFileInput(ToolInput):
    path: str = Field(min_length=1)
    content: str


class EditFileInput(ToolInput):
    path: str = Field(min_length=1)
    old_text: str = Field(min_length=1, description="Exact text to replace; must occur exactly once")
    new_text: str


def _clip(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return f"... [truncated {len(text) - MAX_OUTPUT_CHARS} chars]\n" + text[-MAX_OUTPUT_CHARS:]


def build_workspace_tools(ctx: ToolContext) -> List[Tool]:
    def manager() -> WorkspaceSessionManager:
        if ctx.workspaces is None:
            raise ConfigurationError("Workspaces are not configured")
        return ctx.workspaces

    async def connection() -> WorkspaceConnection:
        return await manager().require(ctx.conversation_key)

    @tool(
        INITIALIZE_TOOL,
        "Create (or reconnect to) this conversation's sandbox workspace. Call before any other workspace tool.",
        NoInput,
    )
    async def initialize_workspace(args: NoInput):
        conn = await manager().ensure(ctx.conversation_key)
        return {"workspace_id": conn.workspace_id, "ready": True}

    @tool(
        "workspace_authenticate_git",
        "Give git in the workspace push access to the listed repositories.",
        AuthenticateGitInput,
    )
    async def authenticate_git(args: AuthenticateGitInput):
        await connection()
        owner = args.owner or ctx.record.owner
        repos = args.repos or ([ctx.record.repo] if ctx.record.repo else [])
        if not owner:
            raise ToolError("owner is required")
        return await manager().authenticate_git(ctx.conversation_key, owner, repos)

    @tool("execute_bash", "Run a shell command in the workspace and wait for it to finish.", BashInput)
    async def execute_bash(args: BashInput):
        conn = await connection()
        result = await conn.exec(args.command, cwd=args.cwd, timeout=args.timeout)
        result["output"] = _clip(result.get("output") or "")
        return result

    @tool(
        "execute_bash_background",
        "Start a long-running command in the workspace. Returns a process_id for process_output/process_kill.",
        BackgroundInput,
    )
    async def execute_bash_background(args: BackgroundInput):
        conn = await connection()
        return await conn.start_process(args.command, cwd=args.cwd)

    @tool("process_output", "Get the output and status of a background process.", ProcessInput)
    async def process_output(args: ProcessInput):
        conn = await connection()
        result = await conn.process_output(args.process_id)
        result["output"] = _clip(result.get("output") or "")
        return result

    @tool("process_kill", "Stop a background process.", ProcessInput)
    async def process_kill(args: ProcessInput):
        conn = await connection()
        return await conn.kill(args.process_id)

    @tool("read_file", "Read a text file from the workspace.", ReadFileInput)
    async def read_file(args: ReadFileInput):
        conn = await connection()
        return {"path": args.path, "content": _clip(await conn.read_file(args.path))}

    @tool("write_file", "Create or overwrite a file in the workspace.", WriteFileInput)
    async def write_file(args: WriteFileInput):
        conn = await connection()
        return await conn.write_file(args.path, args.content)

    @tool("edit_file", "Replace one exact occurrence of old_text with new_text in a workspace file.", EditFileInput)
    async def edit_file(args: EditFileInput):
        conn = await connection()
        return await conn.edit_file(args.path, args.old_text, args.new_text)

    return [
        initialize_workspace,
        authenticate_git,
        execute_bash,
        execute_bash_background,
        process_output,
        process_kill,
        read_file,
        write_file,
        edit_file,
    ]
