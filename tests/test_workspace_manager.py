from unittest.mock import AsyncMock

import pytest

from agentbridge.agent.context_store import ContextRecord, WorkspaceHandle
from agentbridge.agent.tools.base import ToolContext
from agentbridge.agent.tools.workspace_tools import INITIALIZE_TOOL, build_workspace_tools
from agentbridge.core.errors import ConfigurationError, ToolError, UpstreamError
from agentbridge.services.workspace_manager import (
    ENV_FILE,
    NOT_INITIALIZED,
    TOKEN_LABEL,
    WorkspaceSessionManager,
    WorkspaceUnavailable,
)

KEY = "gh-pr~octo~widgets~5"


@pytest.fixture
def daytona():
    client = AsyncMock()
    client.configured = True
    client.create_sandbox.return_value = {"id": "sb-new"}
    client.get_sandbox.return_value = {"id": "sb-new", "state": "started", "labels": {}}
    client.execute.return_value = {"exitCode": 0, "result": "ok"}
    return client


@pytest.fixture
def manager(settings, contexts, daytona):
    return WorkspaceSessionManager(settings, contexts, daytona)


@pytest.mark.asyncio
async def test_ensure_creates_and_persists_handle(manager, contexts, daytona):
    conn = await manager.ensure(KEY)

    assert conn.workspace_id == "sb-new"
    handle = await contexts.load_workspace(KEY)
    assert handle.workspace_id == "sb-new"
    labels = daytona.create_sandbox.call_args.kwargs["labels"]
    assert labels[TOKEN_LABEL] == handle.connection_token
    assert await manager.is_initialized(KEY)


@pytest.mark.asyncio
async def test_existing_handle_is_reused(manager, contexts, daytona):
    await contexts.save_workspace(KEY, WorkspaceHandle(workspace_id="sb-old", connection_token="tok"))
    daytona.get_sandbox.return_value = {"id": "sb-old", "state": "started", "labels": {TOKEN_LABEL: "tok"}}

    conn = await manager.ensure(KEY)

    assert conn.workspace_id == "sb-old"
    daytona.create_sandbox.assert_not_called()


@pytest.mark.asyncio
async def test_stale_handle_is_replaced(manager, contexts, daytona):
    await contexts.save_workspace(KEY, WorkspaceHandle(workspace_id="sb-gone", connection_token="tok"))
    daytona.get_sandbox.side_effect = [
        UpstreamError("Daytona", 404, "not found"),
        {"id": "sb-new", "state": "started", "labels": {}},
    ]

    conn = await manager.ensure(KEY)

    assert conn.workspace_id == "sb-new"
    assert (await contexts.load_workspace(KEY)).workspace_id == "sb-new"


@pytest.mark.asyncio
async def test_foreign_token_is_not_reused(manager, contexts, daytona):
    await contexts.save_workspace(KEY, WorkspaceHandle(workspace_id="sb-old", connection_token="mine"))
    daytona.get_sandbox.side_effect = [
        {"id": "sb-old", "state": "started", "labels": {TOKEN_LABEL: "theirs"}},
        {"id": "sb-new", "state": "started", "labels": {}},
    ]

    conn = await manager.ensure(KEY)
    assert conn.workspace_id == "sb-new"


@pytest.mark.asyncio
async def test_stopped_sandbox_is_started(manager, contexts, daytona):
    await contexts.save_workspace(KEY, WorkspaceHandle(workspace_id="sb-old", connection_token="tok"))
    daytona.get_sandbox.side_effect = [
        {"id": "sb-old", "state": "stopped", "labels": {}},
        {"id": "sb-old", "state": "starting", "labels": {}},
        {"id": "sb-old", "state": "started", "labels": {}},
    ]

    await manager.ensure(KEY)

    daytona.start_sandbox.assert_awaited_once_with("sb-old")
    daytona.create_sandbox.assert_not_called()
    assert daytona.get_sandbox.await_count == 3


@pytest.mark.asyncio
async def test_new_sandbox_is_awaited_until_started(manager, contexts, daytona):
    daytona.create_sandbox.return_value = {"id": "sb-new", "state": "creating"}
    daytona.get_sandbox.side_effect = [
        {"id": "sb-new", "state": "creating", "labels": {}},
        {"id": "sb-new", "state": "pulling_snapshot", "labels": {}},
        {"id": "sb-new", "state": "started", "labels": {}},
    ]

    conn = await manager.ensure(KEY)

    assert conn.workspace_id == "sb-new"
    assert daytona.get_sandbox.await_count == 3
    assert (await contexts.load_workspace(KEY)).workspace_id == "sb-new"


@pytest.mark.asyncio
async def test_failed_build_is_unavailable(manager, daytona):
    daytona.get_sandbox.side_effect = [
        {"id": "sb-new", "state": "creating", "labels": {}},
        {"id": "sb-new", "state": "build_failed", "labels": {}},
    ]

    with pytest.raises(WorkspaceUnavailable, match="build_failed"):
        await manager.ensure(KEY)


@pytest.mark.asyncio
async def test_start_wait_is_bounded(settings, contexts, daytona):
    impatient = settings.model_copy(update={"daytona_start_timeout_sec": 0})
    manager = WorkspaceSessionManager(impatient, contexts, daytona)
    daytona.get_sandbox.return_value = {"id": "sb-new", "state": "creating", "labels": {}}

    with pytest.raises(WorkspaceUnavailable, match="still creating"):
        await manager.ensure(KEY)


@pytest.mark.asyncio
async def test_unconfigured_daytona(manager, daytona):
    daytona.configured = False
    with pytest.raises(ConfigurationError):
        await manager.ensure(KEY)


@pytest.mark.asyncio
async def test_require_does_not_create(manager, daytona):
    with pytest.raises(ToolError, match="not initialized"):
        await manager.require(KEY)
    daytona.create_sandbox.assert_not_called()


@pytest.mark.asyncio
async def test_authenticate_git_writes_scoped_token(settings, contexts, daytona):
    github_auth = AsyncMock()
    github_auth.scoped_token.return_value = "ghs_scoped"
    manager = WorkspaceSessionManager(settings, contexts, daytona, github_auth)
    await manager.ensure(KEY)

    result = await manager.authenticate_git(KEY, "octo", ["octo/widgets", "api"])

    assert result["repositories"] == ["widgets", "api"]
    github_auth.scoped_token.assert_awaited_once_with(["widgets", "api"])
    sandbox_id, path, content = daytona.upload_file.call_args.args
    assert (sandbox_id, path) == ("sb-new", ENV_FILE)
    assert b"export GITHUB_TOKEN=ghs_scoped" in content


def workspace_tools(settings, manager):
    ctx = ToolContext(
        conversation_key=KEY,
        settings=settings,
        record=ContextRecord(platform_kind="pr", owner="octo", repo="widgets", number=5),
        workspaces=manager,
    )
    return {t.name: t for t in build_workspace_tools(ctx)}


@pytest.mark.asyncio
async def test_tools_refuse_until_initialized(settings, manager, daytona):
    tools = workspace_tools(settings, manager)

    with pytest.raises(ToolError) as exc_info:
        await tools["execute_bash"].invoke({"command": "ls"})
    assert str(exc_info.value) == NOT_INITIALIZED

    await tools[INITIALIZE_TOOL].invoke({})
    result = await tools["execute_bash"].invoke({"command": "ls", "cwd": "/work"})

    assert result == {"exit_code": 0, "output": "ok"}
    command = daytona.execute.call_args.args[1]
    assert command.startswith("bash -lc ")
    assert ENV_FILE in command
    assert daytona.execute.call_args.kwargs["cwd"] == "/work"


@pytest.mark.asyncio
async def test_edit_file_requires_unique_match(settings, manager, daytona):
    tools = workspace_tools(settings, manager)
    await tools[INITIALIZE_TOOL].invoke({})
    daytona.download_file.return_value = b"a = 1\na = 1\n"

    with pytest.raises(ToolError, match="matches 2 times"):
        await tools["edit_file"].invoke({"path": "/work/x.py", "old_text": "a = 1", "new_text": "a = 2"})

    daytona.download_file.return_value = b"a = 1\nb = 2\n"
    await tools["edit_file"].invoke({"path": "/work/x.py", "old_text": "a = 1", "new_text": "a = 3"})
    assert daytona.upload_file.call_args.args[2] == b"a = 3\nb = 2\n"


@pytest.mark.asyncio
async def test_background_process_round_trip(settings, manager, daytona):
    tools = workspace_tools(settings, manager)
    await tools[INITIALIZE_TOOL].invoke({})
    daytona.execute_in_session.return_value = {"cmdId": "c1"}
    daytona.get_session_command.return_value = {"exitCode": None}
    daytona.get_session_command_logs.return_value = "serving on :8000"

    started = await tools["execute_bash_background"].invoke({"command": "make serve"})
    status = await tools["process_output"].invoke(started)

    assert status["running"] is True
    assert status["output"] == "serving on :8000"
    killed = await tools["process_kill"].invoke(started)
    assert killed["killed"] is True
