from unittest.mock import AsyncMock

import pytest

from agentbridge.agent.context_store import ContextRecord
from agentbridge.agent.tools.base import ToolContext
from agentbridge.agent.tools.jira_tools import (
    REPLY_TOOL,
    build_jira_tools,
    build_reply_tool,
    harvest_acceptance_criteria,
)
from agentbridge.core.errors import ToolError


@pytest.fixture
def jira():
    client = AsyncMock()
    client.add_comment.return_value = {"id": "100", "created": "2024-05-01T10:00:00.000+0000"}
    client.browse_url = lambda key: f"https://acme.atlassian.net/browse/{key}"
    return client


def ctx_for(settings, jira, record=None):
    return ToolContext(
        conversation_key="jira-ABC-1",
        settings=settings,
        record=record
        if record is not None
        else ContextRecord(
            tracker_issue_key="ABC-1",
            tracker_issue_url="https://acme.atlassian.net/browse/ABC-1",
            requester_id="u-1",
        ),
        jira=jira,
    )


@pytest.mark.asyncio
async def test_reply_mentions_requester_and_is_single_shot(settings, jira):
    reply = build_reply_tool(ctx_for(settings, jira))
    result = await reply.invoke({"text": "Done, see the PR."})

    assert result == {"id": "100", "issue": "ABC-1"}
    key, body = jira.add_comment.call_args.args
    assert key == "ABC-1"
    content = body["body"]["content"][0]["content"]
    assert content[0] == {"type": "text", "text": "Done, see the PR."}
    assert {"type": "mention", "attrs": {"id": "u-1", "text": ""}} in content

    with pytest.raises(ToolError, match="already delivered"):
        await reply.invoke({"text": "again"})
    assert jira.add_comment.await_count == 1


@pytest.mark.asyncio
async def test_reply_without_issue_metadata_fails(settings, jira):
    reply = build_reply_tool(ctx_for(settings, jira, record=ContextRecord()))
    with pytest.raises(ToolError, match="Missing issue metadata"):
        await reply.invoke({"text": "hello"})
    jira.add_comment.assert_not_called()


@pytest.mark.asyncio
async def test_empty_reply_is_rejected(settings, jira):
    reply = build_reply_tool(ctx_for(settings, jira))
    with pytest.raises(ToolError, match="Invalid arguments"):
        await reply.invoke({"text": ""})


def test_family_includes_reply_once(settings, jira):
    names = [t.name for t in build_jira_tools(ctx_for(settings, jira))]
    assert names.count(REPLY_TOOL) == 1
    assert "jira_env_check" in names and "jira_ping" in names


@pytest.mark.asyncio
async def test_create_issue_infers_project_and_type(settings, jira):
    jira.get_project_issue_types.return_value = ["Bug", "Task", "Sub-task"]
    jira.create_issue.return_value = {"key": "ABC-9"}
    tools = {t.name: t for t in build_jira_tools(ctx_for(settings, jira))}

    result = await tools["jira_create_issue"].invoke(
        {"summary": "Flaky parser test", "due_date": "2024-06-01T12:00:00Z"}
    )

    fields = jira.create_issue.call_args.args[0]
    assert fields["project"] == {"key": "ABC"}
    assert fields["issuetype"] == {"name": "Task"}
    assert fields["duedate"] == "2024-06-01"
    assert result["url"] == "https://acme.atlassian.net/browse/ABC-9"


@pytest.mark.asyncio
async def test_create_subtask_requires_parent(settings, jira):
    jira.get_project_issue_types.return_value = ["Task", "Sub-task"]
    tools = {t.name: t for t in build_jira_tools(ctx_for(settings, jira))}
    with pytest.raises(ToolError, match="parent_issue_url"):
        await tools["jira_create_issue"].invoke({"summary": "Child work", "issue_type": "subtask"})


@pytest.mark.asyncio
async def test_apply_transition_by_target_status(settings, jira):
    jira.get_transitions.return_value = [
        {"id": "11", "name": "Start work", "to": {"name": "In Progress"}},
        {"id": "31", "name": "Finish", "to": {"name": "Done"}},
    ]
    tools = {t.name: t for t in build_jira_tools(ctx_for(settings, jira))}
    result = await tools["jira_apply_transition"].invoke({"transition_name": "done"})
    jira.transition_issue.assert_awaited_once_with("ABC-1", "31")
    assert result["transition_id"] == "31"


@pytest.mark.asyncio
async def test_explicit_issue_url_wins_over_context(settings, jira):
    tools = {t.name: t for t in build_jira_tools(ctx_for(settings, jira))}
    await tools["jira_add_comment"].invoke(
        {"issue_url": "https://acme.atlassian.net/browse/OPS-4", "text": "linked"}
    )
    assert jira.add_comment.call_args.args[0] == "OPS-4"


def test_harvest_acceptance_criteria():
    found = harvest_acceptance_criteria(
        ["Intro\n- parses dates\nAC: handles UTC", None, "* second bullet\nplain line"]
    )
    assert found == ["- parses dates", "AC: handles UTC", "* second bullet"]
