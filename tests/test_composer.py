from unittest.mock import AsyncMock

from agentbridge.agent.composer import CAPABILITY_FAMILIES, Capabilities, ToolSetComposer
from agentbridge.agent.context_store import ContextRecord
from agentbridge.agent.tools.base import Tool, ToolInput
from agentbridge.agent.tools.jira_tools import REPLY_TOOL


def composer(settings):
    return ToolSetComposer(settings, jira=AsyncMock(), github=AsyncMock(), workspaces=AsyncMock())


def test_no_identity_gets_only_date_and_workspace_tools(settings):
    turn = composer(settings).compose("chat-1", None)
    names = turn.tool_names

    assert "current_datetime" in names
    assert "initialize_workspace" in names
    assert REPLY_TOOL not in names
    assert not [n for n in names if n.startswith("github_")]
    assert not [n for n in names if n.startswith("jira_")]
    assert turn.families == ["date", "workspace"]


def test_tracker_identity_adds_full_jira_family(settings):
    record = ContextRecord(tracker_issue_key="ABC-1", requester_id="u-1")
    turn = composer(settings).compose("jira-ABC-1", record)

    for name in (
        REPLY_TOOL,
        "jira_add_comment",
        "jira_get_issue_by_url",
        "jira_get_issue_context",
        "jira_find_user",
        "jira_list_projects",
        "jira_list_tasks",
        "jira_create_issue",
        "jira_update_fields",
        "jira_list_transitions",
        "jira_apply_transition",
        "jira_link_issue",
    ):
        assert name in turn.tool_names
    assert "jira_reply exactly once" in turn.system_prompt
    assert "Jira comment" in turn.system_prompt


def test_platform_identity_adds_prefixed_github_family(settings):
    record = ContextRecord(platform_kind="pr", owner="octo", repo="widgets", number=5)
    turn = composer(settings).compose("gh-pr~octo~widgets~5", record)

    github = [n for n in turn.tool_names if n.startswith("github_")]
    assert "github_create_pull_request" in github
    assert "github_update_pull_request" in github
    assert REPLY_TOOL not in turn.tool_names
    assert "pull request octo/widgets #5" in turn.system_prompt
    assert "jira_reply" not in turn.system_prompt


def test_issue_role_and_fixed_constraints(settings):
    record = ContextRecord(platform_kind="issue", owner="octo", repo="widgets", number=9)
    prompt = composer(settings).compose("gh-issue~octo~widgets~9", record).system_prompt
    assert "GitHub issue octo/widgets #9" in prompt
    assert "Be concise." in prompt
    assert "one clarifying question" in prompt
    assert "service account" in prompt
    assert "'blink/'" in prompt


def test_workspace_state_only_changes_prompt(settings):
    c = composer(settings)
    pending = c.compose("chat-1", None, workspace_initialized=False)
    ready = c.compose("chat-1", None, workspace_initialized=True)
    assert pending.tool_names == ready.tool_names
    assert "Call initialize_workspace" in pending.system_prompt
    assert "already initialized" in ready.system_prompt
    assert ready.capabilities == Capabilities(workspace_initialized=True)


def test_tool_schemas_are_anthropic_shaped(settings):
    record = ContextRecord(tracker_issue_key="ABC-1", owner="octo", repo="widgets", number=5)
    for tool in composer(settings).compose("jira-ABC-1", record).tools:
        schema = tool.schema()
        assert set(schema) == {"name", "description", "input_schema"}
        assert schema["input_schema"]["type"] == "object"
        assert "title" not in schema["input_schema"]


def test_families_are_pluggable(settings):
    async def noop(args):
        return "ok"

    families = [("only", lambda caps: caps.has_tracker_identity, lambda ctx: [Tool("t", "d", ToolInput, noop)])]
    c = ToolSetComposer(settings, families=families)
    assert c.compose("chat-1", None).tool_names == []
    assert c.compose("jira-ABC-1", ContextRecord(tracker_issue_key="ABC-1")).tool_names == ["t"]
    assert [name for name, _, _ in CAPABILITY_FAMILIES] == ["date", "tracker", "platform", "workspace"]
