import pytest

from agentbridge.agent.context_store import (
    ContextRecord,
    ContextRepository,
    CorrelationStore,
    WorkspaceHandle,
    platform_meta_key,
    tracker_meta_key,
)


class FailingBackend:
    async def get(self, key):
        raise RuntimeError("redis down")

    async def set(self, key, value):
        raise RuntimeError("redis down")


def test_merge_fills_gaps_and_never_erases():
    base = ContextRecord(tracker_issue_key="ABC-1", requester_id="u-1")
    merged = base.merge(ContextRecord(requester_id=None, owner="octo", repo="widgets", number=3))
    assert merged.tracker_issue_key == "ABC-1"
    assert merged.requester_id == "u-1"
    assert merged.platform.full_name == "octo/widgets"


@pytest.mark.asyncio
async def test_upsert_is_idempotent(contexts):
    update = ContextRecord(
        tracker_issue_key="ABC-1",
        tracker_issue_url="https://acme.atlassian.net/browse/ABC-1",
        requester_id="u-1",
    )
    once = await contexts.upsert("jira-ABC-1", update)
    twice = await contexts.upsert("jira-ABC-1", update)
    assert once == twice
    assert await contexts.load("jira-ABC-1") == once


@pytest.mark.asyncio
async def test_upsert_keeps_fields_absent_from_update(contexts, store):
    await contexts.upsert("gh-pr~octo~widgets~5", ContextRecord(platform_kind="pr", owner="octo", repo="widgets", number=5))
    await contexts.upsert("gh-pr~octo~widgets~5", ContextRecord(requester_id="u-7", tracker_issue_key="ABC-2"))

    record = await contexts.load("gh-pr~octo~widgets~5")
    assert record.number == 5
    assert record.requester_id == "u-7"
    assert await store.get_json(platform_meta_key("gh-pr~octo~widgets~5")) == {
        "platform_kind": "pr",
        "owner": "octo",
        "repo": "widgets",
        "number": 5,
    }
    assert (await store.get_json(tracker_meta_key("gh-pr~octo~widgets~5")))["tracker_issue_key"] == "ABC-2"


@pytest.mark.asyncio
async def test_alias_written_when_key_differs(contexts, store):
    await contexts.upsert("chat-123", ContextRecord(tracker_issue_key="ABC-9", requester_id="u-1"))
    alias = await contexts.load_alias("abc-9")
    assert alias is not None
    assert alias.requester_id == "u-1"
    assert await store.get("jira-meta-jira-ABC-9") is not None


@pytest.mark.asyncio
async def test_load_alias_with_invalid_key_is_a_miss(contexts):
    assert await contexts.load_alias("nope") is None


@pytest.mark.asyncio
async def test_store_failures_degrade_to_misses():
    store = CorrelationStore(FailingBackend())
    assert await store.get("x") is None
    assert await store.set("x", "1") is False

    contexts = ContextRepository(store)
    assert await contexts.load("jira-ABC-1") is None
    merged = await contexts.upsert("jira-ABC-1", ContextRecord(tracker_issue_key="ABC-1"))
    assert merged.tracker_issue_key == "ABC-1"


@pytest.mark.asyncio
async def test_corrupt_values_are_ignored(contexts, store):
    await store.set(tracker_meta_key("jira-ABC-1"), "{not json")
    await store.set(platform_meta_key("jira-ABC-1"), '["a list"]')
    assert await contexts.load("jira-ABC-1") is None


@pytest.mark.asyncio
async def test_workspace_handle_overwrite(contexts):
    await contexts.save_workspace("jira-ABC-1", WorkspaceHandle(workspace_id="w-1", connection_token="t-1"))
    await contexts.save_workspace("jira-ABC-1", WorkspaceHandle(workspace_id="w-2", connection_token="t-2"))
    handle = await contexts.load_workspace("jira-ABC-1")
    assert handle == WorkspaceHandle(workspace_id="w-2", connection_token="t-2")
    assert await contexts.load_workspace("jira-XYZ-1") is None
