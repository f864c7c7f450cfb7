from unittest.mock import AsyncMock

import pytest

from agentbridge.agent.context_store import ContextRecord
from agentbridge.agent.dispatcher import (
    STATUS_DELIVERY_FAILED,
    STATUS_DROPPED,
    STATUS_ENQUEUED,
    STATUS_IGNORED,
    EventDispatcher,
)
from agentbridge.agent.footer import extract_embedded_identity

from tests.conftest import adf_doc, adf_mention, adf_text

PR_KEY = "gh-pr~octo~widgets~5"


@pytest.fixture
def enqueue():
    return AsyncMock()


@pytest.fixture
def jira():
    return AsyncMock()


@pytest.fixture
def github():
    client = AsyncMock()
    client.get_pull_request.return_value = {"head": {"sha": "new"}}
    return client


@pytest.fixture
def dispatcher(settings, contexts, enqueue, jira, github):
    return EventDispatcher(
        settings,
        contexts,
        enqueue,
        AsyncMock(return_value="svc-1"),
        jira=jira,
        github=github,
    )


def jira_comment(author="u-1", body=None, **extra):
    comment = {"id": "555", "author": {"accountId": author}}
    if body is not None:
        comment["body"] = body
    payload = {"issue": {"key": "ABC-1"}, "comment": comment}
    payload.update(extra)
    return payload


MENTIONING = adf_doc(
    {"type": "blockquote", "content": [{"type": "paragraph", "content": [adf_mention("svc-1")]}]},
    adf_text(" can you take this?"),
)


@pytest.mark.asyncio
async def test_own_comment_is_dropped(dispatcher, enqueue):
    outcome = await dispatcher.handle_jira(jira_comment(author="svc-1", body=MENTIONING))
    assert outcome.status == STATUS_DROPPED
    assert outcome.reason == "self_authored"
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_comment_without_mention_is_dropped(dispatcher, enqueue, jira):
    body = adf_doc(adf_mention("someone-else"), adf_text(" fyi"))
    outcome = await dispatcher.handle_jira(jira_comment(body=body))
    assert outcome.reason == "not_mentioned"
    enqueue.assert_not_called()
    jira.add_comment_reaction.assert_not_called()


@pytest.mark.asyncio
async def test_nested_mention_is_enqueued_with_footer(dispatcher, enqueue, jira, contexts):
    outcome = await dispatcher.handle_jira(jira_comment(body=MENTIONING))

    assert outcome.status == STATUS_ENQUEUED
    assert outcome.conversation_key == "jira-ABC-1"
    key, message = enqueue.call_args.args
    assert key == "jira-ABC-1"
    assert "can you take this?" in message
    footer = extract_embedded_identity(message)
    assert footer.issue_url == "https://acme.atlassian.net/browse/ABC-1"
    assert footer.author_id == "u-1"
    assert footer.event == "jira_comment"

    jira.add_comment_reaction.assert_awaited_once_with("ABC-1", "555", "eyes")
    record = await contexts.load("jira-ABC-1")
    assert record.requester_id == "u-1"
    assert (await contexts.load_alias("ABC-1")).tracker_issue_key == "ABC-1"


@pytest.mark.asyncio
async def test_missing_body_is_fetched(dispatcher, enqueue, jira):
    jira.get_comment.return_value = {"body": MENTIONING}
    outcome = await dispatcher.handle_jira(jira_comment())
    jira.get_comment.assert_awaited_once_with("ABC-1", "555")
    assert outcome.status == STATUS_ENQUEUED


@pytest.mark.asyncio
async def test_non_comment_payload_is_ignored(dispatcher, enqueue):
    outcome = await dispatcher.handle_jira({"issue": {"key": "ABC-1"}, "changelog": {}})
    assert outcome.status == STATUS_IGNORED
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_self_identity_drops_mentions(settings, contexts, enqueue):
    dispatcher = EventDispatcher(settings, contexts, enqueue, AsyncMock(return_value=None))
    outcome = await dispatcher.handle_jira(jira_comment(body=MENTIONING))
    assert outcome.reason == "not_mentioned"


@pytest.mark.asyncio
async def test_delivery_failure_is_reported_not_raised(dispatcher, enqueue):
    enqueue.side_effect = RuntimeError("queue closed")
    outcome = await dispatcher.handle_jira(jira_comment(body=MENTIONING))
    assert outcome.status == STATUS_DELIVERY_FAILED


def repository():
    return {"name": "widgets", "owner": {"login": "octo"}}


def issue_comment(body, login="alice", pull_request=True):
    issue = {"number": 5}
    if pull_request:
        issue["pull_request"] = {"url": "https://api.github.com/repos/octo/widgets/pulls/5"}
    return {
        "action": "created",
        "repository": repository(),
        "issue": issue,
        "comment": {"id": 1, "body": body, "user": {"login": login}},
        "sender": {"login": login},
    }


@pytest.mark.asyncio
async def test_pr_comment_naming_agent_is_enqueued(dispatcher, enqueue, contexts):
    outcome = await dispatcher.handle_github("issue_comment", "d-1", issue_comment("@blink please rebase"))

    assert outcome.status == STATUS_ENQUEUED
    key, message = enqueue.call_args.args
    assert key == PR_KEY
    footer = extract_embedded_identity(message)
    assert (footer.owner, footer.repo, footer.number, footer.kind) == ("octo", "widgets", 5, "pr")
    record = await contexts.load(PR_KEY)
    assert record.platform_kind == "pr"


@pytest.mark.asyncio
async def test_issue_comment_on_plain_issue(dispatcher, enqueue):
    payload = issue_comment("blink: triage this", pull_request=False)
    outcome = await dispatcher.handle_github("issue_comment", "d-2", payload)
    assert outcome.conversation_key == "gh-issue~octo~widgets~5"
    footer = extract_embedded_identity(enqueue.call_args.args[1])
    assert footer.kind == "issue"


@pytest.mark.asyncio
async def test_comment_without_name_is_dropped(dispatcher, enqueue):
    outcome = await dispatcher.handle_github("issue_comment", "d-3", issue_comment("blinking lights"))
    assert outcome.reason == "not_mentioned"
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_bot_sender_is_dropped(dispatcher, enqueue):
    payload = issue_comment("blink did this", login="blink-bot[bot]")
    outcome = await dispatcher.handle_github("issue_comment", "d-4", payload)
    assert outcome.reason == "self_authored"
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_unsupported_event_is_ignored(dispatcher):
    outcome = await dispatcher.handle_github("push", "d-5", {"repository": repository()})
    assert outcome.status == STATUS_IGNORED


def check_run(head_sha="new"):
    return {
        "action": "completed",
        "repository": repository(),
        "sender": {"login": "github-actions[bot]"},
        "check_run": {
            "name": "tests",
            "conclusion": "failure",
            "head_sha": head_sha,
            "pull_requests": [{"number": 5, "head": {"sha": head_sha}}],
        },
    }


async def participate(contexts):
    await contexts.upsert(
        PR_KEY, ContextRecord(platform_kind="pr", owner="octo", repo="widgets", number=5)
    )


@pytest.mark.asyncio
async def test_check_run_needs_participation(dispatcher, enqueue):
    outcome = await dispatcher.handle_github("check_run", "d-6", check_run())
    assert outcome.reason == "not_participating"
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_current_check_run_is_forwarded(dispatcher, enqueue, contexts, github):
    await participate(contexts)
    outcome = await dispatcher.handle_github("check_run", "d-7", check_run("new"))
    assert outcome.status == STATUS_ENQUEUED
    github.get_pull_request.assert_awaited_once_with("octo", "widgets", 5)
    assert "check_run" in enqueue.call_args.args[1]


@pytest.mark.asyncio
async def test_stale_check_run_is_dropped(dispatcher, enqueue, contexts):
    await participate(contexts)
    outcome = await dispatcher.handle_github("check_run", "d-8", check_run("old"))
    assert outcome.reason == "stale_check_run"
    enqueue.assert_not_called()


def review(body="Looks mostly fine"):
    return {
        "action": "submitted",
        "repository": repository(),
        "sender": {"login": "carol"},
        "pull_request": {"number": 5},
        "review": {"id": 8, "state": "changes_requested", "body": body, "user": {"login": "carol"}},
    }


@pytest.mark.asyncio
async def test_review_on_participating_pr(dispatcher, enqueue, contexts):
    outcome = await dispatcher.handle_github("pull_request_review", "d-9", review())
    assert outcome.reason == "not_participating"

    await participate(contexts)
    outcome = await dispatcher.handle_github("pull_request_review", "d-10", review())
    assert outcome.status == STATUS_ENQUEUED
    assert enqueue.call_args.args[1].startswith("Review changes requested by @carol")


@pytest.mark.asyncio
async def test_review_naming_agent_starts_participation(dispatcher, enqueue):
    outcome = await dispatcher.handle_github("pull_request_review", "d-11", review("blink please fix"))
    assert outcome.status == STATUS_ENQUEUED
