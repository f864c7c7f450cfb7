import base64
import json

import httpx
import pytest

from agentbridge.core.errors import ConfigurationError, UpstreamError
from agentbridge.integrations.jira_client import (
    JiraClient,
    build_adf_comment,
    jql_and,
    jql_in,
    normalize_due_date,
)


def make_client(settings, handler):
    return JiraClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_requests_go_through_cloud_gateway_with_basic_auth(settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"accountId": "svc-1", "displayName": "Blink"})

    client = make_client(settings, handler)
    me = await client.get_myself()
    await client.close()

    assert me["accountId"] == "svc-1"
    request = seen[0]
    assert str(request.url) == "https://api.atlassian.com/ex/jira/cloud-1/rest/api/3/myself"
    expected = base64.b64encode(
        f"{settings.jira_email}:{settings.jira_api_token}".encode()
    ).decode()
    assert request.headers["Authorization"] == f"Basic {expected}"


@pytest.mark.asyncio
async def test_error_status_raises_upstream_error(settings):
    client = make_client(settings, lambda request: httpx.Response(404, text="Issue does not exist"))
    with pytest.raises(UpstreamError) as exc_info:
        await client.get_issue("ABC-404")
    await client.close()
    assert exc_info.value.status == 404
    assert exc_info.value.service == "Jira"


@pytest.mark.asyncio
async def test_reaction_put_and_soft_failure(settings):
    seen = []

    def ok(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    client = make_client(settings, ok)
    assert await client.add_comment_reaction("ABC-1", "10001", "eyes") is True
    await client.close()
    assert seen[0].method == "PUT"
    assert seen[0].url.path.endswith("/rest/api/3/comment/10001/reactions")
    assert json.loads(seen[0].content) == {"emojiId": "eyes"}

    failing = make_client(settings, lambda request: httpx.Response(500, text="boom"))
    assert await failing.add_comment_reaction("ABC-1", "10001", "eyes") is False
    await failing.close()


@pytest.mark.asyncio
async def test_missing_credentials_fail_at_call_time(settings):
    bare = settings.model_copy(update={"jira_cloud_id": None})
    client = make_client(bare, lambda request: httpx.Response(200, json={}))
    with pytest.raises(ConfigurationError):
        await client.get_myself()
    await client.close()


def test_browse_url_uses_site_base(settings):
    client = JiraClient(settings)
    assert client.browse_url("ABC-1") == "https://acme.atlassian.net/browse/ABC-1"


def test_adf_comment_with_mentions():
    payload = build_adf_comment("Done", [{"accountId": "u-1"}])
    paragraph = payload["body"]["content"][0]
    assert paragraph["type"] == "paragraph"
    assert paragraph["content"][0] == {"type": "text", "text": "Done"}
    assert paragraph["content"][2] == {"type": "mention", "attrs": {"id": "u-1", "text": ""}}


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-06-01", "2024-06-01"),
        ("2024-06-01T23:30:00-02:00", "2024-06-02"),
        ("2024-06-01T10:00:00Z", "2024-06-01"),
        (None, None),
    ],
)
def test_normalize_due_date(value, expected):
    assert normalize_due_date(value) == expected


def test_normalize_due_date_rejects_garbage():
    with pytest.raises(ValueError):
        normalize_due_date("next tuesday")


def test_jql_helpers_skip_empty_clauses():
    assert jql_and(["project = ABC", jql_in("status", []), jql_in("issuetype", ["Task"])]) == (
        'project = ABC AND issuetype in ("Task")'
    )
