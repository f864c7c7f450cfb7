import pytest

from agentbridge.agent.identity import (
    PlatformIdentity,
    decode_platform_key,
    decode_tracker_key,
    encode_platform_key,
    encode_tracker_key,
    extract_issue_key_from_url,
    project_key_from_issue_url,
)
from agentbridge.core.errors import ParseError


@pytest.mark.parametrize(
    "kind,owner,repo,number",
    [("pr", "octo", "widgets", 42), ("issue", "acme-inc", "api.server", 7), ("pr", "a", "b_c", 1)],
)
def test_platform_key_round_trip(kind, owner, repo, number):
    key = encode_platform_key(kind, owner, repo, number)
    assert decode_platform_key(key) == PlatformIdentity(kind=kind, owner=owner, repo=repo, number=number)


def test_platform_key_format():
    assert encode_platform_key("pr", "octo", "widgets", 42) == "gh-pr~octo~widgets~42"
    assert encode_platform_key("issue", "octo", "widgets", 7) == "gh-issue~octo~widgets~7"


@pytest.mark.parametrize(
    "key",
    [
        None,
        "",
        "gh-pr~octo~widgets",
        "gh-pr~octo~widgets~1~extra",
        "gh-mr~octo~widgets~1",
        "jira-ABC-1",
        "gh-pr~octo~widgets~0",
        "gh-pr~octo~widgets~-3",
        "gh-pr~octo~widgets~abc",
        "gh-pr~~widgets~1",
    ],
)
def test_decode_platform_key_rejects_malformed(key):
    assert decode_platform_key(key) is None


def test_encode_platform_key_rejects_bad_input():
    with pytest.raises(ParseError):
        encode_platform_key("mr", "octo", "widgets", 1)
    with pytest.raises(ParseError):
        encode_platform_key("pr", "octo", "widgets", 0)
    with pytest.raises(ParseError):
        encode_platform_key("pr", "oc~to", "widgets", 1)


def test_tracker_key():
    assert encode_tracker_key("abc-123") == "jira-ABC-123"
    assert decode_tracker_key("jira-ABC-123") == "ABC-123"
    assert decode_tracker_key("gh-pr~o~r~1") is None
    with pytest.raises(ParseError):
        encode_tracker_key("not a key")


def test_extract_issue_key_prefers_selected_issue():
    url = "https://acme.atlassian.net/jira/software/projects/XYZ/boards/1?selectedIssue=ABC-123"
    assert extract_issue_key_from_url(url) == "ABC-123"


def test_extract_issue_key_from_path_is_upper_cased():
    assert extract_issue_key_from_url("https://acme.atlassian.net/browse/xyz-42") == "XYZ-42"


@pytest.mark.parametrize(
    "url", ["https://acme.atlassian.net/jira/your-work", "not a url", "https://acme.atlassian.net/"]
)
def test_extract_issue_key_without_key_fails(url):
    with pytest.raises(ParseError):
        extract_issue_key_from_url(url)


def test_project_key_from_issue_url():
    assert project_key_from_issue_url("https://acme.atlassian.net/browse/OPS-9") == "OPS"
