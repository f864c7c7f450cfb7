"""
Normalized inbound events.

Pure classifiers turning Jira and GitHub webhook payloads into
``NormalizedEvent``s. No I/O happens here; guards that need the network
(self identity, current PR head) live in the dispatcher.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from agentbridge.agent.identity import (
    PlatformIdentity,
    encode_platform_key,
    encode_tracker_key,
    is_issue_key,
)
from agentbridge.agent.mentions import extract_plain_text
from agentbridge.core.errors import ParseError


class EventSource(Enum):
    TRACKER = "tracker"
    PLATFORM = "platform"


class EventKind(Enum):
    JIRA_COMMENT = "jira_comment"
    ISSUE_COMMENT = "issue_comment"
    REVIEW_COMMENT = "pull_request_review_comment"
    REVIEW_SUBMITTED = "pull_request_review"
    CHECK_RUN_COMPLETED = "check_run"

    @property
    def is_comment(self) -> bool:
        return self in (EventKind.JIRA_COMMENT, EventKind.ISSUE_COMMENT, EventKind.REVIEW_COMMENT)


# GitHub event name -> accepted action
SUPPORTED_GITHUB_EVENTS = {
    "issue_comment": "created",
    "pull_request_review_comment": "created",
    "pull_request_review": "submitted",
    "check_run": "completed",
}

_IGNORED_JIRA_EVENTS = {"comment_deleted"}


@dataclass
class NormalizedEvent:
    source: EventSource
    kind: EventKind
    conversation_key: str
    author_id: Optional[str] = None
    body: Any = None
    body_text: Optional[str] = None
    comment_id: Optional[str] = None
    issue_key: Optional[str] = None
    issue_url: Optional[str] = None
    platform: Optional[PlatformIdentity] = None
    head_sha: Optional[str] = None
    delivery_id: Optional[str] = None

    @property
    def event_name(self) -> str:
        return self.kind.value


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _browse_url_from_self(issue: Dict[str, Any], issue_key: str) -> Optional[str]:
    # issue.self is the REST URL; the site root is good enough for a browse link
    raw = issue.get("self")
    if not isinstance(raw, str):
        return None
    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}/browse/{issue_key}"


def classify_jira_payload(payload: Any) -> Optional[NormalizedEvent]:
    """
    Classify a Jira automation/webhook payload.

    Requires an issue key (``issue.key`` or top-level ``key``) and a comment
    object. Anything else is not an event the agent answers and yields None.
    """
    if not isinstance(payload, dict):
        return None
    if payload.get("webhookEvent") in _IGNORED_JIRA_EVENTS:
        return None

    issue = _dict(payload.get("issue"))
    raw_key = issue.get("key") or payload.get("key")
    comment = payload.get("comment")
    if not isinstance(raw_key, str) or not isinstance(comment, dict):
        return None
    issue_key = raw_key.strip().upper()
    if not is_issue_key(issue_key):
        return None

    author = _dict(comment.get("author"))
    body = comment.get("body")
    comment_id = comment.get("id")
    return NormalizedEvent(
        source=EventSource.TRACKER,
        kind=EventKind.JIRA_COMMENT,
        conversation_key=encode_tracker_key(issue_key),
        author_id=author.get("accountId"),
        body=body,
        body_text=extract_plain_text(body) if body is not None else None,
        comment_id=str(comment_id) if comment_id is not None else None,
        issue_key=issue_key,
        issue_url=_browse_url_from_self(issue, issue_key),
    )


def _repository(payload: Dict[str, Any]) -> Optional[tuple[str, str]]:
    repo = _dict(payload.get("repository"))
    owner = _dict(repo.get("owner")).get("login")
    name = repo.get("name")
    if not owner or not name:
        full_name = repo.get("full_name") or ""
        owner, _, name = full_name.partition("/")
    if not owner or not name:
        return None
    return owner, name


def _platform_event(
    kind: EventKind,
    platform_kind: str,
    repo: tuple[str, str],
    number: Any,
    delivery_id: Optional[str],
    **fields: Any,
) -> Optional[NormalizedEvent]:
    try:
        key = encode_platform_key(platform_kind, repo[0], repo[1], int(number))
    except (ParseError, TypeError, ValueError):
        return None
    return NormalizedEvent(
        source=EventSource.PLATFORM,
        kind=kind,
        conversation_key=key,
        platform=PlatformIdentity(kind=platform_kind, owner=repo[0], repo=repo[1], number=int(number)),
        delivery_id=delivery_id,
        **fields,
    )


def sender_login(payload: Any) -> Optional[str]:
    return _dict(_dict(payload).get("sender")).get("login")


def _review_summary(review: Dict[str, Any], repo: tuple[str, str], number: int) -> str:
    state = str(review.get("state") or "commented").lower().replace("_", " ")
    login = _dict(review.get("user")).get("login") or "someone"
    head = f"Review {state} by @{login} on {repo[0]}/{repo[1]} #{number}."
    body = (review.get("body") or "").strip()
    return f"{head}\n\n{body}" if body else head


def _check_run_summary(check_run: Dict[str, Any], repo: tuple[str, str], number: int) -> str:
    sha = str(check_run.get("head_sha") or "")[:7]
    line = (
        f"Check run '{check_run.get('name')}' completed with conclusion "
        f"'{check_run.get('conclusion')}' on {repo[0]}/{repo[1]} #{number} ({sha})."
    )
    output = _dict(check_run.get("output"))
    title = (output.get("title") or "").strip()
    url = check_run.get("html_url")
    extra = [s for s in (title, url) if s]
    return "\n".join([line, *extra])


def classify_github_event(
    event_name: str, payload: Any, delivery_id: Optional[str] = None
) -> List[NormalizedEvent]:
    """
    Classify a GitHub webhook delivery.

    Returns an empty list for unsupported events or actions. A completed
    check run yields one event per associated pull request whose head in the
    payload matches the check run's commit.
    """
    expected_action = SUPPORTED_GITHUB_EVENTS.get(event_name)
    if expected_action is None or not isinstance(payload, dict):
        return []
    if payload.get("action") != expected_action:
        return []
    repo = _repository(payload)
    if repo is None:
        return []

    if event_name == "issue_comment":
        issue = _dict(payload.get("issue"))
        comment = _dict(payload.get("comment"))
        platform_kind = "pr" if issue.get("pull_request") else "issue"
        event = _platform_event(
            EventKind.ISSUE_COMMENT,
            platform_kind,
            repo,
            issue.get("number"),
            delivery_id,
            author_id=_dict(comment.get("user")).get("login"),
            body=comment.get("body"),
            body_text=comment.get("body") or "",
            comment_id=str(comment.get("id")) if comment.get("id") is not None else None,
        )
        return [event] if event else []

    if event_name == "pull_request_review_comment":
        pr = _dict(payload.get("pull_request"))
        comment = _dict(payload.get("comment"))
        location = comment.get("path")
        text = comment.get("body") or ""
        if location:
            line = comment.get("line") or comment.get("original_line")
            where = f"{location}:{line}" if line else location
            text = f"On {where} (review comment {comment.get('id')}):\n{text}"
        event = _platform_event(
            EventKind.REVIEW_COMMENT,
            "pr",
            repo,
            pr.get("number"),
            delivery_id,
            author_id=_dict(comment.get("user")).get("login"),
            body=comment.get("body"),
            body_text=text,
            comment_id=str(comment.get("id")) if comment.get("id") is not None else None,
            head_sha=_dict(pr.get("head")).get("sha"),
        )
        return [event] if event else []

    if event_name == "pull_request_review":
        pr = _dict(payload.get("pull_request"))
        review = _dict(payload.get("review"))
        number = pr.get("number")
        if not isinstance(number, int):
            return []
        event = _platform_event(
            EventKind.REVIEW_SUBMITTED,
            "pr",
            repo,
            number,
            delivery_id,
            author_id=_dict(review.get("user")).get("login"),
            body=review.get("body"),
            body_text=_review_summary(review, repo, number),
            comment_id=str(review.get("id")) if review.get("id") is not None else None,
            head_sha=review.get("commit_id"),
        )
        return [event] if event else []

    # check_run
    check_run = _dict(payload.get("check_run"))
    head_sha = check_run.get("head_sha")
    events: List[NormalizedEvent] = []
    for pr in check_run.get("pull_requests") or []:
        pr = _dict(pr)
        number = pr.get("number")
        pr_head = _dict(pr.get("head")).get("sha")
        if not isinstance(number, int) or (pr_head and pr_head != head_sha):
            continue
        event = _platform_event(
            EventKind.CHECK_RUN_COMPLETED,
            "pr",
            repo,
            number,
            delivery_id,
            author_id=sender_login(payload),
            body_text=_check_run_summary(check_run, repo, number),
            head_sha=head_sha,
        )
        if event:
            events.append(event)
    return events
