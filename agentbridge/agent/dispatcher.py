"""
Event Dispatcher

Takes authenticated webhook payloads through guard -> correlate -> compose ->
enqueue. Every outcome is returned as a ``DispatchOutcome`` so the HTTP layer
can acknowledge with 200 regardless of whether anything was enqueued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from agentbridge.agent.context_store import ContextRecord, ContextRepository
from agentbridge.agent.events import (
    EventKind,
    NormalizedEvent,
    classify_github_event,
    classify_jira_payload,
    sender_login,
)
from agentbridge.agent.footer import EmbeddedIdentity, append_footer
from agentbridge.agent.mentions import (
    contains_mention,
    contains_name_token,
    extract_plain_text,
    is_authored_by_self,
)
from agentbridge.core.config import Settings
from agentbridge.core.errors import AgentBridgeError

logger = logging.getLogger(__name__)

STATUS_ENQUEUED = "enqueued"
STATUS_IGNORED = "ignored"
STATUS_DROPPED = "dropped"
STATUS_DELIVERY_FAILED = "delivery_failed"

ACK_EMOJI = "eyes"

Enqueue = Callable[[str, str], Awaitable[Any]]


@dataclass
class DispatchOutcome:
    status: str
    conversation_key: Optional[str] = None
    reason: Optional[str] = None

    @property
    def enqueued(self) -> bool:
        return self.status == STATUS_ENQUEUED

    def as_dict(self) -> dict:
        return {"status": self.status, "conversation_key": self.conversation_key, "reason": self.reason}


def _is_bot_login(login: Optional[str], bot_login: Optional[str]) -> bool:
    if not login or not bot_login:
        return False
    return login.lower().removesuffix("[bot]") == bot_login.lower().removesuffix("[bot]")


def _footer_event(event: NormalizedEvent) -> str:
    # issue_comment also fires for PR conversations; the footer must say which
    if event.kind == EventKind.ISSUE_COMMENT and event.platform and event.platform.kind == "pr":
        return "pr_comment"
    return event.event_name


class EventDispatcher:
    def __init__(
        self,
        settings: Settings,
        contexts: ContextRepository,
        enqueue: Enqueue,
        self_account: Callable[[], Awaitable[Optional[str]]],
        jira=None,
        github=None,
    ):
        self.settings = settings
        self.contexts = contexts
        self.enqueue = enqueue
        self.self_account = self_account
        self.jira = jira
        self.github = github

    # ---- Jira ----

    async def _comment_body(self, event: NormalizedEvent) -> Any:
        if event.body is not None:
            return event.body
        if self.jira is None or not event.comment_id:
            return None
        try:
            comment = await self.jira.get_comment(event.issue_key, event.comment_id)
        except (AgentBridgeError, httpx.HTTPError) as exc:
            logger.warning(
                "jira_webhook.comment_fetch_failed",
                extra={"issue_key": event.issue_key, "error": str(exc)},
            )
            return None
        return comment.get("body")

    async def handle_jira(self, payload: Any) -> DispatchOutcome:
        event = classify_jira_payload(payload)
        if event is None:
            logger.info("jira_webhook.ignored", extra={"reason": "not_a_comment_event"})
            return DispatchOutcome(STATUS_IGNORED, reason="not_a_comment_event")

        key = event.conversation_key
        self_id = await self.self_account()
        if is_authored_by_self(event.author_id, self_id):
            logger.info(
                "jira_webhook.dropped_self_authored",
                extra={"conversation_key": key, "issue_key": event.issue_key},
            )
            return DispatchOutcome(STATUS_DROPPED, key, "self_authored")

        body = await self._comment_body(event)
        if not contains_mention(body, self_id):
            logger.info(
                "jira_webhook.dropped_no_mention",
                extra={
                    "conversation_key": key,
                    "issue_key": event.issue_key,
                    "reason": "self_identity_unknown" if not self_id else "not_mentioned",
                },
            )
            return DispatchOutcome(STATUS_DROPPED, key, "not_mentioned")

        issue_url = self.settings.jira_browse_url(event.issue_key) or event.issue_url
        await self.contexts.upsert(
            key,
            ContextRecord(
                tracker_issue_key=event.issue_key,
                tracker_issue_url=issue_url,
                requester_id=event.author_id,
            ),
        )

        if self.jira is not None and event.comment_id:
            await self.jira.add_comment_reaction(event.issue_key, event.comment_id, ACK_EMOJI)

        message = append_footer(
            extract_plain_text(body),
            EmbeddedIdentity(issue_url=issue_url, author_id=event.author_id, event=event.event_name),
        )
        return await self._deliver(key, message, connector="jira")

    # ---- GitHub ----

    async def _participating(self, key: str) -> bool:
        record = await self.contexts.load(key)
        return record is not None and record.has_platform_identity

    async def _head_is_current(self, event: NormalizedEvent) -> bool:
        if self.github is None:
            # classifier already matched the payload's PR head against the check run
            return True
        platform = event.platform
        try:
            pr = await self.github.get_pull_request(platform.owner, platform.repo, platform.number)
        except (AgentBridgeError, httpx.HTTPError) as exc:
            logger.warning(
                "github_webhook.pull_request_unavailable",
                extra={"conversation_key": event.conversation_key, "error": str(exc)},
            )
            return False
        return (pr.get("head") or {}).get("sha") == event.head_sha

    async def _guard_github(self, event: NormalizedEvent) -> Optional[str]:
        """Return a drop reason, or None when the event should be forwarded."""
        name = self.settings.agent_name
        if event.kind in (EventKind.ISSUE_COMMENT, EventKind.REVIEW_COMMENT):
            if not contains_name_token(event.body, name):
                return "not_mentioned"
            return None
        if event.kind == EventKind.REVIEW_SUBMITTED:
            if contains_name_token(event.body, name) or await self._participating(event.conversation_key):
                return None
            return "not_participating"
        if event.kind == EventKind.CHECK_RUN_COMPLETED:
            if not await self._participating(event.conversation_key):
                return "not_participating"
            if not await self._head_is_current(event):
                return "stale_check_run"
            return None
        return "unsupported_event"

    async def _dispatch_github_event(self, event: NormalizedEvent) -> DispatchOutcome:
        key = event.conversation_key
        reason = await self._guard_github(event)
        if reason:
            logger.info(
                "github_webhook.dropped",
                extra={
                    "conversation_key": key,
                    "event": event.event_name,
                    "delivery": event.delivery_id,
                    "reason": reason,
                },
            )
            return DispatchOutcome(STATUS_DROPPED, key, reason)

        platform = event.platform
        await self.contexts.upsert(
            key,
            ContextRecord(
                platform_kind=platform.kind,
                owner=platform.owner,
                repo=platform.repo,
                number=platform.number,
            ),
        )
        message = append_footer(
            event.body_text or "",
            EmbeddedIdentity(
                owner=platform.owner,
                repo=platform.repo,
                number=platform.number,
                kind=platform.kind,
                event=_footer_event(event),
            ),
        )
        return await self._deliver(key, message, connector="github")

    async def handle_github(self, event_name: str, delivery_id: Optional[str], payload: Any) -> DispatchOutcome:
        events = classify_github_event(event_name, payload, delivery_id)
        if not events:
            logger.info(
                "github_webhook.ignored",
                extra={"event": event_name, "delivery": delivery_id, "reason": "unsupported_event"},
            )
            return DispatchOutcome(STATUS_IGNORED, reason="unsupported_event")

        sender = sender_login(payload)
        if _is_bot_login(sender, self.settings.github_bot_login):
            logger.info(
                "github_webhook.dropped_self_authored",
                extra={"event": event_name, "delivery": delivery_id},
            )
            return DispatchOutcome(STATUS_DROPPED, events[0].conversation_key, "self_authored")

        outcomes: List[DispatchOutcome] = []
        for event in events:
            outcomes.append(await self._dispatch_github_event(event))
        return next((o for o in outcomes if o.enqueued), outcomes[-1])

    # ---- delivery ----

    async def _deliver(self, key: str, message: str, connector: str) -> DispatchOutcome:
        try:
            await self.enqueue(key, message)
        except Exception as exc:
            # the sender must not retry; the failure is only logged
            logger.error(
                "webhook.delivery_failed",
                extra={"conversation_key": key, "connector": connector, "error": str(exc)},
            )
            return DispatchOutcome(STATUS_DELIVERY_FAILED, key, "enqueue_failed")
        logger.info("webhook.enqueued", extra={"conversation_key": key, "connector": connector})
        return DispatchOutcome(STATUS_ENQUEUED, key)
