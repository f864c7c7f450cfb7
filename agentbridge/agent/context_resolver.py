"""
Session Context Resolver

Rebuilds the working context at the start of each turn. Order:

1. the correlation store, by conversation key;
2. the alias record stored under the issue key named in the latest footer;
3. the context footer of the latest user message on its own;
4. the identity encoded in the conversation key itself.

Lower-priority sources only fill fields the higher ones left empty, and a
footer never overrides a stored record that names a different entity. Nothing
here raises: with no context at all the turn runs without tracker or
platform identity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from agentbridge.agent.context_store import ContextRecord, ContextRepository
from agentbridge.agent.footer import EmbeddedIdentity, extract_embedded_identity
from agentbridge.agent.identity import (
    decode_platform_key,
    decode_tracker_key,
    extract_issue_key_from_url,
)
from agentbridge.core.config import Settings
from agentbridge.core.errors import ParseError

logger = logging.getLogger(__name__)

SOURCE_STORE = "store"
SOURCE_FOOTER = "footer"
SOURCE_ALIAS = "alias"
SOURCE_KEY = "key"
SOURCE_NONE = "none"


@dataclass
class ResolvedContext:
    record: ContextRecord
    source: str

    @property
    def found(self) -> bool:
        return self.source != SOURCE_NONE


def message_text(message: Dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return ""


def latest_user_text(messages: List[Dict[str, Any]]) -> Optional[str]:
    for message in reversed(messages or []):
        if message.get("role") != "user":
            continue
        text = message_text(message)
        # tool_result-only user messages carry no footer
        if text:
            return text
    return None


def record_from_footer(found: EmbeddedIdentity) -> ContextRecord:
    issue_key = None
    if found.issue_url:
        try:
            issue_key = extract_issue_key_from_url(found.issue_url)
        except ParseError:
            issue_key = None
    return ContextRecord(
        tracker_issue_key=issue_key,
        tracker_issue_url=found.issue_url if issue_key else None,
        requester_id=found.author_id,
        platform_kind=found.kind if found.has_platform_target else None,
        owner=found.owner if found.has_platform_target else None,
        repo=found.repo if found.has_platform_target else None,
        number=found.number if found.has_platform_target else None,
    )


def record_from_key(conversation_key: str, settings: Optional[Settings] = None) -> ContextRecord:
    issue_key = decode_tracker_key(conversation_key)
    if issue_key:
        url = settings.jira_browse_url(issue_key) if settings else None
        return ContextRecord(tracker_issue_key=issue_key, tracker_issue_url=url)
    platform = decode_platform_key(conversation_key)
    if platform:
        return ContextRecord(
            platform_kind=platform.kind,
            owner=platform.owner,
            repo=platform.repo,
            number=platform.number,
        )
    return ContextRecord()


def compatible_hint(stored: ContextRecord, hint: ContextRecord) -> ContextRecord:
    """The parts of ``hint`` that describe the same entities as ``stored``."""
    data = {}
    if not stored.has_tracker_identity or hint.tracker_issue_key == stored.tracker_issue_key:
        data.update(hint.tracker_part())
    if not stored.has_platform_identity or hint.platform == stored.platform:
        data.update(hint.platform_part())
    return ContextRecord(**data)


class SessionContextResolver:
    def __init__(self, contexts: ContextRepository, settings: Optional[Settings] = None):
        self.contexts = contexts
        self.settings = settings

    async def resolve(self, conversation_key: str, messages: List[Dict[str, Any]]) -> ResolvedContext:
        stored = await self.contexts.load(conversation_key)
        from_footer = record_from_footer(extract_embedded_identity(latest_user_text(messages)))

        if stored is not None:
            return ResolvedContext(
                record=compatible_hint(stored, from_footer).merge(stored), source=SOURCE_STORE
            )

        if from_footer.tracker_issue_key:
            alias = await self.contexts.load_alias(from_footer.tracker_issue_key)
            if alias is not None and not alias.is_empty():
                logger.info(
                    "context_resolver.alias_hit",
                    extra={"conversation_key": conversation_key, "issue_key": from_footer.tracker_issue_key},
                )
                return ResolvedContext(record=alias.merge(from_footer), source=SOURCE_ALIAS)

        if not from_footer.is_empty():
            logger.info(
                "context_resolver.footer_recovered",
                extra={"conversation_key": conversation_key},
            )
            return ResolvedContext(record=from_footer, source=SOURCE_FOOTER)

        from_key = record_from_key(conversation_key, self.settings)
        if not from_key.is_empty():
            return ResolvedContext(record=from_key, source=SOURCE_KEY)

        logger.info("context_resolver.no_context", extra={"conversation_key": conversation_key})
        return ResolvedContext(record=ContextRecord(), source=SOURCE_NONE)
