"""
Correlation store: durable per-conversation context and workspace handles.

Layout (all values JSON):

    jira-meta-<conversation_key>      tracker part of the context record
    jira-meta-jira-<ISSUE_KEY>        alias of the above, keyed by issue only
    gh-meta-<conversation_key>        platform part of the context record
    daytona-workspace-<conversation_key>

Every access is best-effort. Backend failures are logged and degrade to a
miss (reads) or a dropped write; callers never see store exceptions.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

from pydantic import BaseModel, ValidationError

from agentbridge.agent.identity import PlatformIdentity, encode_tracker_key

logger = logging.getLogger(__name__)

TRACKER_META_PREFIX = "jira-meta-"
PLATFORM_META_PREFIX = "gh-meta-"
WORKSPACE_PREFIX = "daytona-workspace-"

_TRACKER_FIELDS = ("tracker_issue_key", "tracker_issue_url", "requester_id")
_PLATFORM_FIELDS = ("platform_kind", "owner", "repo", "number")


class KeyValueBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...


class ContextRecord(BaseModel):
    tracker_issue_key: Optional[str] = None
    tracker_issue_url: Optional[str] = None
    requester_id: Optional[str] = None
    platform_kind: Optional[str] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    number: Optional[int] = None

    @property
    def has_tracker_identity(self) -> bool:
        return bool(self.tracker_issue_key or self.tracker_issue_url)

    @property
    def has_platform_identity(self) -> bool:
        return bool(self.owner and self.repo and self.number)

    @property
    def platform(self) -> Optional[PlatformIdentity]:
        if not self.has_platform_identity:
            return None
        kind = self.platform_kind if self.platform_kind in ("pr", "issue") else "issue"
        return PlatformIdentity(kind=kind, owner=self.owner, repo=self.repo, number=self.number)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields)

    def merge(self, update: "ContextRecord") -> "ContextRecord":
        """Fields set on ``update`` win; unset fields never erase known values."""
        data = self.model_dump()
        data.update(update.model_dump(exclude_none=True))
        return ContextRecord(**data)

    def tracker_part(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in _TRACKER_FIELDS if getattr(self, k) is not None}

    def platform_part(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in _PLATFORM_FIELDS if getattr(self, k) is not None}


class WorkspaceHandle(BaseModel):
    workspace_id: str
    connection_token: str


class CorrelationStore:
    """Best-effort get/set over any async string key/value backend."""

    def __init__(self, backend: KeyValueBackend):
        self._backend = backend

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._backend.get(key)
        except Exception as exc:
            logger.warning("store.get_failed", extra={"reason": key, "error": str(exc)})
            return None

    async def set(self, key: str, value: str) -> bool:
        try:
            await self._backend.set(key, value)
            return True
        except Exception as exc:
            logger.warning("store.set_failed", extra={"reason": key, "error": str(exc)})
            return False

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("store.corrupt_value", extra={"reason": key})
            return None

    async def set_json(self, key: str, value: Any) -> bool:
        return await self.set(key, json.dumps(value, separators=(",", ":")))


def tracker_meta_key(conversation_key: str) -> str:
    return f"{TRACKER_META_PREFIX}{conversation_key}"


def tracker_alias_key(issue_key: str) -> str:
    return f"{TRACKER_META_PREFIX}{encode_tracker_key(issue_key)}"


def platform_meta_key(conversation_key: str) -> str:
    return f"{PLATFORM_META_PREFIX}{conversation_key}"


def workspace_key(conversation_key: str) -> str:
    return f"{WORKSPACE_PREFIX}{conversation_key}"


def _record_from(data: Any) -> Optional[ContextRecord]:
    if not isinstance(data, dict):
        return None
    try:
        return ContextRecord(**data)
    except ValidationError:
        return None


class ContextRepository:
    """Read/merge/write of ContextRecords. Merges are read-then-write, not atomic."""

    def __init__(self, store: CorrelationStore):
        self.store = store

    async def load(self, conversation_key: str) -> Optional[ContextRecord]:
        tracker = _record_from(await self.store.get_json(tracker_meta_key(conversation_key)))
        platform = _record_from(await self.store.get_json(platform_meta_key(conversation_key)))
        if tracker is None and platform is None:
            return None
        record = ContextRecord()
        for part in (tracker, platform):
            if part is not None:
                record = record.merge(part)
        return None if record.is_empty() else record

    async def load_alias(self, issue_key: str) -> Optional[ContextRecord]:
        try:
            key = tracker_alias_key(issue_key)
        except ValueError:
            return None
        return _record_from(await self.store.get_json(key))

    async def upsert(self, conversation_key: str, update: ContextRecord) -> ContextRecord:
        current = await self.load(conversation_key) or ContextRecord()
        merged = current.merge(update)

        tracker = merged.tracker_part()
        if tracker and update.tracker_part():
            await self.store.set_json(tracker_meta_key(conversation_key), tracker)
            if merged.tracker_issue_key:
                alias = tracker_alias_key(merged.tracker_issue_key)
                if alias != tracker_meta_key(conversation_key):
                    await self.store.set_json(alias, tracker)

        platform = merged.platform_part()
        if platform and update.platform_part():
            await self.store.set_json(platform_meta_key(conversation_key), platform)

        logger.info(
            "context.upserted",
            extra={"conversation_key": conversation_key},
        )
        return merged

    async def load_workspace(self, conversation_key: str) -> Optional[WorkspaceHandle]:
        data = await self.store.get_json(workspace_key(conversation_key))
        if not isinstance(data, dict):
            return None
        try:
            return WorkspaceHandle(**data)
        except ValidationError:
            return None

    async def save_workspace(self, conversation_key: str, handle: WorkspaceHandle) -> None:
        await self.store.set_json(workspace_key(conversation_key), handle.model_dump())
