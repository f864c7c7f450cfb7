"""
Conversation identity codec.

A conversation key is derived deterministically from the external entity an
event concerns, so every event for the same Jira issue or GitHub PR/issue lands
in the same conversation:

    jira-ABC-123
    gh-pr~octo~widgets~42
    gh-issue~octo~widgets~7
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Optional
from urllib.parse import parse_qs, urlparse

from agentbridge.core.errors import ParseError

PlatformKind = Literal["pr", "issue"]

TRACKER_PREFIX = "jira-"
PLATFORM_PREFIXES = {"pr": "gh-pr", "issue": "gh-issue"}
_PLATFORM_KIND_BY_PREFIX = {v: k for k, v in PLATFORM_PREFIXES.items()}
SEPARATOR = "~"

ISSUE_KEY_RE = re.compile(r"[A-Z][A-Z0-9_]+-\d+", re.IGNORECASE)
_ISSUE_KEY_FULL_RE = re.compile(r"^[A-Z][A-Z0-9_]+-\d+$")


@dataclass(frozen=True)
class PlatformIdentity:
    kind: PlatformKind
    owner: str
    repo: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def is_issue_key(value: Optional[str]) -> bool:
    return bool(value) and bool(_ISSUE_KEY_FULL_RE.match(value))


def encode_tracker_key(issue_key: str) -> str:
    key = (issue_key or "").strip().upper()
    if not is_issue_key(key):
        raise ParseError(f"Not a Jira issue key: {issue_key!r}")
    return f"{TRACKER_PREFIX}{key}"


def decode_tracker_key(conversation_key: str) -> Optional[str]:
    if not conversation_key or not conversation_key.startswith(TRACKER_PREFIX):
        return None
    key = conversation_key[len(TRACKER_PREFIX):]
    return key if is_issue_key(key) else None


def encode_platform_key(kind: str, owner: str, repo: str, number: int) -> str:
    if kind not in PLATFORM_PREFIXES:
        raise ParseError(f"Unknown platform kind: {kind!r}")
    if not owner or not repo or SEPARATOR in owner or SEPARATOR in repo:
        raise ParseError(f"Invalid repository: {owner!r}/{repo!r}")
    if int(number) <= 0:
        raise ParseError(f"Invalid number: {number!r}")
    return SEPARATOR.join([PLATFORM_PREFIXES[kind], owner, repo, str(int(number))])


def decode_platform_key(conversation_key: Optional[str]) -> Optional[PlatformIdentity]:
    """Inverse of ``encode_platform_key``. Returns None on any malformed input."""
    if not isinstance(conversation_key, str):
        return None
    parts = conversation_key.split(SEPARATOR)
    if len(parts) != 4:
        return None
    prefix, owner, repo, raw_number = parts
    kind = _PLATFORM_KIND_BY_PREFIX.get(prefix)
    if kind is None or not owner or not repo:
        return None
    if not raw_number.isdigit():
        return None
    number = int(raw_number)
    if number <= 0:
        return None
    return PlatformIdentity(kind=kind, owner=owner, repo=repo, number=number)


def extract_issue_key_from_url(issue_url: str) -> str:
    """
    Extract a Jira issue key from a browse/board URL.

    ``selectedIssue`` in the query wins; otherwise the path is scanned for the
    first ``KEY-123`` token. Raises ParseError when neither is present.
    """
    try:
        parsed = urlparse(issue_url)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid issue URL: {issue_url!r}") from exc
    if not parsed.scheme or not parsed.netloc:
        raise ParseError(f"Invalid issue URL: {issue_url!r}")

    selected = parse_qs(parsed.query).get("selectedIssue")
    if selected and selected[0].strip():
        return selected[0].strip().upper()

    match = ISSUE_KEY_RE.search(parsed.path)
    if match:
        return match.group(0).upper()
    raise ParseError("Unable to parse issue key from URL")


def project_key_from_issue_url(issue_url: str) -> str:
    key = extract_issue_key_from_url(issue_url)
    project, _, _ = key.partition("-")
    return project or key
