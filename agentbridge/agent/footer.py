"""
Context footer: identity repeated as plain text at the end of enqueued messages.

If the correlation store misses at turn time, the resolver can still recover
the issue/PR a message belongs to from the text itself. Grammar (v1)::

    ---
    CONTEXT_FOOTER: v1
    ISSUE_URL: https://acme.atlassian.net/browse/ABC-1
    MENTION_ACCOUNT_ID: 5b10ac8d82e05b22cc7d4ef5
    TARGET: octo/widgets #42
    event: pull_request_review_comment

Every line is optional. The reader does not require the marker line, so
footers written before versioning are still understood.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

FOOTER_VERSION = "v1"
FOOTER_SEPARATOR = "---"
FOOTER_MARKER = "CONTEXT_FOOTER"

_ISSUE_URL_RE = re.compile(r"^\s*ISSUE_URL:\s*(\S+)\s*$", re.MULTILINE)
_MENTION_RE = re.compile(r"^\s*MENTION_ACCOUNT_ID:\s*(\S+)\s*$", re.MULTILINE)
_TARGET_RE = re.compile(
    r"^\s*TARGET:\s*([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)\s+#(\d+)\s*$", re.MULTILINE
)
_EVENT_RE = re.compile(r"^\s*event:\s*(\S+)\s*$", re.MULTILINE | re.IGNORECASE)

# Event names that only ever concern pull requests
_PR_EVENTS = {
    "pull_request",
    "pull_request_review",
    "pull_request_review_comment",
    "check_run",
    "pr_comment",
}


@dataclass
class EmbeddedIdentity:
    issue_url: Optional[str] = None
    author_id: Optional[str] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    number: Optional[int] = None
    kind: Optional[str] = None
    event: Optional[str] = None

    @property
    def has_platform_target(self) -> bool:
        return bool(self.owner and self.repo and self.number)

    def is_empty(self) -> bool:
        return not (self.issue_url or self.author_id or self.has_platform_target)


def render_footer(identity: EmbeddedIdentity) -> str:
    lines = [FOOTER_SEPARATOR, f"{FOOTER_MARKER}: {FOOTER_VERSION}"]
    if identity.issue_url:
        lines.append(f"ISSUE_URL: {identity.issue_url}")
    if identity.author_id:
        lines.append(f"MENTION_ACCOUNT_ID: {identity.author_id}")
    if identity.has_platform_target:
        lines.append(f"TARGET: {identity.owner}/{identity.repo} #{identity.number}")
    if identity.event:
        lines.append(f"event: {identity.event}")
    return "\n".join(lines)


def append_footer(text: str, identity: EmbeddedIdentity) -> str:
    body = (text or "").rstrip()
    footer = render_footer(identity)
    return f"{body}\n\n{footer}" if body else footer


def _kind_for_event(event: Optional[str], fallback: Optional[str]) -> Optional[str]:
    if not event:
        return fallback
    name = event.lower()
    if name in _PR_EVENTS or name.startswith("pull_request") or name.startswith("pr"):
        return "pr"
    if name.startswith("issue"):
        return fallback or "issue"
    return fallback


def extract_embedded_identity(text: Optional[str]) -> EmbeddedIdentity:
    """
    Scan free text for footer lines. Never raises; missing lines stay None.

    When several footers are present (quoted replies), the last occurrence of
    each line wins since it belongs to the newest message.
    """
    found = EmbeddedIdentity()
    if not text or not isinstance(text, str):
        return found

    urls = _ISSUE_URL_RE.findall(text)
    if urls:
        found.issue_url = urls[-1]
    mentions = _MENTION_RE.findall(text)
    if mentions:
        found.author_id = mentions[-1]
    targets = _TARGET_RE.findall(text)
    if targets:
        owner, repo, number = targets[-1]
        if int(number) > 0:
            found.owner, found.repo, found.number = owner, repo, int(number)
    events = _EVENT_RE.findall(text)
    if events:
        found.event = events[-1]

    if found.has_platform_target:
        found.kind = _kind_for_event(found.event, "issue")
    return found
