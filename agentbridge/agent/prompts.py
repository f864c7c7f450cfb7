"""System prompt fragments, assembled per turn by the composer."""

from __future__ import annotations

from typing import List

from agentbridge.agent.context_store import ContextRecord

TRACKER_ROLE = (
    "You are {name}, an engineering assistant answering a Jira comment on issue "
    "{issue_key} ({issue_url}). The person who mentioned you is the requester; "
    "your reply will mention them automatically."
)

PR_ROLE = (
    "You are {name}, an engineering assistant working on GitHub pull request "
    "{owner}/{repo} #{number}. Read the diff, reviews and checks before answering."
)

ISSUE_ROLE = (
    "You are {name}, an engineering assistant working on GitHub issue "
    "{owner}/{repo} #{number}."
)

DEFAULT_ROLE = "You are {name}, an engineering assistant with access to a sandboxed workspace."

WORKSPACE_READY = "A workspace is already initialized for this conversation."
WORKSPACE_PENDING = (
    "No workspace exists yet. Call initialize_workspace before running commands or touching files."
)

CONSTRAINTS = [
    "Be concise.",
    "Do not embellish with formatting: no headings, tables or emoji unless asked.",
    "If the request is unclear, ask exactly one clarifying question instead of guessing.",
    "Never mention the service account, bots or automation behind you.",
]

TRACKER_DELIVERY = (
    "Deliver your final answer by calling jira_reply exactly once. "
    "Text outside jira_reply is not seen by anyone."
)

BRANCH_RULE = (
    "Every branch you create must start with '{prefix}'. Pull requests are always opened as drafts."
)


def role_for(record: ContextRecord, agent_name: str) -> str:
    if record.has_tracker_identity:
        return TRACKER_ROLE.format(
            name=agent_name,
            issue_key=record.tracker_issue_key or "the current issue",
            issue_url=record.tracker_issue_url or "no URL",
        )
    if record.has_platform_identity:
        template = PR_ROLE if record.platform_kind == "pr" else ISSUE_ROLE
        return template.format(
            name=agent_name, owner=record.owner, repo=record.repo, number=record.number
        )
    return DEFAULT_ROLE.format(name=agent_name)


def build_system_prompt(
    record: ContextRecord,
    agent_name: str,
    branch_prefix: str,
    workspace_initialized: bool,
) -> str:
    parts: List[str] = [role_for(record, agent_name)]
    if record.has_tracker_identity and record.has_platform_identity:
        parts.append(
            f"This conversation is also linked to {record.owner}/{record.repo} #{record.number} on GitHub."
        )
    parts.append(WORKSPACE_READY if workspace_initialized else WORKSPACE_PENDING)
    parts.extend(CONSTRAINTS)
    parts.append(BRANCH_RULE.format(prefix=branch_prefix))
    if record.has_tracker_identity:
        parts.append(TRACKER_DELIVERY)
    return "\n\n".join(parts)
