"""
Jira tools for the agent.

``jira_reply`` is the single-shot delivery tool: it posts the final answer on
the conversation's issue and may succeed at most once per turn. The other
tools take an explicit ``issue_url`` and fall back to the conversation's issue.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import structlog
from pydantic import Field

from agentbridge.agent.identity import (
    extract_issue_key_from_url,
    project_key_from_issue_url,
)
from agentbridge.agent.tools.base import NoInput, Tool, ToolContext, ToolInput, tool
from agentbridge.core.errors import ConfigurationError, ToolError
from agentbridge.integrations.jira_client import (
    JiraClient,
    build_adf_comment,
    canonicalize_issue_type,
    jql_and,
    jql_assignee,
    jql_in,
    normalize_due_date,
    to_adf_doc,
)

logger = structlog.get_logger(__name__)

REPLY_TOOL = "jira_reply"

_PREFERRED_TYPES = ["Story", "Task", "Bug", "Idea", "Epic", "Sub-task"]
_ACCEPTANCE_RE = re.compile(r"(AC:|Acceptance Criteria|Given/?When/?Then)", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*[-*]\s+")


class Mention(ToolInput):
    accountId: str
    text: Optional[str] = None


class ReplyInput(ToolInput):
    text: str = Field(min_length=1, description="Final answer to post on the issue")


class AddCommentInput(ToolInput):
    issue_url: Optional[str] = Field(default=None, description="Jira issue URL; defaults to the current issue")
    text: str = Field(min_length=1)
    mentions: List[Mention] = Field(default_factory=list)


class GetIssueInput(ToolInput):
    issue_url: Optional[str] = None
    include_comments: bool = False
    max_comments: int = Field(default=50, gt=0, le=200)
    include_attachments: bool = False


class IssueContextInput(ToolInput):
    issue_url: Optional[str] = None
    include_comments: bool = True
    include_attachments: bool = False
    include_linked: bool = True
    include_subtasks: bool = True
    max_comments: int = Field(default=50, gt=0, le=200)


class FindUserInput(ToolInput):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, gt=0, le=50)


class ListProjectsInput(ToolInput):
    query: Optional[str] = None
    start_at: int = Field(default=0, ge=0)
    limit: int = Field(default=50, gt=0, le=100)


class ListTasksInput(ToolInput):
    project_key: str = Field(min_length=1)
    types: List[str] = Field(default_factory=lambda: ["Task"])
    statuses: List[str] = Field(default_factory=list)
    assignee_accountId: Optional[str] = None
    limit: int = Field(default=50, gt=0, le=100)
    start_at: int = Field(default=0, ge=0)


class CreateIssueInput(ToolInput):
    summary: str = Field(min_length=3)
    description: Optional[str] = None
    project_key: Optional[str] = None
    issue_type: Optional[str] = None
    parent_issue_url: Optional[str] = None
    assignee_accountId: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    due_date: Optional[str] = None


class UpdateFieldsInput(ToolInput):
    issue_url: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    labels: Optional[List[str]] = None
    assignee_accountId: Optional[str] = Field(
        default=None, description="Account id to assign; empty string unassigns"
    )
    priority: Optional[str] = None
    due_date: Optional[str] = None
    components: Optional[List[str]] = None


class IssueUrlInput(ToolInput):
    issue_url: Optional[str] = None


class ApplyTransitionInput(ToolInput):
    issue_url: Optional[str] = None
    transition_id: Optional[str] = None
    transition_name: Optional[str] = Field(default=None, description="Case-insensitive transition or target status name")


class LinkIssueInput(ToolInput):
    issue_url: Optional[str] = None
    target_issue_url: str
    link_type: str = "Relates"


def _require_jira(ctx: ToolContext) -> JiraClient:
    if ctx.jira is None:
        raise ConfigurationError("Jira client is not configured")
    return ctx.jira


def _issue_key(ctx: ToolContext, issue_url: Optional[str]) -> str:
    if issue_url:
        return extract_issue_key_from_url(issue_url)
    if ctx.record.tracker_issue_key:
        return ctx.record.tracker_issue_key
    if ctx.record.tracker_issue_url:
        return extract_issue_key_from_url(ctx.record.tracker_issue_url)
    raise ToolError("issue_url is required (no current Jira issue in this conversation)")


def harvest_acceptance_criteria(texts: List[Optional[str]], limit: int = 50) -> List[str]:
    found: List[str] = []
    for text in texts:
        for line in (text or "").split("\n"):
            if _BULLET_RE.match(line) or _ACCEPTANCE_RE.search(line):
                found.append(line.strip())
    return found[:limit]


def _resolve_issue_type(
    requested: Optional[str], allowed: List[str], has_parent: bool
) -> str:
    allowed_lower = {n.lower(): n for n in allowed}
    resolved = canonicalize_issue_type(requested) if requested else ""
    if not resolved and has_parent and "sub-task" in allowed_lower:
        resolved = allowed_lower["sub-task"]
    if not resolved:
        resolved = next(
            (allowed_lower[t.lower()] for t in _PREFERRED_TYPES if t.lower() in allowed_lower),
            allowed[0] if allowed else "Task",
        )
    if allowed and resolved.lower() not in allowed_lower:
        resolved = allowed[0]
    return allowed_lower.get(resolved.lower(), resolved)


def build_reply_tool(ctx: ToolContext) -> Tool:
    delivered: Dict[str, Any] = {}

    @tool(
        REPLY_TOOL,
        "Post your final answer as a Jira comment on the current issue, mentioning "
        "the requester. Call this exactly ONCE at the end of your turn with your final text.",
        ReplyInput,
    )
    async def jira_reply(args: ReplyInput):
        if delivered:
            raise ToolError("Reply already delivered for this turn")
        if not (ctx.record.tracker_issue_key or ctx.record.tracker_issue_url):
            raise ToolError("Missing issue metadata for delivery")
        jira = _require_jira(ctx)
        key = _issue_key(ctx, None)
        mentions = (
            [{"accountId": ctx.record.requester_id, "text": ""}]
            if ctx.record.requester_id
            else None
        )
        result = await jira.add_comment(key, build_adf_comment(args.text, mentions))
        delivered["id"] = result.get("id")
        logger.info("jira_tools.reply.delivered", key=key, comment_id=result.get("id"))
        return {"id": result.get("id"), "issue": key}

    return jira_reply


def build_jira_tools(ctx: ToolContext) -> List[Tool]:
    """Full tracker tool family, including the single-shot reply tool."""

    @tool(
        "jira_add_comment",
        "Add a comment to a Jira issue. Supports ADF mentions (provide accountIds).",
        AddCommentInput,
    )
    async def jira_add_comment(args: AddCommentInput):
        jira = _require_jira(ctx)
        key = _issue_key(ctx, args.issue_url)
        body = build_adf_comment(args.text, [m.model_dump() for m in args.mentions] or None)
        result = await jira.add_comment(key, body)
        return {
            "id": result.get("id"),
            "created": result.get("created"),
            "author": (result.get("author") or {}).get("displayName"),
        }

    @tool(
        "jira_get_issue_by_url",
        "Fetch a Jira issue by URL and return normalized fields.",
        GetIssueInput,
    )
    async def jira_get_issue_by_url(args: GetIssueInput):
        jira = _require_jira(ctx)
        return await jira.fetch_issue_normalized(
            _issue_key(ctx, args.issue_url),
            include_comments=args.include_comments,
            max_comments=args.max_comments,
            include_attachments=args.include_attachments,
        )

    @tool(
        "jira_get_issue_context",
        "Aggregate full context for a Jira issue (parent, subtasks, links, comments, "
        "attachments, acceptance criteria).",
        IssueContextInput,
    )
    async def jira_get_issue_context(args: IssueContextInput):
        jira = _require_jira(ctx)
        base = await jira.fetch_issue_normalized(
            _issue_key(ctx, args.issue_url),
            include_comments=args.include_comments,
            max_comments=args.max_comments,
            include_attachments=args.include_attachments,
        )
        parent = None
        if base.get("parentKey"):
            raw = await jira.get_issue(base["parentKey"], fields=["summary", "status", "issuetype"])
            fields = raw.get("fields") or {}
            parent = {
                "key": raw.get("key"),
                "summary": fields.get("summary"),
                "status": (fields.get("status") or {}).get("name"),
                "type": (fields.get("issuetype") or {}).get("name"),
            }
        if not args.include_linked:
            base.pop("linkedIssues", None)
        if not args.include_subtasks:
            base.pop("subtasks", None)
        texts = [(base.get("description") or {}).get("text")]
        texts.extend(c.get("body") for c in base.get("comments") or [])
        return {**base, "parent": parent, "acceptanceCriteria": harvest_acceptance_criteria(texts)}

    @tool(
        "jira_find_user",
        "Find users by name or email and return accountId + displayName.",
        FindUserInput,
    )
    async def jira_find_user(args: FindUserInput):
        users = await _require_jira(ctx).search_users(args.query, args.limit)
        return [
            {
                "accountId": u.get("accountId"),
                "displayName": u.get("displayName"),
                "emailAddress": u.get("emailAddress"),
            }
            for u in users
        ]

    @tool(
        "jira_list_projects",
        "List Jira projects with key, id, name, and browse URL.",
        ListProjectsInput,
    )
    async def jira_list_projects(args: ListProjectsInput):
        jira = _require_jira(ctx)
        values = await jira.search_projects(args.query, args.start_at, args.limit)
        return [
            {
                "id": p.get("id"),
                "key": p.get("key"),
                "name": p.get("name"),
                "type": p.get("projectTypeKey"),
                "url": jira.browse_url(p.get("key")) if p.get("key") else None,
            }
            for p in values
        ]

    @tool(
        "jira_list_tasks",
        "List issues for a project (Task by default), with optional status and assignee filters.",
        ListTasksInput,
    )
    async def jira_list_tasks(args: ListTasksInput):
        jira = _require_jira(ctx)
        allowed = await jira.get_project_issue_types(args.project_key)
        matched: List[str] = []
        for requested in (canonicalize_issue_type(t) for t in args.types):
            exact = next((n for n in allowed if n.lower() == requested.lower()), None)
            if exact and exact not in matched:
                matched.append(exact)
        types_filter = matched or allowed
        jql = jql_and(
            [
                f"project = {args.project_key}",
                jql_in("issuetype", types_filter),
                jql_in("status", args.statuses),
                jql_assignee(args.assignee_accountId),
            ]
        )
        issues = await jira.search_jql(
            f"{jql} ORDER BY updated DESC",
            fields=["summary", "status", "issuetype", "priority", "assignee", "updated"],
            max_results=args.limit,
            start_at=args.start_at,
        )
        out = []
        for it in issues:
            fields = it.get("fields") or {}
            status = fields.get("status") or {}
            assignee = fields.get("assignee") or {}
            out.append(
                {
                    "key": it.get("key"),
                    "url": jira.browse_url(it.get("key")) if it.get("key") else None,
                    "summary": fields.get("summary"),
                    "status": status.get("name"),
                    "statusCategoryKey": (status.get("statusCategory") or {}).get("key"),
                    "type": (fields.get("issuetype") or {}).get("name"),
                    "priority": (fields.get("priority") or {}).get("name"),
                    "assignee": assignee.get("displayName"),
                    "assigneeAccountId": assignee.get("accountId"),
                    "updated": fields.get("updated"),
                }
            )
        return out

    @tool(
        "jira_create_issue",
        "Create a Jira issue. Infers project/type if omitted (uses parent issue URL, "
        "the current issue, or the default project).",
        CreateIssueInput,
    )
    async def jira_create_issue(args: CreateIssueInput):
        jira = _require_jira(ctx)
        project_key = args.project_key
        if not project_key and args.parent_issue_url:
            project_key = project_key_from_issue_url(args.parent_issue_url)
        if not project_key and ctx.record.tracker_issue_key:
            project_key = ctx.record.tracker_issue_key.split("-", 1)[0]
        project_key = project_key or ctx.settings.jira_default_project
        if not project_key:
            raise ToolError(
                "project_key is required (or provide parent_issue_url or set JIRA_DEFAULT_PROJECT)"
            )

        allowed = await jira.get_project_issue_types(project_key)
        issue_type = _resolve_issue_type(args.issue_type, allowed, bool(args.parent_issue_url))
        fields: Dict[str, Any] = {
            "project": {"key": project_key},
            "summary": args.summary,
            "issuetype": {"name": issue_type},
            "description": to_adf_doc(args.description),
        }
        if args.assignee_accountId:
            fields["assignee"] = {"accountId": args.assignee_accountId}
        if args.labels:
            fields["labels"] = args.labels
        if args.due_date:
            fields["duedate"] = normalize_due_date(args.due_date)
        if issue_type.lower() == "sub-task":
            if not args.parent_issue_url:
                raise ToolError("parent_issue_url is required for Sub-task creation")
            fields["parent"] = {"key": extract_issue_key_from_url(args.parent_issue_url)}

        created = await jira.create_issue(fields)
        key = created.get("key")
        logger.info("jira_tools.create_issue.done", key=key, project=project_key)
        return {
            "key": key,
            "url": jira.browse_url(key) if key else None,
            "projectKey": project_key,
            "issueType": issue_type,
        }

    @tool(
        "jira_update_fields",
        "Update fields on a Jira issue: summary, description, labels, assignee, "
        "priority, due date, components. Only provided fields change.",
        UpdateFieldsInput,
    )
    async def jira_update_fields(args: UpdateFieldsInput):
        jira = _require_jira(ctx)
        key = _issue_key(ctx, args.issue_url)
        fields: Dict[str, Any] = {}
        if args.summary is not None:
            fields["summary"] = args.summary
        if args.description is not None:
            fields["description"] = to_adf_doc(args.description)
        if args.labels is not None:
            fields["labels"] = args.labels
        if args.assignee_accountId is not None:
            fields["assignee"] = {"accountId": args.assignee_accountId or None}
        if args.priority is not None:
            fields["priority"] = {"name": args.priority}
        if args.due_date is not None:
            fields["duedate"] = normalize_due_date(args.due_date)
        if args.components is not None:
            fields["components"] = [{"name": c} for c in args.components]
        if not fields:
            raise ToolError("No fields to update")
        await jira.update_issue(key, fields)
        return {"key": key, "updated": sorted(fields)}

    @tool(
        "jira_list_transitions",
        "List the workflow transitions currently available for a Jira issue.",
        IssueUrlInput,
    )
    async def jira_list_transitions(args: IssueUrlInput):
        transitions = await _require_jira(ctx).get_transitions(_issue_key(ctx, args.issue_url))
        return [
            {"id": t.get("id"), "name": t.get("name"), "to": (t.get("to") or {}).get("name")}
            for t in transitions
        ]

    @tool(
        "jira_apply_transition",
        "Move a Jira issue through a workflow transition, by id or by name.",
        ApplyTransitionInput,
    )
    async def jira_apply_transition(args: ApplyTransitionInput):
        jira = _require_jira(ctx)
        key = _issue_key(ctx, args.issue_url)
        transition_id = args.transition_id
        if not transition_id:
            if not args.transition_name:
                raise ToolError("Provide transition_id or transition_name")
            wanted = args.transition_name.strip().lower()
            for t in await jira.get_transitions(key):
                target = ((t.get("to") or {}).get("name") or "").lower()
                if (t.get("name") or "").lower() == wanted or target == wanted:
                    transition_id = t.get("id")
                    break
            if not transition_id:
                raise ToolError(f"No transition named {args.transition_name!r} for {key}")
        await jira.transition_issue(key, str(transition_id))
        return {"key": key, "transition_id": str(transition_id)}

    @tool(
        "jira_link_issue",
        "Link two Jira issues (e.g. Relates, Blocks, Duplicate).",
        LinkIssueInput,
    )
    async def jira_link_issue(args: LinkIssueInput):
        jira = _require_jira(ctx)
        source = _issue_key(ctx, args.issue_url)
        target = extract_issue_key_from_url(args.target_issue_url)
        await jira.link_issues(args.link_type, inward_key=source, outward_key=target)
        return {"linked": True, "from": source, "to": target, "type": args.link_type}

    @tool(
        "jira_env_check",
        "Report which Jira settings are visible and the computed API base.",
        NoInput,
    )
    async def jira_env_check(args: NoInput):
        s = ctx.settings
        return {
            "cloudIdPresent": bool(s.jira_cloud_id),
            "emailPresent": bool(s.jira_email),
            "tokenPresent": bool(s.jira_api_token),
            "apiBase": s.jira_api_base if s.jira_cloud_id else None,
            "siteBase": s.jira_base_url,
        }

    @tool("jira_ping", "Verify Jira credentials and site access via /myself.", NoInput)
    async def jira_ping(args: NoInput):
        me = await _require_jira(ctx).get_myself()
        return {"accountId": me.get("accountId"), "displayName": me.get("displayName")}

    return [
        build_reply_tool(ctx),
        jira_add_comment,
        jira_get_issue_by_url,
        jira_get_issue_context,
        jira_find_user,
        jira_list_projects,
        jira_list_tasks,
        jira_create_issue,
        jira_update_fields,
        jira_list_transitions,
        jira_apply_transition,
        jira_link_issue,
        jira_env_check,
        jira_ping,
    ]
