"""
GitHub tools for the agent, all namespaced with ``github_``.

Repository coordinates default to the conversation's target PR/issue. Two
write paths are wrapped rather than passed through:

- ``github_create_pull_request`` always opens a draft and only accepts head
  branches under the configured branch prefix.
- ``github_update_pull_request`` never changes draft state.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import structlog
from pydantic import Field

from agentbridge.agent.tools.base import Tool, ToolContext, ToolInput, tool
from agentbridge.core.errors import ConfigurationError, ToolError
from agentbridge.integrations.github.client import GitHubClient

logger = structlog.get_logger(__name__)

TOOL_PREFIX = "github_"
MAX_LOG_CHARS = 20000

# "owner:branch" for cross-repository heads
_HEAD_OWNER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]{0,38}:")


class RepoInput(ToolInput):
    owner: Optional[str] = Field(default=None, description="Defaults to the current repository owner")
    repo: Optional[str] = Field(default=None, description="Defaults to the current repository")


class NumberInput(RepoInput):
    number: Optional[int] = Field(default=None, gt=0, description="Defaults to the current PR/issue number")


class OrgInput(ToolInput):
    org: Optional[str] = Field(default=None, description="Defaults to the current repository owner")


class StateListInput(RepoInput):
    state: str = Field(default="open", pattern="^(open|closed|all)$")
    per_page: int = Field(default=30, gt=0, le=100)


class CreateIssueInput(RepoInput):
    title: str = Field(min_length=1)
    body: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list)


class UpdateIssueInput(NumberInput):
    title: Optional[str] = None
    body: Optional[str] = None
    state: Optional[str] = Field(default=None, pattern="^(open|closed)$")
    labels: Optional[List[str]] = None
    assignees: Optional[List[str]] = None


class CommentInput(NumberInput):
    body: str = Field(min_length=1)


class CreatePullRequestInput(RepoInput):
    title: str = Field(min_length=1)
    head: str = Field(min_length=1, description="Branch with your changes")
    base: Optional[str] = Field(default=None, description="Target branch; defaults to the repository default branch")
    body: Optional[str] = None
    draft: Optional[bool] = Field(default=None, description="Ignored: pull requests are always opened as drafts")


class UpdatePullRequestInput(NumberInput):
    title: Optional[str] = None
    body: Optional[str] = None
    base: Optional[str] = None
    state: Optional[str] = Field(default=None, pattern="^(open|closed)$")
    draft: Optional[bool] = Field(default=None, description="Ignored: draft state cannot be changed")


class FileContentsInput(RepoInput):
    path: str = Field(min_length=1)
    ref: Optional[str] = None


class SearchInput(ToolInput):
    query: str = Field(min_length=1, description="GitHub search syntax, e.g. 'repo:octo/widgets parse_config'")
    per_page: int = Field(default=20, gt=0, le=100)


class CreateReviewInput(NumberInput):
    body: Optional[str] = None
    event: str = Field(default="COMMENT", pattern="^(COMMENT|REQUEST_CHANGES|APPROVE)$")
    comments: List[Dict[str, Any]] = Field(
        default_factory=list, description="Inline comments: {path, line, body}"
    )


class ReplyReviewCommentInput(NumberInput):
    comment_id: int = Field(gt=0)
    body: str = Field(min_length=1)


class WorkflowRunsInput(RepoInput):
    branch: Optional[str] = None
    per_page: int = Field(default=20, gt=0, le=100)


class RunIdInput(RepoInput):
    run_id: int = Field(gt=0)


class JobIdInput(RepoInput):
    job_id: int = Field(gt=0)


class RefInput(RepoInput):
    ref: str = Field(min_length=1, description="Commit SHA, branch or tag")


class ProjectItemsInput(OrgInput):
    number: int = Field(gt=0)
    first: int = Field(default=50, gt=0, le=100)


def _require_github(ctx: ToolContext) -> GitHubClient:
    if ctx.github is None:
        raise ConfigurationError("GitHub App is not configured")
    return ctx.github


def _repo(ctx: ToolContext, args: RepoInput) -> tuple[str, str]:
    owner = args.owner or ctx.record.owner
    repo = args.repo or ctx.record.repo
    if not owner or not repo:
        raise ToolError("owner and repo are required (no current repository in this conversation)")
    return owner, repo


def _number(ctx: ToolContext, args: NumberInput) -> int:
    number = args.number or ctx.record.number
    if not number:
        raise ToolError("number is required (no current PR/issue in this conversation)")
    return number


def _org(ctx: ToolContext, args: OrgInput) -> str:
    org = args.org or ctx.record.owner
    if not org:
        raise ToolError("org is required")
    return org


def branch_name(head: str) -> str:
    return head.split(":", 1)[1] if _HEAD_OWNER_RE.match(head) else head


def check_branch_prefix(head: str, prefix: str) -> str:
    """Return the bare branch name or raise ToolError when outside ``prefix``."""
    name = branch_name(head)
    if prefix and not name.startswith(prefix):
        raise ToolError(
            f"Branch {name!r} is not allowed: new branches must start with {prefix!r}"
        )
    return name


def _truncate_tail(text: str, limit: int = MAX_LOG_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"... [truncated {len(text) - limit} chars]\n" + text[-limit:]


def _summarize_pr(pr: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "number": pr.get("number"),
        "title": pr.get("title"),
        "state": pr.get("state"),
        "draft": pr.get("draft"),
        "url": pr.get("html_url"),
        "head": (pr.get("head") or {}).get("ref"),
        "head_sha": (pr.get("head") or {}).get("sha"),
        "base": (pr.get("base") or {}).get("ref"),
        "author": (pr.get("user") or {}).get("login"),
    }


def _summarize_issue(issue: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "number": issue.get("number"),
        "title": issue.get("title"),
        "state": issue.get("state"),
        "url": issue.get("html_url"),
        "author": (issue.get("user") or {}).get("login"),
        "labels": [lbl.get("name") for lbl in issue.get("labels") or [] if isinstance(lbl, dict)],
        "is_pull_request": "pull_request" in issue,
    }


def build_github_tools(ctx: ToolContext) -> List[Tool]:
    prefix = ctx.settings.github_branch_prefix

    # ---- repository / org ----

    @tool("github_get_repository", "Get repository metadata (default branch, visibility, topics).", RepoInput)
    async def get_repository(args: RepoInput):
        owner, repo = _repo(ctx, args)
        data = await _require_github(ctx).get_repository(owner, repo)
        return {
            "full_name": data.get("full_name"),
            "default_branch": data.get("default_branch"),
            "private": data.get("private"),
            "description": data.get("description"),
            "topics": data.get("topics"),
            "url": data.get("html_url"),
        }

    @tool("github_list_org_repositories", "List repositories of an organization, most recently updated first.", OrgInput)
    async def list_org_repositories(args: OrgInput):
        repos = await _require_github(ctx).list_org_repositories(_org(ctx, args))
        return [{"name": r.get("name"), "full_name": r.get("full_name"), "url": r.get("html_url")} for r in repos]

    @tool("github_list_branches", "List branches of a repository.", RepoInput)
    async def list_branches(args: RepoInput):
        owner, repo = _repo(ctx, args)
        branches = await _require_github(ctx).list_branches(owner, repo)
        return [{"name": b.get("name"), "sha": (b.get("commit") or {}).get("sha")} for b in branches]

    # ---- issues ----

    @tool("github_get_issue", "Get an issue (or the issue view of a pull request).", NumberInput)
    async def get_issue(args: NumberInput):
        owner, repo = _repo(ctx, args)
        issue = await _require_github(ctx).get_issue(owner, repo, _number(ctx, args))
        return {**_summarize_issue(issue), "body": issue.get("body")}

    @tool("github_list_issues", "List issues in a repository.", StateListInput)
    async def list_issues(args: StateListInput):
        owner, repo = _repo(ctx, args)
        issues = await _require_github(ctx).list_issues(owner, repo, args.state, args.per_page)
        return [_summarize_issue(i) for i in issues]

    @tool("github_create_issue", "Create an issue.", CreateIssueInput)
    async def create_issue(args: CreateIssueInput):
        owner, repo = _repo(ctx, args)
        body: Dict[str, Any] = {"title": args.title, "body": args.body or ""}
        if args.labels:
            body["labels"] = args.labels
        if args.assignees:
            body["assignees"] = args.assignees
        return _summarize_issue(await _require_github(ctx).create_issue(owner, repo, body))

    @tool("github_update_issue", "Update an issue's title, body, state, labels or assignees.", UpdateIssueInput)
    async def update_issue(args: UpdateIssueInput):
        owner, repo = _repo(ctx, args)
        body = args.model_dump(include={"title", "body", "state", "labels", "assignees"}, exclude_none=True)
        if not body:
            raise ToolError("Nothing to update")
        return _summarize_issue(
            await _require_github(ctx).update_issue(owner, repo, _number(ctx, args), body)
        )

    @tool("github_list_issue_comments", "List conversation comments on an issue or pull request.", NumberInput)
    async def list_issue_comments(args: NumberInput):
        owner, repo = _repo(ctx, args)
        comments = await _require_github(ctx).list_issue_comments(owner, repo, _number(ctx, args))
        return [
            {
                "id": c.get("id"),
                "author": (c.get("user") or {}).get("login"),
                "body": c.get("body"),
                "created_at": c.get("created_at"),
            }
            for c in comments
        ]

    @tool("github_create_issue_comment", "Comment on an issue or pull request conversation.", CommentInput)
    async def create_issue_comment(args: CommentInput):
        owner, repo = _repo(ctx, args)
        result = await _require_github(ctx).create_issue_comment(owner, repo, _number(ctx, args), args.body)
        return {"id": result.get("id"), "url": result.get("html_url")}

    # ---- pull requests ----

    @tool("github_get_pull_request", "Get a pull request, including head/base branches and SHA.", NumberInput)
    async def get_pull_request(args: NumberInput):
        owner, repo = _repo(ctx, args)
        pr = await _require_github(ctx).get_pull_request(owner, repo, _number(ctx, args))
        return {
            **_summarize_pr(pr),
            "body": pr.get("body"),
            "mergeable": pr.get("mergeable"),
            "changed_files": pr.get("changed_files"),
        }

    @tool("github_list_pull_requests", "List pull requests in a repository.", StateListInput)
    async def list_pull_requests(args: StateListInput):
        owner, repo = _repo(ctx, args)
        prs = await _require_github(ctx).list_pull_requests(owner, repo, args.state, args.per_page)
        return [_summarize_pr(pr) for pr in prs]

    @tool(
        "github_create_pull_request",
        f"Open a pull request. It is always created as a draft. The head branch must start with '{prefix}'.",
        CreatePullRequestInput,
    )
    async def create_pull_request(args: CreatePullRequestInput):
        owner, repo = _repo(ctx, args)
        check_branch_prefix(args.head, prefix)
        github = _require_github(ctx)
        base = args.base
        if not base:
            base = (await github.get_repository(owner, repo)).get("default_branch") or "main"
        payload = {
            "title": args.title,
            "head": args.head,
            "base": base,
            "body": args.body or "",
            "draft": True,
        }
        pr = await github.create_pull_request(owner, repo, payload)
        logger.info("github_tools.create_pull_request.done", repo=f"{owner}/{repo}", number=pr.get("number"))
        return _summarize_pr(pr)

    @tool(
        "github_update_pull_request",
        "Update a pull request's title, body, base branch or state. Draft state is never changed.",
        UpdatePullRequestInput,
    )
    async def update_pull_request(args: UpdatePullRequestInput):
        owner, repo = _repo(ctx, args)
        body = args.model_dump(include={"title", "body", "base", "state"}, exclude_none=True)
        if not body:
            raise ToolError("Nothing to update")
        github = _require_github(ctx)
        number = _number(ctx, args)
        if "base" in body:
            # only the agent's own branches may be retargeted
            current = await github.get_pull_request(owner, repo, number)
            check_branch_prefix((current.get("head") or {}).get("ref") or "", prefix)
        pr = await github.update_pull_request(owner, repo, number, body)
        return _summarize_pr(pr)

    @tool("github_get_pull_request_diff", "Get the unified diff of a pull request (truncated when large).", NumberInput)
    async def get_pull_request_diff(args: NumberInput):
        owner, repo = _repo(ctx, args)
        diff = await _require_github(ctx).get_pull_request_diff(owner, repo, _number(ctx, args))
        return {"diff": _truncate_tail(diff) if isinstance(diff, str) else diff}

    @tool("github_list_pull_request_files", "List files changed by a pull request.", NumberInput)
    async def list_pull_request_files(args: NumberInput):
        owner, repo = _repo(ctx, args)
        files = await _require_github(ctx).list_pull_request_files(owner, repo, _number(ctx, args))
        return [
            {
                "filename": f.get("filename"),
                "status": f.get("status"),
                "additions": f.get("additions"),
                "deletions": f.get("deletions"),
            }
            for f in files
        ]

    # ---- code ----

    @tool("github_get_file_contents", "Read a file (or list a directory) from a repository.", FileContentsInput)
    async def get_file_contents(args: FileContentsInput):
        owner, repo = _repo(ctx, args)
        data = await _require_github(ctx).get_file_contents(owner, repo, args.path, args.ref)
        if isinstance(data, list):
            return [{"name": e.get("name"), "path": e.get("path"), "type": e.get("type")} for e in data]
        return {"path": data.get("path"), "sha": data.get("sha"), "content": data.get("decoded_content")}

    @tool("github_search_code", "Search code across GitHub.", SearchInput)
    async def search_code(args: SearchInput):
        data = await _require_github(ctx).search_code(args.query, args.per_page)
        return {
            "total_count": data.get("total_count"),
            "items": [
                {
                    "path": i.get("path"),
                    "repository": (i.get("repository") or {}).get("full_name"),
                    "url": i.get("html_url"),
                }
                for i in data.get("items") or []
            ],
        }

    @tool("github_search_issues", "Search issues and pull requests.", SearchInput)
    async def search_issues(args: SearchInput):
        data = await _require_github(ctx).search_issues(args.query, args.per_page)
        return {
            "total_count": data.get("total_count"),
            "items": [_summarize_issue(i) for i in data.get("items") or []],
        }

    # ---- reviews ----

    @tool("github_list_reviews", "List reviews submitted on a pull request.", NumberInput)
    async def list_reviews(args: NumberInput):
        owner, repo = _repo(ctx, args)
        reviews = await _require_github(ctx).list_reviews(owner, repo, _number(ctx, args))
        return [
            {
                "id": r.get("id"),
                "author": (r.get("user") or {}).get("login"),
                "state": r.get("state"),
                "body": r.get("body"),
            }
            for r in reviews
        ]

    @tool("github_create_review", "Submit a pull request review with optional inline comments.", CreateReviewInput)
    async def create_review(args: CreateReviewInput):
        owner, repo = _repo(ctx, args)
        body: Dict[str, Any] = {"event": args.event}
        if args.body:
            body["body"] = args.body
        if args.comments:
            body["comments"] = args.comments
        result = await _require_github(ctx).create_review(owner, repo, _number(ctx, args), body)
        return {"id": result.get("id"), "state": result.get("state")}

    @tool("github_list_review_comments", "List inline review comments on a pull request.", NumberInput)
    async def list_review_comments(args: NumberInput):
        owner, repo = _repo(ctx, args)
        comments = await _require_github(ctx).list_review_comments(owner, repo, _number(ctx, args))
        return [
            {
                "id": c.get("id"),
                "author": (c.get("user") or {}).get("login"),
                "path": c.get("path"),
                "line": c.get("line"),
                "body": c.get("body"),
                "in_reply_to_id": c.get("in_reply_to_id"),
            }
            for c in comments
        ]

    @tool("github_reply_review_comment", "Reply in the thread of an inline review comment.", ReplyReviewCommentInput)
    async def reply_review_comment(args: ReplyReviewCommentInput):
        owner, repo = _repo(ctx, args)
        result = await _require_github(ctx).reply_to_review_comment(
            owner, repo, _number(ctx, args), args.comment_id, args.body
        )
        return {"id": result.get("id"), "url": result.get("html_url")}

    # ---- actions / checks ----

    @tool("github_list_workflow_runs", "List recent GitHub Actions workflow runs.", WorkflowRunsInput)
    async def list_workflow_runs(args: WorkflowRunsInput):
        owner, repo = _repo(ctx, args)
        data = await _require_github(ctx).list_workflow_runs(owner, repo, args.branch, args.per_page)
        return [
            {
                "id": r.get("id"),
                "name": r.get("name"),
                "status": r.get("status"),
                "conclusion": r.get("conclusion"),
                "head_sha": r.get("head_sha"),
                "branch": r.get("head_branch"),
                "url": r.get("html_url"),
            }
            for r in data.get("workflow_runs") or []
        ]

    @tool("github_list_workflow_run_jobs", "List jobs of a workflow run with their conclusions.", RunIdInput)
    async def list_workflow_run_jobs(args: RunIdInput):
        owner, repo = _repo(ctx, args)
        data = await _require_github(ctx).list_workflow_run_jobs(owner, repo, args.run_id)
        return [
            {"id": j.get("id"), "name": j.get("name"), "status": j.get("status"), "conclusion": j.get("conclusion")}
            for j in data.get("jobs") or []
        ]

    @tool("github_get_job_logs", "Get the log output of an Actions job (tail, truncated).", JobIdInput)
    async def get_job_logs(args: JobIdInput):
        owner, repo = _repo(ctx, args)
        logs = await _require_github(ctx).get_job_logs(owner, repo, args.job_id)
        return {"job_id": args.job_id, "logs": _truncate_tail(logs if isinstance(logs, str) else str(logs))}

    @tool("github_list_check_runs", "List check runs for a commit, branch or tag.", RefInput)
    async def list_check_runs(args: RefInput):
        owner, repo = _repo(ctx, args)
        data = await _require_github(ctx).list_check_runs_for_ref(owner, repo, args.ref)
        return [
            {
                "id": c.get("id"),
                "name": c.get("name"),
                "status": c.get("status"),
                "conclusion": c.get("conclusion"),
                "url": c.get("html_url"),
            }
            for c in data.get("check_runs") or []
        ]

    # ---- project boards ----

    @tool("github_list_org_projects", "List an organization's project boards.", OrgInput)
    async def list_org_projects(args: OrgInput):
        return await _require_github(ctx).list_org_projects(_org(ctx, args))

    @tool("github_list_project_items", "List items on an organization project board.", ProjectItemsInput)
    async def list_project_items(args: ProjectItemsInput):
        return await _require_github(ctx).list_project_items(_org(ctx, args), args.number, args.first)

    tools = [
        get_repository,
        list_org_repositories,
        list_branches,
        get_issue,
        list_issues,
        create_issue,
        update_issue,
        list_issue_comments,
        create_issue_comment,
        get_pull_request,
        list_pull_requests,
        create_pull_request,
        update_pull_request,
        get_pull_request_diff,
        list_pull_request_files,
        get_file_contents,
        search_code,
        search_issues,
        list_reviews,
        create_review,
        list_review_comments,
        reply_review_comment,
        list_workflow_runs,
        list_workflow_run_jobs,
        get_job_logs,
        list_check_runs,
        list_org_projects,
        list_project_items,
    ]
    assert all(t.name.startswith(TOOL_PREFIX) for t in tools)
    return tools
