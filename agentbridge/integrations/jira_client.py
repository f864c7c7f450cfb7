"""Jira Cloud REST client for agentbridge

Thin typed wrapper over the Jira v3 REST API, addressed through the
``api.atlassian.com/ex/jira/<cloud id>`` gateway with email + API token
(basic auth). Also hosts the ADF/JQL helpers the Jira tools share.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from agentbridge.agent.mentions import extract_plain_text
from agentbridge.core.config import Settings
from agentbridge.core.errors import ConfigurationError, UpstreamError

logger = structlog.get_logger(__name__)

ISSUE_FIELDS = [
    "summary",
    "description",
    "issuetype",
    "priority",
    "labels",
    "components",
    "status",
    "assignee",
    "reporter",
    "parent",
    "attachment",
    "subtasks",
    "issuelinks",
]

_ISSUE_TYPE_ALIASES = {
    "bug": "Bug",
    "task": "Task",
    "story": "Story",
    "epic": "Epic",
    "subtask": "Sub-task",
    "sub-task": "Sub-task",
    "sub task": "Sub-task",
    "idea": "Idea",
    "incident": "Incident",
    "change": "Change",
    "problem": "Problem",
    "service request": "Service Request",
}


class JiraClient:
    """
    Jira REST API client.

    Credentials are checked per request so an agent without Jira configured
    can still start; the first Jira call then fails with ConfigurationError.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.settings = settings
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Accept-Language": settings.jira_accept_language,
        }
        auth = None
        if settings.jira_email and settings.jira_api_token:
            auth = (settings.jira_email, settings.jira_api_token)
        self.client = httpx.AsyncClient(
            headers=headers, auth=auth, timeout=timeout, transport=transport
        )

    @property
    def site_base(self) -> Optional[str]:
        return self.settings.jira_base_url

    def browse_url(self, issue_key: str) -> Optional[str]:
        return self.settings.jira_browse_url(issue_key)

    def _require_config(self) -> None:
        if not self.settings.jira_configured:
            raise ConfigurationError(
                "Missing Jira env. Set JIRA_CLOUD_ID, JIRA_EMAIL, JIRA_API_TOKEN"
            )

    def _url(self, path: str) -> str:
        return f"{self.settings.jira_api_base.rstrip('/')}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        self._require_config()
        url = self._url(path)
        resp = await self.client.request(method, url, params=params, json=json)
        if resp.status_code >= 400:
            logger.error(
                "Jira API error",
                method=method,
                url=url,
                status=resp.status_code,
                error=resp.text[:200],
            )
            raise UpstreamError("Jira", resp.status_code, resp.text, url=url)
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post_json(self, path: str, body: Any) -> Any:
        return await self._request("POST", path, json=body)

    async def put_json(self, path: str, body: Any) -> Any:
        return await self._request("PUT", path, json=body)

    # ---- identity ----

    async def get_myself(self) -> Dict[str, Any]:
        logger.info("Fetching Jira current user profile")
        return await self.get_json("/rest/api/3/myself")

    async def get_myself_account_id(self) -> Optional[str]:
        me = await self.get_myself()
        return me.get("accountId")

    # ---- issues & comments ----

    async def get_issue(
        self, key: str, fields: Optional[List[str]] = None, expand: Optional[str] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if fields:
            params["fields"] = ",".join(fields)
        if expand:
            params["expand"] = expand
        return await self.get_json(f"/rest/api/3/issue/{key}", params=params)

    async def get_comment(self, issue_key: str, comment_id: str) -> Dict[str, Any]:
        return await self.get_json(f"/rest/api/3/issue/{issue_key}/comment/{comment_id}")

    async def list_comments(self, issue_key: str, max_results: int = 50) -> List[Dict[str, Any]]:
        data = await self.get_json(
            f"/rest/api/3/issue/{issue_key}/comment",
            params={"orderBy": "created", "maxResults": str(max_results)},
        )
        return data.get("comments") or []

    async def add_comment(self, issue_key: str, adf_body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Posting Jira comment", key=issue_key)
        return await self.post_json(f"/rest/api/3/issue/{issue_key}/comment", adf_body)

    async def add_comment_reaction(self, issue_key: str, comment_id: str, emoji_id: str) -> bool:
        """React to a comment. Reactions are cosmetic: failures are logged, not raised."""
        try:
            await self.put_json(
                f"/rest/api/3/comment/{comment_id}/reactions", {"emojiId": emoji_id}
            )
            return True
        except (UpstreamError, ConfigurationError, httpx.HTTPError) as exc:
            logger.warning(
                "Failed to add reaction to comment",
                key=issue_key,
                comment_id=comment_id,
                error=str(exc),
            )
            return False

    async def create_issue(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.post_json("/rest/api/3/issue", {"fields": fields})

    async def update_issue(self, key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.put_json(f"/rest/api/3/issue/{key}", {"fields": fields})

    async def get_transitions(self, key: str) -> List[Dict[str, Any]]:
        data = await self.get_json(f"/rest/api/3/issue/{key}/transitions")
        return data.get("transitions") or []

    async def transition_issue(self, key: str, transition_id: str) -> Dict[str, Any]:
        return await self.post_json(
            f"/rest/api/3/issue/{key}/transitions", {"transition": {"id": transition_id}}
        )

    async def link_issues(
        self, link_type: str, inward_key: str, outward_key: str
    ) -> Dict[str, Any]:
        return await self.post_json(
            "/rest/api/3/issueLink",
            {
                "type": {"name": link_type},
                "inwardIssue": {"key": inward_key},
                "outwardIssue": {"key": outward_key},
            },
        )

    async def search_jql(
        self, jql: str, fields: List[str], max_results: int = 50, start_at: int = 0
    ) -> List[Dict[str, Any]]:
        logger.info("Searching Jira issues", jql=jql, max_results=max_results)
        data = await self.get_json(
            "/rest/api/3/search/jql",
            params={
                "jql": jql,
                "startAt": str(start_at),
                "maxResults": str(max_results),
                "fields": ",".join(fields),
            },
        )
        return data.get("issues") or []

    # ---- users & projects ----

    async def search_users(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        users = await self.get_json(
            "/rest/api/3/user/search", params={"query": query, "maxResults": str(limit)}
        )
        return users if isinstance(users, list) else []

    async def search_projects(
        self, query: Optional[str] = None, start_at: int = 0, limit: int = 50
    ) -> List[Dict[str, Any]]:
        data = await self.get_json(
            "/rest/api/3/project/search",
            params={"startAt": str(start_at), "maxResults": str(limit), "query": query or ""},
        )
        return data.get("values") or []

    async def get_project_issue_types(self, project_key: str) -> List[str]:
        """Issue type names usable in a project; empty when Jira won't say."""
        try:
            meta = await self.get_json(
                "/rest/api/3/issue/createmeta",
                params={"projectKeys": project_key, "expand": "projects.issuetypes"},
            )
            for project in meta.get("projects") or []:
                if project.get("key") == project_key:
                    names = [t.get("name") for t in project.get("issuetypes") or [] if t.get("name")]
                    if names:
                        return names
        except UpstreamError as exc:
            logger.warning("createmeta lookup failed", project=project_key, error=str(exc))
        try:
            statuses = await self.get_json(f"/rest/api/3/project/{project_key}/statuses")
            names = [it.get("name") for it in statuses or [] if isinstance(it, dict) and it.get("name")]
            if names:
                return names
        except UpstreamError as exc:
            logger.warning("project statuses lookup failed", project=project_key, error=str(exc))
        return []

    async def get_project_components(self, project_key: str) -> List[Dict[str, str]]:
        res = await self.get_json(f"/rest/api/3/project/{project_key}/components")
        return [
            {"id": str(c.get("id")), "name": str(c.get("name"))}
            for c in (res if isinstance(res, list) else [])
        ]

    async def fetch_issue_normalized(
        self,
        key: str,
        include_comments: bool = False,
        max_comments: int = 50,
        include_attachments: bool = False,
    ) -> Dict[str, Any]:
        issue = await self.get_issue(
            key, fields=ISSUE_FIELDS, expand="renderedFields,issuelinks,subtasks"
        )
        normalized = normalize_issue(issue, self.site_base)
        if include_comments:
            limit = min(max(max_comments, 1), 200)
            comments = await self.list_comments(key, max_results=limit)
            normalized["comments"] = [
                {
                    "author": (c.get("author") or {}).get("displayName"),
                    "body": comment_body_text(c.get("body")),
                    "created": c.get("created"),
                }
                for c in comments
            ]
        if include_attachments:
            normalized["attachments"] = [
                {
                    "filename": a.get("filename"),
                    "size": a.get("size"),
                    "mimeType": a.get("mimeType"),
                    "contentUrl": a.get("content"),
                }
                for a in (issue.get("fields") or {}).get("attachment") or []
            ]
        return normalized

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# ---- pure helpers ----


def strip_html(html: Optional[str]) -> str:
    if not html:
        return ""
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", "", html)).strip()


def comment_body_text(body: Any) -> str:
    if isinstance(body, str):
        return body
    return extract_plain_text(body)


def _display(person: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not person:
        return None
    return {"displayName": person.get("displayName"), "accountId": person.get("accountId")}


def normalize_issue(issue: Dict[str, Any], site_base: Optional[str]) -> Dict[str, Any]:
    fields = issue.get("fields") or {}
    rendered = issue.get("renderedFields") or {}
    status = fields.get("status") or {}
    category = status.get("statusCategory") or {}
    key = issue.get("key")
    linked = []
    for link in fields.get("issuelinks") or []:
        other = link.get("outwardIssue") or link.get("inwardIssue") or {}
        if other.get("key"):
            linked.append(
                {
                    "key": other["key"],
                    "type": (link.get("type") or {}).get("name"),
                    "direction": "outward" if link.get("outwardIssue") else "inward",
                }
            )
    return {
        "key": key,
        "url": f"{site_base}/browse/{key}" if site_base and key else None,
        "summary": fields.get("summary"),
        "status": status.get("name"),
        "statusCategoryKey": category.get("key"),
        "statusCategoryName": category.get("name"),
        "type": (fields.get("issuetype") or {}).get("name"),
        "priority": (fields.get("priority") or {}).get("name"),
        "labels": fields.get("labels") or [],
        "components": [c.get("name") for c in fields.get("components") or [] if c.get("name")],
        "assignee": _display(fields.get("assignee")),
        "reporter": _display(fields.get("reporter")),
        "parentKey": (fields.get("parent") or {}).get("key"),
        "description": {
            "text": strip_html(rendered.get("description"))
            or comment_body_text(fields.get("description")),
            "rendered": rendered.get("description"),
        },
        "subtasks": [
            {
                "key": s.get("key"),
                "summary": (s.get("fields") or {}).get("summary"),
                "status": ((s.get("fields") or {}).get("status") or {}).get("name"),
            }
            for s in fields.get("subtasks") or []
        ],
        "linkedIssues": linked,
    }


def build_adf_comment(
    text: str, mentions: Optional[List[Dict[str, Optional[str]]]] = None
) -> Dict[str, Any]:
    """ADF comment payload: text, then one mention node per account id."""
    content: List[Dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    if mentions:
        if text:
            content.append({"type": "text", "text": " "})
        for m in mentions:
            content.append(
                {
                    "type": "mention",
                    "attrs": {"id": m["accountId"], "text": m.get("text") or ""},
                }
            )
            content.append({"type": "text", "text": " "})
    return {
        "body": {
            "version": 1,
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "content": content or [{"type": "text", "text": ""}],
                }
            ],
        }
    }


def to_adf_doc(text: Optional[str]) -> Dict[str, Any]:
    return {
        "version": 1,
        "type": "doc",
        "content": [{"type": "paragraph", "content": [{"type": "text", "text": text or ""}]}],
    }


# JQL helpers
def jql_quote(s: str) -> str:
    return '"' + s.replace('"', '\\"') + '"'


def jql_in(field: str, values: List[str]) -> str:
    return f"{field} in ({', '.join(jql_quote(v) for v in values)})" if values else ""


def jql_assignee(account_id: Optional[str]) -> str:
    return f"assignee in (accountId({jql_quote(account_id)}))" if account_id else ""


def jql_and(parts: List[str]) -> str:
    return " AND ".join(p for p in parts if p)


def canonicalize_issue_type(value: str) -> str:
    return _ISSUE_TYPE_ALIASES.get(value.strip().lower(), value)


def normalize_due_date(value: Optional[str]) -> Optional[str]:
    """Accept YYYY-MM-DD or an ISO-8601 timestamp; return YYYY-MM-DD (UTC)."""
    if not value:
        return None
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        return value
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError("Invalid due_date format; use YYYY-MM-DD or an ISO-8601 date")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%d")
