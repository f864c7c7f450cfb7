"""
GitHub REST/GraphQL client used by the platform tools and the webhook
dispatcher. Authenticates with GitHub App installation tokens.
"""

from __future__ import annotations

import base64
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from agentbridge.core.errors import UpstreamError

logger = structlog.get_logger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class GitHubClient:
    """GitHub API wrapper. Every call fetches a token from ``token_provider``."""

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = "https://api.github.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "agentbridge/0.1",
            },
            timeout=timeout,
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        accept: Optional[str] = None,
    ) -> Any:
        token = await self._token_provider()
        headers = {"Authorization": f"Bearer {token}"}
        if accept:
            headers["Accept"] = accept
        resp = await self.client.request(
            method, path, params=params, json=json, headers=headers
        )
        if resp.status_code >= 400:
            logger.error(
                "GitHub API error",
                method=method,
                path=path,
                status=resp.status_code,
                error=resp.text[:200],
            )
            raise UpstreamError("GitHub", resp.status_code, resp.text, url=path)
        if resp.status_code == 204 or not resp.content:
            return {}
        if accept and "json" not in accept:
            return resp.text
        return resp.json()

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = await self.request("POST", "/graphql", json={"query": query, "variables": variables or {}})
        if data.get("errors"):
            raise UpstreamError("GitHub", 200, str(data["errors"]), url="/graphql")
        return data.get("data") or {}

    # ---- repositories ----

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}")

    async def list_org_repositories(self, org: str, per_page: int = 30, page: int = 1) -> List[Dict[str, Any]]:
        return await self.request(
            "GET", f"/orgs/{org}/repos", params={"per_page": per_page, "page": page, "sort": "updated"}
        )

    async def list_branches(self, owner: str, repo: str, per_page: int = 30) -> List[Dict[str, Any]]:
        return await self.request("GET", f"/repos/{owner}/{repo}/branches", params={"per_page": per_page})

    async def get_file_contents(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Dict[str, Any]:
        params = {"ref": ref} if ref else None
        data = await self.request("GET", f"/repos/{owner}/{repo}/contents/{path.lstrip('/')}", params=params)
        if isinstance(data, dict) and data.get("encoding") == "base64" and data.get("content"):
            data = dict(data)
            data["decoded_content"] = base64.b64decode(data["content"]).decode("utf-8", errors="replace")
            data.pop("content", None)
        return data

    async def search_code(self, query: str, per_page: int = 20) -> Dict[str, Any]:
        return await self.request("GET", "/search/code", params={"q": query, "per_page": per_page})

    async def search_issues(self, query: str, per_page: int = 20) -> Dict[str, Any]:
        return await self.request("GET", "/search/issues", params={"q": query, "per_page": per_page})

    # ---- issues ----

    async def get_issue(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}/issues/{number}")

    async def list_issues(
        self, owner: str, repo: str, state: str = "open", per_page: int = 30
    ) -> List[Dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/issues", params={"state": state, "per_page": per_page}
        )

    async def create_issue(self, owner: str, repo: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", f"/repos/{owner}/{repo}/issues", json=body)

    async def update_issue(self, owner: str, repo: str, number: int, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PATCH", f"/repos/{owner}/{repo}/issues/{number}", json=body)

    async def list_issue_comments(self, owner: str, repo: str, number: int, per_page: int = 50) -> List[Dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/issues/{number}/comments", params={"per_page": per_page}
        )

    async def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> Dict[str, Any]:
        return await self.request(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": body}
        )

    # ---- pull requests ----

    async def get_pull_request(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}/pulls/{number}")

    async def list_pull_requests(
        self, owner: str, repo: str, state: str = "open", per_page: int = 30
    ) -> List[Dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/pulls", params={"state": state, "per_page": per_page}
        )

    async def create_pull_request(self, owner: str, repo: str, body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Creating pull request", repo=f"{owner}/{repo}", head=body.get("head"))
        return await self.request("POST", f"/repos/{owner}/{repo}/pulls", json=body)

    async def update_pull_request(self, owner: str, repo: str, number: int, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PATCH", f"/repos/{owner}/{repo}/pulls/{number}", json=body)

    async def list_pull_request_files(self, owner: str, repo: str, number: int, per_page: int = 100) -> List[Dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/pulls/{number}/files", params={"per_page": per_page}
        )

    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/pulls/{number}", accept="application/vnd.github.diff"
        )

    async def list_reviews(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return await self.request("GET", f"/repos/{owner}/{repo}/pulls/{number}/reviews")

    async def create_review(self, owner: str, repo: str, number: int, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", f"/repos/{owner}/{repo}/pulls/{number}/reviews", json=body)

    async def list_review_comments(self, owner: str, repo: str, number: int, per_page: int = 100) -> List[Dict[str, Any]]:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/pulls/{number}/comments", params={"per_page": per_page}
        )

    async def reply_to_review_comment(
        self, owner: str, repo: str, number: int, comment_id: int, body: str
    ) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{number}/comments/{comment_id}/replies",
            json={"body": body},
        )

    # ---- actions / checks ----

    async def list_workflow_runs(
        self, owner: str, repo: str, branch: Optional[str] = None, per_page: int = 20
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"per_page": per_page}
        if branch:
            params["branch"] = branch
        return await self.request("GET", f"/repos/{owner}/{repo}/actions/runs", params=params)

    async def list_workflow_run_jobs(self, owner: str, repo: str, run_id: int) -> Dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs")

    async def get_job_logs(self, owner: str, repo: str, job_id: int) -> str:
        return await self.request(
            "GET", f"/repos/{owner}/{repo}/actions/jobs/{job_id}/logs", accept="text/plain"
        )

    async def list_check_runs_for_ref(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}/commits/{ref}/check-runs")

    # ---- project boards ----

    async def list_org_projects(self, org: str, first: int = 20) -> List[Dict[str, Any]]:
        query = """
        query($org: String!, $first: Int!) {
          organization(login: $org) {
            projectsV2(first: $first) { nodes { id number title url closed } }
          }
        }
        """
        data = await self.graphql(query, {"org": org, "first": first})
        return ((data.get("organization") or {}).get("projectsV2") or {}).get("nodes") or []

    async def list_project_items(self, org: str, number: int, first: int = 50) -> List[Dict[str, Any]]:
        query = """
        query($org: String!, $number: Int!, $first: Int!) {
          organization(login: $org) {
            projectV2(number: $number) {
              items(first: $first) {
                nodes {
                  id
                  content {
                    ... on Issue { number title url state }
                    ... on PullRequest { number title url state }
                  }
                  fieldValues(first: 10) {
                    nodes {
                      ... on ProjectV2ItemFieldSingleSelectValue { name field { ... on ProjectV2FieldCommon { name } } }
                    }
                  }
                }
              }
            }
          }
        }
        """
        data = await self.graphql(query, {"org": org, "number": number, "first": first})
        project = (data.get("organization") or {}).get("projectV2") or {}
        return (project.get("items") or {}).get("nodes") or []

    async def close(self):
        await self.client.aclose()
