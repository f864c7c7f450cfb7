"""Error taxonomy shared by the webhook ingress, tools and integrations."""

from __future__ import annotations

from typing import Dict, Optional

_STATUS_TO_CODE: Dict[int, str] = {
    400: "INVALID_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "UNKNOWN_ERROR")


class AgentBridgeError(Exception):
    """Base class for all agentbridge errors."""


class ConfigurationError(AgentBridgeError):
    """A required credential or identifier is missing."""


class ParseError(AgentBridgeError, ValueError):
    """Input (URL, issue key, payload) could not be parsed."""


class ToolError(AgentBridgeError):
    """A tool call was rejected before reaching any upstream service."""


class UpstreamError(AgentBridgeError):
    """Non-2xx response from Jira, GitHub or Daytona."""

    def __init__(self, service: str, status: int, body: str = "", url: Optional[str] = None):
        self.service = service
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"{service} API {status}: {body[:500]}")

    @property
    def code(self) -> str:
        return error_code_for_status(self.status)

    @property
    def is_not_found(self) -> bool:
        return self.status == 404
