"""
Tool primitives shared by every tool family.

A Tool pairs an Anthropic tool schema (generated from a pydantic input model)
with an async handler. Handlers receive the validated input model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError

from agentbridge.agent.context_store import ContextRecord
from agentbridge.core.config import Settings
from agentbridge.core.errors import ToolError

if TYPE_CHECKING:
    from agentbridge.integrations.github.client import GitHubClient
    from agentbridge.integrations.jira_client import JiraClient
    from agentbridge.services.workspace_manager import WorkspaceSessionManager


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NoInput(ToolInput):
    pass


Handler = Callable[[Any], Awaitable[Any]]


@dataclass
class Tool:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Handler

    def schema(self) -> Dict[str, Any]:
        input_schema = self.input_model.model_json_schema()
        input_schema.pop("title", None)
        input_schema.setdefault("properties", {})
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": input_schema,
        }

    async def invoke(self, arguments: Optional[Dict[str, Any]]) -> Any:
        try:
            args = self.input_model.model_validate(arguments or {})
        except ValidationError as exc:
            raise ToolError(f"Invalid arguments for {self.name}: {exc}") from exc
        return await self.handler(args)


@dataclass
class ToolContext:
    """Everything a tool factory may close over for one turn."""

    conversation_key: str
    settings: Settings
    record: ContextRecord = field(default_factory=ContextRecord)
    jira: Optional["JiraClient"] = None
    github: Optional["GitHubClient"] = None
    workspaces: Optional["WorkspaceSessionManager"] = None


def tool(name: str, description: str, input_model: Type[BaseModel] = NoInput):
    """Decorator form used inside tool factories."""

    def wrap(fn: Handler) -> Tool:
        return Tool(name=name, description=description, input_model=input_model, handler=fn)

    return wrap


def names(tools: List[Tool]) -> List[str]:
    return [t.name for t in tools]
