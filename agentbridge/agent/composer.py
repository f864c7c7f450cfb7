"""
Tool-Set Composer

Builds the tools and system prompt for one turn from the resolved context.
Composition is declarative: each capability family pairs a predicate over
``Capabilities`` with a tool factory, and the active set is whatever families
match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from agentbridge.agent.context_store import ContextRecord
from agentbridge.agent.prompts import build_system_prompt
from agentbridge.agent.tools.base import Tool, ToolContext, names
from agentbridge.agent.tools.date_tools import build_date_tools
from agentbridge.agent.tools.github_tools import build_github_tools
from agentbridge.agent.tools.jira_tools import build_jira_tools
from agentbridge.agent.tools.workspace_tools import build_workspace_tools
from agentbridge.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capabilities:
    has_tracker_identity: bool = False
    has_platform_identity: bool = False
    workspace_initialized: bool = False

    @classmethod
    def from_record(cls, record: ContextRecord, workspace_initialized: bool = False) -> "Capabilities":
        return cls(
            has_tracker_identity=record.has_tracker_identity,
            has_platform_identity=record.has_platform_identity,
            workspace_initialized=workspace_initialized,
        )


Predicate = Callable[[Capabilities], bool]
ToolFactory = Callable[[ToolContext], List[Tool]]


def _always(caps: Capabilities) -> bool:
    return True


# Workspace tools are always listed; until initialize_workspace runs every
# other workspace tool fails with "workspace not initialized".
CAPABILITY_FAMILIES: List[Tuple[str, Predicate, ToolFactory]] = [
    ("date", _always, build_date_tools),
    ("tracker", lambda caps: caps.has_tracker_identity, build_jira_tools),
    ("platform", lambda caps: caps.has_platform_identity, build_github_tools),
    ("workspace", _always, build_workspace_tools),
]


@dataclass
class ComposedTurn:
    tools: List[Tool]
    system_prompt: str
    capabilities: Capabilities
    families: List[str]

    @property
    def tool_names(self) -> List[str]:
        return names(self.tools)

    def find(self, name: str) -> Optional[Tool]:
        return next((t for t in self.tools if t.name == name), None)


class ToolSetComposer:
    def __init__(
        self,
        settings: Settings,
        jira=None,
        github=None,
        workspaces=None,
        families: Optional[List[Tuple[str, Predicate, ToolFactory]]] = None,
    ):
        self.settings = settings
        self.jira = jira
        self.github = github
        self.workspaces = workspaces
        self.families = families if families is not None else CAPABILITY_FAMILIES

    def compose(
        self,
        conversation_key: str,
        record: Optional[ContextRecord],
        workspace_initialized: bool = False,
    ) -> ComposedTurn:
        record = record or ContextRecord()
        caps = Capabilities.from_record(record, workspace_initialized)
        ctx = ToolContext(
            conversation_key=conversation_key,
            settings=self.settings,
            record=record,
            jira=self.jira,
            github=self.github,
            workspaces=self.workspaces,
        )

        tools: List[Tool] = []
        active: List[str] = []
        seen = set()
        for family, predicate, factory in self.families:
            if not predicate(caps):
                continue
            active.append(family)
            for t in factory(ctx):
                if t.name in seen:
                    continue
                seen.add(t.name)
                tools.append(t)

        prompt = build_system_prompt(
            record,
            agent_name=self.settings.agent_name,
            branch_prefix=self.settings.github_branch_prefix,
            workspace_initialized=workspace_initialized,
        )
        logger.debug(
            "composer.composed",
            extra={"conversation_key": conversation_key, "status": ",".join(active)},
        )
        return ComposedTurn(tools=tools, system_prompt=prompt, capabilities=caps, families=active)
