"""
Service wiring for the API process.

``build_services`` constructs every collaborator once per process; routers
reach them through ``request.app.state.services``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from agentbridge.agent.chat import ChatService
from agentbridge.agent.composer import ToolSetComposer
from agentbridge.agent.context_resolver import SessionContextResolver
from agentbridge.agent.context_store import ContextRepository, CorrelationStore
from agentbridge.agent.dispatcher import EventDispatcher
from agentbridge.agent.self_identity import SelfAccountResolver
from agentbridge.agent.turn_executor import TurnExecutor
from agentbridge.core.config import Settings
from agentbridge.infra.cache.redis_store import RedisStore
from agentbridge.integrations.daytona_client import DaytonaClient
from agentbridge.integrations.github.app_auth import GitHubAppAuth
from agentbridge.integrations.github.client import GitHubClient
from agentbridge.integrations.jira_client import JiraClient
from agentbridge.services.workspace_manager import WorkspaceSessionManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    backend: RedisStore
    store: CorrelationStore
    contexts: ContextRepository
    chat: ChatService
    dispatcher: EventDispatcher
    executor: TurnExecutor
    jira: Optional[JiraClient] = None
    github: Optional[GitHubClient] = None
    daytona: Optional[DaytonaClient] = None

    async def close(self) -> None:
        await self.chat.shutdown()
        for client in (self.jira, self.github, self.daytona):
            if client is not None:
                await client.close()
        await self.backend.close()


def build_services(settings: Settings) -> Services:
    backend = RedisStore(settings.redis_url, default_ttl_sec=settings.store_ttl_sec)
    store = CorrelationStore(backend)
    contexts = ContextRepository(store)

    jira = JiraClient(settings) if settings.jira_configured else None
    github_auth = GitHubAppAuth(settings) if settings.github_configured else None
    github = (
        GitHubClient(github_auth.installation_token, settings.github_api_url)
        if github_auth is not None
        else None
    )
    daytona = DaytonaClient(settings)
    workspaces = WorkspaceSessionManager(settings, contexts, daytona, github_auth)

    self_account = SelfAccountResolver(
        configured_id=settings.jira_service_account_id,
        fetch_myself=jira.get_myself_account_id if jira is not None else None,
    )
    composer = ToolSetComposer(settings, jira=jira, github=github, workspaces=workspaces)
    executor = TurnExecutor(settings, SessionContextResolver(contexts, settings), composer)
    chat = ChatService(store, executor.run)
    dispatcher = EventDispatcher(
        settings,
        contexts,
        enqueue=chat.enqueue,
        self_account=self_account,
        jira=jira,
        github=github,
    )

    logger.info(
        "services.ready",
        extra={
            "status": {
                "redis": backend.uses_redis,
                "jira": jira is not None,
                "github": github is not None,
                "daytona": daytona.configured,
            }
        },
    )
    return Services(
        settings=settings,
        backend=backend,
        store=store,
        contexts=contexts,
        chat=chat,
        dispatcher=dispatcher,
        executor=executor,
        jira=jira,
        github=github,
        daytona=daytona,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return request.app.state.services.settings


def get_dispatcher(request: Request) -> EventDispatcher:
    return request.app.state.services.dispatcher


def get_chat(request: Request) -> ChatService:
    return request.app.state.services.chat
