"""Shared fixtures: settings with test credentials and an in-memory store."""

import os

os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("ANTHROPIC_API_KEY", "")

import pytest  # noqa: E402

from agentbridge.agent.context_store import ContextRepository, CorrelationStore  # noqa: E402
from agentbridge.core.config import Settings  # noqa: E402
from agentbridge.infra.cache.redis_store import RedisStore  # noqa: E402


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        redis_url=None,
        anthropic_api_key=None,
        agent_name="blink",
        jira_base_url="https://acme.atlassian.net",
        jira_cloud_id="cloud-1",
        jira_email="bot@acme.io",
        jira_api_token="jira-token",
        jira_service_account_id="svc-1",
        jira_automation_secret=None,
        github_webhook_secret="ghsecret",
        github_bot_login="blink-bot[bot]",
        github_branch_prefix="blink/",
        daytona_api_key="daytona-key",
        daytona_start_timeout_sec=5.0,
        daytona_poll_interval_sec=0,
    )


@pytest.fixture
def memory_backend():
    return RedisStore()


@pytest.fixture
def store(memory_backend):
    return CorrelationStore(memory_backend)


@pytest.fixture
def contexts(store):
    return ContextRepository(store)


def adf_doc(*nodes):
    """A Jira comment body: one paragraph holding ``nodes``."""
    return {"type": "doc", "version": 1, "content": [{"type": "paragraph", "content": list(nodes)}]}


def adf_text(text):
    return {"type": "text", "text": text}


def adf_mention(account_id, text="@Blink"):
    return {"type": "mention", "attrs": {"id": account_id, "text": text}}
