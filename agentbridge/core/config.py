"""
Configuration management for agentbridge.

Settings are read from the environment (and an optional ``.env`` file).
Nothing here fails at import time: components validate the credentials they
need at the point of use and raise ``ConfigurationError`` when missing.
"""

import base64
import binascii
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentbridge.core.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "agentbridge"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Correlation store
    redis_url: Optional[str] = None
    store_ttl_sec: int = 60 * 60 * 24 * 30

    # Language model
    agent_name: str = "blink"
    anthropic_api_key: Optional[str] = None
    model: str = Field(default="claude-sonnet-4-20250514", alias="AGENT_MODEL")
    max_tokens: int = Field(default=4096, alias="AGENT_MAX_TOKENS")
    max_tool_rounds: int = Field(default=25, alias="AGENT_MAX_TOOL_ROUNDS")

    # Jira
    jira_base_url: Optional[str] = None
    jira_cloud_id: Optional[str] = None
    jira_email: Optional[str] = None
    jira_api_token: Optional[str] = None
    jira_accept_language: str = "en-US"
    jira_default_project: Optional[str] = None
    jira_automation_secret: Optional[str] = None
    # When true, the Jira webhook refuses every request while no secret is set
    jira_require_secret: bool = False
    jira_service_account_id: Optional[str] = None

    # GitHub App
    github_app_id: Optional[str] = None
    github_app_private_key_b64: Optional[str] = Field(
        default=None, alias="GITHUB_APP_PRIVATE_KEY"
    )
    github_app_installation_id: Optional[str] = None
    github_webhook_secret: Optional[str] = None
    github_bot_login: Optional[str] = None
    github_branch_prefix: str = "blink/"
    github_api_url: str = "https://api.github.com"

    # Daytona
    daytona_api_key: Optional[str] = None
    daytona_api_url: str = "https://app.daytona.io/api"
    daytona_snapshot: str = "blink-workspace"
    daytona_ttl_minutes: int = 60
    daytona_start_timeout_sec: float = 120.0
    daytona_poll_interval_sec: float = 1.0

    @field_validator(
        "redis_url",
        "anthropic_api_key",
        "jira_base_url",
        "jira_cloud_id",
        "jira_email",
        "jira_api_token",
        "jira_default_project",
        "jira_automation_secret",
        "jira_service_account_id",
        "github_app_id",
        "github_app_private_key_b64",
        "github_app_installation_id",
        "github_webhook_secret",
        "github_bot_login",
        "daytona_api_key",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("jira_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        return value.rstrip("/") if value else value

    @property
    def jira_configured(self) -> bool:
        return bool(self.jira_cloud_id and self.jira_email and self.jira_api_token)

    @property
    def github_configured(self) -> bool:
        return bool(
            self.github_app_id
            and self.github_app_private_key_b64
            and self.github_app_installation_id
        )

    @property
    def daytona_configured(self) -> bool:
        return bool(self.daytona_api_key)

    @property
    def jira_api_base(self) -> str:
        if not self.jira_cloud_id:
            raise ConfigurationError("JIRA_CLOUD_ID is required")
        return f"https://api.atlassian.com/ex/jira/{self.jira_cloud_id}"

    @property
    def github_private_key_pem(self) -> str:
        """Decode the base64-encoded GitHub App private key."""
        if not self.github_app_private_key_b64:
            raise ConfigurationError("GITHUB_APP_PRIVATE_KEY is required")
        try:
            return base64.b64decode(self.github_app_private_key_b64, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ConfigurationError(
                "GITHUB_APP_PRIVATE_KEY must be a base64-encoded PEM"
            ) from exc

    def jira_browse_url(self, issue_key: str) -> Optional[str]:
        if not self.jira_base_url:
            return None
        return f"{self.jira_base_url}/browse/{issue_key}"


# Global settings instance
settings = Settings()
