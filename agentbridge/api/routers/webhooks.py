"""
Webhook ingress for Jira automation and the GitHub App.

Both endpoints acknowledge with 200 for every classification, including
drops and no-ops. Only a bad Jira secret or missing GitHub headers (401),
unparseable JSON (400) and a failed or unconfigured GitHub signature check
(500) produce other statuses.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from agentbridge.agent.dispatcher import EventDispatcher
from agentbridge.api.deps import get_dispatcher, get_settings
from agentbridge.core.config import Settings
from agentbridge.core.webhooks import verify_hmac_signature, verify_shared_secret

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


def _parse_json(body: bytes, connector: str) -> Any:
    try:
        return json.loads(body or b"null")
    except ValueError:
        logger.warning("webhook.invalid_json", extra={"connector": connector})
        raise HTTPException(status_code=400, detail="Invalid JSON body")


@router.post("/jira")
@router.post("/jira/{subpath:path}")
async def jira_webhook(
    request: Request,
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """Jira automation rule: comment created on an issue."""
    verify_shared_secret(
        authorization,
        settings.jira_automation_secret,
        connector="jira",
        require_secret=settings.jira_require_secret,
    )
    payload = _parse_json(await request.body(), "jira")
    outcome = await dispatcher.handle_jira(payload)
    return outcome.as_dict()


@router.post("/github")
@router.post("/github/{subpath:path}")
async def github_webhook(
    request: Request,
    x_github_delivery: str | None = Header(None),
    x_github_event: str | None = Header(None),
    x_hub_signature_256: str | None = Header(None),
    settings: Settings = Depends(get_settings),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """GitHub App deliveries: comments, reviews, completed check runs."""
    if not (x_github_delivery and x_github_event and x_hub_signature_256):
        logger.warning(
            "github_webhook.missing_headers",
            extra={"connector": "github", "delivery": x_github_delivery, "event": x_github_event},
        )
        raise HTTPException(status_code=401, detail="Missing GitHub webhook headers")

    body = await request.body()
    verify_hmac_signature(
        signature=x_hub_signature_256,
        payload=body,
        secret=settings.github_webhook_secret,
        connector="github",
        failure_status=500,
    )
    payload = _parse_json(body, "github")
    outcome = await dispatcher.handle_github(x_github_event, x_github_delivery, payload)
    return outcome.as_dict()
