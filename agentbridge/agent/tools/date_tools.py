from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field

from agentbridge.agent.tools.base import Tool, ToolContext, ToolInput, tool
from agentbridge.core.errors import ToolError


class CurrentDateTimeInput(ToolInput):
    timezone: Optional[str] = Field(
        default=None, description="IANA timezone name, e.g. Europe/Berlin. Defaults to UTC."
    )


def build_date_tools(
    ctx: ToolContext, clock: Optional[Callable[[], datetime]] = None
) -> List[Tool]:
    now_fn = clock or (lambda: datetime.now(timezone.utc))

    @tool(
        "current_datetime",
        "Get the current date and time (ISO-8601), weekday and unix timestamp.",
        CurrentDateTimeInput,
    )
    async def current_datetime(args: CurrentDateTimeInput):
        now = now_fn()
        if args.timezone:
            try:
                now = now.astimezone(ZoneInfo(args.timezone))
            except ZoneInfoNotFoundError as exc:
                raise ToolError(f"Unknown timezone: {args.timezone}") from exc
        return {
            "iso": now.isoformat(),
            "date": now.date().isoformat(),
            "weekday": now.strftime("%A"),
            "timezone": args.timezone or "UTC",
            "unix": int(now.timestamp()),
        }

    return [current_datetime]
