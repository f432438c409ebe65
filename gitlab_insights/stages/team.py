"""Team: user-level activity inside the lookback window.

Listing users needs an administrator token on self-managed instances;
without one the endpoint returns few or no users and the report is
simply short.
"""

from __future__ import annotations

from typing import Any, Dict, List

from ..reports import TeamReport
from ..utils import days_since
from .base import StageContext, run_isolated

STAGE = "team"


def describe_user(ctx: StageContext, raw: Dict[str, Any]) -> TeamReport:
    user_id = int(raw.get("id") or 0)
    after = ctx.cutoff[:10]
    events = ctx.client.count(f"/users/{user_id}/events?after={after}")
    inactive = days_since(raw.get("last_activity_on"), ctx.now)

    return TeamReport(
        user_id=user_id,
        username=raw.get("username") or "",
        name=raw.get("name") or "",
        state=raw.get("state") or "",
        is_admin=bool(raw.get("is_admin", False)),
        created_at=raw.get("created_at") or "",
        last_activity_on=raw.get("last_activity_on") or "",
        days_inactive=inactive if inactive is not None else -1,
        events_in_window=events,
        active=events > 0 or (inactive is not None and inactive <= ctx.config.lookback_days),
    )


def compute_team(ctx: StageContext) -> List[TeamReport]:
    users = [
        raw for raw in ctx.client.request(
            "/users?active=true&without_project_bots=true",
            all_pages=True,
            per_page=ctx.config.per_page,
            max_pages=ctx.config.max_pages,
        )
        if isinstance(raw, dict) and not raw.get("bot", False)
    ]
    return run_isolated(
        ctx,
        STAGE,
        users,
        lambda raw: describe_user(ctx, raw),
        default=TeamReport.default_for_user,
        describe=lambda raw: raw.get("username", "unknown user"),
    )
