import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_user
from config import ANALYTICS_WINDOW_DAYS
from database import create_document, get_db
from errors import AuthorizationError, ValidationFailed
from permissions import Capability, PromptAction, has_capability
from prompt_routes import ensure_prompt_access, get_prompt_or_404, get_team_or_404
from schemas import UsageEvent, UsageEventType

logger = logging.getLogger(__name__)

router = APIRouter()

TOP_PROMPTS = 5


class UsageLogRequest(BaseModel):
    promptId: str
    teamId: Optional[str] = None
    eventType: UsageEventType
    metadata: Dict[str, Any] = Field(default_factory=dict)


def window_start(days: int) -> datetime:
    # Stored datetimes come back as naive UTC, so compare against naive UTC.
    return (datetime.now(timezone.utc) - timedelta(days=days)).replace(tzinfo=None)


@router.post("/analytics/log", status_code=201)
def log_usage(payload: UsageLogRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    prompt = get_prompt_or_404(db, payload.promptId)
    ensure_prompt_access(db, prompt, user_id, PromptAction.VIEW)
    # Events are attributed to the prompt's own team, never to a caller-chosen one.
    team_id = prompt.get("teamId") if prompt.get("visibility") == "team" else None
    if payload.teamId and payload.teamId != team_id:
        raise ValidationFailed({"teamId": "teamId does not match the prompt's team"})

    create_document(db, "usageevent", UsageEvent(
        promptId=payload.promptId,
        userId=user_id,
        teamId=team_id,
        eventType=payload.eventType,
        metadata=payload.metadata,
    ))
    logger.info(f"Usage logged: user {user_id}, event {payload.eventType}, prompt {payload.promptId}")
    return {"message": "Usage logged successfully."}


@router.get("/analytics/summary")
def usage_summary(
    days: int = Query(ANALYTICS_WINDOW_DAYS, ge=1, le=365),
    teamId: Optional[str] = None,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Event totals and most executed prompts, for the caller or for one of their teams."""
    if teamId:
        team = get_team_or_404(db, teamId)
        if not has_capability(team, str(current_user["_id"]), Capability.VIEW_TEAM_PROMPTS):
            raise AuthorizationError("Not authorized to view this team's analytics")
        scope = {"teamId": teamId}
    else:
        scope = {"userId": str(current_user["_id"])}
    since = window_start(days)

    totals_pipeline = [
        {"$match": {**scope, "timestamp": {"$gte": since}}},
        {"$group": {"_id": "$eventType", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]
    top_pipeline = [
        {"$match": {**scope, "eventType": "execute", "timestamp": {"$gte": since}}},
        {"$group": {"_id": "$promptId", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
        {"$limit": TOP_PROMPTS},
    ]
    total_counts = {row["_id"]: row["count"] for row in db["usageevent"].aggregate(totals_pipeline)}
    top_rows = list(db["usageevent"].aggregate(top_pipeline))

    oids = []
    for row in top_rows:
        try:
            oids.append(ObjectId(row["_id"]))
        except (InvalidId, TypeError):
            continue
    titles = {str(p["_id"]): p.get("title") for p in db["prompt"].find({"_id": {"$in": oids}}, {"title": 1})}

    top_prompts = [
        {
            "id": row["_id"],
            "title": titles.get(row["_id"]) or "Prompt Deleted or Inaccessible",
            "count": row["count"],
        }
        for row in top_rows
    ]
    return {"totalCounts": total_counts, "topPrompts": top_prompts, "periodDays": days, "teamId": teamId}
