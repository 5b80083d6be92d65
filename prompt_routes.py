import logging
import re
from datetime import datetime, timezone
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import AfterValidator, BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

from audit import record_audit_event
from auth import Identity, authenticate, get_current_user
from database import create_document, get_db, serialize, to_object_id
from errors import AuthorizationError, NotFoundError, ValidationFailed
from permissions import Capability, PromptAction, can_access_prompt, has_capability
from plan_limits import claim_prompt_slot, enforce_prompt_limit, record_prompt_created, record_prompt_deleted
from schemas import MAX_TAG_LENGTH, MAX_TAGS, Prompt, UsageEvent, UsageEventType, Visibility

logger = logging.getLogger(__name__)

router = APIRouter()


def _now():
    return datetime.now(timezone.utc)


def clean_tags(tags: List[str]) -> List[str]:
    """Trim, de-duplicate (keeping order) and bound a tag list."""
    cleaned: List[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            raise ValueError("Tags cannot be empty")
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        if tag not in cleaned:
            cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValueError(f"A prompt can have at most {MAX_TAGS} tags")
    return cleaned


TagList = Annotated[List[str], AfterValidator(clean_tags)]


class PromptCreate(BaseModel):
    title: str = Field(min_length=3, max_length=100)
    text: str = Field(min_length=10)
    description: Optional[str] = Field(None, max_length=500)
    tags: TagList = Field(default_factory=list)
    platformCompatibility: List[str] = Field(default_factory=list)
    visibility: Visibility = "private"
    teamId: Optional[str] = None


class PromptUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    text: Optional[str] = Field(None, min_length=10)
    description: Optional[str] = Field(None, max_length=500)
    tags: Optional[TagList] = None
    platformCompatibility: Optional[List[str]] = None
    visibility: Optional[Visibility] = None
    teamId: Optional[str] = None


class RatingRequest(BaseModel):
    value: int = Field(..., ge=1, le=5)


class UsageRequest(BaseModel):
    eventType: UsageEventType = "execute"


class SuccessRequest(BaseModel):
    isSuccess: bool


# Lookups shared by the prompt, comment, collection and team routes

def get_team_or_404(db: Database, team_id: str) -> dict:
    team = db["team"].find_one({"_id": to_object_id(team_id, "teamId")})
    if not team:
        raise NotFoundError("Team not found")
    return team


def get_prompt_or_404(db: Database, prompt_id: str) -> dict:
    prompt = db["prompt"].find_one({"_id": to_object_id(prompt_id, "promptId")})
    if not prompt:
        raise NotFoundError("Prompt not found")
    return prompt


def prompt_team(db: Database, prompt: dict) -> Optional[dict]:
    if prompt.get("visibility") != "team" or not prompt.get("teamId"):
        return None
    return db["team"].find_one({"_id": to_object_id(prompt["teamId"], "teamId")})


def ensure_prompt_access(db: Database, prompt: dict, user_id: Optional[str], action: PromptAction) -> Optional[dict]:
    """Raise AuthorizationError unless ``user_id`` may perform ``action``. Returns the prompt's team, if any."""
    team = prompt_team(db, prompt)
    if not can_access_prompt(prompt, user_id, action, team):
        raise AuthorizationError(f"Not authorized to {action.value} this prompt")
    return team


def present_prompt(prompt: dict) -> dict:
    out = serialize(prompt)
    ratings = out.get("ratings") or []
    out["ratingCount"] = len(ratings)
    out["averageRating"] = round(sum(r["value"] for r in ratings) / len(ratings), 2) if ratings else None
    return out


def visible_prompts_filter(db: Database, user_id: Optional[str]) -> dict:
    """Mongo filter matching every prompt ``user_id`` may view."""
    clauses: List[dict] = [{"visibility": "public"}]
    if user_id:
        clauses.append({"creator": user_id, "visibility": {"$ne": "team"}})
        team_ids = [str(t["_id"]) for t in db["team"].find({"members.user": user_id}, {"_id": 1})]
        if team_ids:
            clauses.append({"visibility": "team", "teamId": {"$in": team_ids}})
    return {"$or": clauses}


# Routes

@router.get("/prompts")
def list_my_prompts(
    visibility: Optional[Visibility] = None,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    query = {"creator": str(current_user["_id"])}
    if visibility:
        query["visibility"] = visibility
    docs = db["prompt"].find(query).sort("created_at", -1)
    return [present_prompt(d) for d in docs]


@router.post("/prompts", status_code=201)
def create_prompt(payload: PromptCreate, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    team = None
    if payload.visibility == "team":
        if not payload.teamId:
            raise ValidationFailed({"teamId": "Team ID is required when visibility is set to team"})
        team = get_team_or_404(db, payload.teamId)

    slot_taken = claim_prompt_slot(db, current_user, payload.visibility, team)

    prompt = Prompt(
        title=payload.title,
        text=payload.text,
        description=payload.description,
        creator=user_id,
        tags=payload.tags,
        platformCompatibility=payload.platformCompatibility,
        visibility=payload.visibility,
        teamId=str(team["_id"]) if team else None,
    )
    try:
        prompt_id = create_document(db, "prompt", prompt)
    except PyMongoError:
        if slot_taken:
            record_prompt_deleted(db, current_user["_id"])
        raise

    # The prompt exists from here on; nothing below may undo it.
    if not slot_taken:
        record_prompt_created(db, current_user["_id"])
    record_audit_event(
        db,
        "create_prompt",
        user_id=user_id,
        target_type="prompt",
        target_id=prompt_id,
        details={"title": payload.title, "visibility": payload.visibility, "teamId": prompt.teamId},
    )
    return present_prompt(db["prompt"].find_one({"_id": to_object_id(prompt_id)}))


@router.get("/prompts/export")
def export_prompts(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    docs = db["prompt"].find({"creator": str(current_user["_id"])}).sort("created_at", 1)
    body = {
        "exportedAt": _now(),
        "prompts": [present_prompt(d) for d in docs],
    }
    return JSONResponse(
        content=jsonable_encoder(body),
        headers={"Content-Disposition": 'attachment; filename="prompts-export.json"'},
    )


@router.get("/prompts/{prompt_id}")
def get_prompt(prompt_id: str, identity: Optional[Identity] = Depends(authenticate), db: Database = Depends(get_db)):
    prompt = get_prompt_or_404(db, prompt_id)
    ensure_prompt_access(db, prompt, identity.subject if identity else None, PromptAction.VIEW)
    return present_prompt(prompt)


@router.put("/prompts/{prompt_id}")
def update_prompt(prompt_id: str, payload: PromptUpdate, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    prompt = get_prompt_or_404(db, prompt_id)
    current_team = ensure_prompt_access(db, prompt, user_id, PromptAction.EDIT)

    update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    requested_team_id = update.pop("teamId", None)
    if not update and requested_team_id is None:
        raise ValidationFailed({"body": "No update data provided"}, detail="No update data provided")

    old_visibility = prompt.get("visibility", "private")
    new_visibility = update.get("visibility", old_visibility)
    leaving_team = old_visibility == "team" and (
        new_visibility != "team" or (requested_team_id and requested_team_id != prompt.get("teamId"))
    )
    if leaving_team and not has_capability(current_team, user_id, Capability.CONTROL_TEAM_VISIBILITY):
        raise AuthorizationError("Not authorized to change the visibility of team prompts")

    if new_visibility == "team":
        target_team_id = requested_team_id or prompt.get("teamId")
        if not target_team_id:
            raise ValidationFailed({"teamId": "Team ID is required when visibility is set to team"})
        if old_visibility != "team" or target_team_id != prompt.get("teamId"):
            team = get_team_or_404(db, target_team_id)
            enforce_prompt_limit(db, current_user, "team", team)
            update["teamId"] = str(team["_id"])
    else:
        update["teamId"] = None

    update["updated_at"] = _now()
    db["prompt"].update_one({"_id": prompt["_id"]}, {"$set": update})
    return present_prompt(db["prompt"].find_one({"_id": prompt["_id"]}))


@router.delete("/prompts/{prompt_id}")
def delete_prompt(prompt_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    prompt = get_prompt_or_404(db, prompt_id)
    ensure_prompt_access(db, prompt, user_id, PromptAction.DELETE)

    result = db["prompt"].delete_one({"_id": prompt["_id"]})
    if result.deleted_count == 0:
        raise NotFoundError("Prompt not found")

    # Comments and collection entries that point at the prompt are left in place.
    record_prompt_deleted(db, to_object_id(prompt["creator"], "creator"))
    record_audit_event(
        db,
        "delete_prompt",
        user_id=user_id,
        target_type="prompt",
        target_id=prompt_id,
        details={"title": prompt.get("title"), "teamId": prompt.get("teamId")},
    )
    return {"ok": True}


@router.post("/prompts/{prompt_id}/rating")
def rate_prompt(prompt_id: str, payload: RatingRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    prompt = get_prompt_or_404(db, prompt_id)
    ensure_prompt_access(db, prompt, user_id, PromptAction.VIEW)

    # One rating per user: drop any previous one, then add the new value.
    db["prompt"].update_one({"_id": prompt["_id"]}, {"$pull": {"ratings": {"user": user_id}}})
    db["prompt"].update_one({"_id": prompt["_id"]}, {"$push": {"ratings": {"user": user_id, "value": payload.value}}})
    return present_prompt(db["prompt"].find_one({"_id": prompt["_id"]}))


@router.post("/prompts/{prompt_id}/usage")
def record_usage(
    prompt_id: str,
    payload: Optional[UsageRequest] = None,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user_id = str(current_user["_id"])
    prompt = get_prompt_or_404(db, prompt_id)
    ensure_prompt_access(db, prompt, user_id, PromptAction.VIEW)

    event_type = payload.eventType if payload else "execute"
    db["prompt"].update_one({"_id": prompt["_id"]}, {"$inc": {"usageCount": 1}})
    create_document(db, "usageevent", UsageEvent(
        promptId=prompt_id,
        userId=user_id,
        teamId=prompt.get("teamId"),
        eventType=event_type,
    ))
    updated = db["prompt"].find_one({"_id": prompt["_id"]}, {"usageCount": 1})
    return {"message": "Usage count incremented", "usageCount": updated.get("usageCount", 0)}


@router.post("/prompts/{prompt_id}/success")
def record_outcome(prompt_id: str, payload: SuccessRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    prompt = get_prompt_or_404(db, prompt_id)
    ensure_prompt_access(db, prompt, str(current_user["_id"]), PromptAction.VIEW)

    field = "successCount" if payload.isSuccess else "failureCount"
    db["prompt"].update_one({"_id": prompt["_id"]}, {"$inc": {field: 1}})
    updated = db["prompt"].find_one({"_id": prompt["_id"]})
    successes = updated.get("successCount", 0)
    total = successes + updated.get("failureCount", 0)
    return {
        "successCount": successes,
        "failureCount": updated.get("failureCount", 0),
        "successRate": round(successes / total * 100) if total else None,
    }


@router.get("/search")
def search_prompts(
    q: Optional[str] = None,
    tag: Optional[List[str]] = Query(None),
    platform: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    identity: Optional[Identity] = Depends(authenticate),
    db: Database = Depends(get_db),
):
    clauses = [visible_prompts_filter(db, identity.subject if identity else None)]
    if q:
        pattern = {"$regex": re.escape(q.strip()), "$options": "i"}
        clauses.append({"$or": [{"title": pattern}, {"description": pattern}, {"text": pattern}]})
    if tag:
        clauses.append({"tags": {"$all": tag}})
    if platform:
        clauses.append({"platformCompatibility": platform})
    docs = db["prompt"].find({"$and": clauses}).sort("usageCount", -1).limit(limit)
    return [present_prompt(d) for d in docs]
