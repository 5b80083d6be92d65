import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from audit import record_audit_event
from auth import get_current_user
from database import create_document, get_db, serialize, to_object_id
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationFailed
from permissions import Capability, Role, find_member, has_capability, resolve_role
from plan_limits import team_prompt_limit
from prompt_routes import get_team_or_404, present_prompt
from schemas import Team, TeamMember

logger = logging.getLogger(__name__)

router = APIRouter()

AssignableRole = Literal["admin", "member"]


def _now():
    return datetime.now(timezone.utc)


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class MemberInvite(BaseModel):
    email: EmailStr
    role: AssignableRole = "member"


class RoleChange(BaseModel):
    role: AssignableRole


def require_member(team: dict, user_id: str) -> Role:
    role = resolve_role(team, user_id)
    if role is None:
        raise AuthorizationError("Not a member of this team")
    return role


def require_capability(team: dict, user_id: str, capability: Capability, message: str) -> None:
    require_member(team, user_id)
    if not has_capability(team, user_id, capability):
        raise AuthorizationError(message)


def build_team(name: str, description: Optional[str], creator_id: str) -> Team:
    """New team on the Free plan with its creator as the only (owner) member."""
    return Team(
        name=name.strip(),
        description=description,
        creator=creator_id,
        members=[TeamMember(user=creator_id, role="owner")],
        plan="Free",
        promptLimit=team_prompt_limit("Free"),
    )


@router.get("/teams")
def list_teams(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    docs = db["team"].find({"members.user": str(current_user["_id"])}).sort("created_at", -1)
    return [serialize(d) for d in docs]


@router.post("/teams", status_code=201)
def create_team(payload: TeamCreate, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    if not payload.name.strip():
        raise ValidationFailed({"name": "Team name is required"})
    team_id = create_document(db, "team", build_team(payload.name, payload.description, user_id))
    record_audit_event(db, "create_team", user_id=user_id, target_type="team", target_id=team_id, details={"name": payload.name})
    logger.info(f"Team {team_id} created by {user_id}")
    return serialize(db["team"].find_one({"_id": to_object_id(team_id)}))


@router.get("/teams/{team_id}")
def get_team(team_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    team = get_team_or_404(db, team_id)
    require_member(team, str(current_user["_id"]))
    return serialize(team)


@router.put("/teams/{team_id}")
def update_team(team_id: str, payload: TeamUpdate, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    team = get_team_or_404(db, team_id)
    require_capability(team, str(current_user["_id"]), Capability.MANAGE_TEAM_SETTINGS, "Not authorized to update this team")

    update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not update:
        raise ValidationFailed({"body": "No update data provided"}, detail="No update data provided")
    update["updated_at"] = _now()
    updated = db["team"].find_one_and_update({"_id": team["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    return serialize(updated)


@router.delete("/teams/{team_id}")
def delete_team(team_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    team = get_team_or_404(db, team_id)
    require_capability(team, user_id, Capability.MANAGE_TEAM_SETTINGS, "Not authorized to delete this team")

    remaining = db["prompt"].count_documents({"teamId": team_id})
    if remaining:
        logger.warning(f"Deleting team {team_id} with {remaining} prompts still assigned to it")
    result = db["team"].delete_one({"_id": team["_id"]})
    if result.deleted_count == 0:
        raise NotFoundError("Team not found")
    record_audit_event(db, "delete_team", user_id=user_id, target_type="team", target_id=team_id, details={"name": team.get("name")})
    return {"ok": True}


@router.get("/teams/{team_id}/members")
def list_members(team_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    team = get_team_or_404(db, team_id)
    require_member(team, str(current_user["_id"]))
    return team.get("members", [])


@router.post("/teams/{team_id}/members", status_code=201)
def add_member(team_id: str, payload: MemberInvite, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    team = get_team_or_404(db, team_id)
    require_capability(team, user_id, Capability.INVITE_MEMBERS, "Not authorized to add members to this team")

    invitee = db["user"].find_one({"email": str(payload.email).lower()})
    if not invitee:
        raise NotFoundError(f"User with email {payload.email} not found")
    invitee_id = str(invitee["_id"])
    if find_member(team, invitee_id):
        raise ConflictError(f"User {payload.email} is already a member of this team")

    member = TeamMember(user=invitee_id, role=payload.role).model_dump()
    updated = db["team"].find_one_and_update(
        {"_id": team["_id"], "members.user": {"$ne": invitee_id}},
        {"$addToSet": {"members": member}, "$set": {"updated_at": _now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError(f"User {payload.email} is already a member of this team")

    record_audit_event(
        db,
        "add_team_member",
        user_id=user_id,
        target_type="user",
        target_id=invitee_id,
        details={"teamId": team_id, "role": payload.role},
    )
    return updated["members"]


@router.put("/teams/{team_id}/members/{member_id}")
def change_member_role(team_id: str, member_id: str, payload: RoleChange, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    team = get_team_or_404(db, team_id)
    require_member(team, user_id)

    target = find_member(team, member_id)
    if target is None:
        raise NotFoundError("Target user not found in this team")
    if target.get("role") == Role.OWNER.value:
        raise ValidationFailed({"role": "Cannot change the role of the team owner"}, detail="Cannot change the role of the team owner")
    if not has_capability(team, user_id, Capability.MANAGE_TEAM_SETTINGS):
        raise AuthorizationError("Not authorized to change member roles")

    # Address the entry by index; the filter pins it to the same non-owner member.
    index = team["members"].index(target)
    updated = db["team"].find_one_and_update(
        {
            "_id": team["_id"],
            f"members.{index}.user": member_id,
            f"members.{index}.role": {"$ne": Role.OWNER.value},
        },
        {"$set": {f"members.{index}.role": payload.role, "updated_at": _now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Team membership changed during the update, please retry")

    record_audit_event(
        db,
        "update_team_member_role",
        user_id=user_id,
        target_type="user",
        target_id=member_id,
        details={"teamId": team_id, "oldRole": target.get("role"), "newRole": payload.role},
    )
    return updated["members"]


@router.delete("/teams/{team_id}/members/{member_id}")
def remove_member(team_id: str, member_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    team = get_team_or_404(db, team_id)
    require_member(team, user_id)

    target = find_member(team, member_id)
    if target is None:
        raise NotFoundError("Target user not found in this team")
    if target.get("role") == Role.OWNER.value:
        raise ValidationFailed({"userId": "Cannot remove the team owner"}, detail="Cannot remove the team owner")
    # Members may always leave on their own.
    if member_id != user_id and not has_capability(team, user_id, Capability.REMOVE_MEMBERS):
        raise AuthorizationError("Not authorized to remove this member")

    updated = db["team"].find_one_and_update(
        {"_id": team["_id"]},
        {"$pull": {"members": {"user": member_id, "role": {"$ne": Role.OWNER.value}}}, "$set": {"updated_at": _now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFoundError("Team not found during member removal")

    record_audit_event(
        db,
        "remove_team_member",
        user_id=user_id,
        target_type="user",
        target_id=member_id,
        details={"teamId": team_id, "role": target.get("role")},
    )
    return updated["members"]


@router.get("/teams/{team_id}/prompts")
def list_team_prompts(team_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    team = get_team_or_404(db, team_id)
    require_capability(team, str(current_user["_id"]), Capability.VIEW_TEAM_PROMPTS, "Not authorized to view this team's prompts")
    docs = db["prompt"].find({"teamId": team_id, "visibility": "team"}).sort("created_at", -1)
    return [present_prompt(d) for d in docs]
