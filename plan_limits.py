"""
Plan-limit enforcement for prompt creation.

Personal prompts are bounded by the author's plan; team prompts by the
team's stored ``promptLimit``. Personal slots are taken with a
conditional increment before the insert, so concurrent creations cannot
overrun a personal limit. Team limits are counted from the prompts already
stored and can be overrun by the number of in-flight requests.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import TEAM_PLAN_LIMITS, USER_PLAN_LIMITS
from errors import AuthorizationError, LimitExceededError
from permissions import is_member

logger = logging.getLogger(__name__)

PERSONAL_LIMIT_DETAIL = "Prompt limit reached. Upgrade to Pro to create more prompts."
TEAM_LIMIT_DETAIL = "Team prompt limit reached. Upgrade the team plan to add more prompts."


@dataclass
class PlanLimitCheck:
    allowed: bool
    limit: Optional[int]
    current: int
    scope: str  # "user" | "team"


def user_prompt_limit(plan: Optional[str]) -> Optional[int]:
    return USER_PLAN_LIMITS.get(plan or "Free", USER_PLAN_LIMITS["Free"])


def team_prompt_limit(plan: Optional[str]) -> int:
    return TEAM_PLAN_LIMITS.get(plan or "Free", TEAM_PLAN_LIMITS["Free"])


def can_create_prompt(db: Database, user: dict, visibility: str, team: Optional[dict] = None) -> PlanLimitCheck:
    user_id = str(user["_id"])
    if visibility == "team":
        if not is_member(team, user_id):
            raise AuthorizationError("You must be a member of this team to add prompts to it")
        limit = team.get("promptLimit")
        if limit is None:
            limit = team_prompt_limit(team.get("plan"))
        current = db["prompt"].count_documents({"teamId": str(team["_id"])})
        return PlanLimitCheck(allowed=current < limit, limit=limit, current=current, scope="team")

    limit = user_prompt_limit(user.get("plan"))
    current = int(user.get("promptCount", 0))
    allowed = limit is None or current < limit
    return PlanLimitCheck(allowed=allowed, limit=limit, current=current, scope="user")


def enforce_prompt_limit(db: Database, user: dict, visibility: str, team: Optional[dict] = None) -> PlanLimitCheck:
    check = can_create_prompt(db, user, visibility, team)
    if not check.allowed:
        logger.info(f"Prompt limit reached for {check.scope} ({check.current}/{check.limit}), user {user['_id']}")
        if check.scope == "team":
            detail = TEAM_LIMIT_DETAIL
        else:
            detail = PERSONAL_LIMIT_DETAIL
        raise LimitExceededError(limit=check.limit, current=check.current, scope=check.scope, detail=detail)
    return check


def record_prompt_created(db: Database, user_id) -> None:
    # Runs after the insert; a failed counter update must not fail the request.
    try:
        db["user"].update_one({"_id": user_id}, {"$inc": {"promptCount": 1}})
    except PyMongoError as e:
        logger.error(f"Failed to increment promptCount for user {user_id}: {e}")


def record_prompt_deleted(db: Database, user_id) -> None:
    try:
        db["user"].update_one({"_id": user_id, "promptCount": {"$gt": 0}}, {"$inc": {"promptCount": -1}})
    except PyMongoError as e:
        logger.error(f"Failed to decrement promptCount for user {user_id}: {e}")


def reserve_personal_slot(db: Database, user: dict) -> bool:
    """
    Atomically take one personal prompt slot.

    Increments ``promptCount`` only while it is below the plan limit, in a
    single conditional update. Returns False when no slot was available.
    """
    limit = user_prompt_limit(user.get("plan"))
    if limit is None:
        db["user"].update_one({"_id": user["_id"]}, {"$inc": {"promptCount": 1}})
        return True
    result = db["user"].update_one(
        {"_id": user["_id"], "promptCount": {"$lt": limit}},
        {"$inc": {"promptCount": 1}},
    )
    return result.modified_count == 1


def claim_prompt_slot(db: Database, user: dict, visibility: str, team: Optional[dict] = None) -> bool:
    """
    Check the limit for a new prompt and, for personal prompts, take the slot.

    Returns True when ``promptCount`` was already incremented. The caller
    releases the slot with ``record_prompt_deleted`` if the insert fails.
    """
    check = enforce_prompt_limit(db, user, visibility, team)
    if visibility == "team":
        return False
    if not reserve_personal_slot(db, user):
        # Another request took the last slot between the check and the update.
        logger.info(f"Lost the last personal prompt slot for user {user['_id']}")
        raise LimitExceededError(limit=check.limit, current=check.limit, scope="user", detail=PERSONAL_LIMIT_DETAIL)
    return True
