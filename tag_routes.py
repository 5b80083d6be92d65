import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_user
from database import get_db
from errors import ValidationFailed
from prompt_routes import present_prompt
from schemas import MAX_TAG_LENGTH

logger = logging.getLogger(__name__)

router = APIRouter()


class TagRename(BaseModel):
    oldName: str = Field(min_length=1)
    newName: str = Field(min_length=1, max_length=MAX_TAG_LENGTH)


class TagMerge(BaseModel):
    sourceTags: List[str] = Field(min_length=1)
    targetTag: str = Field(min_length=1, max_length=MAX_TAG_LENGTH)


def replace_tags(db: Database, user_id: str, sources: List[str], target: str) -> int:
    """Swap ``sources`` for ``target`` on every prompt the user created. Returns how many changed."""
    updated = 0
    for prompt in db["prompt"].find({"creator": user_id, "tags": {"$in": sources}}, {"tags": 1}):
        tags: List[str] = []
        for tag in prompt.get("tags", []):
            tag = target if tag in sources else tag
            if tag not in tags:
                tags.append(tag)
        db["prompt"].update_one(
            {"_id": prompt["_id"]},
            {"$set": {"tags": tags, "updated_at": datetime.now(timezone.utc)}},
        )
        updated += 1
    return updated


@router.get("/tags")
def list_tags(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    pipeline = [
        {"$match": {"creator": str(current_user["_id"])}},
        {"$unwind": "$tags"},
        {"$group": {"_id": "$tags", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ]
    return [{"name": row["_id"], "count": row["count"]} for row in db["prompt"].aggregate(pipeline)]


@router.get("/tags/{tag_name}")
def prompts_for_tag(tag_name: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    docs = db["prompt"].find({"creator": str(current_user["_id"]), "tags": tag_name}).sort("created_at", -1)
    return [present_prompt(d) for d in docs]


@router.put("/tags/rename")
def rename_tag(payload: TagRename, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    old_name, new_name = payload.oldName.strip(), payload.newName.strip()
    if old_name == new_name:
        raise ValidationFailed({"newName": "New tag name must be different from the old one"})
    count = replace_tags(db, str(current_user["_id"]), [old_name], new_name)
    logger.info(f"Renamed tag {old_name!r} to {new_name!r} on {count} prompts")
    return {"success": True, "message": f'Tag "{old_name}" renamed to "{new_name}"', "promptsUpdated": count}


@router.put("/tags/merge")
def merge_tags(payload: TagMerge, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    target = payload.targetTag.strip()
    sources = [t.strip() for t in payload.sourceTags if t.strip()]
    if not sources:
        raise ValidationFailed({"sourceTags": "At least one source tag is required"})
    if target in sources:
        raise ValidationFailed({"targetTag": "Target tag cannot be in the source tags"})
    count = replace_tags(db, str(current_user["_id"]), sources, target)
    return {"success": True, "message": f'Tags merged successfully into "{target}"', "promptsUpdated": count}
