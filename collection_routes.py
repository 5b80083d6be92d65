import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import get_current_user
from database import create_document, get_db, serialize, to_object_id
from errors import NotFoundError, ValidationFailed
from permissions import PromptAction, can_access_prompt
from prompt_routes import get_prompt_or_404, ensure_prompt_access, present_prompt, prompt_team
from schemas import Collection

logger = logging.getLogger(__name__)

router = APIRouter()


def _now():
    return datetime.now(timezone.utc)


class CollectionCreate(BaseModel):
    name: str = Field(min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    prompts: List[str] = Field(default_factory=list)


class CollectionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=200)


def get_own_collection_or_404(db: Database, collection_id: str, user_id: str) -> dict:
    doc = db["collection"].find_one({"_id": to_object_id(collection_id, "collectionId"), "userId": user_id})
    if not doc:
        raise NotFoundError("Collection not found")
    return doc


def resolve_prompts(db: Database, prompt_ids: List[str], user_id: str) -> List[dict]:
    """
    Load the prompts a collection points at, in collection order.

    Ids that no longer resolve (deleted prompts) or that the user may no
    longer view are skipped.
    """
    oids = []
    for pid in prompt_ids:
        try:
            oids.append(ObjectId(pid))
        except InvalidId:
            logger.warning(f"Skipping malformed prompt reference {pid!r}")
    found = {str(p["_id"]): p for p in db["prompt"].find({"_id": {"$in": oids}})}
    prompts = []
    for pid in prompt_ids:
        prompt = found.get(pid)
        if prompt is None:
            continue
        if can_access_prompt(prompt, user_id, PromptAction.VIEW, prompt_team(db, prompt)):
            prompts.append(present_prompt(prompt))
    return prompts


def present_collection(db: Database, doc: dict, user_id: str, with_prompts: bool = False) -> dict:
    out = serialize(doc)
    out["promptCount"] = len(doc.get("prompts", []))
    if with_prompts:
        out["promptDetails"] = resolve_prompts(db, doc.get("prompts", []), user_id)
    return out


@router.get("/collections")
def list_collections(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    docs = db["collection"].find({"userId": user_id}).sort("created_at", -1)
    return [present_collection(db, d, user_id) for d in docs]


@router.post("/collections", status_code=201)
def create_collection(payload: CollectionCreate, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    prompt_ids: List[str] = []
    for pid in payload.prompts:
        prompt = get_prompt_or_404(db, pid)
        ensure_prompt_access(db, prompt, user_id, PromptAction.VIEW)
        if pid not in prompt_ids:
            prompt_ids.append(pid)
    collection_id = create_document(db, "collection", Collection(
        name=payload.name,
        description=payload.description,
        userId=user_id,
        prompts=prompt_ids,
    ))
    return present_collection(db, db["collection"].find_one({"_id": to_object_id(collection_id)}), user_id)


@router.get("/collections/{collection_id}")
def get_collection(collection_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    doc = get_own_collection_or_404(db, collection_id, user_id)
    return present_collection(db, doc, user_id, with_prompts=True)


@router.put("/collections/{collection_id}")
def update_collection(collection_id: str, payload: CollectionUpdate, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    doc = get_own_collection_or_404(db, collection_id, user_id)
    update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    if not update:
        raise ValidationFailed({"body": "No update data provided"}, detail="No update data provided")
    update["updated_at"] = _now()
    updated = db["collection"].find_one_and_update({"_id": doc["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    return present_collection(db, updated, user_id)


@router.delete("/collections/{collection_id}")
def delete_collection(collection_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    doc = get_own_collection_or_404(db, collection_id, str(current_user["_id"]))
    db["collection"].delete_one({"_id": doc["_id"]})
    return {"ok": True}


@router.post("/collections/{collection_id}/prompts/{prompt_id}")
def add_prompt_to_collection(collection_id: str, prompt_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    doc = get_own_collection_or_404(db, collection_id, user_id)
    prompt = get_prompt_or_404(db, prompt_id)
    ensure_prompt_access(db, prompt, user_id, PromptAction.VIEW)
    updated = db["collection"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$addToSet": {"prompts": prompt_id}, "$set": {"updated_at": _now()}},
        return_document=ReturnDocument.AFTER,
    )
    return present_collection(db, updated, user_id)


@router.delete("/collections/{collection_id}/prompts/{prompt_id}")
def remove_prompt_from_collection(collection_id: str, prompt_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    doc = get_own_collection_or_404(db, collection_id, user_id)
    # The prompt itself may already be gone; removing the reference still works.
    updated = db["collection"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$pull": {"prompts": prompt_id}, "$set": {"updated_at": _now()}},
        return_document=ReturnDocument.AFTER,
    )
    return present_collection(db, updated, user_id)
