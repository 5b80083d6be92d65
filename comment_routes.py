import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import Identity, authenticate, get_current_user
from database import create_document, get_db, serialize, to_object_id
from errors import AuthorizationError, NotFoundError, ValidationFailed
from permissions import Capability, PromptAction, can_delete_comment, has_capability
from prompt_routes import ensure_prompt_access, get_prompt_or_404, prompt_team
from schemas import MAX_COMMENT_LENGTH, Comment

logger = logging.getLogger(__name__)

router = APIRouter()


class CommentBody(BaseModel):
    content: str = Field(max_length=MAX_COMMENT_LENGTH)


def clean_content(content: str) -> str:
    content = content.strip()
    if not content:
        raise ValidationFailed({"content": "Comment content is required"})
    return content


def get_comment_or_404(db: Database, comment_id: str) -> dict:
    comment = db["comment"].find_one({"_id": to_object_id(comment_id, "commentId")})
    if not comment:
        raise NotFoundError("Comment not found")
    return comment


@router.get("/prompts/{prompt_id}/comments")
def list_comments(prompt_id: str, identity: Optional[Identity] = Depends(authenticate), db: Database = Depends(get_db)):
    prompt = get_prompt_or_404(db, prompt_id)
    ensure_prompt_access(db, prompt, identity.subject if identity else None, PromptAction.VIEW)
    docs = db["comment"].find({"prompt": prompt_id}).sort("created_at", 1)
    return [serialize(d) for d in docs]


@router.post("/prompts/{prompt_id}/comments", status_code=201)
def add_comment(prompt_id: str, payload: CommentBody, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(current_user["_id"])
    content = clean_content(payload.content)
    prompt = get_prompt_or_404(db, prompt_id)
    team = ensure_prompt_access(db, prompt, user_id, PromptAction.VIEW)
    if team is not None and not has_capability(team, user_id, Capability.COMMENT_ON_PROMPTS):
        raise AuthorizationError("Not authorized to comment on this prompt")

    comment_id = create_document(db, "comment", Comment(prompt=prompt_id, author=user_id, content=content))
    return serialize(db["comment"].find_one({"_id": to_object_id(comment_id)}))


@router.get("/comments/{comment_id}")
def get_comment(comment_id: str, identity: Optional[Identity] = Depends(authenticate), db: Database = Depends(get_db)):
    comment = get_comment_or_404(db, comment_id)
    prompt = db["prompt"].find_one({"_id": to_object_id(comment["prompt"], "promptId")})
    # Comments on a deleted prompt stay readable to their author only.
    user_id = identity.subject if identity else None
    if prompt is None:
        if str(comment.get("author")) != str(user_id):
            raise NotFoundError("Comment not found")
    else:
        ensure_prompt_access(db, prompt, user_id, PromptAction.VIEW)
    return serialize(comment)


@router.put("/comments/{comment_id}")
def update_comment(comment_id: str, payload: CommentBody, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    comment = get_comment_or_404(db, comment_id)
    if str(comment.get("author")) != str(current_user["_id"]):
        raise AuthorizationError("You can only modify your own comments")
    content = clean_content(payload.content)
    db["comment"].update_one(
        {"_id": comment["_id"]},
        {"$set": {"content": content, "updated_at": datetime.now(timezone.utc)}},
    )
    return serialize(db["comment"].find_one({"_id": comment["_id"]}))


@router.delete("/comments/{comment_id}")
def delete_comment(comment_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    comment = get_comment_or_404(db, comment_id)
    prompt = db["prompt"].find_one({"_id": to_object_id(comment["prompt"], "promptId")})
    team = prompt_team(db, prompt) if prompt else None
    if not can_delete_comment(comment, str(current_user["_id"]), team):
        raise AuthorizationError("Not authorized to delete this comment")
    db["comment"].delete_one({"_id": comment["_id"]})
    return {"ok": True}
