"""
Database Schemas

MongoDB collection schemas for PromptPro, defined as Pydantic models.
These schemas are used for data validation before documents are written.

Each Pydantic model represents a collection in the database.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Team -> "team" collection
- AuditLog -> "auditlog" collection

Stored references to other documents (creator, team, prompt ids) are kept as
plain strings.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Plan = Literal["Free", "Pro"]
Visibility = Literal["private", "team", "public"]
MemberRole = Literal["owner", "admin", "member"]
UsageEventType = Literal["view", "copy", "execute", "share", "edit", "create", "delete"]

MAX_TAGS = 10
MAX_TAG_LENGTH = 20
MAX_COMMENT_LENGTH = 1000


def _now():
    return datetime.now(timezone.utc)


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    email: EmailStr = Field(..., description="Email address (unique)")
    password_hash: str = Field(..., description="Hashed password")
    name: Optional[str] = Field(None, description="Display name")
    role: Literal["user", "admin"] = Field("user", description="Site-wide role")
    plan: Plan = Field("Free", description="Personal subscription tier")
    promptCount: int = Field(0, ge=0, description="Number of prompts authored")
    stripeCustomerId: Optional[str] = None


class TeamMember(BaseModel):
    user: str
    role: MemberRole = "member"
    joinedAt: datetime = Field(default_factory=_now)


class Team(BaseModel):
    """
    Teams collection schema
    Collection name: "team"
    """
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    creator: str = Field(..., description="User id of the creating user")
    members: List[TeamMember] = Field(default_factory=list)
    plan: Plan = "Free"
    promptLimit: int = Field(..., ge=0)
    stripeCustomerId: Optional[str] = None
    stripeSubscriptionId: Optional[str] = None


class Rating(BaseModel):
    user: str
    value: int = Field(..., ge=1, le=5)


class Prompt(BaseModel):
    """
    Prompts collection schema
    Collection name: "prompt"
    """
    title: str = Field(..., min_length=3, max_length=100)
    text: str = Field(..., min_length=10)
    description: Optional[str] = Field(None, max_length=500)
    creator: str
    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)
    platformCompatibility: List[str] = Field(default_factory=list)
    visibility: Visibility = "private"
    teamId: Optional[str] = None
    usageCount: int = Field(0, ge=0)
    ratings: List[Rating] = Field(default_factory=list)
    successCount: int = Field(0, ge=0)
    failureCount: int = Field(0, ge=0)


class Collection(BaseModel):
    """
    Collections collection schema
    Collection name: "collection"
    """
    name: str = Field(..., min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    userId: str
    prompts: List[str] = Field(default_factory=list)


class Comment(BaseModel):
    prompt: str
    author: str
    content: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)


class AuditLog(BaseModel):
    """Append-only record of a state-changing action"""
    timestamp: datetime = Field(default_factory=_now)
    userId: Optional[str] = None
    action: str
    targetType: Optional[str] = None
    targetId: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class UsageEvent(BaseModel):
    """Append-only analytics record"""
    promptId: str
    userId: str
    teamId: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
    eventType: UsageEventType = "execute"
    metadata: Dict[str, Any] = Field(default_factory=dict)
