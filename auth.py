"""Identity: password hashing, access tokens and request authentication."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from pymongo.database import Database

from config import ACCESS_TOKEN_DAYS, JWT_ALG, JWT_SECRET
from database import get_db
from errors import AuthenticationRequired, AuthorizationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@dataclass
class Identity:
    subject: str
    claims: dict = field(default_factory=dict)

    @property
    def is_site_admin(self) -> bool:
        return self.claims.get("role") == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(user_id: str, role: str = "user", expires_delta: timedelta = timedelta(days=ACCESS_TOKEN_DAYS)) -> str:
    payload = {
        "sub": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> Optional[Identity]:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    claims = {k: v for k, v in payload.items() if k != "sub"}
    return Identity(subject=str(subject), claims=claims)


def authenticate(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Identity]:
    """Resolve the caller's identity. No token or a bad token means anonymous."""
    if not token:
        return None
    return decode_token(token)


def require_identity(identity: Optional[Identity] = Depends(authenticate)) -> Identity:
    if identity is None:
        raise AuthenticationRequired()
    return identity


def require_site_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_site_admin:
        logger.warning(f"Admin access attempt by user {identity.subject}")
        raise AuthorizationError("Admin access required")
    return identity


def get_current_user(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)) -> dict:
    try:
        oid = ObjectId(identity.subject)
    except InvalidId:
        raise AuthenticationRequired("Invalid token")
    user_doc = db["user"].find_one({"_id": oid})
    if not user_doc:
        raise AuthenticationRequired("User not found")
    return user_doc
