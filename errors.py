"""Error taxonomy for PromptPro.

Each exception maps to one HTTP status in ``main.py`` so callers can tell
"bad input" from "not allowed" from "quota reached".
"""

from typing import Dict, Optional


class PromptProError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail}


class ValidationFailed(PromptProError):
    status_code = 400
    default_detail = "Validation failed"

    def __init__(self, errors: Dict[str, str], detail: Optional[str] = None):
        super().__init__(detail)
        self.errors = errors

    def to_dict(self) -> dict:
        return {"detail": self.detail, "errors": self.errors}


class AuthenticationRequired(PromptProError):
    status_code = 401
    default_detail = "Authentication required"


class AuthorizationError(PromptProError):
    status_code = 403
    default_detail = "Not authorized"


class NotFoundError(PromptProError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(PromptProError):
    status_code = 409
    default_detail = "Conflict"


class LimitExceededError(PromptProError):
    """Raised when a plan quota rejects a creation."""

    status_code = 402
    default_detail = "Prompt limit reached. Please upgrade your plan."

    def __init__(self, limit: Optional[int], current: int, scope: str, detail: Optional[str] = None):
        super().__init__(detail)
        self.limit = limit
        self.current = current
        self.scope = scope

    def to_dict(self) -> dict:
        return {
            "detail": self.detail,
            "limit": self.limit,
            "current": self.current,
            "scope": self.scope,
        }
