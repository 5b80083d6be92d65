"""
Role table and permission resolution.

Team roles map to a fixed set of capabilities. Every check here is a pure
function of the documents passed in; callers fetch fresh team and prompt
documents for each request.
"""

from enum import Enum
from typing import Dict, Optional


class Role(str, Enum):
    """Team membership roles."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Capability(str, Enum):
    MANAGE_TEAM_SETTINGS = "manage_team_settings"
    INVITE_MEMBERS = "invite_members"
    REMOVE_MEMBERS = "remove_members"
    EDIT_ANY_PROMPT = "edit_any_prompt"
    DELETE_ANY_PROMPT = "delete_any_prompt"
    CONTROL_TEAM_VISIBILITY = "control_team_visibility"
    VIEW_TEAM_PROMPTS = "view_team_prompts"
    CREATE_PROMPTS = "create_prompts"
    EDIT_OWN_PROMPTS = "edit_own_prompts"
    COMMENT_ON_PROMPTS = "comment_on_prompts"


class PromptAction(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"


# Owner and admin are identical. There is no delete-own capability.
ROLE_CAPABILITIES: Dict[Role, Dict[Capability, bool]] = {
    Role.OWNER: {
        Capability.MANAGE_TEAM_SETTINGS: True,
        Capability.INVITE_MEMBERS: True,
        Capability.REMOVE_MEMBERS: True,
        Capability.EDIT_ANY_PROMPT: True,
        Capability.DELETE_ANY_PROMPT: True,
        Capability.CONTROL_TEAM_VISIBILITY: True,
        Capability.VIEW_TEAM_PROMPTS: True,
        Capability.CREATE_PROMPTS: True,
        Capability.EDIT_OWN_PROMPTS: True,
        Capability.COMMENT_ON_PROMPTS: True,
    },
    Role.ADMIN: {
        Capability.MANAGE_TEAM_SETTINGS: True,
        Capability.INVITE_MEMBERS: True,
        Capability.REMOVE_MEMBERS: True,
        Capability.EDIT_ANY_PROMPT: True,
        Capability.DELETE_ANY_PROMPT: True,
        Capability.CONTROL_TEAM_VISIBILITY: True,
        Capability.VIEW_TEAM_PROMPTS: True,
        Capability.CREATE_PROMPTS: True,
        Capability.EDIT_OWN_PROMPTS: True,
        Capability.COMMENT_ON_PROMPTS: True,
    },
    Role.MEMBER: {
        Capability.MANAGE_TEAM_SETTINGS: False,
        Capability.INVITE_MEMBERS: False,
        Capability.REMOVE_MEMBERS: False,
        Capability.EDIT_ANY_PROMPT: False,
        Capability.DELETE_ANY_PROMPT: False,
        Capability.CONTROL_TEAM_VISIBILITY: False,
        Capability.VIEW_TEAM_PROMPTS: True,
        Capability.CREATE_PROMPTS: True,
        Capability.EDIT_OWN_PROMPTS: True,
        Capability.COMMENT_ON_PROMPTS: True,
    },
}


def _check_table_is_complete() -> None:
    for role in Role:
        missing = set(Capability) - set(ROLE_CAPABILITIES.get(role, {}))
        if missing:
            raise RuntimeError(f"Role {role.value} is missing capabilities: {sorted(c.value for c in missing)}")


_check_table_is_complete()


def find_member(team: Optional[dict], user_id: Optional[str]) -> Optional[dict]:
    if not team or not user_id:
        return None
    for member in team.get("members") or []:
        if str(member.get("user")) == str(user_id):
            return member
    return None


def resolve_role(team: Optional[dict], user_id: Optional[str]) -> Optional[Role]:
    """Return the user's role in ``team`` or None when they are not a member."""
    member = find_member(team, user_id)
    if member is None:
        return None
    try:
        return Role(member.get("role"))
    except ValueError:
        return None


def is_member(team: Optional[dict], user_id: Optional[str]) -> bool:
    return resolve_role(team, user_id) is not None


def has_capability(team: Optional[dict], user_id: Optional[str], capability) -> bool:
    if not team or not user_id or not capability:
        return False
    role = resolve_role(team, user_id)
    if role is None:
        return False
    try:
        capability = Capability(capability)
    except ValueError:
        return False
    return ROLE_CAPABILITIES[role].get(capability, False)


def can_manage_prompt(team: Optional[dict], user_id: Optional[str], prompt: Optional[dict], action) -> bool:
    """Decide a view/edit/delete action on a team prompt."""
    if not team or not user_id or not prompt:
        return False
    if resolve_role(team, user_id) is None:
        return False

    is_creator = str(prompt.get("creator")) == str(user_id)
    try:
        action = PromptAction(action)
    except ValueError:
        return False

    if action is PromptAction.VIEW:
        return has_capability(team, user_id, Capability.VIEW_TEAM_PROMPTS)
    if action is PromptAction.EDIT:
        return has_capability(team, user_id, Capability.EDIT_ANY_PROMPT) or (
            is_creator and has_capability(team, user_id, Capability.EDIT_OWN_PROMPTS)
        )
    return has_capability(team, user_id, Capability.DELETE_ANY_PROMPT)


def can_access_prompt(prompt: dict, user_id: Optional[str], action, team: Optional[dict] = None) -> bool:
    """
    Visibility-aware access check for any prompt.

    Team prompts go through ``can_manage_prompt``. Private prompts belong to
    their creator alone. Public prompts can be viewed by anyone, including
    anonymous callers, but only the creator may change or delete them.
    """
    action = PromptAction(action)
    visibility = prompt.get("visibility", "private")
    is_creator = user_id is not None and str(prompt.get("creator")) == str(user_id)

    if visibility == "team":
        return can_manage_prompt(team, user_id, prompt, action)
    if visibility == "public" and action is PromptAction.VIEW:
        return True
    return is_creator


def can_delete_comment(comment: dict, user_id: Optional[str], team: Optional[dict] = None) -> bool:
    """Authors may delete their comments; so may admins/owners of the prompt's team."""
    if not user_id:
        return False
    if str(comment.get("author")) == str(user_id):
        return True
    return resolve_role(team, user_id) in (Role.OWNER, Role.ADMIN)
