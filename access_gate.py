"""Role and organization scope rules.

Every check takes an actor dict as resolved per request:

    {"profile_id", "email", "type", "current_organization_id", "organization_ids"}

Administrators see and change everything. Everyone else is confined to the
current organization, which must be one of their memberships.
"""

from __future__ import annotations

from typing import Any, Iterable

ADMINISTRATOR = "Administrator"
MANAGER = "Manager"
USER = "User"

PROFILE_TYPES = (ADMINISTRATOR, MANAGER, USER)


def normalize_profile_type(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    wanted = value.strip().lower()
    for ptype in PROFILE_TYPES:
        if ptype.lower() == wanted:
            return ptype
    return None


def profile_type(actor: dict | None) -> str | None:
    if not isinstance(actor, dict):
        return None
    return normalize_profile_type(actor.get("type"))


def is_admin(actor: dict | None) -> bool:
    return profile_type(actor) == ADMINISTRATOR


def is_manager(actor: dict | None) -> bool:
    return profile_type(actor) == MANAGER


def current_organization_id(actor: dict | None) -> str | None:
    if not isinstance(actor, dict):
        return None
    org_id = actor.get("current_organization_id")
    return org_id if isinstance(org_id, str) and org_id else None


def is_member(actor: dict | None, organization_id: str | None) -> bool:
    if not isinstance(actor, dict) or not organization_id:
        return False
    return organization_id in (actor.get("organization_ids") or [])


def visible_organization_ids(actor: dict | None) -> list[str] | None:
    """``None`` means every organization."""
    if is_admin(actor):
        return None
    current = current_organization_id(actor)
    return [current] if current else []


def can_read_organization(actor: dict | None, organization_id: str | None) -> bool:
    if is_admin(actor):
        return True
    current = current_organization_id(actor)
    return bool(current) and current == organization_id


def can_write_organization_data(actor: dict | None, organization_id: str | None) -> bool:
    # Entries: any profile type inside its current organization.
    return can_read_organization(actor, organization_id)


def can_manage_schema(actor: dict | None, organization_id: str | None) -> bool:
    if is_admin(actor):
        return True
    return is_manager(actor) and can_read_organization(actor, organization_id)


def can_create_organization(actor: dict | None) -> bool:
    return is_admin(actor)


def can_delete_organization(actor: dict | None) -> bool:
    return is_admin(actor)


def can_edit_organization(actor: dict | None, organization_id: str | None) -> bool:
    if is_admin(actor):
        return True
    return is_manager(actor) and is_member(actor, organization_id)


def can_view_organization(actor: dict | None, organization_id: str | None) -> bool:
    return is_admin(actor) or is_member(actor, organization_id)


def can_manage_customers(actor: dict | None) -> bool:
    return is_admin(actor) or is_manager(actor)


def can_manage_profiles(actor: dict | None) -> bool:
    return is_admin(actor) or is_manager(actor)


def can_view_profile(actor: dict | None, target: dict | None, target_org_ids: Iterable[str] = ()) -> bool:
    if not isinstance(target, dict):
        return False
    if is_admin(actor):
        return True
    if isinstance(actor, dict) and target.get("id") == actor.get("profile_id"):
        return True
    return is_manager(actor) and current_organization_id(actor) in set(target_org_ids)


def can_edit_profile(actor: dict | None, target: dict | None, target_org_ids: Iterable[str] = ()) -> bool:
    if not isinstance(target, dict):
        return False
    if is_admin(actor):
        return True
    if isinstance(actor, dict) and target.get("id") == actor.get("profile_id"):
        return True
    if normalize_profile_type(target.get("type")) == ADMINISTRATOR:
        return False
    return is_manager(actor) and current_organization_id(actor) in set(target_org_ids)


def can_assign_profile_type(actor: dict | None, target: dict | None, new_type: str | None) -> bool:
    """Whether ``actor`` may give ``target`` (None for a new profile) ``new_type``."""
    wanted = normalize_profile_type(new_type)
    if wanted is None:
        return False
    current = normalize_profile_type((target or {}).get("type")) if target else None
    if current == wanted:
        return True
    if is_admin(actor):
        return True
    if not is_manager(actor):
        return False
    if current == ADMINISTRATOR:
        return False
    return wanted in (MANAGER, USER)


def can_delete_profile(actor: dict | None, target: dict | None) -> bool:
    if not isinstance(target, dict) or not is_admin(actor):
        return False
    return target.get("id") != actor.get("profile_id")
