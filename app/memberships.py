from __future__ import annotations

from typing import Any

import logging
import os
import time

import access_gate

logger = logging.getLogger("orgbase")

_MEMBERSHIP_CACHE: dict[str, dict] = {}
_MEMBERSHIP_TTL_S = float(os.getenv("ORGBASE_MEMBERSHIP_CACHE_TTL", "30"))

CURRENT_ORG_COOKIE = "current-organization"
CURRENT_ORG_HEADER = "X-Organization-Id"
CURRENT_ORG_COOKIE_MAX_AGE = 60 * 60 * 24 * 30


def list_memberships(profile_store, profile_id: str) -> list[str]:
    now = time.time()
    cached = _MEMBERSHIP_CACHE.get(profile_id)
    if cached and now - cached["ts"] < _MEMBERSHIP_TTL_S:
        return list(cached["value"])
    value = list(profile_store.organization_ids(profile_id) or [])
    _MEMBERSHIP_CACHE[profile_id] = {"value": value, "ts": now}
    return list(value)


def invalidate_membership_cache(profile_id: str | None = None) -> None:
    if profile_id:
        _MEMBERSHIP_CACHE.pop(profile_id, None)
        return
    _MEMBERSHIP_CACHE.clear()


def _bootstrap_admin_emails() -> set[str]:
    raw = os.getenv("ORGBASE_BOOTSTRAP_ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def ensure_profile(profile_store, user: dict[str, Any]) -> dict:
    """Load the caller's profile, creating it on first sight.

    A profile created ahead of time with the caller's email (an invite from
    ``POST /profiles``) is adopted and moved to the identity provider's id,
    keeping its type and memberships.
    """
    user_id = user.get("id")
    if not user_id:
        raise RuntimeError("user_id required")
    profile = profile_store.get(user_id)
    if profile:
        return profile
    email = (user.get("email") or "").strip().lower()
    invited = profile_store.get_by_email(email) if email else None
    if invited:
        profile = profile_store.rekey(invited["id"], user_id)
        if profile:
            invalidate_membership_cache(invited["id"])
            invalidate_membership_cache(user_id)
            logger.info("profile_adopted profile_id=%s previous_id=%s", user_id, invited["id"])
            return profile
    profile_type = access_gate.ADMINISTRATOR if email and email in _bootstrap_admin_emails() else access_gate.USER
    profile = profile_store.create(
        {
            "id": user_id,
            "email": email,
            "full_name": user.get("full_name"),
            "type": profile_type,
        }
    )
    invalidate_membership_cache(user_id)
    logger.info("profile_bootstrap profile_id=%s type=%s", user_id, profile_type)
    return profile


def selected_organization_id(headers, cookies) -> str | None:
    value = headers.get(CURRENT_ORG_HEADER) or cookies.get(CURRENT_ORG_COOKIE)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def can_select_organization(org_store, profile: dict, organization_ids: list[str], organization_id: str) -> bool:
    if organization_id in organization_ids:
        return True
    return access_gate.is_admin(profile) and org_store.exists(organization_id)


def resolve_current_organization(
    org_store,
    profile: dict,
    organization_ids: list[str],
    selected_id: str | None,
) -> dict:
    """Pick the caller's current organization.

    A valid explicit selection wins. Otherwise a single membership is used
    automatically and several memberships ask the client to choose.
    """
    if selected_id and can_select_organization(org_store, profile, organization_ids, selected_id):
        return {"current_organization_id": selected_id, "needs_organization_selection": False}
    if selected_id:
        logger.info(
            "current_org_rejected profile_id=%s organization_id=%s",
            profile.get("id"),
            selected_id,
        )
    if len(organization_ids) == 1:
        return {"current_organization_id": organization_ids[0], "needs_organization_selection": False}
    return {"current_organization_id": None, "needs_organization_selection": len(organization_ids) > 1}


def build_actor(profile: dict, organization_ids: list[str], current: dict) -> dict:
    return {
        "profile_id": profile.get("id"),
        "email": profile.get("email"),
        "type": access_gate.normalize_profile_type(profile.get("type")),
        "current_organization_id": current.get("current_organization_id"),
        "needs_organization_selection": bool(current.get("needs_organization_selection")),
        "organization_ids": list(organization_ids),
    }
