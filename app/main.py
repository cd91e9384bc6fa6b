"""FastAPI app for the orgbase admin API."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
import time

import psycopg2

import access_gate
from app import data_entries, data_types
from app.auth import SupabaseAuthMiddleware, auth_disabled
from app.db import get_db_stats, reset_db_stats, translate_db_error
from app.errors import (
    ApiError,
    BadRequest,
    Forbidden,
    MissingRequiredField,
    NotFound,
    Unauthorized,
    Unexpected,
)
from app.memberships import (
    CURRENT_ORG_COOKIE,
    CURRENT_ORG_COOKIE_MAX_AGE,
    build_actor,
    can_select_organization,
    ensure_profile,
    invalidate_membership_cache,
    list_memberships,
    resolve_current_organization,
    selected_organization_id,
)
from app.stores import (
    MemoryCustomerStore,
    MemoryDataTypeStore,
    MemoryEntryStore,
    MemoryOrganizationStore,
    MemoryProfileStore,
    MemoryTables,
)
from app.stores_db import (
    DbCustomerStore,
    DbDataTypeStore,
    DbEntryStore,
    DbOrganizationStore,
    DbProfileStore,
)


app = FastAPI(title="orgbase")
logger = logging.getLogger("orgbase")
logging.basicConfig(level=logging.INFO)

_LOCAL_CORS_ORIGINS = {
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
}
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("ORGBASE_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS

SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_AUD = os.getenv("SUPABASE_JWT_AUD", "").strip() or None
USE_DB = os.getenv("USE_DB", "").strip() == "1"
APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
REQ_SLOW_MS = float(os.getenv("ORGBASE_REQ_SLOW_MS", "250"))
_NAME_RE = re.compile(r"\S")

if USE_DB:
    organization_store = DbOrganizationStore()
    profile_store = DbProfileStore()
    customer_store = DbCustomerStore()
    data_type_store = DbDataTypeStore()
    entry_store = DbEntryStore()
else:
    _tables = MemoryTables()
    organization_store = MemoryOrganizationStore(_tables)
    profile_store = MemoryProfileStore(_tables)
    customer_store = MemoryCustomerStore(_tables)
    data_type_store = MemoryDataTypeStore(_tables)
    entry_store = MemoryEntryStore(_tables)


def _error_response(err: ApiError) -> JSONResponse:
    return JSONResponse(jsonable_encoder(err.to_body()), status_code=err.status)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    auth_ms = getattr(request.state, "auth_ms", 0.0)
    db_stats = get_db_stats()
    db_ms = db_stats.get("total_ms", 0.0)
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f auth_ms=%.1f db_ms=%.1f db_q=%s",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        auth_ms,
        db_ms,
        db_stats.get("queries", 0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f db_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            db_ms,
            response.status_code,
        )
    if IS_DEV:
        response.headers["X-Req-MS"] = f"{total_ms:.1f}"
        response.headers["X-DB-MS"] = f"{db_ms:.1f}"
        response.headers["X-Queries"] = str(db_stats.get("queries", 0))
    return response


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status >= 500:
        logger.error("api_error path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return _error_response(exc)


@app.exception_handler(psycopg2.Error)
async def db_error_handler(request: Request, exc: psycopg2.Error):
    return _error_response(translate_db_error(exc, request.url.path))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response(Unexpected())


def _resolve_actor(request: Request) -> dict:
    user = getattr(request.state, "user", None)
    if not user or not user.get("id"):
        raise Unauthorized("Authenticated user required")
    profile = ensure_profile(profile_store, user)
    organization_ids = list_memberships(profile_store, profile["id"])
    selected = selected_organization_id(request.headers, request.cookies)
    current = resolve_current_organization(organization_store, profile, organization_ids, selected)
    request.state.profile = profile
    return build_actor(profile, organization_ids, current)


class ActorContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in {"/health"}:
            return await call_next(request)
        try:
            request.state.actor = _resolve_actor(request)
        except ApiError as exc:
            return _error_response(exc)
        except psycopg2.Error as exc:
            return _error_response(translate_db_error(exc, request.url.path))
        return await call_next(request)


app.add_middleware(ActorContextMiddleware)
if not auth_disabled() and not SUPABASE_URL:
    raise RuntimeError("SUPABASE_URL is required for auth")
app.add_middleware(SupabaseAuthMiddleware, supabase_url=SUPABASE_URL, audience=SUPABASE_AUD)
app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


def _actor(request: Request) -> dict:
    return request.state.actor


def _required_name(payload: dict, key: str = "name") -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not _NAME_RE.search(value):
        raise MissingRequiredField(f"{key} is required", path=key)
    return value.strip()


def _id_list(payload: dict, key: str) -> list[str] | None:
    if key not in payload or payload.get(key) is None:
        return None
    value = payload.get(key)
    if not isinstance(value, list):
        raise BadRequest(f"{key} must be a list", path=key)
    return [str(v) for v in value if v not in (None, "")]


def _directory_values(payload: dict, partial: bool) -> dict:
    values = {}
    if not partial or "name" in payload:
        values["name"] = _required_name(payload)
    for key in ("contact", "industry"):
        if key in payload:
            values[key] = payload.get(key)
    return values


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# Session


@app.get("/me")
async def me(request: Request) -> dict:
    actor = _actor(request)
    current_id = actor.get("current_organization_id")
    current = organization_store.get(current_id) if current_id else None
    return {
        "profile": request.state.profile,
        "organizations": organization_store.list_for_profile(actor["profile_id"]),
        "current_organization": current,
        "needsOrganizationSelection": actor.get("needs_organization_selection", False),
    }


@app.get("/current-organization")
async def current_organization(request: Request) -> dict:
    actor = _actor(request)
    current_id = actor.get("current_organization_id")
    if not current_id:
        raise BadRequest("No current organization set", code="NO_CURRENT_ORGANIZATION")
    org = organization_store.get(current_id)
    if not org:
        raise NotFound("Organization not found")
    return {"organization": org}


@app.post("/set-current-organization")
async def set_current_organization(request: Request):
    actor = _actor(request)
    payload = await _safe_json(request)
    organization_id = payload.get("organizationId")
    if not isinstance(organization_id, str) or not organization_id.strip():
        raise MissingRequiredField("organizationId is required", path="organizationId")
    organization_id = organization_id.strip()
    if not can_select_organization(organization_store, request.state.profile, actor["organization_ids"], organization_id):
        raise Forbidden("Not a member of this organization", path="organizationId")
    response = JSONResponse({"success": True})
    response.set_cookie(
        CURRENT_ORG_COOKIE,
        organization_id,
        max_age=CURRENT_ORG_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=APP_ENV == "production",
        path="/",
    )
    logger.info("current_org_set profile_id=%s organization_id=%s", actor["profile_id"], organization_id)
    return response


# Organizations


@app.get("/organizations")
async def list_organizations(request: Request) -> list:
    actor = _actor(request)
    if access_gate.is_admin(actor):
        return organization_store.list()
    return organization_store.list(actor["organization_ids"])


@app.post("/organizations", status_code=201)
async def create_organization(request: Request) -> dict:
    actor = _actor(request)
    if not access_gate.can_create_organization(actor):
        raise Forbidden("Only administrators can create organizations")
    payload = await _safe_json(request)
    values = _directory_values(payload, partial=False)
    org = organization_store.create(values, _id_list(payload, "profile_ids") or [])
    invalidate_membership_cache()
    logger.info("organization_created id=%s by=%s", org["id"], actor["profile_id"])
    return org


@app.get("/organizations/{organization_id}")
async def get_organization(request: Request, organization_id: str) -> dict:
    org = organization_store.get(organization_id)
    if not org:
        raise NotFound("Organization not found", path="id")
    if not access_gate.can_view_organization(_actor(request), organization_id):
        raise Forbidden("Not a member of this organization")
    return org


@app.put("/organizations/{organization_id}")
async def update_organization(request: Request, organization_id: str) -> dict:
    actor = _actor(request)
    if not organization_store.exists(organization_id):
        raise NotFound("Organization not found", path="id")
    if not access_gate.can_edit_organization(actor, organization_id):
        raise Forbidden("Not allowed to edit this organization")
    payload = await _safe_json(request)
    profile_ids = _id_list(payload, "profile_ids")
    org = organization_store.update(organization_id, _directory_values(payload, partial=True), profile_ids)
    if not org:
        raise NotFound("Organization not found", path="id")
    if profile_ids is not None:
        invalidate_membership_cache()
    return org


@app.delete("/organizations/{organization_id}", status_code=204)
async def delete_organization(request: Request, organization_id: str):
    actor = _actor(request)
    if not access_gate.can_delete_organization(actor):
        raise Forbidden("Only administrators can delete organizations")
    if not organization_store.delete(organization_id):
        raise NotFound("Organization not found", path="id")
    invalidate_membership_cache()
    logger.info("organization_deleted id=%s by=%s", organization_id, actor["profile_id"])
    return Response(status_code=204)


# Profiles


@app.get("/profiles")
async def list_profiles(request: Request) -> list:
    actor = _actor(request)
    if access_gate.is_admin(actor):
        return profile_store.list()
    current_id = actor.get("current_organization_id")
    if access_gate.is_manager(actor) and current_id:
        return profile_store.list(organization_id=current_id)
    return profile_store.list(profile_ids=[actor["profile_id"]])


@app.post("/profiles", status_code=201)
async def create_profile(request: Request) -> dict:
    actor = _actor(request)
    if not access_gate.can_manage_profiles(actor):
        raise Forbidden("Only administrators and managers can create profiles")
    payload = await _safe_json(request)
    email = _required_name(payload, "email").lower()
    new_type = payload.get("type") or access_gate.USER
    if access_gate.normalize_profile_type(new_type) is None:
        raise BadRequest(f"type must be one of {list(access_gate.PROFILE_TYPES)}", path="type")
    if not access_gate.can_assign_profile_type(actor, None, new_type):
        raise Forbidden("Not allowed to assign this profile type", path="type")
    organization_ids = _id_list(payload, "organization_ids")
    if not access_gate.is_admin(actor):
        current_id = actor.get("current_organization_id")
        if organization_ids is None:
            organization_ids = [current_id] if current_id else []
        if any(org_id != current_id for org_id in organization_ids):
            raise Forbidden("Managers can only add profiles to their current organization", path="organization_ids")
    if profile_store.get_by_email(email):
        raise ApiError("DUPLICATE_EMAIL", "A profile with this email already exists", 409, "email")
    profile = profile_store.create(
        {
            "email": email,
            "full_name": payload.get("full_name"),
            "type": access_gate.normalize_profile_type(new_type),
            "needs_password_setup": True,
        },
        organization_ids or [],
    )
    invalidate_membership_cache(profile["id"])
    logger.info("profile_created id=%s type=%s by=%s", profile["id"], profile["type"], actor["profile_id"])
    return profile


@app.get("/profiles/{profile_id}")
async def get_profile(request: Request, profile_id: str) -> dict:
    target = profile_store.get(profile_id)
    if not target:
        raise NotFound("Profile not found", path="id")
    if not access_gate.can_view_profile(_actor(request), target, target.get("organization_ids") or []):
        raise Forbidden("Not allowed to view this profile")
    return target


@app.put("/profiles/{profile_id}")
async def update_profile(request: Request, profile_id: str) -> dict:
    actor = _actor(request)
    target = profile_store.get(profile_id)
    if not target:
        raise NotFound("Profile not found", path="id")
    if not access_gate.can_edit_profile(actor, target, target.get("organization_ids") or []):
        raise Forbidden("Not allowed to edit this profile")
    payload = await _safe_json(request)
    values = {}
    if "email" in payload:
        values["email"] = _required_name(payload, "email").lower()
        other = profile_store.get_by_email(values["email"])
        if other and other["id"] != profile_id:
            raise ApiError("DUPLICATE_EMAIL", "A profile with this email already exists", 409, "email")
    if "full_name" in payload:
        values["full_name"] = payload.get("full_name")
    if "type" in payload:
        new_type = access_gate.normalize_profile_type(payload.get("type"))
        if new_type is None:
            raise BadRequest(f"type must be one of {list(access_gate.PROFILE_TYPES)}", path="type")
        if not access_gate.can_assign_profile_type(actor, target, new_type):
            raise Forbidden("Not allowed to assign this profile type", path="type")
        values["type"] = new_type
    profile = profile_store.update(profile_id, values)
    if not profile:
        raise NotFound("Profile not found", path="id")
    return profile


@app.delete("/profiles/{profile_id}", status_code=204)
async def delete_profile(request: Request, profile_id: str):
    actor = _actor(request)
    target = profile_store.get(profile_id)
    if not target:
        raise NotFound("Profile not found", path="id")
    if not access_gate.can_delete_profile(actor, target):
        raise Forbidden("Not allowed to delete this profile")
    profile_store.delete(profile_id)
    invalidate_membership_cache(profile_id)
    logger.info("profile_deleted id=%s by=%s", profile_id, actor["profile_id"])
    return Response(status_code=204)


# Customers


@app.get("/customers")
async def list_customers(request: Request) -> list:
    return customer_store.list()


@app.post("/customers", status_code=201)
async def create_customer(request: Request) -> dict:
    if not access_gate.can_manage_customers(_actor(request)):
        raise Forbidden("Only administrators and managers can manage customers")
    payload = await _safe_json(request)
    values = _directory_values(payload, partial=False)
    return customer_store.create(values, _id_list(payload, "profile_ids") or [])


@app.get("/customers/{customer_id}")
async def get_customer(request: Request, customer_id: str) -> dict:
    customer = customer_store.get(customer_id)
    if not customer:
        raise NotFound("Customer not found", path="id")
    return customer


@app.put("/customers/{customer_id}")
async def update_customer(request: Request, customer_id: str) -> dict:
    if not access_gate.can_manage_customers(_actor(request)):
        raise Forbidden("Only administrators and managers can manage customers")
    payload = await _safe_json(request)
    customer = customer_store.update(
        customer_id,
        _directory_values(payload, partial=True),
        _id_list(payload, "profile_ids"),
    )
    if not customer:
        raise NotFound("Customer not found", path="id")
    return customer


@app.delete("/customers/{customer_id}", status_code=204)
async def delete_customer(request: Request, customer_id: str):
    if not access_gate.can_manage_customers(_actor(request)):
        raise Forbidden("Only administrators and managers can manage customers")
    if not customer_store.delete(customer_id):
        raise NotFound("Customer not found", path="id")
    return Response(status_code=204)


# Data types


@app.get("/data-types")
async def list_data_types(request: Request) -> list:
    return data_types.list_data_types(data_type_store, organization_store, _actor(request))


@app.post("/data-types", status_code=201)
async def create_data_type(request: Request) -> dict:
    payload = await _safe_json(request)
    return data_types.create_data_type(data_type_store, organization_store, _actor(request), payload)


@app.get("/data-types/{data_type_id}")
async def get_data_type(request: Request, data_type_id: str) -> dict:
    return data_types.get_data_type(data_type_store, organization_store, _actor(request), data_type_id)


@app.put("/data-types/{data_type_id}")
async def update_data_type(request: Request, data_type_id: str) -> dict:
    payload = await _safe_json(request)
    return data_types.update_data_type(data_type_store, organization_store, _actor(request), data_type_id, payload)


@app.delete("/data-types/{data_type_id}", status_code=204)
async def delete_data_type(request: Request, data_type_id: str):
    data_types.delete_data_type(data_type_store, _actor(request), data_type_id)
    return Response(status_code=204)


# Dynamic data entries


@app.get("/dynamic-data-entries")
async def list_entries(request: Request) -> list:
    data_type_id = request.query_params.get("dataTypeId")
    return data_entries.list_entries(data_type_store, entry_store, _actor(request), data_type_id)


@app.post("/dynamic-data-entries", status_code=201)
async def create_entry(request: Request) -> dict:
    payload = await _safe_json(request)
    return data_entries.create_entry(data_type_store, entry_store, _actor(request), payload)


@app.get("/dynamic-data-entries/{entry_id}")
async def get_entry(request: Request, entry_id: str) -> dict:
    return data_entries.get_entry(data_type_store, entry_store, _actor(request), entry_id)


@app.put("/dynamic-data-entries/{entry_id}")
async def update_entry(request: Request, entry_id: str) -> dict:
    payload = await _safe_json(request)
    return data_entries.update_entry(data_type_store, entry_store, _actor(request), entry_id, payload)


@app.delete("/dynamic-data-entries/{entry_id}")
async def delete_entry(request: Request, entry_id: str) -> dict:
    return data_entries.delete_entry(entry_store, _actor(request), entry_id)
