"""Supabase JWT auth middleware."""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import JOSEError, JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger("orgbase.auth")

_JWKS_CACHE: Dict[str, Any] = {"keys": None, "fetched_at": 0.0, "ttl": 600.0}
_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_PUBLIC_PATHS = {"/health"}

DEV_USER_HEADER = "X-Dev-User-Id"
DEV_EMAIL_HEADER = "X-Dev-User-Email"


def auth_disabled() -> bool:
    return os.getenv("ORGBASE_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _attach_local_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and _LOCAL_ORIGIN_RE.match(origin):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


def _unauthorized(request: Request, code: str, message: str) -> JSONResponse:
    return _attach_local_cors(request, JSONResponse({"error": message, "code": code}, status_code=401))


def _fetch_jwks(jwks_url: str, force: bool = False) -> dict:
    now = time.time()
    if not force and _JWKS_CACHE["keys"] and now - _JWKS_CACHE["fetched_at"] < _JWKS_CACHE["ttl"]:
        return _JWKS_CACHE["keys"]
    resp = httpx.get(jwks_url, timeout=10.0)
    resp.raise_for_status()
    data = resp.json()
    _JWKS_CACHE["keys"] = data
    _JWKS_CACHE["fetched_at"] = now
    return data


def _find_key(jwks: dict, kid: Optional[str]) -> Optional[dict]:
    for jwk in jwks.get("keys", []):
        if jwk.get("kid") == kid:
            return jwk
    return None


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _verify_jwt(token: str, jwks_url: str, issuer: str, audience: Optional[str]) -> dict:
    headers = jwt.get_unverified_header(token)
    kid = headers.get("kid")
    key = _find_key(_fetch_jwks(jwks_url), kid)
    if key is None:
        # Keys rotated since the last fetch.
        key = _find_key(_fetch_jwks(jwks_url, force=True), kid)
    if key is None:
        raise JWTError("Unknown kid")
    options = {"verify_aud": audience is not None}
    return jwt.decode(token, key, algorithms=[headers.get("alg", "RS256")], issuer=issuer, audience=audience, options=options)


def _dev_user(request: Request) -> Optional[dict]:
    user_id = (request.headers.get(DEV_USER_HEADER) or "").strip()
    if not user_id:
        return None
    email = (request.headers.get(DEV_EMAIL_HEADER) or "").strip() or f"{user_id}@localhost"
    return {"id": user_id, "email": email, "role": "authenticated", "claims": {}}


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    """Attach ``request.state.user`` from a verified bearer token.

    With ORGBASE_DISABLE_AUTH set, the identity comes from the dev headers
    instead and requests without them stay anonymous.
    """

    def __init__(self, app, supabase_url: str | None, audience: Optional[str] = None) -> None:
        super().__init__(app)
        self._supabase_url = (supabase_url or "").rstrip("/")
        self._audience = audience
        self._jwks_url = f"{self._supabase_url}/auth/v1/.well-known/jwks.json"
        self._issuer = f"{self._supabase_url}/auth/v1"

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request.state.user = None
        if request.method == "OPTIONS" or request.url.path in _PUBLIC_PATHS:
            return await call_next(request)
        if auth_disabled():
            request.state.user = _dev_user(request)
            return await call_next(request)

        token = _get_bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized(request, "AUTH_MISSING_TOKEN", "Missing bearer token")
        if not self._supabase_url:
            logger.error("auth_not_configured path=%s", request.url.path)
            return _unauthorized(request, "AUTH_NOT_CONFIGURED", "Authentication is not configured")

        try:
            claims = _verify_jwt(token, self._jwks_url, self._issuer, self._audience)
        except (JOSEError, httpx.HTTPError) as exc:
            logger.warning(
                "auth_invalid_token path=%s issuer=%s audience=%s error=%s",
                request.url.path,
                self._issuer,
                self._audience,
                exc,
            )
            return _unauthorized(request, "AUTH_INVALID_TOKEN", "Invalid bearer token")

        request.state.user = {
            "id": claims.get("sub"),
            "email": claims.get("email"),
            "role": claims.get("role"),
            "claims": claims,
        }
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)
