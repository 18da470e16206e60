from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import httpx
import jwt
from fastapi import Header
from jwt import PyJWKClient

from .errors import Unauthenticated

FAMILY_PREFIX = "family_"


@dataclass(frozen=True)
class Principal:
    uid: str
    email: Optional[str] = None


def _valid_uid(uid: Any) -> bool:
    return isinstance(uid, str) and bool(uid) and uid == uid.strip() and not any(ch.isspace() for ch in uid)


def resolve_family_id(principal: Optional[Principal]) -> str:
    """Derive the tenant id for ``principal``; pure and deterministic."""
    if principal is None or not _valid_uid(principal.uid):
        raise Unauthenticated("No resolvable principal.")
    return f"{FAMILY_PREFIX}{principal.uid}"


def principal_from_claims(claims: Optional[Dict[str, Any]]) -> Principal:
    if not isinstance(claims, dict):
        raise Unauthenticated("Token carried no claims.")
    uid = claims.get("sub") or claims.get("uid")
    if not _valid_uid(uid):
        raise Unauthenticated("Token carried no usable subject.")
    email = claims.get("email")
    return Principal(uid=uid, email=email if isinstance(email, str) else None)


@lru_cache
def _jwks_client(url: str) -> PyJWKClient:
    return PyJWKClient(url)


def _auth_base_url() -> Optional[str]:
    url = os.getenv("AUTH_BASE_URL")
    return url.rstrip("/") if url else None


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthenticated("Missing authorization token.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthenticated("Invalid authorization token.")
    return parts[1]


async def _verify_access_token(token: str) -> Dict[str, Any]:
    audience = os.getenv("AUTH_JWT_AUD", "authenticated")
    options = {"verify_aud": bool(audience)}

    jwks_url = os.getenv("AUTH_JWKS_URL")
    if jwks_url:
        try:
            signing_key = _jwks_client(jwks_url).get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=audience if audience else None,
                options=options,
            )
        except jwt.PyJWTError:
            pass

    secret = os.getenv("AUTH_JWT_SECRET")
    if secret:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=audience if audience else None,
                options=options,
            )
        except jwt.PyJWTError as exc:
            raise Unauthenticated("Invalid or expired token.") from exc

    base_url = _auth_base_url()
    if not base_url:
        raise Unauthenticated("No token verifier configured.")
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(
                f"{base_url}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": os.getenv("AUTH_ANON_KEY", ""),
                },
            )
    except httpx.HTTPError as exc:
        raise Unauthenticated("Token verification unavailable.") from exc
    if resp.status_code >= 400:
        raise Unauthenticated("Invalid or expired token.")
    data = resp.json() if resp.content else {}
    return {"sub": data.get("id"), "email": data.get("email")}


async def get_principal(authorization: Optional[str] = Header(None)) -> Principal:
    token = _parse_bearer_token(authorization)
    claims = await _verify_access_token(token)
    return principal_from_claims(claims)
