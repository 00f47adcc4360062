from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import HTTPException, Request

from studio_credits.core.settings import settings


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token


def _jwt_issuer() -> str | None:
    if settings.supabase_jwt_issuer:
        return settings.supabase_jwt_issuer
    if settings.supabase_url:
        return f"{settings.supabase_url.rstrip('/')}/auth/v1"
    return None


def _decode_supabase_jwt(token: str) -> dict[str, Any]:
    audience = settings.supabase_jwt_audience or "authenticated"
    issuer = _jwt_issuer()
    options = {"require": ["exp", "sub"], "verify_iss": bool(issuer)}

    try:
        if settings.supabase_jwt_secret:
            payload = jwt.decode(
                token,
                settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience=audience,
                issuer=issuer,
                options=options,
            )
        else:
            if not settings.supabase_url:
                raise HTTPException(status_code=500, detail="SUPABASE_URL is not configured")
            jwks_url = f"{settings.supabase_url.rstrip('/')}/auth/v1/.well-known/jwks.json"
            signing_key = jwt.PyJWKClient(jwks_url).get_signing_key_from_jwt(token).key
            payload = jwt.decode(
                token,
                signing_key,
                algorithms=["ES256", "RS256"],
                audience=audience,
                issuer=issuer,
                options=options,
            )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def get_current_user(request: Request) -> CurrentUser:
    token = _get_bearer_token(request)
    claims = _decode_supabase_jwt(token)
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    email = str(claims.get("email") or "").strip()
    return CurrentUser(id=user_id, email=email)
