"""Bearer-token authentication for the dashboard endpoints.

Tokens are RS256 JWTs whose signing keys are fetched from a JWKS endpoint.
The owner claim (``sub`` unless overridden) is the user id every project
lookup is scoped by.
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, NamedTuple

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import AuthError

ALGORITHM = "RS256"
BASE_CLAIMS = ("exp", "iss", "aud")
DEFAULT_OWNER_CLAIM = "sub"
bearer_scheme = HTTPBearer(auto_error=False)


class TokenSettings(NamedTuple):
    jwks_url: str
    issuer: str
    audience: str
    owner_claim: str
    leeway: int

    @property
    def required_claims(self) -> list:
        return [*BASE_CLAIMS, self.owner_claim]


def _required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"{name} must be set before dashboard tokens can be checked.")
    return value


@lru_cache(maxsize=1)
def get_token_settings() -> TokenSettings:
    return TokenSettings(
        jwks_url=_required_env("ANALYTICS_JWT_JWKS_URL"),
        issuer=_required_env("ANALYTICS_JWT_ISSUER"),
        audience=_required_env("ANALYTICS_JWT_AUDIENCE"),
        owner_claim=os.environ.get("ANALYTICS_JWT_OWNER_CLAIM") or DEFAULT_OWNER_CLAIM,
        leeway=int(os.environ.get("ANALYTICS_JWT_LEEWAY", "0")),
    )


@lru_cache(maxsize=1)
def _jwks_client_for(url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(url)


def _get_signing_key(token: str) -> jwt.PyJWK:
    client = _jwks_client_for(get_token_settings().jwks_url)
    return client.get_signing_key_from_jwt(token)


_DECODE_ERRORS = (
    (jwt.ExpiredSignatureError, "Token expired"),
    (jwt.InvalidAudienceError, "Invalid audience"),
    (jwt.InvalidIssuerError, "Invalid issuer"),
    (jwt.MissingRequiredClaimError, "Missing claim"),
)


def decode_dashboard_token(token: str) -> Dict:
    """Verify signature and registered claims, mapping failures to ``AuthError``."""
    settings = get_token_settings()
    try:
        return jwt.decode(
            token,
            _get_signing_key(token).key,
            algorithms=[ALGORITHM],
            audience=settings.audience,
            issuer=settings.issuer,
            leeway=settings.leeway,
            options={"require": settings.required_claims},
        )
    except jwt.PyJWTError as exc:
        for error_type, message in _DECODE_ERRORS:
            if isinstance(exc, error_type):
                raise AuthError(message) from exc
        raise AuthError("Invalid token") from exc


def verify_jwt(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> Dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("Unauthorized")
    return decode_dashboard_token(credentials.credentials)


def get_current_user_id(payload: Dict = Depends(verify_jwt)) -> str:
    owner = payload.get(get_token_settings().owner_claim)
    if not owner or not isinstance(owner, str):
        raise AuthError("Missing claim")
    return owner


def reset_auth_state() -> None:
    """Forget cached settings and JWKS clients. Intended for use in tests."""

    get_token_settings.cache_clear()
    _jwks_client_for.cache_clear()
