"""Supabase bearer-token auth and org context, as FastAPI dependencies.

No business logic here: who is calling, and which org they act for.
"""

from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import httpx
from fastapi import Depends, Header
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.logging_config import get_logger
from app.models import Profile
from app.services.errors import AuthenticationError, ForbiddenError, RelayError

logger = get_logger("auth_service")


@dataclass(frozen=True)
class AuthUser:
    id: UUID
    email: Optional[str] = None


@dataclass(frozen=True)
class OrgContext:
    org_id: UUID
    role: str
    user_id: UUID


def extract_bearer_token(authorization: Optional[str]) -> str:
    value = (authorization or "").strip()
    scheme, _, token = value.partition(" ")
    if scheme.lower() == "bearer":
        return token.strip()
    return value


class SupabaseAuthClient:
    """Verifies access tokens against Supabase Auth (``GET /auth/v1/user``)."""

    def __init__(
        self,
        supabase_url: Optional[str],
        anon_key: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.supabase_url = (supabase_url or "").rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.transport = transport

    async def get_user(self, token: str) -> AuthUser:
        if not self.supabase_url or not self.anon_key:
            logger.error("Supabase auth not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")
            raise AuthenticationError("Authentication failed")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.supabase_url}/auth/v1/user",
                    headers={"Authorization": f"Bearer {token}", "apikey": self.anon_key},
                )
        except httpx.HTTPError as exc:
            logger.error("Supabase auth unreachable", extra={"context": {"error": str(exc)}})
            raise AuthenticationError("Authentication failed") from exc

        if response.status_code != 200:
            raise AuthenticationError("Invalid auth token")

        try:
            data = response.json()
            return AuthUser(id=UUID(str(data["id"])), email=data.get("email"))
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError("Invalid auth token") from exc


def get_auth_client(settings: Settings = Depends(get_settings)) -> SupabaseAuthClient:
    return SupabaseAuthClient(settings.supabase_url, settings.supabase_anon_key)


async def authenticate(
    authorization: Optional[str] = Header(default=None),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
) -> AuthUser:
    token = extract_bearer_token(authorization)
    if not token:
        raise AuthenticationError("Missing auth token")
    return await auth_client.get_user(token)


def load_org_context(user: AuthUser = Depends(authenticate), db: Session = Depends(get_db)) -> OrgContext:
    try:
        profile = db.query(Profile).filter(Profile.id == user.id).first()
    except SQLAlchemyError as exc:
        logger.error("Profile lookup failed", extra={"context": {"user_id": str(user.id), "error": str(exc)}})
        raise RelayError("Failed to load org context") from exc

    if not profile or not profile.org_id:
        raise ForbiddenError("User not linked to any organization")
    return OrgContext(org_id=profile.org_id, role=profile.role, user_id=user.id)


def require_role(*allowed_roles: str) -> Callable[..., OrgContext]:
    """Dependency factory: the caller's org role must be one of ``allowed_roles``."""

    def _guard(org: OrgContext = Depends(load_org_context)) -> OrgContext:
        if org.role not in allowed_roles:
            raise ForbiddenError("Insufficient permissions")
        return org

    return _guard
