from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from orderdesk.core.config import get_settings
from orderdesk.core.errors import Unauthorized


@dataclass(frozen=True, slots=True)
class CallerIdentity:
    user_id: str
    roles: frozenset[str]
    name: str | None = None


def issue_token(user_id: str, roles: Iterable[str], name: str | None = None) -> str:
    settings = get_settings()
    claims: dict[str, object] = {"sub": user_id, "roles": sorted(set(roles))}
    if name:
        claims["name"] = name
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> CallerIdentity:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise Unauthorized("Invalid token") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise Unauthorized("Invalid token")

    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    name = payload.get("name")
    return CallerIdentity(
        user_id=subject,
        roles=frozenset(str(role) for role in roles),
        name=name if isinstance(name, str) else None,
    )


async def get_caller_identity(request: Request) -> CallerIdentity:
    auth_header = request.headers.get("authorization", "")
    token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else ""
    if not token:
        raise Unauthorized("Missing authorization")
    return decode_token(token)
