from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderdesk.core.database import atomic
from orderdesk.core.errors import NotFound
from orderdesk.directory.models import Profile
from orderdesk.directory.schemas import ProfileRead, ProfileUpsert
from orderdesk.security import ActorContext, require


@dataclass(slots=True)
class ProfileDirectory:
    """User id to display-name lookups. Labels only, never authorization."""

    def display_name(self, session: Session, user_id: str, fallback: str | None = None) -> str:
        full_name = session.scalar(select(Profile.full_name).where(Profile.user_id == user_id))
        return full_name or fallback or user_id

    def require_agent(self, session: Session, user_id: str) -> Profile:
        profile = session.get(Profile, user_id)
        if profile is None:
            raise NotFound("Agent not found")
        return profile

    def list_profiles(self, session: Session, actor: ActorContext, *, active_only: bool = True) -> list[ProfileRead]:
        require(actor, "profile.read")
        stmt = select(Profile)
        if active_only:
            stmt = stmt.where(Profile.is_active.is_(True))
        rows = session.scalars(stmt.order_by(Profile.full_name.asc())).all()
        return [ProfileRead.model_validate(row) for row in rows]

    def upsert_profile(self, session: Session, actor: ActorContext, user_id: str, dto: ProfileUpsert) -> ProfileRead:
        require(actor, "profile.write")
        with atomic(session):
            profile = session.get(Profile, user_id)
            if profile is None:
                profile = Profile(user_id=user_id)
                session.add(profile)
            profile.full_name = dto.full_name
            profile.email = dto.email
            profile.is_active = dto.is_active
        session.refresh(profile)
        return ProfileRead.model_validate(profile)


profile_directory = ProfileDirectory()
