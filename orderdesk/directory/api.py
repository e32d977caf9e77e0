from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_actor
from orderdesk.core.database import get_db
from orderdesk.directory.schemas import ProfileRead, ProfileUpsert
from orderdesk.directory.service import profile_directory
from orderdesk.security import ActorContext

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.get("", response_model=list[ProfileRead])
def list_profiles(
    active_only: bool = Query(default=True),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[ProfileRead]:
    return profile_directory.list_profiles(db, actor, active_only=active_only)


@router.put("/{user_id}", response_model=ProfileRead)
def upsert_profile(
    user_id: str,
    payload: ProfileUpsert,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> ProfileRead:
    return profile_directory.upsert_profile(db, actor, user_id, payload)
