from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from orderdesk.core.auth import CallerIdentity, get_caller_identity
from orderdesk.core.database import get_db
from orderdesk.directory.service import profile_directory
from orderdesk.security import ActorContext, resolve_capability


def get_actor(
    request: Request,
    identity: CallerIdentity = Depends(get_caller_identity),
    db: Session = Depends(get_db),
) -> ActorContext:
    return ActorContext(
        user_id=identity.user_id,
        roles=identity.roles,
        capability=resolve_capability(identity.roles),
        display_name=profile_directory.display_name(db, identity.user_id, fallback=identity.name),
        correlation_id=getattr(request.state, "correlation_id", None),
    )
