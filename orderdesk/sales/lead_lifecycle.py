from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from orderdesk.core.errors import Conflict, Forbidden, ValidationFailed
from orderdesk.events import envelope
from orderdesk.sales.conversion import ConversionPipeline, ConversionResult, conversion_pipeline
from orderdesk.sales.history import record_lead_history
from orderdesk.sales.models import Lead
from orderdesk.sales.states import LEAD_CLAIM_STATUSES, LEAD_CONVERTIBLE_STATUSES, LeadStatus
from orderdesk.security import ActorContext, can_act_on_lead, require

logger = logging.getLogger("orderdesk.sales.leads")

_ASSIGNMENT_FIELDS = ["assigned_agent_id", "assigned_agent_name", "assigned_at", "assigned_by", "row_version"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class LeadTransitionOutcome:
    lead: Lead
    from_status: str
    to_status: str
    changed: bool
    conversion: ConversionResult | None = None

    def events(self) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        if self.changed:
            items.append(
                envelope(
                    "sales.lead.status_changed",
                    lead_id=str(self.lead.id),
                    from_status=self.from_status,
                    to_status=self.to_status,
                )
            )
        if self.conversion is not None:
            items.extend(self.conversion.events)
        return items


@dataclass(slots=True)
class LeadLifecycle:
    conversion: ConversionPipeline = field(default_factory=lambda: conversion_pipeline)

    def claim(self, session: Session, actor: ActorContext, lead: Lead) -> None:
        """Bind a non-privileged actor to an unclaimed lead.

        The binding is a conditional UPDATE on ``assigned_agent_id IS NULL`` so
        two agents racing for the same lead cannot both win.
        """
        if actor.is_privileged or lead.assigned_agent_id == actor.user_id:
            return
        session.flush()
        now = utcnow()
        result = session.execute(
            update(Lead)
            .where(Lead.id == lead.id, Lead.assigned_agent_id.is_(None))
            .values(
                assigned_agent_id=actor.user_id,
                assigned_agent_name=actor.label,
                assigned_at=now,
                assigned_by=actor.label,
                row_version=Lead.row_version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        session.expire(lead, _ASSIGNMENT_FIELDS)
        if result.rowcount == 0:
            raise Forbidden("Lead is already assigned to another agent")
        logger.info("lead.claimed", extra={"lead_id": str(lead.id), "actor_user_id": actor.user_id})

    def apply(
        self,
        session: Session,
        actor: ActorContext,
        lead: Lead,
        target: str,
        *,
        detail: str | None = None,
    ) -> LeadTransitionOutcome:
        """Change a lead's status inside the caller's transaction, then run conversion."""
        try:
            target_status = LeadStatus(target)
        except ValueError as exc:
            raise ValidationFailed(f"Unknown lead status: {target}") from exc

        require(actor, "lead.update")
        if not can_act_on_lead(actor, lead.assigned_agent_id):
            raise Forbidden("Lead is already assigned to another agent")
        if target_status in LEAD_CLAIM_STATUSES:
            self.claim(session, actor, lead)

        current = lead.status
        changed = current != target_status
        if changed:
            session.flush()
            seen_version = lead.row_version
            result = session.execute(
                update(Lead)
                .where(Lead.id == lead.id, Lead.row_version == seen_version)
                .values(status=str(target_status), row_version=Lead.row_version + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise Conflict("Lead was modified by another request")
            session.expire(lead, ["status", "row_version", "updated_at"])
            record_lead_history(
                session,
                lead.id,
                from_status=current,
                to_status=target_status,
                actor=actor,
                detail=detail,
            )
            logger.info(
                "lead.status_changed",
                extra={
                    "lead_id": str(lead.id),
                    "from_status": current,
                    "to_status": str(target_status),
                    "actor_user_id": actor.user_id,
                },
            )

        conversion = None
        if target_status in LEAD_CONVERTIBLE_STATUSES:
            conversion = self.conversion.ensure_order(session, actor, lead)
        session.flush()
        return LeadTransitionOutcome(
            lead=lead,
            from_status=current,
            to_status=str(target_status),
            changed=changed,
            conversion=conversion,
        )


lead_lifecycle = LeadLifecycle()
