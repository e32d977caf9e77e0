from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from sqlalchemy.orm import Session

from orderdesk.core.database import atomic
from orderdesk.core.errors import NotFound
from orderdesk.directory.service import profile_directory
from orderdesk.sales.models import Lead, Order
from orderdesk.sales.schemas import BulkReport
from orderdesk.security import ActorContext, require

logger = logging.getLogger("orderdesk.sales.assignment")

EntityKind = Literal["order", "lead"]

_MODELS: dict[EntityKind, type[Order] | type[Lead]] = {"order": Order, "lead": Lead}


@dataclass(slots=True)
class AssignmentManager:
    """Stamps and clears agent ownership on orders and leads."""

    def _stamp(self, record: Order | Lead, agent_id: str, agent_name: str, actor: ActorContext) -> None:
        record.assigned_agent_id = agent_id
        record.assigned_agent_name = agent_name
        record.assigned_at = datetime.now(timezone.utc)
        record.assigned_by = actor.label
        record.row_version += 1

    def _clear(self, record: Order | Lead) -> None:
        record.assigned_agent_id = None
        record.assigned_agent_name = None
        record.assigned_at = None
        record.assigned_by = None
        record.row_version += 1

    def assign(
        self,
        session: Session,
        actor: ActorContext,
        kind: EntityKind,
        entity_id: uuid.UUID,
        agent_id: str,
    ) -> Order | Lead:
        require(actor, f"{kind}.assign")
        with atomic(session):
            profile = profile_directory.require_agent(session, agent_id)
            record = session.get(_MODELS[kind], entity_id)
            if record is None:
                raise NotFound(f"{kind.capitalize()} not found")
            self._stamp(record, agent_id, profile.full_name, actor)
        logger.info(
            "assignment.assigned",
            extra={f"{kind}_id": str(entity_id), "actor_user_id": actor.user_id, "outcome": agent_id},
        )
        return record

    def bulk_assign(
        self,
        session: Session,
        actor: ActorContext,
        kind: EntityKind,
        entity_ids: Iterable[uuid.UUID],
        agent_id: str,
    ) -> BulkReport:
        require(actor, f"{kind}.bulk_assign")
        report = BulkReport()
        with atomic(session):
            profile = profile_directory.require_agent(session, agent_id)
            for entity_id in dict.fromkeys(entity_ids):
                record = session.get(_MODELS[kind], entity_id)
                if record is None:
                    report.add(entity_id, "skipped", f"{kind.capitalize()} not found")
                elif record.assigned_agent_id == agent_id:
                    report.add(entity_id, "skipped", "Already assigned to this agent")
                else:
                    self._stamp(record, agent_id, profile.full_name, actor)
                    report.add(entity_id, "updated")
        logger.info(
            "assignment.bulk_assigned",
            extra={"actor_user_id": actor.user_id, "outcome": f"updated={report.updated} skipped={report.skipped}"},
        )
        return report

    def bulk_unassign(
        self,
        session: Session,
        actor: ActorContext,
        kind: EntityKind,
        entity_ids: Iterable[uuid.UUID],
    ) -> BulkReport:
        require(actor, f"{kind}.bulk_unassign")
        report = BulkReport()
        with atomic(session):
            for entity_id in dict.fromkeys(entity_ids):
                record = session.get(_MODELS[kind], entity_id)
                if record is None:
                    report.add(entity_id, "skipped", f"{kind.capitalize()} not found")
                elif record.assigned_agent_id is None:
                    report.add(entity_id, "skipped", "Already unassigned")
                else:
                    self._clear(record)
                    report.add(entity_id, "updated")
        logger.info(
            "assignment.bulk_unassigned",
            extra={"actor_user_id": actor.user_id, "outcome": f"updated={report.updated} skipped={report.skipped}"},
        )
        return report


assignment_manager = AssignmentManager()
