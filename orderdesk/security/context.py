from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Capability(StrEnum):
    PRIVILEGED = "privileged"
    SCOPED = "scoped"


@dataclass(slots=True)
class ActorContext:
    """Resolved caller passed explicitly into every core operation."""

    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    capability: Capability = Capability.SCOPED
    display_name: str | None = None
    correlation_id: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.capability is Capability.PRIVILEGED

    @property
    def label(self) -> str:
        return self.display_name or self.user_id
