import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cafe.misc import Utilities

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("cafe.audit")


@dataclass(frozen=True)
class AuditEvent:
    action: str
    entity_name: str
    entity_id: str
    actor_id: Optional[str]
    timestamp: datetime
    details: Optional[str] = None


class AuditLogger:
    """
    Best-effort sink for domain events (session started, deposit made, ...).

    Services queue events with `UnitOfWork.on_commit` so only committed
    changes are recorded. Writing an event never raises: a failing sink is
    logged and the event is dropped.
    """

    def log_activity(
        self, action, entity_name, entity_id, actor_id, timestamp=None, details=None
    ):
        event = AuditEvent(
            action=action,
            entity_name=entity_name,
            entity_id=entity_id,
            actor_id=actor_id,
            timestamp=timestamp or Utilities.utcnow(),
            details=details,
        )
        try:
            self.write(event)
        except Exception:
            logger.exception(
                "Audit sink failed for %s on %s %s", action, entity_name, entity_id
            )
        return event

    def write(self, event: AuditEvent):
        audit_logger.info(
            "AUDIT: action=%s entity=%s entity_id=%s actor=%s timestamp=%s details=%s",
            event.action,
            event.entity_name,
            event.entity_id,
            event.actor_id,
            event.timestamp.isoformat(),
            event.details,
        )
