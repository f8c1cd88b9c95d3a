import logging

from sqlalchemy.orm import Session
from slotwise.db.models import AuditLog

logger = logging.getLogger(__name__)


#Queue an audit log entry on the caller's transaction
def log_action(
    db: Session,
    actor_type: str,
    actor_id: int | None,
    action: str,
    details: str | None = None,
):
    try:
        db.add(
            AuditLog(
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                details=details,
            )
        )

    except Exception:
        #Never allow audit logging failures to break application logic
        logger.warning("Audit log entry for %s was dropped", action, exc_info=True)
