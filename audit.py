"""Audit recorder. Writes are best-effort and never raise to the caller."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo.database import Database

logger = logging.getLogger(__name__)

AUDIT_COLLECTION = "auditlog"


def record_audit_event(
    db: Database,
    action: Optional[str],
    *,
    user_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> None:
    if not action:
        logger.error(f"Audit event dropped, no action given (target {target_type}:{target_id})")
        return
    entry = {
        "timestamp": timestamp or datetime.now(timezone.utc),
        "userId": user_id,
        "action": action,
        "targetType": target_type,
        "targetId": target_id,
        "details": details or {},
    }
    try:
        db[AUDIT_COLLECTION].insert_one(entry)
    except Exception as e:
        logger.error(f"Failed to save audit log for action {action}: {e}")
        return
    logger.info(f"[Audit] action={action} user={user_id or 'system'} target={target_type or 'n/a'}:{target_id or 'n/a'}")
