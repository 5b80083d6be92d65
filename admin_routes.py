import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database

from auth import require_site_admin
from config import AUDIT_LOGS_PER_PAGE
from database import get_db, serialize

router = APIRouter()


@router.get("/admin/audit-logs")
def list_audit_logs(
    page: int = Query(1, ge=1),
    action: Optional[str] = None,
    identity=Depends(require_site_admin),
    db: Database = Depends(get_db),
):
    query = {"action": action} if action else {}
    total = db["auditlog"].count_documents(query)
    docs = (
        db["auditlog"].find(query)
        .sort("timestamp", -1)
        .skip((page - 1) * AUDIT_LOGS_PER_PAGE)
        .limit(AUDIT_LOGS_PER_PAGE)
    )
    return {
        "logs": [serialize(d) for d in docs],
        "pagination": {
            "currentPage": page,
            "totalPages": math.ceil(total / AUDIT_LOGS_PER_PAGE),
            "totalLogs": total,
            "logsPerPage": AUDIT_LOGS_PER_PAGE,
        },
    }
