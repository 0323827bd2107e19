"""
Audit Log Endpoints.

Query the append-only audit trail. Results are always scoped to the calling
user and returned newest first.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Query

from hero_engine.agent_core.schemas.domain import AuditCategory, AuditLogEntry, AuditLogQuery, AuditSeverity
from hero_engine.server.services.deps import CurrentUser, ServiceDep

router = APIRouter()


@router.get(
    "/",
    response_model=List[AuditLogEntry],
    summary="Query Audit Log",
    description="Filter the caller's audit entries by project, execution, action, category, severity and time.",
)
async def query_audit_log(
    service: ServiceDep,
    user_id: CurrentUser,
    project_id: Optional[str] = None,
    execution_id: Optional[str] = None,
    action: Optional[str] = None,
    category: Optional[AuditCategory] = None,
    severity: Optional[AuditSeverity] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    query = AuditLogQuery(
        project_id=project_id,
        execution_id=execution_id,
        action=action,
        category=category,
        severity=severity,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return await service.query_audit(user_id, query)
