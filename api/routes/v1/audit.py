"""
api/routes/v1/audit.py -- Read-only access to the audit trail (admin only).

Routes:
  GET /api/v1/audit-logs         -- paginated JSON, newest first
  GET /api/v1/audit-logs/export  -- full trail as a CSV download

There are no write routes: entries are only ever appended by the services.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from api.models import AuditLogPage, AuditLogResponse
from auth.audit import to_csv
from auth.dependencies import require_admin
from auth.store import UserStore

# Auth policy:
# - every route here requires admin. Router-level dependency enforces it.
router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/audit-logs", response_model=AuditLogPage)
def list_audit_logs(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> AuditLogPage:
    store: UserStore = request.app.state.user_store
    logs = store.list_audit_logs(limit=limit, offset=offset)
    return AuditLogPage(
        logs=[AuditLogResponse.from_log(log) for log in logs],
        total=store.count_audit_logs(),
        limit=limit,
        offset=offset,
    )


@router.get("/audit-logs/export")
def export_audit_logs(request: Request) -> Response:
    """Download the whole audit trail as CSV (formula-injection safe)."""
    store: UserStore = request.app.state.user_store
    body = to_csv(store.list_audit_logs(limit=None))
    filename = f"audit-logs-{datetime.now(timezone.utc):%Y%m%d}.csv"
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
