"""
api/routes/v1/dashboard.py -- Account counts for the admin dashboard.

This is a read-only aggregate route -- no mutations here.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request

from api.models import DashboardStats
from auth.dependencies import require_admin
from auth.models import ROLE_ADMIN, ROLE_USER
from auth.store import UserStore

_RECENT_DAYS = 7

# Auth policy:
# - GET /api/v1/dashboard/stats: requires admin. Router-level dependency enforces it.
router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/dashboard/stats", response_model=DashboardStats)
def get_dashboard_stats(request: Request) -> DashboardStats:
    """Return total, admin, regular, and last-7-days user counts."""
    store: UserStore = request.app.state.user_store
    since = datetime.now(timezone.utc) - timedelta(days=_RECENT_DAYS)
    return DashboardStats(
        total_users=store.count_users(),
        admin_users=store.count_users(role=ROLE_ADMIN),
        regular_users=store.count_users(role=ROLE_USER),
        recent_users=store.count_users(since=since),
    )
