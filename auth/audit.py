"""
auth/audit.py -- Append-only audit trail and its CSV export.

AuditTrail is a thin writer over UserStore.create_audit_log(). It carries no
control-flow logic: services call record() after a successful action, and a
failed write propagates like any other store failure.

CSV export neutralizes spreadsheet formula injection (CWE-1236). Usernames,
display names, and details are user-controlled, so a name like
"=HYPERLINK(...)" would otherwise execute when an admin opens the export.
Cells that start with a dangerous character get a leading tab, which makes
spreadsheet applications treat the cell as text.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Optional

from auth.models import AuditAction, AuditLog
from auth.store import UserStore

logger = logging.getLogger("adminconsole.audit")

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

CSV_HEADERS = [
    "created_at",
    "action",
    "actor_name",
    "actor_id",
    "target_name",
    "target_id",
    "details",
    "ip_address",
]


class AuditTrail:
    def __init__(self, store: UserStore) -> None:
        self._store = store

    def record(
        self,
        action: AuditAction,
        actor_name: str,
        actor_id: Optional[str] = None,
        target_id: Optional[str] = None,
        target_name: Optional[str] = None,
        details: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> str:
        log_id = self._store.create_audit_log(
            AuditLog(
                actor_name=actor_name,
                action=action,
                actor_id=actor_id,
                target_id=target_id,
                target_name=target_name,
                details=details,
                ip_address=ip_address,
            )
        )
        logger.info("audit %s actor=%s target=%s", action.value, actor_name, target_name or "-")
        return log_id


def _sanitize_csv_cell(value: object) -> str:
    """Render a cell as text, tab-prefixing anything a spreadsheet would evaluate."""
    if value is None:
        return ""
    text = value.value if isinstance(value, AuditAction) else str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "\t" + text
    return text


def to_csv(logs: list[AuditLog]) -> str:
    """Render audit entries as CSV with a header row."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADERS)
    for log in logs:
        writer.writerow(
            [
                _sanitize_csv_cell(log.created_at),
                _sanitize_csv_cell(log.action),
                _sanitize_csv_cell(log.actor_name),
                _sanitize_csv_cell(log.actor_id),
                _sanitize_csv_cell(log.target_name),
                _sanitize_csv_cell(log.target_id),
                _sanitize_csv_cell(log.details),
                _sanitize_csv_cell(log.ip_address),
            ]
        )
    return buf.getvalue()
