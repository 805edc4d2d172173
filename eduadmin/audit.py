"""Activity/audit logging for console actions."""

import csv
import json
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from io import StringIO
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eduadmin.auth import Session
from eduadmin.models import ActivityLog, AuditStats

logger = logging.getLogger(__name__)

ACTION_TYPES = ('LOGIN', 'LOGOUT', 'CREATE', 'UPDATE', 'DELETE', 'VIEW', 'EXPORT', 'IMPORT', 'ERROR')

CSV_COLUMNS = [
    'timestamp',
    'username',
    'user_role',
    'action_type',
    'resource_type',
    'resource_name',
    'description',
    'status',
    'ip_address',
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def diff_changes(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Field-level diff: {field: {'old': ..., 'new': ...}} for every changed key."""
    changes = {}
    for key in sorted(set(old) | set(new)):
        if key in ('id', 'created_at'):
            continue
        before, after = old.get(key), new.get(key)
        if before != after:
            changes[key] = {'old': before, 'new': after}
    return changes


class AuditLog:
    """
    In-memory activity log.

    Recording is best effort: a failure to write an entry is logged and
    never propagated to the request that triggered it.
    """

    def __init__(self, clock=utc_now):
        self._entries: List[ActivityLog] = []
        self._lock = threading.Lock()
        self._clock = clock

    def _now(self) -> datetime:
        return as_utc(self._clock())

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        session: Optional[Session],
        action_type: str,
        description: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        resource_name: Optional[str] = None,
        status: str = 'success',
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ActivityLog]:
        try:
            if action_type not in ACTION_TYPES:
                raise ValueError(f"Unknown action type '{action_type}'")
            entry = ActivityLog(
                id=uuid.uuid4().hex,
                user_id=session.user_id if session else '',
                username=session.username if session else '',
                user_role=session.role.value if session else '',
                action_type=action_type,
                resource_type=resource_type,
                resource_id=resource_id,
                resource_name=resource_name,
                description=description,
                ip_address=ip_address,
                user_agent=user_agent,
                status=status,
                error_message=error_message,
                timestamp=self._now(),
                metadata=metadata or {},
            )
        except Exception:
            logger.exception("Failed to record %s activity", action_type)
            return None
        with self._lock:
            self._entries.append(entry)
        return entry

    def log_create(self, session, resource_type: str, resource_id: str, resource_name: str,
                   data: Dict[str, Any], **request_info) -> Optional[ActivityLog]:
        return self.record(
            session, 'CREATE', f'Created {resource_type}: {resource_name}',
            resource_type=resource_type, resource_id=resource_id, resource_name=resource_name,
            metadata={'data': data}, **request_info,
        )

    def log_update(self, session, resource_type: str, resource_id: str, resource_name: str,
                   old: Dict[str, Any], new: Dict[str, Any], **request_info) -> Optional[ActivityLog]:
        changes = diff_changes(old, new)
        return self.record(
            session, 'UPDATE', f"Updated {resource_type}: {resource_name} ({', '.join(changes)})",
            resource_type=resource_type, resource_id=resource_id, resource_name=resource_name,
            metadata={'changes': changes}, **request_info,
        )

    def log_delete(self, session, resource_type: str, resource_id: str, resource_name: str,
                   data: Dict[str, Any], **request_info) -> Optional[ActivityLog]:
        return self.record(
            session, 'DELETE', f'Deleted {resource_type}: {resource_name}',
            resource_type=resource_type, resource_id=resource_id, resource_name=resource_name,
            metadata={'deleted': data}, **request_info,
        )

    def log_login(self, session: Session, **request_info) -> Optional[ActivityLog]:
        return self.record(session, 'LOGIN', f'{session.username} logged in', resource_type='user',
                           resource_id=session.user_id, resource_name=session.username, **request_info)

    def log_logout(self, session: Session, **request_info) -> Optional[ActivityLog]:
        return self.record(session, 'LOGOUT', f'{session.username} logged out', resource_type='user',
                           resource_id=session.user_id, resource_name=session.username, **request_info)

    def log_export(self, session, what: str, count: int, fmt: str, **request_info) -> Optional[ActivityLog]:
        return self.record(session, 'EXPORT', f'Exported {count} {what} as {fmt}',
                           metadata={'format': fmt, 'count': count}, **request_info)

    def query(
        self,
        user_id: Optional[str] = None,
        action_type: Optional[str] = None,
        resource_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ActivityLog], int]:
        """Filter entries newest first; returns (page, total matching)."""
        with self._lock:
            entries = list(reversed(self._entries))

        if user_id:
            entries = [e for e in entries if e.user_id == user_id]
        if action_type:
            entries = [e for e in entries if e.action_type == action_type]
        if resource_type:
            entries = [e for e in entries if e.resource_type == resource_type]
        if start:
            start = as_utc(start)
            entries = [e for e in entries if e.timestamp >= start]
        if end:
            end = as_utc(end)
            entries = [e for e in entries if e.timestamp <= end]
        if search and search.strip():
            needle = search.strip().lower()
            entries = [
                e for e in entries
                if needle in e.description.lower()
                or needle in e.username.lower()
                or needle in (e.resource_name or '').lower()
            ]

        offset = max(offset, 0)
        limit = max(limit, 1)
        return entries[offset:offset + limit], len(entries)

    def stats(self) -> AuditStats:
        today = self._now().replace(hour=0, minute=0, second=0, microsecond=0)
        with self._lock:
            entries = list(self._entries)
        logins_today = [
            e for e in entries
            if e.action_type == 'LOGIN' and e.status == 'success' and e.timestamp >= today
        ]
        return AuditStats(
            total_activities=len(entries),
            total_logins=len(logins_today),
            active_users=len({e.user_id for e in logins_today}),
            failed_actions=sum(1 for e in entries if e.status == 'failed'),
        )

    def user_summary(self, user_id: str) -> Dict[str, int]:
        summary: Dict[str, int] = {}
        with self._lock:
            entries = [e for e in self._entries if e.user_id == user_id]
        for e in entries:
            key = f"{e.action_type}_{e.resource_type or 'general'}"
            summary[key] = summary.get(key, 0) + 1
        return summary

    def delete_older_than(self, days: int = 90) -> int:
        cutoff = self._now() - timedelta(days=days)
        with self._lock:
            kept = [e for e in self._entries if e.timestamp >= cutoff]
            removed = len(self._entries) - len(kept)
            self._entries = kept
        if removed:
            logger.info("Deleted %d activity logs older than %d days", removed, days)
        return removed


def to_csv(logs: Sequence[ActivityLog]) -> str:
    output = StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL)
    writer.writerow(CSV_COLUMNS)
    for log in logs:
        row = log.model_dump()
        row['timestamp'] = log.timestamp.isoformat()
        writer.writerow(['' if row.get(c) is None else row.get(c) for c in CSV_COLUMNS])
    return output.getvalue()


def to_json(logs: Sequence[ActivityLog]) -> str:
    return json.dumps([log.model_dump(mode='json') for log in logs], ensure_ascii=False, indent=2)
