"""Audit service — append-only audit trail for access-control mutations."""

import json
from typing import Optional, Any
from sqlalchemy.orm import Session

from agencyos.models.audit_log import AuditLog


class AuditService:
    """Records immutable audit log entries for grant, role and memory changes."""

    @staticmethod
    def log(
        db: Session,
        agency_id: Optional[str],
        actor_id: Optional[str],
        actor_email: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        old_value: Optional[Any] = None,
        new_value: Optional[Any] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """Write a single audit log record.

        Args:
            action: e.g. "client_access.granted", "user.role_changed", "memory.cleared"
            resource_type: client, user, role, memory

        This method commits immediately to ensure audit is never lost.
        """
        entry = AuditLog(
            agency_id=agency_id,
            actor_id=actor_id,
            actor_email=actor_email,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            old_value_json=json.dumps(old_value, default=str) if old_value else None,
            new_value_json=json.dumps(new_value, default=str) if new_value else None,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(entry)
        db.commit()
        return entry

    @staticmethod
    def query_logs(
        db: Session,
        agency_id: str,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ):
        """Query one agency's audit logs with filters and pagination."""
        query = db.query(AuditLog).filter(AuditLog.agency_id == agency_id)

        if actor_id:
            query = query.filter(AuditLog.actor_id == actor_id)
        if action:
            query = query.filter(AuditLog.action.ilike(f"%{action}%"))
        if resource_type:
            query = query.filter(AuditLog.resource_type == resource_type)

        total = query.count()
        logs = (
            query.order_by(AuditLog.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )

        return {
            "logs": logs,
            "total": total,
            "page": page,
            "page_size": page_size,
        }
