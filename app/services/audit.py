from typing import Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


def record(session: Session, *, org_id: int, action: str, user_id: Optional[int] = None, **details) -> AuditLog:
    """Stage an audit row in the caller's transaction (no flush, no commit)."""
    row = AuditLog(org_id=org_id, user_id=user_id, action=action, details=details)
    session.add(row)
    return row


def for_org(session: Session, org_id: int, *, action: Optional[str] = None, limit: int = 100):
    q = session.query(AuditLog).filter(AuditLog.org_id == org_id)
    if action:
        q = q.filter(AuditLog.action == action)
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
