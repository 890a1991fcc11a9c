from __future__ import annotations

import enum

from sqlalchemy import Index, CheckConstraint

from app.extensions import db
from app.utils.helpers import iso, utcnow


class IncidentStatus(str, enum.Enum):
    ACTIVE = "active"
    MONITORING = "monitoring"
    RESOLVED = "resolved"


# RESOLVED is terminal; MONITORING may fall back to ACTIVE (reopen)
INCIDENT_TRANSITIONS = {
    IncidentStatus.ACTIVE: frozenset({IncidentStatus.MONITORING, IncidentStatus.RESOLVED}),
    IncidentStatus.MONITORING: frozenset({IncidentStatus.ACTIVE, IncidentStatus.RESOLVED}),
    IncidentStatus.RESOLVED: frozenset(),
}

UPDATE_TYPES = ("status", "action", "resource", "photo", "note")


class Incident(db.Model):
    __tablename__ = "incidents"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    # Plan in force when the incident was raised
    plan_id = db.Column(db.Integer, db.ForeignKey("emergency_plans.id", ondelete="SET NULL"), nullable=True, index=True)

    status = db.Column(
        db.Enum(
            IncidentStatus,
            name="ck_incidents_status_valid",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=IncidentStatus.ACTIVE,
    )
    opened_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    activated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Plain lazy load: row locks (FOR UPDATE) cannot cover the nullable side of an outer join
    plan = db.relationship("EmergencyPlan")

    __table_args__ = (
        Index("ix_incidents_org_status", "org_id", "status"),
        Index("ix_incidents_activated_at", "activated_at"),
    )

    def __repr__(self) -> str:
        return f"<Incident id={self.id} org_id={self.org_id} plan_id={self.plan_id} status={self.status!r}>"

    def to_dict(self) -> dict:
        plan = self.plan
        return dict(
            id=self.id,
            org_id=self.org_id,
            plan_id=self.plan_id,
            plan_version=plan.version if plan is not None else None,
            status=IncidentStatus(self.status).value,
            opened_by=self.opened_by,
            activated_at=iso(self.activated_at),
            resolved_at=iso(self.resolved_at),
        )


class IncidentUpdate(db.Model):
    """Append-only log entry; rows are never updated after insert."""
    __tablename__ = "incident_updates"

    id = db.Column(db.Integer, primary_key=True)
    incident_id = db.Column(db.Integer, db.ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    update_type = db.Column(db.String(20), nullable=False)
    content = db.Column(db.Text, nullable=False)
    photo_url = db.Column(db.String(2048), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_incident_updates_incident_created", "incident_id", "created_at"),
        CheckConstraint(
            "update_type IN ('status','action','resource','photo','note')",
            name="ck_incident_updates_type_valid",
        ),
    )

    def __repr__(self) -> str:
        return f"<IncidentUpdate id={self.id} incident_id={self.incident_id} type={self.update_type!r}>"

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            incident_id=self.incident_id,
            user_id=self.user_id,
            update_type=self.update_type,
            content=self.content,
            photo_url=self.photo_url,
            created_at=iso(self.created_at),
        )
