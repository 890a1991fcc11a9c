from __future__ import annotations

import enum

from sqlalchemy import Index, func
from sqlalchemy.dialects.postgresql import JSONB

from app.extensions import db
from app.utils.helpers import iso, utcnow


class PlanStatus(str, enum.Enum):
    DRAFT = "draft"
    REVIEW = "review"
    ACTIVE = "active"
    ARCHIVED = "archived"


# Legal status moves. Activation (draft -> active) is special-cased by the
# lifecycle service because it must archive the org's other active plans.
PLAN_TRANSITIONS = {
    PlanStatus.DRAFT: frozenset({PlanStatus.REVIEW, PlanStatus.ACTIVE, PlanStatus.ARCHIVED}),
    PlanStatus.REVIEW: frozenset({PlanStatus.DRAFT, PlanStatus.ARCHIVED}),
    PlanStatus.ACTIVE: frozenset({PlanStatus.ARCHIVED}),
    PlanStatus.ARCHIVED: frozenset(),
}

# Opaque structured document; JSONB where available
JSONDocument = db.JSON().with_variant(JSONB(), "postgresql")


class EmergencyPlan(db.Model):
    __tablename__ = "emergency_plans"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)

    version = db.Column(db.String(50), nullable=False)
    status = db.Column(
        db.Enum(
            PlanStatus,
            name="ck_emergency_plans_status_valid",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=PlanStatus.DRAFT,
    )
    content = db.Column(JSONDocument, nullable=False, default=dict)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Python-side defaults: microsecond precision on every backend (repair orders by these)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    # Stamped on entry to ACTIVE; kept after archival as history
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_emergency_plans_org_status", "org_id", "status"),
        Index("ix_emergency_plans_created_at", "created_at"),
    )

    @property
    def is_editable(self) -> bool:
        return self.status == PlanStatus.DRAFT

    def __repr__(self) -> str:
        return f"<EmergencyPlan id={self.id} org_id={self.org_id} version={self.version!r} status={self.status!r}>"

    def to_dict(self, *, include_content: bool = True) -> dict:
        data = dict(
            id=self.id,
            org_id=self.org_id,
            version=self.version,
            status=PlanStatus(self.status).value,
            created_by=self.created_by,
            created_at=iso(self.created_at),
            updated_at=iso(self.updated_at),
            activated_at=iso(self.activated_at),
        )
        if include_content:
            data["content"] = self.content or {}
        return data
