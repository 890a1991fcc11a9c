from app.extensions import db
from app.models.plan import JSONDocument
from app.utils.helpers import iso, utcnow

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)  # NULL = system (repair)
    action = db.Column(db.String(64), nullable=False, index=True)  # plan.activate|plan.archive|plan.delete|plan.repair|incident.status|...
    details = db.Column(JSONDocument, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} org_id={self.org_id} action={self.action}>"

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            org_id=self.org_id,
            user_id=self.user_id,
            action=self.action,
            details=self.details or {},
            created_at=iso(self.created_at),
        )
