from sqlalchemy import func, CheckConstraint, UniqueConstraint
from app.extensions import db

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain)
ROLE_VIEWER = "viewer"
ROLE_EDITOR = "editor"
ROLE_ADMIN = "admin"
ROLE_CHOICES = (ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER)

class OrgMembership(db.Model):
    __tablename__ = "org_memberships"

    id = db.Column(db.Integer, primary_key=True)

    org_id = db.Column(
        db.Integer,
        db.ForeignKey("orgs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # default is viewer; editor/admin must be explicit
    role = db.Column(db.String(20), nullable=False, server_default=ROLE_VIEWER)
    invited_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_org_memberships_org_user"),
        CheckConstraint(
            "role IN ('admin','editor','viewer')",
            name="ck_org_memberships_role_valid",
        ),
    )

    def __repr__(self) -> str:
        return f"<OrgMembership org_id={self.org_id} user_id={self.user_id} role={self.role!r}>"
