from sqlalchemy import func
from app.extensions import db

class Org(db.Model):
    __tablename__ = "orgs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=True, unique=True)
    # Owned by the billing collaborator; read-only for the plan/incident engine
    tier = db.Column(db.String(20), nullable=False, server_default="free")
    is_active = db.Column(db.Boolean, nullable=False, server_default=db.true())

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Org id={self.id} name={self.name!r}>"
