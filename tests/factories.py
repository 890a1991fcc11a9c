"""Row builders shared by the service and API tests (call inside an app context)."""
from datetime import timedelta

from app.extensions import db
from app.models import Org, User, OrgMembership, EmergencyPlan, PlanStatus, ROLE_VIEWER
from app.utils.helpers import utcnow


def make_org(name="Riverside Clinic"):
    org = Org(name=name)
    db.session.add(org)
    db.session.commit()
    return org

def make_user(email, org=None, role=ROLE_VIEWER, password="pw-123456"):
    u = User(email=email)
    u.set_password(password)
    db.session.add(u)
    db.session.commit()
    if org is not None:
        db.session.add(OrgMembership(org_id=org.id, user_id=u.id, role=role))
        db.session.commit()
    return u

def seed_plan(org, version="1.0", status=PlanStatus.DRAFT, activated_at=None, created_at=None, content=None):
    """Insert a plan row directly, bypassing the lifecycle (e.g. to seed corrupt state)."""
    p = EmergencyPlan(
        org_id=org.id,
        version=version,
        status=status,
        content=content if content is not None else {"steps": ["evacuate"]},
        activated_at=activated_at,
    )
    if created_at is not None:
        p.created_at = created_at
    db.session.add(p)
    db.session.commit()
    return p

def minutes_ago(n):
    return utcnow() - timedelta(minutes=n)

def login(client, user_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
