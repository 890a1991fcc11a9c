import click
from flask.cli import with_appcontext
from sqlalchemy import func
from app.extensions import db
from app.models.user import User
from app.models.org import Org
from app.models.org_membership import OrgMembership, ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER, ROLE_CHOICES
from app.services import plans as plan_service

def _get_or_create_org(name: str) -> Org:
    org = db.session.query(Org).filter(Org.name == name).one_or_none()
    if org:
        return org
    org = Org(name=name, is_active=True)
    db.session.add(org)
    db.session.flush()
    return org

def _user_by_email(email: str):
    return db.session.query(User).filter(func.lower(User.email) == email.strip().lower()).one_or_none()

@click.group()
def bootstrap():
    """Bootstrap helpers."""

@bootstrap.command("admin")
@click.option("--org-name", required=True)
@click.option("--email", required=True)
@click.option("--password", required=True)
@with_appcontext
def bootstrap_admin(org_name, email, password):
    # fail fast if user exists
    if _user_by_email(email):
        raise click.ClickException("User already exists")

    org = _get_or_create_org(org_name)

    user = User(email=email.strip(), is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    db.session.add(OrgMembership(org_id=org.id, user_id=user.id, role=ROLE_ADMIN))
    db.session.commit()

    click.echo(f"Bootstrap complete: org_id={org.id} admin_user_id={user.id} email={user.email}")

@click.group()
def users():
    """User management."""

@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--org-id", type=int, required=True, help="Existing org id")
@click.option("--role", type=click.Choice(ROLE_CHOICES), default=ROLE_VIEWER)
@with_appcontext
def users_create(email, password, org_id, role):
    if _user_by_email(email):
        raise click.ClickException("User already exists")

    org = db.session.get(Org, org_id)
    if not org:
        raise click.ClickException(f"Org id {org_id} not found")

    user = User(email=email.strip(), is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    db.session.add(OrgMembership(org_id=org.id, user_id=user.id, role=role))
    db.session.commit()

    click.echo(f"User created id={user.id} email={user.email} org_id={org.id} role={role}")

@click.group()
def members():
    """Org membership role ops."""

@members.command("promote")
@click.option("--org-id", type=int, required=True)
@click.option("--email", required=True)
@click.option("--role", type=click.Choice([ROLE_EDITOR, ROLE_ADMIN]), required=True)
@with_appcontext
def members_promote(org_id, email, role):
    user = _user_by_email(email)
    if not user:
        raise click.ClickException("User not found")
    if not db.session.get(Org, org_id):
        raise click.ClickException(f"Org id {org_id} not found")
    m = db.session.query(OrgMembership).filter_by(org_id=org_id, user_id=user.id).one_or_none()
    if not m:
        m = OrgMembership(org_id=org_id, user_id=user.id, role=role)
        db.session.add(m)
    else:
        m.role = role
    db.session.commit()
    click.echo(f"Promoted {email} in org {org_id} to {role}")

@members.command("demote")
@click.option("--org-id", type=int, required=True)
@click.option("--email", required=True)
@click.option("--role", type=click.Choice([ROLE_EDITOR, ROLE_VIEWER]), default=ROLE_VIEWER)
@with_appcontext
def members_demote(org_id, email, role):
    user = _user_by_email(email)
    if not user:
        raise click.ClickException("User not found")

    m = db.session.query(OrgMembership).filter_by(org_id=org_id, user_id=user.id).one_or_none()
    if not m:
        raise click.ClickException("Membership not found")

    # Safety rail: cannot demote last admin
    admins = db.session.query(OrgMembership).filter_by(org_id=org_id, role=ROLE_ADMIN).count()
    if m.role == ROLE_ADMIN and admins <= 1:
        raise click.ClickException("Refused: cannot demote the last admin of this org")

    m.role = role
    db.session.commit()
    click.echo(f"Demoted {email} in org {org_id} to {role}")

@click.group()
def plans():
    """Emergency plan maintenance."""

@plans.command("repair")
@click.option("--org-id", type=int, default=None, help="Limit to one org (default: every org with duplicates)")
@with_appcontext
def plans_repair(org_id):
    if org_id is not None:
        results = [plan_service.repair_active_plans(db.session, org_id)]
    else:
        results = plan_service.repair_all(db.session)

    repaired = [r for r in results if r.repaired]
    for r in repaired:
        archived = ",".join(str(i) for i in r.archived_ids)
        click.echo(f"org_id={r.org_id} kept={r.winner_id} archived={archived}")
    click.echo(f"Repair complete: {len(repaired)} org(s) repaired")

def register_cli(app):
    app.cli.add_command(bootstrap)
    app.cli.add_command(users)
    app.cli.add_command(members)
    app.cli.add_command(plans)
