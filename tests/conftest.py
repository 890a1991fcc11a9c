import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

from types import SimpleNamespace

import pytest
from app import create_app
from app.extensions import db
from app.models import ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER
from factories import make_org, make_user

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        RATELIMIT_ENABLED=False,
        APP_ENV="test",
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture()
def session(app):
    """Service-level tests: hold an app context and hand out its session."""
    with app.app_context():
        yield db.session

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

def _seed_tenant():
    org = make_org()
    other = make_org("Hilltop School")
    return dict(
        org=org,
        other=other,
        admin=make_user("admin@riverside.test", org, ROLE_ADMIN),
        editor=make_user("editor@riverside.test", org, ROLE_EDITOR),
        viewer=make_user("viewer@riverside.test", org, ROLE_VIEWER),
        outsider=make_user("admin@hilltop.test", other, ROLE_ADMIN),
    )

@pytest.fixture()
def tenant(session):
    """One org with an admin, an editor and a viewer, plus an admin of a second org."""
    return SimpleNamespace(**_seed_tenant())

@pytest.fixture()
def tenant_ids(app):
    """
    Same population as `tenant`, but as plain ids. HTTP tests must not hold an
    app context across requests (Flask-Login caches the user on `g`).
    """
    with app.app_context():
        rows = _seed_tenant()
        return SimpleNamespace(**{k: v.id for k, v in rows.items()})
