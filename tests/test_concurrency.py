"""
Racing writers against a shared file-backed SQLite database. Each thread runs in
its own app context, so it gets its own session and connection.
"""
import threading

import pytest
from app import create_app
from app.extensions import db
from app.models import EmergencyPlan, PlanStatus, ROLE_ADMIN
from app.services import plans
from app.services.errors import InvalidTransition, StorageUnavailable
from factories import make_org, make_user, minutes_ago, seed_plan


@pytest.fixture()
def race_app(tmp_path):
    app = create_app({
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def _race(app, *calls):
    """Start every call at the same moment; return each one's result or exception."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def run(i, fn):
        with app.app_context():
            barrier.wait()
            try:
                outcomes[i] = fn(db.session)
            except (InvalidTransition, StorageUnavailable) as exc:
                outcomes[i] = exc
            finally:
                db.session.remove()

    threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert not any(t.is_alive() for t in threads)
    return outcomes


def _active_ids(app, org_id):
    with app.app_context():
        return [
            pid
            for (pid,) in db.session.query(EmergencyPlan.id).filter_by(org_id=org_id, status=PlanStatus.ACTIVE)
        ]


@pytest.mark.parametrize("round_", range(3))
def test_concurrent_activations_leave_one_active(race_app, round_):
    with race_app.app_context():
        org = make_org()
        admin_id = make_user("admin@race.test", org, ROLE_ADMIN).id
        org_id = org.id
        d1 = seed_plan(org, version="1.0").id
        d2 = seed_plan(org, version="1.1").id

    outcomes = _race(
        race_app,
        lambda s: plans.activate(s, d1, user_id=admin_id).id,
        lambda s: plans.activate(s, d2, user_id=admin_id).id,
    )

    winners = [o for o in outcomes if isinstance(o, int)]
    assert winners, outcomes
    assert all(isinstance(o, (int, InvalidTransition, StorageUnavailable)) for o in outcomes)
    active = _active_ids(race_app, org_id)
    assert len(active) == 1
    assert active[0] in winners


def test_repair_racing_activation_leaves_one_active(race_app):
    with race_app.app_context():
        org = make_org()
        admin_id = make_user("admin@race.test", org, ROLE_ADMIN).id
        org_id = org.id
        seed_plan(org, version="1.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(30))
        seed_plan(org, version="2.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(20))
        fresh = seed_plan(org, version="3.0").id

    activated, _ = _race(
        race_app,
        lambda s: plans.activate(s, fresh, user_id=admin_id).id,
        lambda s: plans.repair_active_plans(s, org_id),
    )

    active = _active_ids(race_app, org_id)
    assert len(active) == 1
    if activated == fresh:
        assert active == [fresh]
