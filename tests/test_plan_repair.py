import logging

from sqlalchemy import update

from app.models import EmergencyPlan, PlanStatus
from app.services import audit, plans
from factories import minutes_ago, seed_plan


def _status_by_id(session, org_id):
    session.expire_all()
    return {p.id: p.status for p in session.query(EmergencyPlan).filter_by(org_id=org_id)}


def test_repair_keeps_latest_activation(session, tenant):
    v1 = seed_plan(tenant.org, version="1.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(30))
    v2 = seed_plan(tenant.org, version="2.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(10))

    result = plans.repair_active_plans(session, tenant.org.id)

    assert result.repaired
    assert result.winner_id == v2.id
    assert result.archived_ids == (v1.id,)
    assert _status_by_id(session, tenant.org.id) == {v1.id: PlanStatus.ARCHIVED, v2.id: PlanStatus.ACTIVE}

def test_repair_winner_independent_of_insert_order(session, tenant):
    # newest activation inserted first
    late = seed_plan(tenant.org, version="late", status=PlanStatus.ACTIVE, activated_at=minutes_ago(1))
    early = seed_plan(tenant.org, version="early", status=PlanStatus.ACTIVE, activated_at=minutes_ago(50))
    result = plans.repair_active_plans(session, tenant.org.id)
    assert result.winner_id == late.id
    assert result.archived_ids == (early.id,)

def test_repair_ties_fall_back_to_created_at_then_id(session, tenant):
    stamp = minutes_ago(15)
    older = seed_plan(tenant.org, version="a", status=PlanStatus.ACTIVE, activated_at=stamp, created_at=minutes_ago(40))
    newer = seed_plan(tenant.org, version="b", status=PlanStatus.ACTIVE, activated_at=stamp, created_at=minutes_ago(20))
    assert plans.repair_active_plans(session, tenant.org.id).winner_id == newer.id

    created = minutes_ago(5)
    x = seed_plan(tenant.org, version="x", status=PlanStatus.ACTIVE, activated_at=stamp, created_at=created)
    y = seed_plan(tenant.org, version="y", status=PlanStatus.ACTIVE, activated_at=stamp, created_at=created)
    result = plans.repair_active_plans(session, tenant.org.id)
    assert result.winner_id == max(x.id, y.id)
    assert older.id not in result.archived_ids  # already archived by the first pass

def test_repair_missing_activation_stamp_ranks_lowest(session, tenant):
    stamped = seed_plan(tenant.org, version="s", status=PlanStatus.ACTIVE, activated_at=minutes_ago(90))
    unstamped = seed_plan(tenant.org, version="u", status=PlanStatus.ACTIVE, activated_at=None)
    result = plans.repair_active_plans(session, tenant.org.id)
    assert result.winner_id == stamped.id
    assert result.archived_ids == (unstamped.id,)

def test_repair_is_idempotent(session, tenant):
    for i, age in enumerate((40, 30, 20)):
        seed_plan(tenant.org, version=f"{i}.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(age))

    first = plans.repair_active_plans(session, tenant.org.id)
    after_first = _status_by_id(session, tenant.org.id)
    second = plans.repair_active_plans(session, tenant.org.id)

    assert len(first.archived_ids) == 2
    assert not second.repaired
    assert second.winner_id == first.winner_id
    assert _status_by_id(session, tenant.org.id) == after_first
    assert len(audit.for_org(session, tenant.org.id, action="plan.repair")) == 1

def test_repair_noop_cases(session, tenant):
    assert plans.repair_active_plans(session, tenant.org.id).winner_id is None
    only = seed_plan(tenant.org, status=PlanStatus.ACTIVE, activated_at=minutes_ago(3))
    seed_plan(tenant.org, version="draft")
    result = plans.repair_active_plans(session, tenant.org.id)
    assert (result.winner_id, result.archived_ids) == (only.id, ())
    assert audit.for_org(session, tenant.org.id) == []

def test_repair_scoped_to_one_org(session, tenant):
    seed_plan(tenant.other, version="a", status=PlanStatus.ACTIVE, activated_at=minutes_ago(9))
    seed_plan(tenant.other, version="b", status=PlanStatus.ACTIVE, activated_at=minutes_ago(8))
    plans.repair_active_plans(session, tenant.org.id)
    statuses = _status_by_id(session, tenant.other.id).values()
    assert list(statuses).count(PlanStatus.ACTIVE) == 2

def test_repair_logs_warning_and_audits(session, tenant, caplog):
    v1 = seed_plan(tenant.org, version="1.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(30))
    v2 = seed_plan(tenant.org, version="2.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(10))

    with caplog.at_level(logging.WARNING, logger="app.services.plans"):
        plans.repair_active_plans(session, tenant.org.id)

    records = [r for r in caplog.records if r.getMessage() == "plan.repair.archived_duplicate_actives"]
    assert len(records) == 1
    assert records[0].levelno == logging.WARNING
    assert records[0].org_id == tenant.org.id
    assert records[0].archived_ids == [v1.id]

    entry = audit.for_org(session, tenant.org.id, action="plan.repair")[0]
    assert entry.user_id is None
    assert entry.details == {"winner_id": v2.id, "archived_ids": [v1.id]}

def test_list_plans_heals_on_read(session, tenant):
    v1 = seed_plan(tenant.org, version="1.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(30))
    v2 = seed_plan(tenant.org, version="2.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(10))

    listed = plans.list_plans(session, tenant.org.id, user_id=tenant.viewer.id)

    assert [p.id for p in listed if p.status == PlanStatus.ACTIVE] == [v2.id]
    assert _status_by_id(session, tenant.org.id)[v1.id] == PlanStatus.ARCHIVED

def test_list_plans_without_repair_reports_raw_state(session, tenant):
    seed_plan(tenant.org, version="1.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(30))
    seed_plan(tenant.org, version="2.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(10))
    listed = plans.list_plans(session, tenant.org.id, user_id=tenant.viewer.id, repair=False)
    assert [p.status for p in listed].count(PlanStatus.ACTIVE) == 2

def test_repair_all_sweeps_only_corrupt_orgs(session, tenant):
    seed_plan(tenant.org, version="ok", status=PlanStatus.ACTIVE, activated_at=minutes_ago(5))
    a = seed_plan(tenant.other, version="a", status=PlanStatus.ACTIVE, activated_at=minutes_ago(9))
    b = seed_plan(tenant.other, version="b", status=PlanStatus.ACTIVE, activated_at=minutes_ago(8))

    assert plans.orgs_with_duplicate_actives(session) == [tenant.other.id]
    results = plans.repair_all(session)

    assert [(r.org_id, r.winner_id, r.archived_ids) for r in results] == [(tenant.other.id, b.id, (a.id,))]
    assert plans.orgs_with_duplicate_actives(session) == []

def test_activation_after_repair_still_wins(session, tenant):
    seed_plan(tenant.org, version="1.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(30))
    seed_plan(tenant.org, version="2.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(10))
    fresh = seed_plan(tenant.org, version="3.0")

    plans.repair_active_plans(session, tenant.org.id)
    plans.activate(session, fresh.id, user_id=tenant.admin.id)
    result = plans.repair_active_plans(session, tenant.org.id)

    assert (result.winner_id, result.archived_ids) == (fresh.id, ())

def test_repair_reports_nothing_when_losers_already_archived(session, tenant, caplog, monkeypatch):
    v1 = seed_plan(tenant.org, version="1.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(30))
    v2 = seed_plan(tenant.org, version="2.0", status=PlanStatus.ACTIVE, activated_at=minutes_ago(10))
    loser_id = v1.id
    real_key = plans._winner_key

    def key_after_concurrent_archive(plan):
        # another writer archives the loser once repair has read the actives
        session.execute(
            update(EmergencyPlan).where(EmergencyPlan.id == loser_id).values(status=PlanStatus.ARCHIVED)
        )
        return real_key(plan)

    monkeypatch.setattr(plans, "_winner_key", key_after_concurrent_archive)
    with caplog.at_level(logging.WARNING, logger="app.services.plans"):
        result = plans.repair_active_plans(session, tenant.org.id)

    assert result.winner_id == v2.id
    assert result.archived_ids == ()
    assert not result.repaired
    assert audit.for_org(session, tenant.org.id, action="plan.repair") == []
    assert not [r for r in caplog.records if r.getMessage() == "plan.repair.archived_duplicate_actives"]
    assert _status_by_id(session, tenant.org.id) == {v1.id: PlanStatus.ARCHIVED, v2.id: PlanStatus.ACTIVE}
