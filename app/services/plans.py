"""
Plan lifecycle: drafts, versions, activation and the single-active invariant.

Every operation takes the SQLAlchemy session it works in; callers (views, CLI,
tests) decide which session that is. Mutations run inside one unit of work so a
failed or aborted request leaves no partial state behind.
"""
from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.incident import Incident, IncidentStatus
from app.models.org import Org
from app.models.plan import EmergencyPlan, PlanStatus, PLAN_TRANSITIONS
from app.services import audit
from app.services.errors import Conflict, InvalidTransition, NotFound, ValidationError
from app.services.policy import Capability, require, require_access
from app.services.uow import reading, unit_of_work
from app.utils.helpers import as_utc, utcnow
from app.utils.validators import VERSION_MAX_LEN, clean_str, content_errors, version_label_errors

logger = logging.getLogger(__name__)

_MAJOR_MINOR_RE = re.compile(r"^(\d+)\.(\d+)$")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class RepairResult:
    org_id: int
    winner_id: Optional[int]
    archived_ids: Tuple[int, ...] = ()

    @property
    def repaired(self) -> bool:
        return bool(self.archived_ids)


def next_version_label(version: str) -> str:
    """'2.3' -> '2.4'; any other label gets a '.1' suffix ('v2' -> 'v2.1')."""
    label = (version or "").strip()
    m = _MAJOR_MINOR_RE.match(label)
    if m:
        return f"{int(m.group(1))}.{int(m.group(2)) + 1}"
    return f"{label}.1"


def parse_status(value) -> PlanStatus:
    try:
        return PlanStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in PlanStatus)
        raise ValidationError(f"Unknown plan status {value!r}; expected one of: {allowed}", field="status")


def _load_plan(session: Session, plan_id: int) -> EmergencyPlan:
    plan = session.get(EmergencyPlan, plan_id)
    if plan is None:
        raise NotFound("Plan not found")
    return plan


def _check_transition(plan: EmergencyPlan, target: PlanStatus) -> None:
    current = PlanStatus(plan.status)
    if target not in PLAN_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move plan from {current.value!r} to {target.value!r}.",
            current=current.value,
            requested=target.value,
        )


def _validated_version(version) -> str:
    err = version_label_errors(version)
    if err:
        raise ValidationError(err, field="version")
    return clean_str(version, max_len=VERSION_MAX_LEN)


def _validated_content(content) -> dict:
    err = content_errors(content)
    if err:
        raise ValidationError(err, field="content")
    return dict(content or {})


# --- Reads -------------------------------------------------------------------

def get_plan(session: Session, plan_id: int, *, user_id: int) -> EmergencyPlan:
    with reading(session):
        plan = _load_plan(session, plan_id)
        require_access(session, plan.org_id, user_id, Capability.READ, entity="Plan")
        return plan


def get_active_plan(session: Session, org_id: int) -> Optional[EmergencyPlan]:
    """The plan in force for an org (same ordering as repair's winner if duplicates exist)."""
    with reading(session):
        return (
            session.query(EmergencyPlan)
            .filter(EmergencyPlan.org_id == org_id, EmergencyPlan.status == PlanStatus.ACTIVE)
            .order_by(
                EmergencyPlan.activated_at.desc().nulls_last(),
                EmergencyPlan.created_at.desc(),
                EmergencyPlan.id.desc(),
            )
            .first()
        )


def list_plans(
    session: Session,
    org_id: int,
    *,
    user_id: int,
    status: Optional[str] = None,
    repair: bool = True,
    limit: int = 500,
) -> List[EmergencyPlan]:
    """Org plans, newest first. Heals duplicate active plans first unless repair=False."""
    wanted = parse_status(status) if status else None
    with reading(session):
        require(session, org_id, user_id, Capability.READ)
    if repair:
        repair_active_plans(session, org_id)
    with reading(session):
        q = session.query(EmergencyPlan).filter(EmergencyPlan.org_id == org_id)
        if wanted is not None:
            q = q.filter(EmergencyPlan.status == wanted)
        return q.order_by(EmergencyPlan.created_at.desc(), EmergencyPlan.id.desc()).limit(limit).all()


# --- Drafts & versions ---------------------------------------------------------

def create_draft(
    session: Session,
    *,
    org_id: int,
    version: str,
    content: Optional[dict] = None,
    user_id: int,
) -> EmergencyPlan:
    """
    Insert a new draft. Version labels are caller-chosen and not checked for
    uniqueness within the org.
    """
    with unit_of_work(session):
        require(session, org_id, user_id, Capability.MUTATE_PLAN)
        plan = EmergencyPlan(
            org_id=org_id,
            version=_validated_version(version),
            status=PlanStatus.DRAFT,
            content=_validated_content(content),
            created_by=user_id,
        )
        session.add(plan)
        session.flush()
        audit.record(session, org_id=org_id, user_id=user_id, action="plan.create", plan_id=plan.id, version=plan.version)

    logger.info("plan.draft_created", extra={"org_id": org_id, "plan_id": plan.id, "user_id": user_id})
    return plan


def create_next_version(session: Session, plan_id: int, *, user_id: int) -> EmergencyPlan:
    """
    Fork any plan (including the active one) into a new draft carrying a copy of
    its content. The source row is only read.
    """
    with unit_of_work(session):
        source = _load_plan(session, plan_id)
        require_access(session, source.org_id, user_id, Capability.MUTATE_PLAN, entity="Plan")

        label = next_version_label(source.version)
        if len(label) > VERSION_MAX_LEN:
            raise ValidationError(
                f"Derived version {label!r} exceeds {VERSION_MAX_LEN} characters; create a draft with a new label.",
                field="version",
            )

        plan = EmergencyPlan(
            org_id=source.org_id,
            version=label,
            status=PlanStatus.DRAFT,
            content=copy.deepcopy(source.content or {}),
            created_by=user_id,
        )
        session.add(plan)
        session.flush()
        audit.record(
            session,
            org_id=source.org_id,
            user_id=user_id,
            action="plan.version",
            plan_id=plan.id,
            source_plan_id=source.id,
            version=label,
        )

    logger.info(
        "plan.version_created",
        extra={"org_id": plan.org_id, "plan_id": plan.id, "source_plan_id": plan_id, "user_id": user_id},
    )
    return plan


def update_draft(
    session: Session,
    plan_id: int,
    *,
    user_id: int,
    version: Optional[str] = None,
    content: Optional[dict] = None,
) -> EmergencyPlan:
    """Edit version label and/or content. Only drafts are editable."""
    with unit_of_work(session):
        plan = _load_plan(session, plan_id)
        require_access(session, plan.org_id, user_id, Capability.MUTATE_PLAN, entity="Plan")
        session.refresh(plan, with_for_update=True)
        if not plan.is_editable:
            raise InvalidTransition(
                f"Only draft plans can be edited; this plan is {PlanStatus(plan.status).value!r}.",
                current=PlanStatus(plan.status).value,
            )
        if version is not None:
            plan.version = _validated_version(version)
        if content is not None:
            plan.content = _validated_content(content)
    return plan


# --- Status transitions ---------------------------------------------------------

def activate(session: Session, plan_id: int, *, user_id: int) -> EmergencyPlan:
    """
    Make a draft the org's active plan and archive every other active plan of the
    org, all in one transaction.

    Activations for one org serialize on the org row lock, so of two racing
    activations the later commit wins and archives the earlier one.
    """
    with unit_of_work(session):
        plan = _load_plan(session, plan_id)
        require_access(session, plan.org_id, user_id, Capability.MUTATE_PLAN, entity="Plan")

        session.query(Org.id).filter(Org.id == plan.org_id).with_for_update().one()
        # Status may have moved while we waited for the lock
        session.refresh(plan, with_for_update=True)
        _check_transition(plan, PlanStatus.ACTIVE)

        now = utcnow()
        superseded = [
            pid
            for (pid,) in session.query(EmergencyPlan.id).filter(
                EmergencyPlan.org_id == plan.org_id,
                EmergencyPlan.status == PlanStatus.ACTIVE,
                EmergencyPlan.id != plan.id,
            )
        ]
        session.execute(
            update(EmergencyPlan)
            .where(
                EmergencyPlan.org_id == plan.org_id,
                EmergencyPlan.status == PlanStatus.ACTIVE,
                EmergencyPlan.id != plan.id,
            )
            .values(status=PlanStatus.ARCHIVED, updated_at=now)
        )
        plan.status = PlanStatus.ACTIVE
        plan.activated_at = now
        audit.record(
            session,
            org_id=plan.org_id,
            user_id=user_id,
            action="plan.activate",
            plan_id=plan.id,
            version=plan.version,
            archived_ids=sorted(superseded),
        )

    logger.info(
        "plan.activated",
        extra={"org_id": plan.org_id, "plan_id": plan.id, "archived_ids": superseded, "user_id": user_id},
    )
    return plan


def archive(session: Session, plan_id: int, *, user_id: int) -> EmergencyPlan:
    with unit_of_work(session):
        plan = _load_plan(session, plan_id)
        require_access(session, plan.org_id, user_id, Capability.MUTATE_PLAN, entity="Plan")
        session.refresh(plan, with_for_update=True)
        previous = PlanStatus(plan.status)
        _check_transition(plan, PlanStatus.ARCHIVED)
        plan.status = PlanStatus.ARCHIVED
        audit.record(
            session,
            org_id=plan.org_id,
            user_id=user_id,
            action="plan.archive",
            plan_id=plan.id,
            previous=previous.value,
        )
    return plan


def set_status(session: Session, plan_id: int, status, *, user_id: int) -> EmergencyPlan:
    """
    Generic status assignment. ACTIVE and ARCHIVED route to their dedicated
    operations; draft <-> review is caller-managed editorial metadata.
    """
    target = parse_status(status)
    if target == PlanStatus.ACTIVE:
        return activate(session, plan_id, user_id=user_id)
    if target == PlanStatus.ARCHIVED:
        return archive(session, plan_id, user_id=user_id)

    with unit_of_work(session):
        plan = _load_plan(session, plan_id)
        require_access(session, plan.org_id, user_id, Capability.MUTATE_PLAN, entity="Plan")
        session.refresh(plan, with_for_update=True)
        _check_transition(plan, target)
        plan.status = target
    return plan


def delete(session: Session, plan_id: int, *, user_id: int) -> None:
    """
    Remove a plan in any status. Refused while an unresolved incident still
    references it; resolved incidents keep their history with plan_id cleared.
    """
    with unit_of_work(session):
        plan = _load_plan(session, plan_id)
        require_access(session, plan.org_id, user_id, Capability.DELETE_PLAN, entity="Plan")
        # Incident opening takes a shared lock on the plan row; this blocks it until we finish
        session.refresh(plan, with_for_update=True)

        blocking = [
            iid
            for (iid,) in session.query(Incident.id).filter(
                Incident.plan_id == plan.id,
                Incident.status != IncidentStatus.RESOLVED,
            )
        ]
        if blocking:
            raise Conflict(
                "Plan is referenced by unresolved incidents.",
                incident_ids=sorted(blocking),
            )

        session.execute(
            update(Incident).where(Incident.plan_id == plan.id).values(plan_id=None)
        )
        audit.record(
            session,
            org_id=plan.org_id,
            user_id=user_id,
            action="plan.delete",
            plan_id=plan.id,
            version=plan.version,
            status=PlanStatus(plan.status).value,
        )
        org_id = plan.org_id
        session.delete(plan)

    logger.info("plan.deleted", extra={"org_id": org_id, "plan_id": plan_id, "user_id": user_id})


# --- Consistency repair ---------------------------------------------------------

def _winner_key(plan: EmergencyPlan):
    return (as_utc(plan.activated_at) or _EPOCH, as_utc(plan.created_at) or _EPOCH, plan.id)


def repair_active_plans(session: Session, org_id: int) -> RepairResult:
    """
    Heal single-active violations for one org.

    The winner is the plan with the latest activated_at (then created_at, then id);
    every other active plan is archived in one conditional UPDATE. Takes no lock:
    running it twice, concurrently, or alongside activate() converges on the same
    state, because a later activation always outranks anything observed here.
    """
    with unit_of_work(session):
        actives = (
            session.query(EmergencyPlan)
            .filter(EmergencyPlan.org_id == org_id, EmergencyPlan.status == PlanStatus.ACTIVE)
            .all()
        )
        if len(actives) <= 1:
            return RepairResult(org_id=org_id, winner_id=actives[0].id if actives else None)

        winner = max(actives, key=_winner_key)
        losers = [p.id for p in actives if p.id != winner.id]
        # Only rows still active here are ours; a concurrent activate may have archived the rest
        archived = tuple(sorted(session.execute(
            update(EmergencyPlan)
            .where(EmergencyPlan.id.in_(losers), EmergencyPlan.status == PlanStatus.ACTIVE)
            .values(status=PlanStatus.ARCHIVED, updated_at=utcnow())
            .returning(EmergencyPlan.id)
        ).scalars()))
        if not archived:
            return RepairResult(org_id=org_id, winner_id=winner.id)
        audit.record(
            session,
            org_id=org_id,
            action="plan.repair",
            winner_id=winner.id,
            archived_ids=list(archived),
        )

    # Duplicates mean some write skipped the atomic activation path
    logger.warning(
        "plan.repair.archived_duplicate_actives",
        extra={"org_id": org_id, "winner_id": winner.id, "archived_ids": list(archived)},
    )
    return RepairResult(org_id=org_id, winner_id=winner.id, archived_ids=archived)


def orgs_with_duplicate_actives(session: Session) -> List[int]:
    with reading(session):
        rows = (
            session.query(EmergencyPlan.org_id)
            .filter(EmergencyPlan.status == PlanStatus.ACTIVE)
            .group_by(EmergencyPlan.org_id)
            .having(func.count(EmergencyPlan.id) > 1)
            .order_by(EmergencyPlan.org_id)
            .all()
        )
    return [org_id for (org_id,) in rows]


def repair_all(session: Session) -> List[RepairResult]:
    return [repair_active_plans(session, org_id) for org_id in orgs_with_duplicate_actives(session)]
