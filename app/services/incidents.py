"""Incident lifecycle and the append-only update log."""
from __future__ import annotations

import logging
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session

from app.models.incident import Incident, IncidentStatus, IncidentUpdate, INCIDENT_TRANSITIONS, UPDATE_TYPES
from app.models.plan import EmergencyPlan
from app.services import audit, plans
from app.services.errors import InvalidReference, InvalidTransition, NotFound, ValidationError
from app.services.policy import Capability, require, require_access
from app.services.uow import reading, unit_of_work
from app.utils.helpers import utcnow
from app.utils.validators import CONTENT_MAX_LEN, is_http_url

logger = logging.getLogger(__name__)


class UpdateFeed:
    """
    Updates for one incident, newest first.

    Lazy and restartable: nothing is fetched until iteration starts, and each new
    iteration runs a fresh query (so it also sees updates appended in between).
    """

    def __init__(self, session: Session, incident_id: int, *, batch_size: int = 100):
        self._session = session
        self.incident_id = incident_id
        self.batch_size = batch_size

    def _query(self):
        return (
            self._session.query(IncidentUpdate)
            .filter(IncidentUpdate.incident_id == self.incident_id)
            .order_by(IncidentUpdate.created_at.desc(), IncidentUpdate.id.desc())
        )

    def __iter__(self) -> Iterator[IncidentUpdate]:
        with reading(self._session):
            yield from self._query().yield_per(self.batch_size)

    def count(self) -> int:
        with reading(self._session):
            return self._query().count()

    def first(self) -> Optional[IncidentUpdate]:
        with reading(self._session):
            return self._query().first()


def parse_status(value) -> IncidentStatus:
    try:
        return IncidentStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in IncidentStatus)
        raise ValidationError(f"Unknown incident status {value!r}; expected one of: {allowed}", field="status")


def _load_incident(session: Session, incident_id: int) -> Incident:
    incident = session.get(Incident, incident_id)
    if incident is None:
        raise NotFound("Incident not found")
    return incident


def get_incident(session: Session, incident_id: int, *, user_id: int) -> Incident:
    with reading(session):
        incident = _load_incident(session, incident_id)
        require_access(session, incident.org_id, user_id, Capability.READ, entity="Incident")
        return incident


def list_incidents(
    session: Session,
    org_id: int,
    *,
    user_id: int,
    status: Optional[str] = None,
    limit: int = 500,
) -> List[Incident]:
    wanted = parse_status(status) if status else None
    with reading(session):
        require(session, org_id, user_id, Capability.READ)
        q = session.query(Incident).filter(Incident.org_id == org_id)
        if wanted is not None:
            q = q.filter(Incident.status == wanted)
        return q.order_by(Incident.activated_at.desc(), Incident.id.desc()).limit(limit).all()


def open_incident(
    session: Session,
    *,
    org_id: int,
    user_id: int,
    plan_id: Optional[int] = None,
    bind_active_plan: bool = True,
) -> Incident:
    """
    Raise a new incident. An explicit plan must belong to the same org; without
    one, the org's active plan (if any) is bound when bind_active_plan is set.
    """
    with unit_of_work(session):
        require(session, org_id, user_id, Capability.MUTATE_INCIDENT)

        if plan_id is not None:
            # Shared lock: a concurrent plan delete waits for us (or we see it gone)
            plan = (
                session.query(EmergencyPlan)
                .filter(EmergencyPlan.id == plan_id)
                .with_for_update(read=True)
                .one_or_none()
            )
            if plan is None or plan.org_id != org_id:
                raise InvalidReference("Plan does not belong to this organization.", plan_id=plan_id)
        elif bind_active_plan:
            active = plans.get_active_plan(session, org_id)
            if active is not None:
                # Same shared lock as above; a plan deleted meanwhile is simply not bound
                active = (
                    session.query(EmergencyPlan)
                    .filter(EmergencyPlan.id == active.id)
                    .with_for_update(read=True)
                    .populate_existing()
                    .one_or_none()
                )
            plan_id = active.id if active is not None else None

        incident = Incident(
            org_id=org_id,
            plan_id=plan_id,
            status=IncidentStatus.ACTIVE,
            opened_by=user_id,
            activated_at=utcnow(),
        )
        session.add(incident)
        session.flush()
        audit.record(session, org_id=org_id, user_id=user_id, action="incident.open", incident_id=incident.id, plan_id=plan_id)

    logger.info("incident.opened", extra={"org_id": org_id, "incident_id": incident.id, "plan_id": plan_id, "user_id": user_id})
    return incident


def set_status(session: Session, incident_id: int, status, *, user_id: int) -> Incident:
    target = parse_status(status)
    with unit_of_work(session):
        incident = _load_incident(session, incident_id)
        require_access(session, incident.org_id, user_id, Capability.MUTATE_INCIDENT, entity="Incident")
        session.refresh(incident, with_for_update=True)

        current = IncidentStatus(incident.status)
        if target not in INCIDENT_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot move incident from {current.value!r} to {target.value!r}.",
                current=current.value,
                requested=target.value,
            )
        incident.status = target
        if target == IncidentStatus.RESOLVED:
            incident.resolved_at = utcnow()
        audit.record(
            session,
            org_id=incident.org_id,
            user_id=user_id,
            action="incident.status",
            incident_id=incident.id,
            previous=current.value,
            status=target.value,
        )

    logger.info(
        "incident.status_changed",
        extra={"incident_id": incident_id, "from": current.value, "to": target.value, "user_id": user_id},
    )
    return incident


def append_update(
    session: Session,
    incident_id: int,
    *,
    user_id: int,
    update_type: str,
    content: str,
    photo_url: Optional[str] = None,
) -> IncidentUpdate:
    """
    Add a log entry. Allowed in every incident status (post-mortem notes on resolved
    incidents included) and for every member of the org.
    """
    errors = {}
    if update_type not in UPDATE_TYPES:
        errors["update_type"] = f"Must be one of: {', '.join(UPDATE_TYPES)}"
    text = content.strip() if isinstance(content, str) else ""
    if not text:
        errors["content"] = "Content is required"
    elif len(text) > CONTENT_MAX_LEN:
        errors["content"] = f"Content must be at most {CONTENT_MAX_LEN} characters"
    if photo_url is not None and not (isinstance(photo_url, str) and is_http_url(photo_url)):
        errors["photo_url"] = "Must be an http(s) URL"

    with unit_of_work(session):
        incident = _load_incident(session, incident_id)
        require_access(session, incident.org_id, user_id, Capability.APPEND_UPDATE, entity="Incident")
        if errors:
            raise ValidationError("Invalid incident update.", fields=errors)

        entry = IncidentUpdate(
            incident_id=incident.id,
            user_id=user_id,
            update_type=update_type,
            content=text,
            photo_url=photo_url,
            created_at=utcnow(),
        )
        session.add(entry)

    return entry


def list_updates(session: Session, incident_id: int, *, user_id: int) -> UpdateFeed:
    get_incident(session, incident_id, user_id=user_id)
    return UpdateFeed(session, incident_id)
