from flask import request, jsonify, current_app
from app.extensions import db, limiter
from app.services import incidents as incident_service
from app.services.errors import ValidationError
from app.services.policy import current_user_id
from app.utils.helpers import safe_int
from . import bp


@bp.get("/orgs/<int:org_id>/incidents")
def list_incidents(org_id: int):
    status = (request.args.get("status") or "").strip().lower() or None
    rows = incident_service.list_incidents(
        db.session,
        org_id,
        user_id=current_user_id(),
        status=status,
        limit=int(current_app.config.get("LIST_LIMIT", 500)),
    )
    return jsonify(incidents=[i.to_dict() for i in rows])


@bp.post("/orgs/<int:org_id>/incidents")
@limiter.limit("30/minute")
def open_incident(org_id: int):
    data = request.get_json(silent=True) or {}

    raw_plan_id = data.get("plan_id")
    plan_id = None
    if raw_plan_id not in (None, ""):
        plan_id = safe_int(raw_plan_id)
        if plan_id is None:
            raise ValidationError("plan_id must be an integer", field="plan_id")

    bind_active_plan = data.get("bind_active_plan", True)
    if not isinstance(bind_active_plan, bool):
        raise ValidationError("bind_active_plan must be true or false", field="bind_active_plan")

    incident = incident_service.open_incident(
        db.session,
        org_id=org_id,
        user_id=current_user_id(),
        plan_id=plan_id,
        bind_active_plan=bind_active_plan,
    )
    return jsonify(incident=incident.to_dict()), 201


@bp.get("/incidents/<int:incident_id>")
def get_incident(incident_id: int):
    incident = incident_service.get_incident(db.session, incident_id, user_id=current_user_id())
    return jsonify(incident=incident.to_dict())


@bp.put("/incidents/<int:incident_id>")
def set_incident_status(incident_id: int):
    data = request.get_json(silent=True) or {}
    status = str(data.get("status") or "").strip().lower()
    if not status:
        raise ValidationError("Status required", field="status")
    incident = incident_service.set_status(db.session, incident_id, status, user_id=current_user_id())
    return jsonify(incident=incident.to_dict())
