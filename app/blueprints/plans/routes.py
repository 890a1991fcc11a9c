from flask import request, jsonify, current_app
from app.extensions import db, limiter
from app.services import plans as plan_service
from app.services.errors import ValidationError
from app.services.policy import current_user_id
from . import bp


@bp.get("/orgs/<int:org_id>/plans")
def list_plans(org_id: int):
    status = (request.args.get("status") or "").strip().lower() or None
    rows = plan_service.list_plans(
        db.session,
        org_id,
        user_id=current_user_id(),
        status=status,
        repair=bool(current_app.config.get("PLAN_REPAIR_ON_READ", True)),
        limit=int(current_app.config.get("LIST_LIMIT", 500)),
    )
    return jsonify(plans=[p.to_dict(include_content=False) for p in rows])


@bp.post("/orgs/<int:org_id>/plans")
@limiter.limit("30/minute")
def create_plan(org_id: int):
    data = request.get_json(silent=True) or {}
    plan = plan_service.create_draft(
        db.session,
        org_id=org_id,
        version=data.get("version"),
        content=data.get("content"),
        user_id=current_user_id(),
    )
    return jsonify(plan=plan.to_dict()), 201


@bp.get("/plans/<int:plan_id>")
def get_plan(plan_id: int):
    plan = plan_service.get_plan(db.session, plan_id, user_id=current_user_id())
    return jsonify(plan=plan.to_dict())


@bp.patch("/plans/<int:plan_id>")
def update_plan(plan_id: int):
    data = request.get_json(silent=True) or {}
    uid = current_user_id()

    status = data.get("status")
    edits = {k: data[k] for k in ("version", "content") if k in data}
    for field, value in edits.items():
        if value is None:
            raise ValidationError(f"{field} cannot be null", field=field)
    if status is not None and edits:
        # Edits and status moves are separate transactions; keep them separate requests too
        raise ValidationError("Send either status or version/content, not both.")
    if status is None and not edits:
        raise ValidationError("Nothing to update.")

    if status is not None:
        plan = plan_service.set_status(db.session, plan_id, status, user_id=uid)
    else:
        plan = plan_service.update_draft(db.session, plan_id, user_id=uid, **edits)
    return jsonify(plan=plan.to_dict())


@bp.post("/plans/<int:plan_id>/versions")
@limiter.limit("30/minute")
def create_version(plan_id: int):
    plan = plan_service.create_next_version(db.session, plan_id, user_id=current_user_id())
    return jsonify(plan=plan.to_dict()), 201


@bp.post("/plans/<int:plan_id>/activate")
@limiter.limit("10/minute")
def activate_plan(plan_id: int):
    plan = plan_service.activate(db.session, plan_id, user_id=current_user_id())
    return jsonify(plan=plan.to_dict())


@bp.post("/plans/<int:plan_id>/archive")
def archive_plan(plan_id: int):
    plan = plan_service.archive(db.session, plan_id, user_id=current_user_id())
    return jsonify(plan=plan.to_dict())


@bp.delete("/plans/<int:plan_id>")
def delete_plan(plan_id: int):
    plan_service.delete(db.session, plan_id, user_id=current_user_id())
    return ("", 204)
