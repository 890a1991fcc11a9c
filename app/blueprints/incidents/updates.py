from flask import request, jsonify
from app.extensions import db, limiter
from app.services import incidents as incident_service
from app.services.policy import current_user_id
from . import bp


@bp.get("/incidents/<int:incident_id>/updates")
def list_updates(incident_id: int):
    feed = incident_service.list_updates(db.session, incident_id, user_id=current_user_id())
    return jsonify(updates=[u.to_dict() for u in feed])


@bp.post("/incidents/<int:incident_id>/updates")
@limiter.limit("60/minute")
def append_update(incident_id: int):
    data = request.get_json(silent=True) or {}
    entry = incident_service.append_update(
        db.session,
        incident_id,
        user_id=current_user_id(),
        update_type=str(data.get("update_type") or "").strip().lower(),
        content=data.get("content"),
        photo_url=(data.get("photo_url") or None),
    )
    return jsonify(update=entry.to_dict()), 201
