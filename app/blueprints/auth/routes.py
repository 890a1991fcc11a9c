from flask import request, jsonify
from flask_login import login_user, logout_user, current_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy import func
from app.extensions import db, limiter
from app.models.user import User
from app.services.errors import Unauthorized, ValidationError
from app.services.policy import login_required_json, memberships_for
from . import bp


def _login_email_scope():
    data_json = request.get_json(silent=True) or {}
    email = (data_json.get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _identity_payload(user: User) -> dict:
    return {
        "user": user.to_dict(),
        "memberships": [
            {"org_id": m.org_id, "role": m.role}
            for m in memberships_for(db.session, user.id)
        ],
    }


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")              # per-IP (anon → IP via _rate_limit_key)
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)  # per-account
def login_post():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required")

    user = db.session.execute(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    ).scalar_one_or_none()

    if not user or not user.check_password(password) or not user.is_active:
        raise Unauthorized("Invalid credentials")

    login_user(user)
    return jsonify(_identity_payload(user))


@bp.post("/logout")
def logout_post():
    if current_user.is_authenticated:
        logout_user()
    return ("", 204)


@bp.get("/me")
@login_required_json
def me():
    return jsonify(_identity_payload(current_user))


@bp.get("/csrf")
def csrf_token():
    # Mutating requests must echo this in X-CSRFToken (session-bound)
    return jsonify(csrf_token=generate_csrf())
