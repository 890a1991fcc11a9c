from flask import Blueprint

bp = Blueprint("plans", __name__)

from app.services.policy import current_user_id

@bp.before_request
def _require_login_plans():
    current_user_id()

from . import routes  # noqa: E402,F401 (import after bp to avoid circulars)
