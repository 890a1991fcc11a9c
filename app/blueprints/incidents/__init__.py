from flask import Blueprint

bp = Blueprint("incidents", __name__)

from app.services.policy import current_user_id

@bp.before_request
def _require_login_incidents():
    current_user_id()

# Import submodules so their routes register on the same bp
from . import routes   # incidents: open / list / status
from . import updates  # append-only update log
