from flask import jsonify
from flask_login import current_user

from app.models.user import ROLE_MANAGER
from app.services.policy import role_required
from app.services.storage import get_storage
from . import bp


@bp.get("/team")
@role_required(ROLE_MANAGER, message="Only managers can view team members")
def team_members():
    """Direct reports of the signed-in manager (empty list when none)."""
    return jsonify([u.to_dict() for u in get_storage().get_team_members(current_user.id)])
