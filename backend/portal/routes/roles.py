# Overview: Flask API routes exposing the static role and permission tables.

from flask import Blueprint, jsonify, g

from ..decorators import require_auth
from ..permissions import (
    PERMISSION_DEFINITIONS,
    get_role_definitions,
    get_permission_definition,
    can_manage_role,
    ROLE_DEFINITIONS,
)


roles_bp = Blueprint("roles", __name__, url_prefix="/api/roles")


@roles_bp.get("")
@require_auth
def list_roles_route():
    """
    Role table with permissions and hierarchy rank.

    manageable_roles lists the roles the caller outranks. Informational
    only; enforcement lives in the services.
    """
    caller_role = g.current_user.role
    return jsonify({
        "roles": get_role_definitions(),
        "permissions": [get_permission_definition(code) for code, _, _, _ in PERMISSION_DEFINITIONS],
        "manageable_roles": [
            role.value for role, _, _ in ROLE_DEFINITIONS if can_manage_role(caller_role, role)
        ],
    }), 200
