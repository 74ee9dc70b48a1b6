"""Roles and user role assignments blueprint for Flask API."""
import logging
from flask import Blueprint, jsonify, g
from .auth import login_required
from ..services.role_catalog import get_role_catalog
from ..utils import api_error, parse_json_body
from shared.enums import PermissionAction
from shared.schemas import RoleAssignmentCreate, RoleAssignmentSchema

logger = logging.getLogger(__name__)

bp = Blueprint('roles', __name__, url_prefix='/api')


def _can_manage_users():
    catalog = get_role_catalog()
    return catalog.has_permission(catalog.roles_for_user(g.user.id), 'users', PermissionAction.MANAGE)


@bp.route('/roles', methods=['GET'])
@login_required
def list_roles():
    """List all roles sorted by name."""
    return jsonify([role.to_dict() for role in get_role_catalog().list_roles()])


@bp.route('/roles/<int:role_id>', methods=['GET'])
@login_required
def get_role(role_id):
    return jsonify(get_role_catalog().get_role(role_id).to_dict())


@bp.route('/users/<int:user_id>/roles', methods=['GET'])
@login_required
def list_user_roles(user_id):
    """Effective roles and active assignments of a user."""
    if user_id != g.user.id and not _can_manage_users():
        return api_error('User management privileges required', 403, code='denied')

    catalog = get_role_catalog()
    return jsonify({
        'user_id': user_id,
        'roles': [role.name for role in catalog.roles_for_user(user_id)],
        'assignments': [
            RoleAssignmentSchema.model_validate(a).model_dump(mode='json')
            for a in catalog.assignments_for_user(user_id)
        ]
    })


@bp.route('/users/<int:user_id>/roles', methods=['POST'])
@login_required
def assign_role(user_id):
    """Assign a role to a user."""
    if not _can_manage_users():
        return api_error('User management privileges required', 403, code='denied')

    body = parse_json_body(RoleAssignmentCreate)
    assignment = get_role_catalog().assign_role(user_id, body.role_id, assigned_by=g.user.id,
                                                expires_at=body.expires_at)
    return jsonify(RoleAssignmentSchema.model_validate(assignment).model_dump(mode='json')), 201


@bp.route('/users/<int:user_id>/roles/<int:role_id>', methods=['DELETE'])
@login_required
def revoke_role(user_id, role_id):
    """Remove a role from a user (soft delete)."""
    if not _can_manage_users():
        return api_error('User management privileges required', 403, code='denied')

    get_role_catalog().revoke_role(user_id, role_id)
    return jsonify({'message': 'Role removed successfully'})
