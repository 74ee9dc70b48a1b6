"""Actor resolution for the API.

Authentication happens upstream; the gateway forwards the authenticated user
id in the ``X-User-Id`` header. This module only turns that id into ``g.user``.
"""
from functools import wraps
from flask import Blueprint, request, jsonify, g
from ..models import db, User
from ..services.role_catalog import get_role_catalog

bp = Blueprint('auth', __name__, url_prefix='/api')

ACTOR_HEADER = 'X-User-Id'


def login_required(view):
    """Reject requests without a resolved actor."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not getattr(g, 'user', None):
            return jsonify({'error': 'Authentication required', 'code': 'authentication_required'}), 401
        return view(*args, **kwargs)
    return wrapped


@bp.route('/auth/me', methods=['GET'])
@login_required
def me():
    """Get current user info with effective roles."""
    roles = get_role_catalog().roles_for_user(g.user.id)
    return jsonify({
        'id': g.user.id,
        'username': g.user.username,
        'email': g.user.email,
        'roles': [role.name for role in roles]
    })


def init_auth(app):
    """Resolve the acting user for every API request."""
    @app.before_request
    def resolve_actor():
        g.user = None
        if not request.path.startswith('/api'):
            return

        raw_id = request.headers.get(ACTOR_HEADER, '').strip()
        if not raw_id:
            return
        if not raw_id.isdigit():
            return jsonify({'error': f'Invalid {ACTOR_HEADER} header', 'code': 'authentication_required'}), 401

        user = db.session.get(User, int(raw_id))
        if user is None:
            return jsonify({'error': 'Unknown user', 'code': 'authentication_required'}), 401
        g.user = user
