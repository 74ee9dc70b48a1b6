from flask import Blueprint, jsonify, g
from .auth import login_required
from ..services.notification_service import get_notification_dispatcher
from ..utils import api_error, pagination_args
from shared.schemas import NotificationSchema

bp = Blueprint('notifications', __name__, url_prefix='/api')


def serialize_notification(notification):
    return NotificationSchema.model_validate(notification).model_dump(mode='json')


@bp.route('/notifications', methods=['GET'])
@login_required
def list_notifications():
    """List the current user's notifications, newest first."""
    limit, offset = pagination_args()
    notifications = get_notification_dispatcher().list_for_user(g.user.id, limit=limit, offset=offset)
    return jsonify({'notifications': [serialize_notification(n) for n in notifications]})


@bp.route('/notifications/unread-count', methods=['GET'])
@login_required
def unread_count():
    return jsonify({'count': get_notification_dispatcher().unread_count(g.user.id)})


@bp.route('/notifications/<int:notification_id>/read', methods=['PUT'])
@login_required
def mark_read(notification_id):
    """Mark one notification read. Only its recipient may do this."""
    notification = get_notification_dispatcher().mark_as_read(notification_id, g.user.id)
    if notification is None:
        return api_error('Notification not found', 404, code='not_found')
    return jsonify(serialize_notification(notification))


@bp.route('/notifications/mark-all-read', methods=['PUT'])
@login_required
def mark_all_read():
    updated = get_notification_dispatcher().mark_all_as_read(g.user.id)
    return jsonify({'updated': updated})
