"""Survey status workflow blueprint for Flask API."""
import logging
from flask import Blueprint, jsonify, g
from .auth import login_required
from ..services.workflow_service import get_workflow_service
from ..utils import parse_json_body
from shared.schemas import TransitionRequest, TransitionEventSchema

logger = logging.getLogger(__name__)

bp = Blueprint('workflow', __name__, url_prefix='/api')


def serialize_event(entry):
    return TransitionEventSchema.model_validate(entry).model_dump(mode='json')


@bp.route('/surveys/<session_id>/status', methods=['POST'])
@login_required
def request_transition(session_id):
    """Move a survey to a new status."""
    body = parse_json_body(TransitionRequest)
    entry = get_workflow_service().request_transition(session_id, g.user.id, body.status, body.note)
    return jsonify(serialize_event(entry)), 201


@bp.route('/surveys/<session_id>/status-history', methods=['GET'])
@login_required
def status_history(session_id):
    """Ledger of applied transitions, oldest first."""
    entries = get_workflow_service().history(session_id)
    return jsonify({
        'session_id': session_id,
        'history': [serialize_event(entry) for entry in entries]
    })


@bp.route('/surveys/<session_id>/transitions', methods=['GET'])
@login_required
def allowed_transitions(session_id):
    """Current status, the actor's access level and the moves they may request."""
    return jsonify(get_workflow_service().allowed_transitions(session_id, g.user.id))
