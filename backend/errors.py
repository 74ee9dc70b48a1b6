"""Error taxonomy for the status workflow.

Every error carries a stable ``code`` so callers can tell which check failed
("no such transition" versus "you lack permission") and an HTTP status for the
API layer.
"""


class WorkflowError(Exception):
    """Base class for workflow errors."""
    code = 'workflow_error'
    http_status = 500

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class RecordNotFound(WorkflowError):
    code = 'record_not_found'
    http_status = 404

    def __init__(self, session_id):
        super().__init__(f"Survey {session_id} not found", session_id=session_id)
        self.session_id = session_id


class RoleNotFound(WorkflowError):
    code = 'role_not_found'
    http_status = 404

    def __init__(self, role_ref):
        super().__init__(f"Role {role_ref} not found", role=role_ref)
        self.role_ref = role_ref


class InvalidEdge(WorkflowError):
    """The requested status pair is not a transition of the workflow."""
    code = 'invalid_edge'
    http_status = 409

    def __init__(self, from_status, to_status):
        from_value = getattr(from_status, 'value', from_status)
        to_value = getattr(to_status, 'value', to_status)
        super().__init__(
            f"No transition from '{from_value}' to '{to_value}'",
            from_status=from_value, to_status=to_value,
        )
        self.from_status = from_status
        self.to_status = to_status


class TransitionDenied(WorkflowError):
    """The edge exists but none of the actor's roles carries its grant."""
    code = 'denied'
    http_status = 403

    def __init__(self, from_status, to_status, grant_key):
        from_value = getattr(from_status, 'value', from_status)
        to_value = getattr(to_status, 'value', to_status)
        super().__init__(
            f"Insufficient permissions to change status from '{from_value}' to '{to_value}'",
            from_status=from_value, to_status=to_value, grant=grant_key,
        )
        self.from_status = from_status
        self.to_status = to_status
        self.grant_key = grant_key


class ConsistencyFailure(WorkflowError):
    """Status and ledger disagree; the session needs operator reconciliation."""
    code = 'consistency_failure'
    http_status = 409

    def __init__(self, session_id, reason):
        super().__init__(f"Survey {session_id} requires manual reconciliation: {reason}",
                         session_id=session_id)
        self.session_id = session_id
        self.reason = reason


class NotificationFailure(WorkflowError):
    """Notification dispatch failed. Logged, never returned to API callers."""
    code = 'notification_failure'
    http_status = 500


class ConcurrentTransition(WorkflowError):
    """The status kept changing underneath a request after repeated re-validation."""
    code = 'concurrent_transition'
    http_status = 409

    def __init__(self, session_id, attempts):
        super().__init__(f"Survey {session_id} status changed concurrently; retry after reading current status",
                         session_id=session_id, attempts=attempts)
        self.session_id = session_id


class UserNotFound(WorkflowError):
    code = 'user_not_found'
    http_status = 404

    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found", user_id=user_id)
        self.user_id = user_id
