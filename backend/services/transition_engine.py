"""Status state machine for survey records."""
import enum
import logging
from ..errors import InvalidEdge, TransitionDenied
from shared.enums import SurveyStatus
from shared.transitions import STATUS_EDGES
from shared.validation import Validator

logger = logging.getLogger(__name__)


class CheckResult(str, enum.Enum):
    OK = "ok"
    DENIED = "denied"
    INVALID_EDGE = "invalid_edge"


class StatusTransitionEngine:
    """Validates and applies status transitions.

    Edges are hard constraints for every role: a pair outside ``STATUS_EDGES``
    is rejected before any grant is looked at. For a defined edge, one role
    carrying the edge's grant is enough.
    """

    def __init__(self, edges=None):
        self.edges = dict(edges if edges is not None else STATUS_EDGES)

    def check(self, roles, from_status, to_status):
        from_status = Validator.validate_status(from_status, 'from_status')
        to_status = Validator.validate_status(to_status, 'to_status')

        if (from_status, to_status) not in self.edges:
            return CheckResult.INVALID_EDGE
        grant_key = self.edges[(from_status, to_status)]
        if any(role.status_transitions.get(grant_key) is True for role in roles):
            return CheckResult.OK
        return CheckResult.DENIED

    def validate(self, roles, from_status, to_status):
        """Raise InvalidEdge or TransitionDenied unless the move is allowed.

        Returns:
            str: the grant key that authorized the transition
        """
        result = self.check(roles, from_status, to_status)
        from_status = SurveyStatus(from_status)
        to_status = SurveyStatus(to_status)

        if result is CheckResult.INVALID_EDGE:
            logger.warning(f"Rejected undefined transition {from_status.value} -> {to_status.value}")
            raise InvalidEdge(from_status, to_status)

        grant_key = self.edges[(from_status, to_status)]
        if result is CheckResult.DENIED:
            role_names = ', '.join(role.name for role in roles) or 'none'
            logger.warning(f"Denied transition {from_status.value} -> {to_status.value}: "
                           f"grant '{grant_key}' missing from roles [{role_names}]")
            raise TransitionDenied(from_status, to_status, grant_key)
        return grant_key

    def allowed_targets(self, roles, from_status):
        """Statuses the actor may request from ``from_status``."""
        from_status = Validator.validate_status(from_status, 'from_status')
        candidates = [to for (frm, to) in self.edges if frm == from_status]
        return [to for to in candidates if self.check(roles, from_status, to) is CheckResult.OK]

    @staticmethod
    def apply(record, to_status):
        """Set the record's status field. Writes no history and sends nothing."""
        record.status = SurveyStatus(to_status)
        return record
