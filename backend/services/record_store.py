"""Survey record store used by the workflow. Only touches the status column."""
import logging
from ..models import db, Survey
from ..errors import RecordNotFound
from shared.enums import SurveyStatus
from shared.models import now

logger = logging.getLogger(__name__)


class SqlSurveyRecordStore:
    """Record store over the ``survey`` table.

    ``set_status`` does not commit; the workflow commits it together with the
    ledger entry.
    """

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def get_record(self, session_id):
        return self.session.query(Survey).filter(Survey.session_id == session_id).first()

    def get_status(self, session_id):
        # Column query so the value comes from the database, not the identity map
        status = self.session.query(Survey.status).filter(Survey.session_id == session_id).scalar()
        if status is None:
            raise RecordNotFound(session_id)
        return SurveyStatus(status)

    def set_status(self, session_id, status, expected_status=None):
        """Write the status, optionally only if it still equals ``expected_status``.

        Returns:
            bool: False when no row matched (unknown session or stale status)
        """
        query = self.session.query(Survey).filter(Survey.session_id == session_id)
        if expected_status is not None:
            query = query.filter(Survey.status == SurveyStatus(expected_status))
        updated = query.update(
            {Survey.status: SurveyStatus(status), Survey.updated_at: now()},
            synchronize_session='fetch',
        )
        if updated:
            logger.debug(f"Survey {session_id} status set to {SurveyStatus(status).value}")
        return bool(updated)
