"""Append-only ledger of survey status transitions."""
import logging
from datetime import timedelta
from ..models import db, SurveyStatusHistory
from shared.enums import SurveyStatus
from shared.models import local_now
from shared.validation import Validator

logger = logging.getLogger(__name__)

# Smallest step used to keep per-session timestamps strictly increasing
TIMESTAMP_STEP = timedelta(microseconds=1)


class StatusHistoryLedger:
    """Write-once audit trail. Corrections are new entries, never edits."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def latest_for_session(self, session_id):
        return (
            self.session.query(SurveyStatusHistory)
            .filter(SurveyStatusHistory.session_id == session_id)
            .order_by(SurveyStatusHistory.changed_at.desc(), SurveyStatusHistory.id.desc())
            .first()
        )

    def _next_timestamp(self, session_id):
        stamp = local_now()
        latest = self.latest_for_session(session_id)
        if latest is not None and stamp <= latest.changed_at:
            stamp = latest.changed_at + TIMESTAMP_STEP
        return stamp

    def append(self, session_id, username, from_status, to_status, note=None):
        """Add an entry to the current transaction and flush it.

        The caller owns the commit so the entry lands together with the status
        change it records.
        """
        entry = SurveyStatusHistory(
            session_id=session_id,
            username=username,
            current_status=SurveyStatus(from_status),
            new_status=SurveyStatus(to_status),
            changed_at=self._next_timestamp(session_id),
            notes=Validator.sanitize_note(note),
        )
        self.session.add(entry)
        self.session.flush()
        logger.debug(f"Ledger entry {entry.id}: {session_id} {entry.current_status.value} -> "
                     f"{entry.new_status.value} by {username}")
        return entry

    def list_for_session(self, session_id):
        """All entries for a session, oldest first."""
        return (
            self.session.query(SurveyStatusHistory)
            .filter(SurveyStatusHistory.session_id == session_id)
            .order_by(SurveyStatusHistory.changed_at.asc(), SurveyStatusHistory.id.asc())
            .all()
        )
