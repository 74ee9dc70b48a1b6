"""Orchestration of survey status transitions."""
import logging
import threading
from contextlib import contextmanager
from sqlalchemy.exc import SQLAlchemyError
from flask import current_app
from ..models import db, User, SessionHold
from ..errors import ConsistencyFailure, ConcurrentTransition, NotificationFailure, UserNotFound
from .notification_service import StatusChangeEvent
from .record_store import SqlSurveyRecordStore
from .status_history import StatusHistoryLedger
from .transition_engine import StatusTransitionEngine
from shared.validation import Validator

logger = logging.getLogger(__name__)


class SessionLocks:
    """Per-session mutual exclusion within one process."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}
        self._waiters = {}

    @contextmanager
    def hold(self, session_id):
        with self._guard:
            lock = self._locks.setdefault(session_id, threading.Lock())
            self._waiters[session_id] = self._waiters.get(session_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._waiters[session_id] -= 1
                if self._waiters[session_id] == 0:
                    del self._waiters[session_id]
                    del self._locks[session_id]


class WorkflowService:
    """Runs one transition request end to end.

    Status change and ledger entry are committed in one transaction. The status
    write is a compare-and-swap on the validated status, so a request that lost
    a race re-reads and re-validates instead of applying a stale transition.
    Notifications go out after the commit and never fail the request.
    """

    def __init__(self, catalog, dispatcher, engine=None, ledger=None, record_store=None,
                 session=None, max_retries=3):
        self.catalog = catalog
        self.dispatcher = dispatcher
        self.engine = engine if engine is not None else StatusTransitionEngine()
        self.ledger = ledger if ledger is not None else StatusHistoryLedger(session)
        self.record_store = record_store if record_store is not None else SqlSurveyRecordStore(session)
        self._session = session
        self.max_retries = max_retries
        self.locks = SessionLocks()
        # Holds that could not be persisted
        self._unpersisted_holds = {}

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def request_transition(self, session_id, actor_user_id, to_status, note=None):
        """Move a survey to ``to_status`` on behalf of ``actor_user_id``.

        Returns:
            SurveyStatusHistory: the ledger entry for the applied transition

        Raises:
            RecordNotFound, UserNotFound, InvalidEdge, TransitionDenied,
            ConcurrentTransition, ConsistencyFailure, ValidationError
        """
        to_status = Validator.validate_status(to_status)
        note = Validator.sanitize_note(note)

        with self.locks.hold(session_id):
            self._ensure_not_held(session_id)
            actor = self.session.get(User, actor_user_id)
            if actor is None:
                raise UserNotFound(actor_user_id)
            roles = self.catalog.roles_for_user(actor_user_id)

            entry = None
            for attempt in range(1, self.max_retries + 1):
                from_status = self.record_store.get_status(session_id)
                self.engine.validate(roles, from_status, to_status)
                entry = self._commit_transition(session_id, actor, from_status, to_status, note)
                if entry is not None:
                    break
                logger.info(f"Survey {session_id} left '{from_status.value}' during request "
                            f"(attempt {attempt}/{self.max_retries}); re-validating")
            if entry is None:
                raise ConcurrentTransition(session_id, self.max_retries)

        logger.info(f"Survey {session_id}: {entry.current_status.value} -> {entry.new_status.value} by {actor.username}",
                    extra={'extra_fields': {
                        'session_id': session_id,
                        'from_status': entry.current_status.value,
                        'to_status': entry.new_status.value,
                        'actor': actor.username,
                        'ledger_id': entry.id,
                    }})
        self._notify(session_id, entry, actor_user_id)
        return entry

    def _commit_transition(self, session_id, actor, from_status, to_status, note):
        try:
            if not self.record_store.set_status(session_id, to_status, expected_status=from_status):
                self.session.rollback()
                return None
            entry = self.ledger.append(session_id, actor.username, from_status, to_status, note)
            self.session.commit()
            return entry
        except SQLAlchemyError as e:
            logger.error(f"Failed to commit transition for survey {session_id}: {e}", exc_info=True)
            try:
                self.session.rollback()
            except SQLAlchemyError:
                logger.critical(f"Rollback failed for survey {session_id}", exc_info=True)
            self._verify_after_failure(session_id, to_status, e)
            raise

    def _verify_after_failure(self, session_id, to_status, error):
        """Hold the session if the status moved without its ledger entry."""
        try:
            status = self.record_store.get_status(session_id)
            latest = self.ledger.latest_for_session(session_id)
        except SQLAlchemyError:
            logger.critical(f"Could not verify survey {session_id} after failed transition", exc_info=True)
            reason = f"state unknown after failed transition: {error}"
            self._hold(session_id, reason)
            raise ConsistencyFailure(session_id, reason) from error

        if status == to_status and (latest is None or latest.new_status != to_status):
            reason = f"status is '{status.value}' but the ledger append failed: {error}"
            self._hold(session_id, reason)
            raise ConsistencyFailure(session_id, reason) from error

    def _hold(self, session_id, reason):
        logger.critical(f"Holding survey {session_id} for manual reconciliation: {reason}")
        try:
            if self.session.get(SessionHold, session_id) is None:
                self.session.add(SessionHold(session_id=session_id, reason=reason))
                self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.critical(f"Could not persist hold for survey {session_id}", exc_info=True)
            self._unpersisted_holds[session_id] = reason

    def _ensure_not_held(self, session_id):
        reason = self._unpersisted_holds.get(session_id)
        if reason is None:
            hold = self.session.get(SessionHold, session_id)
            if hold is not None:
                reason = hold.reason
        if reason is not None:
            logger.warning(f"Refusing transition on held survey {session_id}")
            raise ConsistencyFailure(session_id, reason)

    def release(self, session_id):
        """Clear a hold after manual reconciliation. Returns True if one existed."""
        released = self._unpersisted_holds.pop(session_id, None) is not None
        hold = self.session.get(SessionHold, session_id)
        if hold is not None:
            self.session.delete(hold)
            self.session.commit()
            released = True
        if released:
            logger.warning(f"Released hold on survey {session_id}")
        return released

    def _notify(self, session_id, entry, actor_user_id):
        try:
            record = self.record_store.get_record(session_id)
            event = StatusChangeEvent(
                session_id=session_id,
                from_status=entry.current_status,
                to_status=entry.new_status,
                acting_user_id=actor_user_id,
                project_id=record.project_id if record is not None else None,
                assigned_user_id=record.user_id if record is not None else None,
            )
            self.dispatcher.dispatch(event)
        except NotificationFailure as e:
            logger.error(f"Notification dispatch failed for survey {session_id}: {e}", exc_info=True)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Could not load survey {session_id} for notifications: {e}", exc_info=True)
        except Exception as e:
            # The transition is already committed
            self.session.rollback()
            logger.error(f"Unexpected error notifying for survey {session_id}: {e}", exc_info=True)

    # Read surface

    def history(self, session_id):
        self.record_store.get_status(session_id)
        return self.ledger.list_for_session(session_id)

    def allowed_transitions(self, session_id, actor_user_id):
        status = self.record_store.get_status(session_id)
        roles = self.catalog.roles_for_user(actor_user_id)
        return {
            'session_id': session_id,
            'status': status.value,
            'access_level': self.catalog.effective_access_level(roles, status).value,
            'allowed': [target.value for target in self.engine.allowed_targets(roles, status)],
            'roles': [role.name for role in roles],
        }


def get_workflow_service():
    """Workflow service bound to the current Flask app."""
    return current_app.extensions['workflow_service']
