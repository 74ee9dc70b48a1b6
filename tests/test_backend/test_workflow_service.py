"""Tests for transition orchestration."""
import threading
import pytest
from sqlalchemy.exc import OperationalError
from backend.errors import (
    ConcurrentTransition, ConsistencyFailure, InvalidEdge, RecordNotFound, TransitionDenied, UserNotFound
)
from backend.models import db, Notification, SessionHold, SurveyStatusHistory
from backend.services.notification_service import (
    NotificationDispatcher, RoleBasedRecipientPolicy, get_notification_dispatcher
)
from backend.services.record_store import SqlSurveyRecordStore
from backend.services.role_catalog import get_role_catalog
from backend.services.status_history import StatusHistoryLedger
from backend.services.workflow_service import WorkflowService, get_workflow_service
from shared.enums import SurveyStatus
from shared.validation import ValidationError


class StaleReadStore(SqlSurveyRecordStore):
    """Reports a stale status for the first ``stale_reads`` reads."""

    def __init__(self, stale_status, stale_reads=1):
        super().__init__()
        self.stale_status = stale_status
        self.stale_reads = stale_reads

    def get_status(self, session_id):
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return self.stale_status
        return super().get_status(session_id)


class AutoCommitStore(SqlSurveyRecordStore):
    """Commits the status write on its own, outside the ledger transaction."""

    def set_status(self, session_id, status, expected_status=None):
        updated = super().set_status(session_id, status, expected_status)
        self.session.commit()
        return updated


class FailingLedger(StatusHistoryLedger):
    def append(self, *args, **kwargs):
        raise OperationalError('INSERT INTO survey_status_history', {}, Exception('disk I/O error'))


class FailingSink:
    def create(self, notification):
        raise OperationalError('INSERT INTO notifications', {}, Exception('database is locked'))


class UnreachableSink:
    def create(self, notification):
        raise ConnectionError('notification store unreachable')


def service_with(**overrides):
    return WorkflowService(get_role_catalog(), get_notification_dispatcher(), **overrides)


def ledger_count(session_id):
    return db.session.query(SurveyStatusHistory).filter_by(session_id=session_id).count()


def current_status(session_id):
    return SqlSurveyRecordStore().get_status(session_id)


def test_engineer_submits_created_survey(app, make_user, make_survey):
    engineer = make_user('survey_engineer', username='eng')
    make_survey('S-1')
    with app.app_context():
        entry = get_workflow_service().request_transition('S-1', engineer, 'submitted', note='All sectors done')

        assert entry.current_status == SurveyStatus.CREATED
        assert entry.new_status == SurveyStatus.SUBMITTED
        assert entry.username == 'eng'
        assert entry.notes == 'All sectors done'
        assert current_status('S-1') == SurveyStatus.SUBMITTED
        assert ledger_count('S-1') == 1


def test_engineer_cannot_start_review(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-2', status='submitted')
    with app.app_context():
        with pytest.raises(TransitionDenied):
            get_workflow_service().request_transition('S-2', engineer, 'review')

        assert current_status('S-2') == SurveyStatus.SUBMITTED
        assert ledger_count('S-2') == 0
        assert db.session.query(Notification).count() == 0


def test_approver_approves_review(app, make_user, make_survey):
    approver = make_user('approver')
    make_survey('S-3', status='review')
    with app.app_context():
        entry = get_workflow_service().request_transition('S-3', approver, SurveyStatus.DONE)
        assert entry.new_status == SurveyStatus.DONE
        assert current_status('S-3') == SurveyStatus.DONE


def test_skipping_is_invalid_even_for_super_admin(app, make_user, make_survey):
    root = make_user('super_admin')
    make_survey('S-4')
    with app.app_context():
        with pytest.raises(InvalidEdge):
            get_workflow_service().request_transition('S-4', root, 'done')
        assert current_status('S-4') == SurveyStatus.CREATED
        assert ledger_count('S-4') == 0


def test_rework_reenters_submission(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-5', status='rework')
    with app.app_context():
        entry = get_workflow_service().request_transition('S-5', engineer, 'submitted')
        assert entry.current_status == SurveyStatus.REWORK
        assert current_status('S-5') == SurveyStatus.SUBMITTED


def test_full_review_cycle_history(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    approver = make_user('approver')
    make_survey('S-6', user_id=engineer)
    with app.app_context():
        service = get_workflow_service()
        for actor_id, target in [(engineer, 'submitted'), (approver, 'review'), (approver, 'rework'),
                                 (engineer, 'submitted'), (approver, 'review'), (approver, 'done')]:
            service.request_transition('S-6', actor_id, target)

        history = service.history('S-6')
        assert [e.new_status.value for e in history] == ['submitted', 'review', 'rework', 'submitted', 'review', 'done']
        assert all(a.new_status == b.current_status for a, b in zip(history, history[1:]))
        assert [e.changed_at for e in history] == sorted(e.changed_at for e in history)


def test_unknown_session_user_and_status(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-7')
    with app.app_context():
        service = get_workflow_service()
        with pytest.raises(RecordNotFound):
            service.request_transition('missing', engineer, 'submitted')
        with pytest.raises(UserNotFound):
            service.request_transition('S-7', 9999, 'submitted')
        with pytest.raises(ValidationError):
            service.request_transition('S-7', engineer, 'approved')
        with pytest.raises(RecordNotFound):
            service.history('missing')


def test_stale_read_is_revalidated(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-8', status='submitted')
    with app.app_context():
        service = service_with(record_store=StaleReadStore(SurveyStatus.CREATED))
        # The stale read validates, the compare-and-swap misses and the re-read rejects the move
        with pytest.raises(InvalidEdge):
            service.request_transition('S-8', engineer, 'submitted')
        assert ledger_count('S-8') == 0


def test_retries_are_bounded(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-9', status='submitted')
    with app.app_context():
        service = service_with(record_store=StaleReadStore(SurveyStatus.CREATED, stale_reads=10), max_retries=2)
        with pytest.raises(ConcurrentTransition):
            service.request_transition('S-9', engineer, 'submitted')
        assert current_status('S-9') == SurveyStatus.SUBMITTED
        assert ledger_count('S-9') == 0


def test_concurrent_requests_only_one_wins(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-10')
    outcomes = []
    start = threading.Barrier(2)

    def submit():
        with app.app_context():
            start.wait()
            try:
                get_workflow_service().request_transition('S-10', engineer, 'submitted')
                outcomes.append('ok')
            except InvalidEdge:
                outcomes.append('invalid_edge')

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ['invalid_edge', 'ok']
    with app.app_context():
        assert ledger_count('S-10') == 1


def test_failed_append_rolls_back_status(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-11')
    with app.app_context():
        service = service_with(ledger=FailingLedger())
        with pytest.raises(OperationalError):
            service.request_transition('S-11', engineer, 'submitted')

        assert current_status('S-11') == SurveyStatus.CREATED
        assert db.session.get(SessionHold, 'S-11') is None


def test_status_without_ledger_entry_holds_session(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    approver = make_user('approver')
    make_survey('S-12')
    with app.app_context():
        broken = service_with(record_store=AutoCommitStore(), ledger=FailingLedger())
        with pytest.raises(ConsistencyFailure):
            broken.request_transition('S-12', engineer, 'submitted')

        assert current_status('S-12') == SurveyStatus.SUBMITTED
        assert ledger_count('S-12') == 0
        assert db.session.get(SessionHold, 'S-12') is not None

        service = get_workflow_service()
        with pytest.raises(ConsistencyFailure) as exc_info:
            service.request_transition('S-12', approver, 'review')
        assert exc_info.value.http_status == 409

        assert service.release('S-12') is True
        assert service.release('S-12') is False
        entry = service.request_transition('S-12', approver, 'review')
        assert entry.current_status == SurveyStatus.SUBMITTED


def test_unpersisted_hold_still_blocks(app, make_user, make_survey):
    engineer = make_user('survey_engineer')
    make_survey('S-13')
    with app.app_context():
        service = get_workflow_service()
        service._unpersisted_holds['S-13'] = 'hold table unavailable'
        with pytest.raises(ConsistencyFailure, match='hold table unavailable'):
            service.request_transition('S-13', engineer, 'submitted')
        assert service.release('S-13') is True
        service.request_transition('S-13', engineer, 'submitted')


def test_notification_failure_keeps_transition(app, make_user, make_survey):
    make_user('admin')
    engineer = make_user('survey_engineer')
    make_survey('S-14')
    with app.app_context():
        dispatcher = NotificationDispatcher(RoleBasedRecipientPolicy(get_role_catalog()), sink=FailingSink())
        service = WorkflowService(get_role_catalog(), dispatcher)
        entry = service.request_transition('S-14', engineer, 'submitted')

        assert entry.new_status == SurveyStatus.SUBMITTED
        assert current_status('S-14') == SurveyStatus.SUBMITTED
        assert ledger_count('S-14') == 1
        assert db.session.query(Notification).count() == 0


def test_non_database_notification_error_keeps_transition(app, make_user, make_survey):
    make_user('admin')
    engineer = make_user('survey_engineer')
    make_survey('S-18')
    with app.app_context():
        dispatcher = NotificationDispatcher(RoleBasedRecipientPolicy(get_role_catalog()), sink=UnreachableSink())
        service = WorkflowService(get_role_catalog(), dispatcher)
        entry = service.request_transition('S-18', engineer, 'submitted')

        assert entry.new_status == SurveyStatus.SUBMITTED
        assert current_status('S-18') == SurveyStatus.SUBMITTED
        assert ledger_count('S-18') == 1
        assert db.session.query(Notification).count() == 0


def test_event_building_error_keeps_transition(app, make_user, make_survey, monkeypatch):
    engineer = make_user('survey_engineer')
    make_survey('S-19')
    with app.app_context():
        service = service_with()

        def broken_record(session_id):
            raise RuntimeError('survey record unreadable')

        monkeypatch.setattr(service.record_store, 'get_record', broken_record)
        entry = service.request_transition('S-19', engineer, 'submitted')

        assert entry.new_status == SurveyStatus.SUBMITTED
        assert current_status('S-19') == SurveyStatus.SUBMITTED
        assert ledger_count('S-19') == 1


def test_transition_notifies_team(app, make_user, make_survey):
    admin = make_user('admin')
    approver = make_user('approver')
    engineer = make_user('survey_engineer')
    make_survey('S-15', project_id=3)
    with app.app_context():
        get_workflow_service().request_transition('S-15', engineer, 'submitted')
        rows = db.session.query(Notification).order_by(Notification.user_id).all()
        assert [n.user_id for n in rows] == sorted([admin, approver])
        assert all(n.related_project_id == 3 and n.title == 'Survey Submitted' for n in rows)


def test_allowed_transitions(app, make_user, make_survey):
    approver = make_user('approver')
    engineer = make_user('survey_engineer')
    make_survey('S-16', status='review')
    with app.app_context():
        service = get_workflow_service()
        summary = service.allowed_transitions('S-16', approver)
        assert summary == {
            'session_id': 'S-16',
            'status': 'review',
            'access_level': 'edit',
            'allowed': ['rework', 'done'],
            'roles': ['approver'],
        }
        assert service.allowed_transitions('S-16', engineer)['allowed'] == []
