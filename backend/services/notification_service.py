"""Status change notifications and the recipient inbox."""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from flask import current_app
from ..models import db, Notification
from ..errors import NotificationFailure
from shared.enums import NotificationType, RoleName, SurveyStatus
from shared.models import local_now

logger = logging.getLogger(__name__)

DEFAULT_NOTIFY_ROLES = {
    '*': [RoleName.ADMIN.value, RoleName.COORDINATOR.value],
    SurveyStatus.SUBMITTED.value: [RoleName.APPROVER.value],
}
DEFAULT_NOTIFY_ASSIGNEE_ON = [SurveyStatus.REWORK.value]

STATUS_CHANGE_TITLES = {
    SurveyStatus.SUBMITTED: 'Survey Submitted',
    SurveyStatus.DONE: 'Survey Approved',
    SurveyStatus.REWORK: 'Survey Rework Requested',
}
DEFAULT_STATUS_CHANGE_TITLE = 'Survey Status Changed'


@dataclass(frozen=True)
class StatusChangeEvent:
    session_id: str
    from_status: SurveyStatus
    to_status: SurveyStatus
    acting_user_id: Optional[int]
    project_id: Optional[int] = None
    assigned_user_id: Optional[int] = None


def status_change_title(new_status):
    return STATUS_CHANGE_TITLES.get(SurveyStatus(new_status), DEFAULT_STATUS_CHANGE_TITLE)


def status_change_message(session_id, old_status, new_status):
    return f"Survey {session_id} status changed from {SurveyStatus(old_status).value} to {SurveyStatus(new_status).value}"


class RoleBasedRecipientPolicy:
    """Pick recipients by the roles they hold.

    ``notify_roles`` maps a target status (or ``'*'`` for every change) to the
    role names whose holders are notified. The survey's assignee is added when
    the new status is in ``notify_assignee_on`` and they hold the survey
    engineer role. The acting user is always excluded.
    """

    def __init__(self, catalog, notify_roles=None, notify_assignee_on=None):
        self.catalog = catalog
        self.notify_roles = notify_roles if notify_roles is not None else DEFAULT_NOTIFY_ROLES
        self.notify_assignee_on = set(notify_assignee_on if notify_assignee_on is not None
                                      else DEFAULT_NOTIFY_ASSIGNEE_ON)

    def recipients(self, event):
        to_status = SurveyStatus(event.to_status).value
        role_names = list(self.notify_roles.get('*', [])) + list(self.notify_roles.get(to_status, []))

        user_ids = set()
        for role_name in role_names:
            user_ids.update(self.catalog.holders_of(role_name))

        if to_status in self.notify_assignee_on and event.assigned_user_id is not None:
            if event.assigned_user_id in self.catalog.holders_of(RoleName.SURVEY_ENGINEER.value):
                user_ids.add(event.assigned_user_id)

        user_ids.discard(event.acting_user_id)
        return sorted(user_ids)


class SqlNotificationSink:
    """Notification sink writing rows through the SQLAlchemy session."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def create(self, notification):
        self.session.add(notification)
        return notification


class NotificationDispatcher:
    """Fans status changes out to recipients and serves their inbox."""

    def __init__(self, policy, sink=None, session=None):
        self.policy = policy
        self.sink = sink if sink is not None else SqlNotificationSink(session)
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def dispatch(self, event):
        """Create one status_change notification per recipient and commit.

        Raises:
            NotificationFailure: recipients could not be resolved or stored,
                whatever the underlying error.
                Only the notification rows are rolled back.
        """
        try:
            recipients = self.policy.recipients(event)
            title = status_change_title(event.to_status)
            message = status_change_message(event.session_id, event.from_status, event.to_status)
            notifications = []
            for user_id in recipients:
                notification = Notification(
                    user_id=user_id,
                    title=title,
                    message=message,
                    type=NotificationType.STATUS_CHANGE,
                    related_survey_id=event.session_id,
                    related_project_id=event.project_id,
                    is_read=False,
                    created_at=local_now(),
                )
                self.sink.create(notification)
                notifications.append(notification)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise NotificationFailure(
                f"Failed to dispatch status change notifications for survey {event.session_id}: {e}",
                session_id=event.session_id,
            ) from e

        logger.info(f"Dispatched {len(notifications)} status change notifications for {event.session_id}", extra={
            'extra_fields': {
                'session_id': event.session_id,
                'from_status': SurveyStatus(event.from_status).value,
                'to_status': SurveyStatus(event.to_status).value,
                'recipients': recipients,
            }
        })
        return notifications

    # Inbox

    def list_for_user(self, user_id, limit=50, offset=0):
        return (
            self.session.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def unread_count(self, user_id):
        return (
            self.session.query(Notification)
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .count()
        )

    def mark_as_read(self, notification_id, user_id):
        """Mark one of the recipient's notifications read.

        Returns None when the notification does not exist or belongs to someone
        else. ``read_at`` keeps the time of the first read.
        """
        notification = (
            self.session.query(Notification)
            .filter_by(id=notification_id, user_id=user_id)
            .first()
        )
        if notification is None:
            return None
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = local_now()
            self.session.commit()
        return notification

    def mark_all_as_read(self, user_id):
        updated = (
            self.session.query(Notification)
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .update({'is_read': True, 'read_at': local_now()}, synchronize_session=False)
        )
        self.session.commit()
        logger.debug(f"Marked {updated} notifications read for user {user_id}")
        return updated

    def purge_older_than(self, days=30):
        cutoff = local_now() - timedelta(days=days)
        deleted = (
            self.session.query(Notification)
            .filter(Notification.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        logger.info(f"Purged {deleted} notifications older than {days} days")
        return deleted


def get_notification_dispatcher():
    """Notification dispatcher bound to the current Flask app."""
    return current_app.extensions['notification_dispatcher']
