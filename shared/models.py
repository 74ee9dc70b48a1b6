from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, ForeignKey, Index, Enum, JSON
from sqlalchemy.orm import relationship, declarative_base
from shared.enums import SurveyStatus, NotificationType

Base = declarative_base()

# Global timezone configuration - Eastern Time (US/Eastern)
# Change this variable to use a different timezone if needed
# Uses zoneinfo for proper DST handling (EST/EDT)
from zoneinfo import ZoneInfo
APP_TIMEZONE = ZoneInfo('America/New_York')


def now():
    """Return current datetime in application timezone (Eastern Time, timezone-aware).

    Note: When stored in SQLite, timezone info is stripped (SQLite limitation).
    All stored datetimes should be treated as Eastern Time, even though they're stored naive.
    """
    return datetime.now(APP_TIMEZONE)


def as_local_naive(value):
    """Normalize a datetime to naive application time for comparisons with stored values."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(APP_TIMEZONE).replace(tzinfo=None)


def local_now():
    """Naive application-time timestamp, comparable with values read back from the database."""
    return as_local_naive(now())


def _enum_values(enum_class):
    return [member.value for member in enum_class]


def status_column_type(name):
    return Enum(SurveyStatus, name=name, values_callable=_enum_values, validate_strings=True)


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, nullable=False)
    username = Column(String(80), unique=True, nullable=False, server_default="")
    email = Column(String(120), unique=True, nullable=False, server_default="")
    created_at = Column(DateTime, default=now)
    updated_at = Column(DateTime, default=now, onupdate=now)
    role_assignments = relationship(
        'UserRoleAssignment', backref='user', lazy='select',
        foreign_keys='UserRoleAssignment.user_id', cascade="all, delete-orphan"
    )


class Role(Base):
    """Named role with its permission document.

    ``permissions`` maps resource name to a list of actions,
    ``status_transitions`` maps grant key to bool and ``status_access`` maps
    survey status to an access level. All three are stored as JSON and parsed
    into typed snapshots by the role catalog.
    """
    __tablename__ = 'roles'
    id = Column(Integer, primary_key=True, nullable=False)
    name = Column(String(50), unique=True, nullable=False)
    description = Column(Text, server_default="")
    permissions = Column(JSON, nullable=False, default=dict)
    status_transitions = Column(JSON, nullable=False, default=dict)
    status_access = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True, nullable=False, server_default='1')
    created_at = Column(DateTime, default=now)
    updated_at = Column(DateTime, default=now, onupdate=now)
    assignments = relationship('UserRoleAssignment', backref='role', lazy='select')


class UserRoleAssignment(Base):
    __tablename__ = 'user_roles'
    id = Column(Integer, primary_key=True, nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey('roles.id', ondelete='CASCADE'), nullable=False, index=True)
    assigned_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    assigned_at = Column(DateTime, default=now)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, server_default='1')

Index('idx_user_roles_user_active', UserRoleAssignment.user_id, UserRoleAssignment.is_active)


class Survey(Base):
    """Survey record. Only the status column belongs to the workflow."""
    __tablename__ = 'survey'
    id = Column(Integer, primary_key=True, nullable=False)
    session_id = Column(String(255), unique=True, nullable=False)
    status = Column(status_column_type('survey_status'), default=SurveyStatus.CREATED, nullable=False,
                    server_default=SurveyStatus.CREATED.value)
    project = Column(String(255), server_default="")
    project_id = Column(Integer, nullable=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    creator_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=now)
    updated_at = Column(DateTime, default=now, onupdate=now)


class SurveyStatusHistory(Base):
    """Append-only ledger of applied status transitions."""
    __tablename__ = 'survey_status_history'
    id = Column(Integer, primary_key=True, nullable=False)
    session_id = Column(String(255), ForeignKey('survey.session_id'), nullable=False)
    username = Column(String(100), nullable=False)
    current_status = Column(status_column_type('history_current_status'), nullable=False)
    new_status = Column(status_column_type('history_new_status'), nullable=False)
    changed_at = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)

Index('idx_status_history_session_changed', SurveyStatusHistory.session_id, SurveyStatusHistory.changed_at)
Index('idx_status_history_username', SurveyStatusHistory.username)


class Notification(Base):
    __tablename__ = 'notifications'
    id = Column(Integer, primary_key=True, nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(Enum(NotificationType, name='notification_type', values_callable=_enum_values,
                       validate_strings=True), nullable=False, index=True)
    related_survey_id = Column(String(255), nullable=True)
    related_project_id = Column(Integer, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False, server_default='0', index=True)
    created_at = Column(DateTime, default=local_now, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)


class SessionHold(Base):
    """Blocks transitions on a session until an operator reconciles it."""
    __tablename__ = 'session_holds'
    session_id = Column(String(255), primary_key=True)
    reason = Column(Text, nullable=False, server_default="")
    created_at = Column(DateTime, default=now)
