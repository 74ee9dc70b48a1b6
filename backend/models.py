from flask_sqlalchemy import SQLAlchemy
from shared.models import (
    Base, User, Role, UserRoleAssignment, Survey, SurveyStatusHistory,
    Notification, SessionHold, now
)

db = SQLAlchemy(model_class=Base)

__all__ = [
    'db', 'Base', 'User', 'Role', 'UserRoleAssignment', 'Survey',
    'SurveyStatusHistory', 'Notification', 'SessionHold', 'now',
]
