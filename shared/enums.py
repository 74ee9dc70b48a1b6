import enum


class SurveyStatus(str, enum.Enum):
    """Survey status values used throughout the application.

    Used in Survey model to track the review lifecycle of a site survey.
    """
    CREATED = "created"
    SUBMITTED = "submitted"
    REVIEW = "review"
    REWORK = "rework"
    DONE = "done"


class AccessLevel(str, enum.Enum):
    """Access level a role grants on surveys in a given status.

    Ordered: EDIT > VIEW > NONE.
    """
    NONE = "none"
    VIEW = "view"
    EDIT = "edit"

    @property
    def rank(self):
        return _ACCESS_RANK[self]


_ACCESS_RANK = {AccessLevel.NONE: 0, AccessLevel.VIEW: 1, AccessLevel.EDIT: 2}


class PermissionAction(str, enum.Enum):
    """Actions a role may be granted on a resource."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"


class NotificationType(str, enum.Enum):
    """Notification categories.

    Used in Notification model; status changes use STATUS_CHANGE.
    """
    SURVEY_CREATED = "survey_created"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    REWORK = "rework"
    APPROVAL = "approval"


class RoleName(str, enum.Enum):
    """Names of the seeded roles."""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    COORDINATOR = "coordinator"
    SURVEY_ENGINEER = "survey_engineer"
    APPROVER = "approver"
