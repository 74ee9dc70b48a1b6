"""Status edge table for the survey review workflow.

Each edge names the grant key a role must carry in its ``status_transitions``
document for the move to be allowed. Grant keys keep the names of the seeded
permission documents ("under_revision" for review, "approved" for done).
"""
from shared.enums import SurveyStatus

STATUS_EDGES = {
    (SurveyStatus.CREATED, SurveyStatus.SUBMITTED): 'created_to_submitted',
    (SurveyStatus.SUBMITTED, SurveyStatus.REVIEW): 'submitted_to_under_revision',
    (SurveyStatus.REVIEW, SurveyStatus.REWORK): 'under_revision_to_rework',
    (SurveyStatus.REVIEW, SurveyStatus.DONE): 'under_revision_to_approved',
    # rework re-enters the submission edge
    (SurveyStatus.REWORK, SurveyStatus.SUBMITTED): 'created_to_submitted',
}


def grant_key_for(from_status, to_status):
    """Return the grant key guarding a status pair.

    Defined edges use their table key; any other pair maps to the literal
    ``"{from}_to_{to}"`` key, which the seeded roles never grant.
    """
    from_status = SurveyStatus(from_status)
    to_status = SurveyStatus(to_status)
    key = STATUS_EDGES.get((from_status, to_status))
    if key is not None:
        return key
    return f"{from_status.value}_to_{to_status.value}"
