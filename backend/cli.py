import click
import logging
from flask import current_app
from flask.cli import with_appcontext
from .models import db, Survey, SessionHold
from .services.notification_service import get_notification_dispatcher
from .services.role_catalog import load_role_seed, seed_roles
from .services.workflow_service import get_workflow_service
from shared.enums import SurveyStatus

logger = logging.getLogger(__name__)


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create tables and seed the default roles."""
    logger.info("Starting database initialization")
    db.create_all()
    logger.info("Database tables created successfully")

    seed_path = current_app.config['ROLE_SEED_PATH']
    logger.info(f"Seeding roles from {seed_path}")
    summary = seed_roles(load_role_seed(seed_path))
    click.echo(f"Initialized the database. Roles created: {summary['created']}, "
               f"already present: {summary['unchanged']}.")


@click.command('seed-roles')
@click.option('--update', 'update_existing', is_flag=True, help='Overwrite existing roles with the seed definitions')
@click.option('--path', 'seed_path', default=None, help='Seed file (defaults to ROLE_SEED_PATH)')
@with_appcontext
def seed_roles_command(update_existing, seed_path):
    """Insert (or with --update, refresh) the seeded roles."""
    seed_path = seed_path or current_app.config['ROLE_SEED_PATH']
    summary = seed_roles(load_role_seed(seed_path), update_existing=update_existing)
    click.echo(f"Roles created: {summary['created']}, updated: {summary['updated']}, "
               f"unchanged: {summary['unchanged']}")


def find_status_mismatches():
    """Surveys whose status disagrees with their latest ledger entry.

    A survey with no ledger entries must still be in its initial status.

    Returns:
        list of dict: session_id, status and ledger_status for each mismatch
    """
    ledger = get_workflow_service().ledger
    mismatches = []
    for survey in db.session.query(Survey).order_by(Survey.session_id).all():
        latest = ledger.latest_for_session(survey.session_id)
        expected = latest.new_status if latest is not None else None
        if expected is None:
            if survey.status != SurveyStatus.CREATED:
                mismatches.append({'session_id': survey.session_id, 'status': survey.status.value,
                                   'ledger_status': None})
        elif survey.status != expected:
            mismatches.append({'session_id': survey.session_id, 'status': survey.status.value,
                               'ledger_status': expected.value})
    return mismatches


@click.command('check-status-consistency')
@click.option('--hold', 'hold_mismatches', is_flag=True, help='Place a hold on every inconsistent session')
@with_appcontext
def check_status_consistency_command(hold_mismatches):
    """Compare each survey's status with its status history."""
    logger.info(f"Starting status consistency check (hold={hold_mismatches})")
    mismatches = find_status_mismatches()

    for mismatch in mismatches:
        click.echo(f"Survey {mismatch['session_id']}: status '{mismatch['status']}', "
                   f"ledger says '{mismatch['ledger_status']}'")
        if hold_mismatches and db.session.get(SessionHold, mismatch['session_id']) is None:
            db.session.add(SessionHold(session_id=mismatch['session_id'],
                                       reason='status does not match status history'))
    if hold_mismatches:
        db.session.commit()

    held = db.session.query(SessionHold).count()
    logger.info(f"Status consistency check finished: {len(mismatches)} mismatches, {held} holds")
    click.echo(f"Checked {db.session.query(Survey).count()} surveys, {len(mismatches)} inconsistent, {held} held.")


@click.command('release-session')
@click.argument('session_id')
@with_appcontext
def release_session_command(session_id):
    """Release a held session after manual reconciliation."""
    service = get_workflow_service()
    latest = service.ledger.latest_for_session(session_id)
    survey = db.session.query(Survey).filter_by(session_id=session_id).first()
    if survey is not None and latest is not None and survey.status != latest.new_status:
        click.echo(f"Warning: survey {session_id} status '{survey.status.value}' still differs from "
                   f"ledger '{latest.new_status.value}'")

    if service.release(session_id):
        click.echo(f"Released survey {session_id}.")
    else:
        click.echo(f"Survey {session_id} was not held.")


@click.command('purge-notifications')
@click.option('--days', type=int, default=None, help='Retention in days (defaults to NOTIFICATION_RETENTION_DAYS)')
@with_appcontext
def purge_notifications_command(days):
    """Delete notifications older than the retention period."""
    days = days if days is not None else current_app.config['NOTIFICATION_RETENTION_DAYS']
    deleted = get_notification_dispatcher().purge_older_than(days)
    click.echo(f"Deleted {deleted} notifications older than {days} days.")
