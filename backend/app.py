"""Flask application factory for the Site Survey workflow backend."""
from flask import Flask, jsonify
import os
import logging
from pathlib import Path
from sqlalchemy.exc import SQLAlchemyError
from .models import db
from .blueprints import auth, notifications, roles, workflow
from .cli import (
    init_db_command, seed_roles_command, check_status_consistency_command,
    release_session_command, purge_notifications_command
)
from .errors import WorkflowError
from .logging_config import setup_logging
from .services.notification_service import NotificationDispatcher, RoleBasedRecipientPolicy
from .services.role_catalog import RoleCatalog
from .services.workflow_service import WorkflowService
from .utils import handle_api_exception
from shared.validation import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'STATUS_CHANGE_NOTIFY_ROLES': {
        '*': ['admin', 'coordinator'],
        'submitted': ['approver'],
    },
    'NOTIFY_ASSIGNEE_ON': ['rework'],
    'NOTIFICATION_RETENTION_DAYS': 30,
    'TRANSITION_MAX_RETRIES': 3,
    'ROLE_SEED_PATH': os.path.join(os.path.dirname(__file__), 'data', 'roles.json'),
}


def create_app(test_config=None):
    """Flask application factory for the survey workflow backend.

    Creates and configures a Flask application instance with:
    - SQLAlchemy database integration
    - Role catalog, notification dispatcher and workflow service
    - Blueprint registration for API endpoints
    - Workflow error handlers
    - CLI command registration
    - Logging configuration

    Args:
        test_config (dict, optional): Configuration overrides for testing

    Returns:
        Flask: Configured Flask application instance
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(DEFAULT_CONFIG)

    if test_config is None:
        config_loaded = app.config.from_pyfile('config.py', silent=True)
    else:
        app.config.from_mapping(test_config)

    setup_logging(app.config)
    logger.info("Starting Flask application initialization")
    if test_config is not None:
        logger.info("Loaded test configuration")
    elif config_loaded:
        logger.info("Loaded configuration from instance/config.py")
    else:
        logger.debug("No instance config file found, using defaults")

    try:
        Path(app.instance_path).mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.debug(f"Instance directory already exists: {app.instance_path}")

    if 'SQLALCHEMY_DATABASE_URI' not in app.config:
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite+pysqlite:///workflow.db'
        logger.info(f"Configured database URI: {app.config['SQLALCHEMY_DATABASE_URI']}")
    else:
        logger.info(f"Using existing database URI: {app.config['SQLALCHEMY_DATABASE_URI']}")

    db.init_app(app)
    logger.info("SQLAlchemy database initialized")

    init_workflow(app)

    logger.info("Registering API blueprints")
    app.register_blueprint(auth.bp)
    app.register_blueprint(workflow.bp)
    app.register_blueprint(notifications.bp)
    app.register_blueprint(roles.bp)
    logger.info("All API blueprints registered successfully")

    auth.init_auth(app)
    register_error_handlers(app)

    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_roles_command)
    app.cli.add_command(check_status_consistency_command)
    app.cli.add_command(release_session_command)
    app.cli.add_command(purge_notifications_command)
    logger.info("CLI commands registered: init-db, seed-roles, check-status-consistency, "
                "release-session, purge-notifications")

    logger.info("Flask application initialization completed successfully")
    return app


def init_workflow(app):
    """Build the workflow components and attach them to ``app.extensions``."""
    catalog = RoleCatalog()
    policy = RoleBasedRecipientPolicy(
        catalog,
        notify_roles=app.config['STATUS_CHANGE_NOTIFY_ROLES'],
        notify_assignee_on=app.config['NOTIFY_ASSIGNEE_ON'],
    )
    dispatcher = NotificationDispatcher(policy)
    service = WorkflowService(catalog, dispatcher, max_retries=app.config['TRANSITION_MAX_RETRIES'])

    app.extensions['role_catalog'] = catalog
    app.extensions['notification_dispatcher'] = dispatcher
    app.extensions['workflow_service'] = service
    logger.info("Workflow services initialized")


def register_error_handlers(app):
    @app.errorhandler(WorkflowError)
    def handle_workflow_error(error):
        if error.http_status >= 500 or error.code == 'consistency_failure':
            logger.error(f"Workflow error ({error.code}): {error.message}")
        else:
            logger.warning(f"Workflow error ({error.code}): {error.message}")
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        logger.warning(f"Validation error: {error}")
        return jsonify({'error': str(error), 'code': ValidationError.code}), ValidationError.http_status

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error):
        db.session.rollback()
        return handle_api_exception(error, "complete database operation")


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
