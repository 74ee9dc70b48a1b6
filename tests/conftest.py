"""Pytest configuration and fixtures for Site Survey workflow tests."""
import itertools
import pytest
from backend.app import create_app
from backend.models import db, Role, Survey, User, UserRoleAssignment
from backend.services.role_catalog import load_role_seed, seed_roles
from shared.enums import SurveyStatus


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Create and configure a test app instance on a temporary SQLite file."""
    monkeypatch.setenv('LOG_DIR', str(tmp_path / 'logs'))
    db_path = tmp_path / 'workflow.db'

    test_config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    }

    app = create_app(test_config)

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def seeded_roles(app):
    """Seed the default roles. Returns role name to id."""
    with app.app_context():
        seed_roles(load_role_seed(app.config['ROLE_SEED_PATH']))
        return {role.name: role.id for role in db.session.query(Role).all()}


@pytest.fixture
def make_user(app, seeded_roles):
    """Factory creating a user holding the named roles. Returns the user id."""
    counter = itertools.count(1)

    def _make_user(*role_names, username=None):
        with app.app_context():
            username = username or f"user{next(counter)}"
            user = User(username=username, email=f"{username}@example.com")
            db.session.add(user)
            db.session.flush()
            for role_name in role_names:
                db.session.add(UserRoleAssignment(user_id=user.id, role_id=seeded_roles[role_name], is_active=True))
            db.session.commit()
            return user.id

    return _make_user


@pytest.fixture
def make_survey(app):
    """Factory creating a survey record in the given status."""
    def _make_survey(session_id, status=SurveyStatus.CREATED, user_id=None, project_id=None):
        with app.app_context():
            survey = Survey(session_id=session_id, status=SurveyStatus(status), user_id=user_id,
                            project_id=project_id, project='Tower rollout')
            db.session.add(survey)
            db.session.commit()
            return session_id

    return _make_survey

