"""Tests for logging configuration."""
import json
import logging
import os
import sys
from datetime import datetime
from backend.app import create_app
from backend.logging_config import StructuredFormatter, resolve_logging_settings, setup_logging
from shared.enums import PermissionAction, SurveyStatus


def make_record(level, msg, args=(), exc_info=None, lineno=1):
    return logging.LogRecord('backend.workflow', level, __file__, lineno, msg, args, exc_info)


def test_structured_formatter_merges_extra_fields():
    record = make_record(logging.INFO, 'Survey %s moved', ('S-1',))
    record.extra_fields = {'session_id': 'S-1', 'to_status': 'submitted'}

    entry = json.loads(StructuredFormatter().format(record))
    assert entry['message'] == 'Survey S-1 moved'
    assert entry['level'] == 'INFO'
    assert entry['logger'] == 'backend.workflow'
    assert entry['session_id'] == 'S-1'
    assert entry['to_status'] == 'submitted'
    assert 'location' not in entry


def test_structured_formatter_serializes_domain_values():
    record = make_record(logging.INFO, 'Role loaded')
    record.extra_fields = {
        'to_status': SurveyStatus.SUBMITTED,
        'changed_at': datetime(2024, 5, 1, 9, 30),
        'actions': {PermissionAction.UPDATE, PermissionAction.READ},
    }

    entry = json.loads(StructuredFormatter().format(record))
    assert entry['to_status'] == 'submitted'
    assert entry['changed_at'] == '2024-05-01T09:30:00'
    assert entry['actions'] == ['read', 'update']


def test_errors_carry_location_and_exception_type():
    try:
        raise ConnectionError('notification store unreachable')
    except ConnectionError:
        record = make_record(logging.ERROR, 'Dispatch failed', exc_info=sys.exc_info(), lineno=42)

    entry = json.loads(StructuredFormatter().format(record))
    assert entry['location'] == 'test_logging_config:42'
    assert entry['exception_type'] == 'ConnectionError'
    assert 'notification store unreachable' in entry['exception']


def test_settings_prefer_app_config_over_environment(monkeypatch):
    monkeypatch.setenv('LOG_LEVEL', 'warning')
    monkeypatch.setenv('LOG_FILE', 'from-env.log')
    monkeypatch.delenv('LOG_BACKUP_COUNT', raising=False)

    settings = resolve_logging_settings({'LOG_LEVEL': 'debug', 'LOG_MAX_BYTES': '2048'})
    assert settings['LOG_LEVEL'] == 'DEBUG'
    assert settings['LOG_FILE'] == 'from-env.log'
    assert settings['LOG_MAX_BYTES'] == 2048
    assert settings['LOG_BACKUP_COUNT'] == 5


def test_log_file_written_under_log_dir(app, tmp_path):
    assert (tmp_path / 'logs' / 'workflow.log').exists()


def test_app_config_controls_logging(tmp_path):
    create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'workflow.db'}",
        'LOG_LEVEL': 'DEBUG',
        'LOG_DIR': str(tmp_path / 'app-logs'),
        'LOG_FILE': 'api.log',
    })
    assert logging.getLogger().level == logging.DEBUG
    assert (tmp_path / 'app-logs' / 'api.log').exists()


def test_setup_replaces_only_its_own_handlers(tmp_path):
    root = logging.getLogger()
    foreign = logging.NullHandler()
    root.addHandler(foreign)
    try:
        setup_logging({'LOG_DIR': str(tmp_path)})
        settings = setup_logging({'LOG_DIR': str(tmp_path), 'LOG_LEVEL': 'warning'})

        ours = [h for h in root.handlers if getattr(h, 'workflow_handler', False)]
        assert len(ours) == 2
        assert foreign in root.handlers
        assert root.level == logging.WARNING
        assert settings['log_file'] == os.path.join(str(tmp_path), 'workflow.log')
    finally:
        root.removeHandler(foreign)
