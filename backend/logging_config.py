"""Logging configuration for the workflow backend.

Records go to a rotating JSON lines file and a console stream. Structured
values are attached with ``extra={'extra_fields': {...}}`` and become top-level
keys of the JSON entry.
"""
import enum
import json
import logging
import os
from datetime import date, datetime
from logging.handlers import RotatingFileHandler
from shared.models import now

LOGGING_DEFAULTS = {
    'LOG_LEVEL': 'INFO',
    'LOG_DIR': os.path.join(os.path.dirname(__file__), '..', 'logs'),
    'LOG_FILE': 'workflow.log',
    'LOG_MAX_BYTES': 10 * 1024 * 1024,
    'LOG_BACKUP_COUNT': 5,
}

QUIET_LOGGERS = ('werkzeug', 'sqlalchemy.engine')

CONSOLE_FORMAT = '%(asctime)s %(levelname)-8s %(name)-20s %(message)s'


def _json_default(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(_json_default(v) for v in value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """JSON lines formatter.

    Warnings and above also carry the source location, and exceptions carry
    their type name next to the formatted traceback.
    """

    def format(self, record):
        entry = {
            'timestamp': now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            entry['location'] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            entry['exception_type'] = record.exc_info[0].__name__
            entry['exception'] = self.formatException(record.exc_info)

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            entry.update(extra_fields)

        return json.dumps(entry, default=_json_default)


def resolve_logging_settings(config=None):
    """Merge logging settings: app config first, then environment, then defaults."""
    config = config or {}
    settings = {}
    for key, default in LOGGING_DEFAULTS.items():
        value = config.get(key)
        if value is None:
            value = os.getenv(key) or default
        settings[key] = value
    settings['LOG_LEVEL'] = str(settings['LOG_LEVEL']).upper()
    settings['LOG_MAX_BYTES'] = int(settings['LOG_MAX_BYTES'])
    settings['LOG_BACKUP_COUNT'] = int(settings['LOG_BACKUP_COUNT'])
    return settings


def setup_logging(config=None):
    """Install the workflow handlers on the root logger.

    Handlers installed by an earlier call are replaced; handlers added by
    anything else (test capture, hosting server) are left alone.

    Args:
        config (Mapping, optional): usually ``app.config``; ``LOG_*`` keys
            override the environment.

    Returns:
        dict: the resolved settings
    """
    settings = resolve_logging_settings(config)
    level = getattr(logging, settings['LOG_LEVEL'], logging.INFO)

    os.makedirs(settings['LOG_DIR'], exist_ok=True)
    log_file = os.path.join(settings['LOG_DIR'], settings['LOG_FILE'])

    root = logging.getLogger()
    root.setLevel(level)
    for handler in [h for h in root.handlers if getattr(h, 'workflow_handler', False)]:
        root.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(log_file, maxBytes=settings['LOG_MAX_BYTES'],
                                       backupCount=settings['LOG_BACKUP_COUNT'])
    file_handler.setFormatter(StructuredFormatter())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.workflow_handler = True
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info("Logging initialized", extra={
        'extra_fields': {'log_level': settings['LOG_LEVEL'], 'log_file': log_file}
    })
    settings['log_file'] = log_file
    return settings
