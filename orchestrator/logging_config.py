"""
Logging for the API process, the RQ dispatch worker and the reconcile loop.

configure_logging() is called once from create_app(). LOG_LEVEL / LOG_FORMAT
come from the environment at call time; an app's config may override either.

Scheduler and rule-engine code tag records with the entity they concern:

    logger.warning("Task %s overdue", task.id, extra={'task_id': task.id})

Those tags become top-level keys in JSON output and a trailing
`[task_id=... lead_id=...]` suffix in text output.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ('task_id', 'lead_id', 'rule_id', 'event_type')

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s%(context)s'

# Chatty at INFO: HTTP pools, RQ job banners, SQL echo, the dev server
_QUIET_LOGGERS = ('urllib3', 'rq.worker', 'sqlalchemy.engine', 'werkzeug')


def _context(record):
    return {key: getattr(record, key) for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None}


class ContextFilter(logging.Filter):
    """Renders entity tags into `record.context` for the text format."""

    def filter(self, record):
        tags = _context(record)
        record.context = (' [' + ' '.join(f'{k}={v}' for k, v in tags.items()) + ']') if tags else ''
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, entity tags promoted to top-level keys."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _setting(app, name, default):
    if app is not None and app.config.get(name):
        return str(app.config[name])
    return os.getenv(name, default)


def configure_logging(app=None):
    """Install a single stderr handler on the root logger (safe to call again)."""
    level = getattr(logging, _setting(app, 'LOG_LEVEL', 'INFO').upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if _setting(app, 'LOG_FORMAT', 'text').lower() == 'json':
        handler.setFormatter(JSONFormatter())
    else:
        handler.addFilter(ContextFilter())
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
