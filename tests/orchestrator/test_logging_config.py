"""Tests for structured logging configuration."""
import json
import logging
import os
from unittest.mock import patch

import pytest

from orchestrator.logging_config import configure_logging, JSONFormatter


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger state after each test."""
    root = logging.getLogger()
    original_level = root.level
    original_handlers = root.handlers[:]
    yield
    root.setLevel(original_level)
    root.handlers = original_handlers


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_default_level_is_info(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('LOG_LEVEL', None)
            configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_log_level_case_insensitive(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'debug'}):
            configure_logging()
        assert logging.getLogger().level == logging.DEBUG

    def test_invalid_log_level_defaults_to_info(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'NONSENSE'}):
            configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_json_format_produces_parseable_json(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'json'}):
            configure_logging()
        logging.getLogger('scheduler').info("tick done")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed['level'] == 'INFO'
        assert parsed['logger'] == 'scheduler'
        assert parsed['message'] == 'tick done'
        assert 'timestamp' in parsed

    def test_json_format_carries_entity_ids(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'json'}):
            configure_logging()
        logging.getLogger('routes.webhook').info("callback", extra={'task_id': 't-1', 'lead_id': 'l-1'})
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed['task_id'] == 't-1'
        assert parsed['lead_id'] == 'l-1'
        assert 'rule_id' not in parsed

    def test_third_party_loggers_quieted_to_warning(self):
        configure_logging()
        for name in ['urllib3', 'rq.worker', 'sqlalchemy.engine', 'werkzeug']:
            assert logging.getLogger(name).level == logging.WARNING

    def test_no_duplicate_handlers_on_repeated_calls(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1


class TestJSONFormatter:

    def test_format_includes_exception(self):
        formatter = JSONFormatter()
        try:
            raise ValueError("boom")
        except ValueError:
            import sys
            record = logging.LogRecord(
                name='test', level=logging.ERROR, pathname='', lineno=0,
                msg='failed %s', args=('hard',), exc_info=sys.exc_info(),
            )
        parsed = json.loads(formatter.format(record))
        assert parsed['message'] == 'failed hard'
        assert 'ValueError' in parsed['exception']


class TestTextFormat:

    def test_entity_tags_appended(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'text'}):
            configure_logging()
        logging.getLogger('scheduler').warning("Task overdue", extra={'task_id': 't-9', 'rule_id': 'r-1'})
        line = capsys.readouterr().err.strip()
        assert line.endswith('scheduler: Task overdue [task_id=t-9 rule_id=r-1]')

    def test_untagged_record_has_no_suffix(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'text'}):
            configure_logging()
        logging.getLogger('seed').info("Seed data loaded")
        assert capsys.readouterr().err.strip().endswith('seed: Seed data loaded')

    def test_app_config_overrides_environment(self):
        from types import SimpleNamespace
        app = SimpleNamespace(config={'LOG_LEVEL': 'WARNING'})
        with patch.dict(os.environ, {'LOG_LEVEL': 'DEBUG'}):
            configure_logging(app)
        assert logging.getLogger().level == logging.WARNING
