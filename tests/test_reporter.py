# tests/test_reporter.py - Tests for batch delivery
"""
Unit tests for the Reporter and the delivery-failure log.
"""

import re
from unittest.mock import Mock

import pytest
import requests
from apm_agent.exceptions import ConfigurationError
from apm_agent.exporters.batch import Batch
from apm_agent.exporters.reporter import DeliveryLog, Reporter, intake_url


ENDPOINT = "http://collector:8200/intake/v2/events"


def make_session(status_code=202, side_effect=None):
    session = Mock()
    session.post.return_value = Mock(status_code=status_code, reason='Accepted')
    session.post.side_effect = side_effect
    return session


class TestReporter:
    """Test cases for Reporter"""

    def test_intake_url(self):
        assert intake_url("http://localhost:8200") == "http://localhost:8200/intake/v2/events"
        assert intake_url("http://apm:8200/") == "http://apm:8200/intake/v2/events"

    def test_deliver_posts_once(self):
        """Test one POST with NDJSON body and agent headers"""
        session = make_session()
        batch = Batch(lines=['{"a":1}\n', '{"b":2}\n'])

        result = Reporter(timeout=0.3, session=session).deliver(batch, ENDPOINT)

        assert result.delivered
        assert result.status_code == 202
        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args == (ENDPOINT,)
        assert kwargs['data'] == b'{"a":1}\n{"b":2}\n'
        assert kwargs['timeout'] == 0.3
        assert kwargs['headers']['Content-Type'] == 'application/x-ndjson'
        assert kwargs['headers']['User-Agent'].startswith('apm-agent-python/')
        assert 'Authorization' not in kwargs['headers']

    def test_bearer_token(self):
        """Test the secret token is sent as a bearer credential"""
        session = make_session()

        Reporter(session=session).deliver(Batch(lines=[]), ENDPOINT, secret_token='s3cret')

        headers = session.post.call_args[1]['headers']
        assert headers['Authorization'] == 'Bearer s3cret'

    def test_transport_failure_logged_not_retried(self, tmp_path):
        """Test a transport error writes one log line and is not retried"""
        log_path = tmp_path / 'apm.log'
        session = make_session(side_effect=requests.ConnectionError("connection refused"))

        result = Reporter(log_path=str(log_path), session=session).deliver(
            Batch(lines=['{}\n']), ENDPOINT)

        assert not result.delivered
        assert result.error == "connection refused"
        assert session.post.call_count == 1
        content = log_path.read_text()
        assert re.match(
            r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] "
            r"http://collector:8200/intake/v2/events connection refused\n$",
            content,
        )

    def test_failure_without_log(self):
        """Test a failure without a log path is only returned"""
        session = make_session(side_effect=requests.Timeout())

        result = Reporter(session=session).deliver(Batch(lines=[]), ENDPOINT)

        assert not result.delivered
        assert result.error == "Timeout"

    def test_http_error_status(self, tmp_path):
        """Test a rejected batch counts as a failed delivery"""
        log_path = tmp_path / 'apm.log'
        session = make_session(status_code=400)
        session.post.return_value.reason = 'Bad Request'

        result = Reporter(log_path=str(log_path), session=session).deliver(
            Batch(lines=[]), ENDPOINT)

        assert not result.delivered
        assert result.status_code == 400
        assert "HTTP 400 Bad Request" in log_path.read_text()

    def test_unopenable_log(self, tmp_path):
        """Test an inaccessible log file is a configuration error"""
        session = make_session(side_effect=requests.ConnectionError("down"))
        reporter = Reporter(log_path=str(tmp_path / 'missing' / 'apm.log'), session=session)

        with pytest.raises(ConfigurationError):
            reporter.deliver(Batch(lines=[]), ENDPOINT)


class TestDeliveryLog:
    """Test cases for DeliveryLog"""

    def test_appends(self, tmp_path):
        log_path = tmp_path / 'apm.log'
        log = DeliveryLog(str(log_path))

        log.write(ENDPOINT, "first")
        log.write(ENDPOINT, "second")

        lines = log_path.read_text().splitlines()
        assert len(lines) == 2
        assert lines[1].endswith(f"{ENDPOINT} second")
