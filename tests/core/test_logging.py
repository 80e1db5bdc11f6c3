"""Tests for logging configuration."""

import json
import logging

import structlog

from cloudsweep.core.logging import configure_logging


class TestConfigureLogging:
    """Test structlog configuration."""

    def test_json_logs(self, caplog):
        """Test that events are rendered as JSON lines with level and timestamp."""
        caplog.set_level(logging.INFO)
        try:
            configure_logging(level="INFO", json_logs=True)
            structlog.get_logger("cloudsweep.test").info("scan.completed", resources_found=3)

            payload = json.loads(caplog.records[-1].getMessage())
        finally:
            structlog.reset_defaults()

        assert payload["event"] == "scan.completed"
        assert payload["resources_found"] == 3
        assert payload["level"] == "info"
        assert payload["logger"] == "cloudsweep.test"
        assert "timestamp" in payload
