"""
Tests for logging setup.
"""

import structlog

from bridgeswap.logger import setup_logging


class TestSetupLogging:
    def test_events_are_timestamped(self):
        setup_logging()
        try:
            processors = structlog.get_config()["processors"]
            assert any(isinstance(p, structlog.processors.TimeStamper) for p in processors)
        finally:
            structlog.reset_defaults()
