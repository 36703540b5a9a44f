import os
import sys

import pytest
from loguru import logger

from neuroevolution_library.logging_setup import RateLimitedLog, setup_logger


@pytest.fixture
def warnings_seen():
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="WARNING")
    yield messages
    logger.remove(handler_id)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestRateLimitedLog:

    def test_burst_is_collapsed(self, warnings_seen):
        log = RateLimitedLog(interval=5.0, burst=100, clock=FakeClock())
        assert log.warning("bad value {}", 1)
        assert not any(log.warning("bad value {}", 1) for _ in range(100))
        assert log.warning("bad value {}", 1)
        assert warnings_seen == ["bad value 1", "bad value 1 (100 similar warnings suppressed)"]

    def test_interval_reopens(self, warnings_seen):
        clock = FakeClock()
        log = RateLimitedLog(interval=5.0, burst=100, clock=clock)
        log.warning("first")
        assert not log.warning("second")
        clock.now = 5.5
        assert log.warning("third")
        assert warnings_seen == ["first", "third (1 similar warnings suppressed)"]

    def test_should_emit_without_logging(self):
        log = RateLimitedLog(interval=1.0, burst=2, clock=FakeClock())
        assert [log.should_emit() for _ in range(4)] == [True, False, False, True]


class TestSetupLogger:

    def test_console_only(self):
        try:
            assert setup_logger(None, "WARNING") is None
        finally:
            logger.remove()
            logger.add(sys.stderr)

    def test_file_sink(self, tmp_path):
        log_dir = tmp_path / "logs"
        try:
            path = setup_logger(str(log_dir), "DEBUG")
            logger.info("hello from the test")
        finally:
            logger.remove()
            logger.add(sys.stderr)
        assert os.path.dirname(path) == str(log_dir)
        with open(path, encoding="utf-8") as f:
            assert "hello from the test" in f.read()
