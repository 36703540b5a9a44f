# neuroevolution_library/logging_setup.py
"""
Loguru configuration for training runs, plus a rate limiter for noisy warnings.
"""

from datetime import datetime, timezone
import os
import sys
import threading
import time

from loguru import logger


def setup_logger(log_dir=None, level="INFO", rotation="50 MB", retention="30 days"):
    """
    Sets up console logging and, when `log_dir` is given, a rotating log file.

    Args:
        log_dir (str, optional): Directory for the log file. No file sink when None.
        level (str): Logging level (DEBUG, INFO, WARNING, ERROR).
        rotation (str): Loguru rotation policy for the file sink.
        retention (str): Loguru retention policy for the file sink.

    Returns:
        str or None: Path of the log file, if one was created.
    """
    logger.remove()

    colorize = sys.stderr.isatty()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<yellow>{line}</yellow> | "
            "<level>{message}</level>"
        ),
        colorize=colorize,
    )

    if log_dir is None:
        return None

    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"training_{timestamp}.log")
    logger.add(
        log_file,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
        rotation=rotation,
        retention=retention,
        encoding="utf-8",
    )
    logger.debug("Logging to console and {}", log_file)
    return log_file


class RateLimitedLog:
    """
    Emits a warning at most once per `interval` seconds, or once every
    `burst` suppressed occurrences, whichever comes first.

    The emitted message carries how many occurrences were swallowed since the
    previous one. Safe to share between threads.
    """

    def __init__(self, interval=5.0, burst=100, clock=time.monotonic):
        self.interval = interval
        self.burst = burst
        self._clock = clock
        self._last_emit = None
        self._suppressed = 0
        self._lock = threading.Lock()

    def should_emit(self):
        with self._lock:
            now = self._clock()
            if (self._last_emit is None or now - self._last_emit > self.interval
                    or self._suppressed >= self.burst):
                self._last_emit = now
                return True
            self._suppressed += 1
            return False

    def warning(self, message, *args):
        """Logs `message` through loguru if the rate limit allows it. Returns True when emitted."""
        if not self.should_emit():
            return False
        with self._lock:
            suppressed, self._suppressed = self._suppressed, 0
        if suppressed:
            message = message + " ({} similar warnings suppressed)"
            args = args + (suppressed,)
        logger.opt(depth=1).warning(message, *args)
        return True


# Shared by every genome so a corrupt observation stream logs once, not per agent
numeric_anomaly_log = RateLimitedLog()
