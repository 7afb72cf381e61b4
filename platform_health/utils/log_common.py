import os
import sys
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union

import loguru
import loguru._logger
from memoization import CachingAlgorithmFlag, cached

from ..schemas.logging import LogLevel

LOG_LEVEL_ENV = "PLATFORM_HEALTH_LOG_LEVEL"
LOG_PATH_ENV = "PLATFORM_HEALTH_LOG_PATH"


class LogRotationConfig:
    """Rotation settings for the file sink."""

    def __init__(
        self,
        max_file_size: str = "10 MB",
        backup_count: int = 5,
        compression: Optional[str] = "gz",
        rotation_time: Optional[str] = None,
    ):
        """
        Initialize log rotation configuration.

        Args:
            max_file_size: Maximum size before rotation (e.g., "10 MB", "50 KB")
            backup_count: Number of rotated files to keep
            compression: "gz", "zip" or None
            rotation_time: Time-based rotation (e.g., "daily", "1 hour"), wins over size

        """
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.compression = compression
        self.rotation_time = rotation_time

    @property
    def rotation(self) -> str:
        return self.rotation_time or self.max_file_size


class LogManager:
    """
    Thread-safe singleton that owns the sinks shared by every engine logger.

    loguru has a single global logger, so sinks are installed once per
    process and every ``build_logger`` call returns a logger bound to its
    component name.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Ensure singleton pattern with thread safety."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._sink_ids = []
                    cls._instance._level = LogLevel.INFO
                    cls._instance._verbose = True
        return cls._instance

    @property
    def level(self) -> LogLevel:
        return self._level

    def setup_log_directory(self, log_path: Path) -> Path:
        """
        Ensure the log directory exists and is writable.

        Falls back to a directory under the system temp dir otherwise.
        """
        try:
            log_path.mkdir(parents=True, exist_ok=True)
            probe_file = log_path / ".write_test"
            probe_file.touch()
            probe_file.unlink()
            return log_path
        except OSError:
            fallback_path = Path(tempfile.gettempdir()) / "platform_health_logs"
            fallback_path.mkdir(parents=True, exist_ok=True)
            print(
                f"Warning: Cannot write to {log_path}, using fallback: {fallback_path}",
                file=sys.stderr,
            )
            return fallback_path

    def log_filter(self, record: dict) -> bool:
        """Drop records under the configured level and debug noise when not verbose."""
        try:
            if record["level"].no < self._level.value:
                return False
            if record["level"].no <= LogLevel.DEBUG.value and not self._verbose:
                return False
            if record["level"].no >= LogLevel.ERROR.value and not self._verbose:
                record["exception"] = None
            return True
        except (KeyError, AttributeError):
            return True

    def configure(
        self,
        level: LogLevel,
        log_path: Optional[Path],
        rotation_config: LogRotationConfig,
        format_string: str,
        log_verbose: bool,
    ) -> None:
        with self._lock:
            self._level = level
            self._verbose = log_verbose

            loguru.logger.remove()
            self._sink_ids = []
            self._sink_ids.append(
                loguru.logger.add(
                    sys.stderr,
                    format=format_string,
                    level=level.name,
                    filter=self.log_filter,
                    colorize=True,
                )
            )

            if log_path is not None:
                directory = self.setup_log_directory(log_path)
                self._sink_ids.append(
                    loguru.logger.add(
                        directory / "platform_health.log",
                        format=format_string,
                        level=level.name,
                        rotation=rotation_config.rotation,
                        retention=rotation_config.backup_count,
                        compression=rotation_config.compression,
                        colorize=False,
                        filter=self.log_filter,
                        backtrace=True,
                        diagnose=False,
                        enqueue=True,
                    )
                )


def _get_effective_log_level(level: Optional[Union[str, int, LogLevel]]) -> LogLevel:
    """
    Resolve the level for the sinks.

    Priority: explicit ``level`` argument, then ``PLATFORM_HEALTH_LOG_LEVEL``,
    then INFO. An invalid environment value is reported and ignored.
    """
    if level is not None:
        return LogLevel(level)

    env_log_level = os.getenv(LOG_LEVEL_ENV)
    if env_log_level:
        try:
            return LogLevel(env_log_level)
        except ValueError:
            print(
                f"Warning: Invalid log level '{env_log_level}' in {LOG_LEVEL_ENV}, using INFO",
                file=sys.stderr,
            )
    return LogLevel.INFO


DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    level: Optional[Union[str, int, LogLevel]] = None,
    log_path: Optional[Union[str, Path]] = None,
    rotation_config: Optional[LogRotationConfig] = None,
    format_string: Optional[str] = None,
    log_verbose: bool = True,
) -> None:
    """
    Install the console sink and, when ``log_path`` is given, a rotating file sink.

    Safe to call more than once; the latest call wins. ``log_path`` defaults
    to ``PLATFORM_HEALTH_LOG_PATH`` when that variable is set.
    """
    global _configured
    if log_path is None and os.getenv(LOG_PATH_ENV):
        log_path = os.getenv(LOG_PATH_ENV)
    if isinstance(log_path, str):
        log_path = Path(log_path)

    loguru.logger.configure(extra={"component": "-"})
    LogManager().configure(
        level=_get_effective_log_level(level),
        log_path=log_path,
        rotation_config=rotation_config or LogRotationConfig(),
        format_string=format_string or DEFAULT_FORMAT,
        log_verbose=log_verbose,
    )
    with _configure_lock:
        _configured = True


@cached(max_size=100, algorithm=CachingAlgorithmFlag.LRU)
def build_logger(name: str = "platform_health") -> loguru._logger.Logger:
    """
    Return a loguru logger bound to ``name``.

    Sinks are installed on first use with the environment defaults; call
    ``configure_logging`` earlier to pick a level or a log directory.

    Example:
        ```python
        logger = build_logger("aggregator")
        logger.info("snapshot ready")
        ```

    Raises:
        ValueError: If name is empty

    """
    if not name or not isinstance(name, str):
        raise ValueError("name must be a non-empty string")

    with _configure_lock:
        needs_setup = not _configured
    if needs_setup:
        configure_logging()

    return loguru.logger.bind(component=name)
