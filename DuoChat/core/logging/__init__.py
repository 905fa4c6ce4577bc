"""
Logging setup for DuoChat.

Every module logs through the standard library::

    import logging
    logger = logging.getLogger(__name__)

This package only decides where records go and how they look:

- colored console output for interactive runs
- rotating plain-text files (``duochat.log`` and ``duochat_errors.log``)
- optional JSON lines for log shippers
- presets per environment, picked from ``DUOCHAT_ENV``

Configuration:
    from DuoChat.core.logging import configure_logging, LogConfig

    configure_logging(LogConfig(level="DEBUG", file_output=False))
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class LogConfig:
    """
    Configuration for the logging system.

    Attributes:
        level: Minimum log level name
        log_dir: Directory for log files
        console_output: Whether to log to stdout
        file_output: Whether to log to rotating files
        json_output: Write files as JSON lines instead of text
        max_bytes: Size of a log file before rotation
        backup_count: Number of rotated files to keep
        format_string: Custom format string for text output
        date_format: Date format for text output
        component_levels: Logger name -> level overrides
    """
    level: str = "INFO"
    log_dir: str = "./logs"
    console_output: bool = True
    file_output: bool = True
    json_output: bool = False
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    format_string: Optional[str] = None
    date_format: str = "%Y-%m-%d %H:%M:%S"
    component_levels: Dict[str, str] = field(default_factory=dict)


class ColoredFormatter(logging.Formatter):
    """Adds ANSI colors to the level name on terminals."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.platform != 'win32' and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JsonFormatter(logging.Formatter):
    """Formats each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        if record.exc_info:
            payload['exception'] = self.formatException(record.exc_info)
        extra = getattr(record, 'extra_data', None)
        if isinstance(extra, dict):
            payload.update(extra)
        return json.dumps(payload, default=str)


def get_default_format() -> str:
    """Format used on the console."""
    return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_detailed_format() -> str:
    """Format used in log files."""
    return (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(filename)s:%(lineno)d - %(funcName)s] - %(message)s"
    )


_handlers: List[logging.Handler] = []


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(config: LogConfig) -> None:
    """
    Install handlers on the root logger according to ``config``.

    Handlers installed by a previous call are removed first, so this
    can be called again (tests do) without duplicating output.
    """
    root = logging.getLogger()
    root.setLevel(_level(config.level))

    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()

    if config.console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(_level(config.level))
        console.setFormatter(ColoredFormatter(
            config.format_string or get_default_format(), config.date_format
        ))
        _handlers.append(console)

    if config.file_output:
        Path(config.log_dir).mkdir(parents=True, exist_ok=True)
        if config.json_output:
            file_formatter: logging.Formatter = JsonFormatter()
        else:
            file_formatter = logging.Formatter(
                config.format_string or get_detailed_format(), config.date_format
            )

        main_file = logging.handlers.RotatingFileHandler(
            os.path.join(config.log_dir, "duochat.log"),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        main_file.setLevel(_level(config.level))
        main_file.setFormatter(file_formatter)
        _handlers.append(main_file)

        error_file = logging.handlers.RotatingFileHandler(
            os.path.join(config.log_dir, "duochat_errors.log"),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        error_file.setLevel(logging.ERROR)
        error_file.setFormatter(file_formatter)
        _handlers.append(error_file)

    for handler in _handlers:
        root.addHandler(handler)

    for component, level in config.component_levels.items():
        logging.getLogger(component).setLevel(_level(level))

    logging.getLogger(__name__).info("Logging configured with level %s", config.level)


def get_logger(name: str) -> logging.Logger:
    """Shortcut for ``logging.getLogger``."""
    return logging.getLogger(name)


def create_development_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/dev",
        max_bytes=5 * 1024 * 1024,
        backup_count=3,
        component_levels={
            "websockets": "WARNING",
            "uvicorn.access": "WARNING",
        }
    )


def create_production_config() -> LogConfig:
    return LogConfig(
        level="INFO",
        log_dir="./logs/prod",
        console_output=False,
        json_output=True,
        max_bytes=50 * 1024 * 1024,
        backup_count=10,
        component_levels={
            "websockets": "ERROR",
            "uvicorn.access": "WARNING",
        }
    )


def create_testing_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        console_output=True,
        file_output=False,
        format_string="%(levelname)s - %(name)s - %(message)s",
        component_levels={
            "websockets": "ERROR",
        }
    )


def auto_configure(env: Optional[str] = None) -> str:
    """
    Configure logging from a named preset.

    Args:
        env: development, production or testing (and their short forms).
             Falls back to ``DUOCHAT_ENV`` and then to development.

    Returns:
        The environment name that was applied
    """
    if env is None:
        env = os.environ.get("DUOCHAT_ENV", "development")
    env = env.lower()

    presets = {
        "development": create_development_config,
        "dev": create_development_config,
        "production": create_production_config,
        "prod": create_production_config,
        "testing": create_testing_config,
        "test": create_testing_config,
    }
    configure_logging(presets.get(env, create_development_config)())
    logging.getLogger(__name__).info("Logging auto-configured for environment: %s", env)
    return env


__all__ = [
    'LogConfig',
    'ColoredFormatter',
    'JsonFormatter',
    'configure_logging',
    'get_logger',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
    'auto_configure',
    'get_default_format',
    'get_detailed_format',
]
