"""
Structured logging utilities for the Rent Watch system.

Component loggers emit one JSON document per record so log lines can be
filtered by component, search id or user id.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "rent_watch"

COMPONENTS = [
    "conversation.engine",
    "conversation.sessions",
    "scheduler",
    "pipeline",
    "dispatcher",
    "registry",
    "ledger",
    "telegram.bot",
    "telegram.channel",
    "orchestrator",
]


class ComponentLogger:
    """
    Structured logger for system components.

    Every message is wrapped with the component name, a timestamp and any
    fixed context supplied at construction time.
    """

    def __init__(
        self, component_name: str, extra_context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize component logger.

        Args:
            component_name: Dotted component name (e.g. 'scheduler', 'conversation.engine')
            extra_context: Additional context to include in all log messages
        """
        self.component_name = component_name
        self.extra_context = extra_context or {}
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component_name}")

    def _format_message(
        self, message: str, extra: Optional[Dict[str, Any]] = None
    ) -> str:
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "component": self.component_name,
            "message": message,
            **self.extra_context,
        }
        if extra:
            log_data.update(extra)
        return json.dumps(log_data, default=str, ensure_ascii=False)

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._format_message(message, extra))

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.info(self._format_message(message, extra))

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._format_message(message, extra))

    def error(
        self,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
        exc_info: bool = False,
    ):
        extra = dict(extra or {})
        if exc_info:
            extra["exception"] = True
        self.logger.error(self._format_message(message, extra), exc_info=exc_info)

    def critical(
        self,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
        exc_info: bool = False,
    ):
        extra = dict(extra or {})
        if exc_info:
            extra["exception"] = True
        self.logger.critical(self._format_message(message, extra), exc_info=exc_info)


class LoggingManager:
    """
    Centralized logging configuration.

    Sets up console output, a rotating main log, a rotating error log and
    one rotating file per known component.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: str = "INFO",
        file_logging: bool = True,
    ):
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.file_logging = file_logging
        self.component_loggers: Dict[str, ComponentLogger] = {}

        if self.file_logging:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_logging()

    def _setup_logging(self):
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(self.log_level)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if not self.file_logging:
            return

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "rent_watch.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "errors.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)

        self._setup_component_loggers()

    def _setup_component_loggers(self):
        """Attach a rotating file to each known component logger."""
        for component in COMPONENTS:
            component_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
            component_logger.handlers.clear()

            component_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / f"{component.replace('.', '_')}.log",
                maxBytes=5 * 1024 * 1024,  # 5MB
                backupCount=2,
                encoding="utf-8",
            )
            component_handler.setLevel(self.log_level)
            component_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
            )
            component_logger.addHandler(component_handler)

    def get_component_logger(
        self, component_name: str, extra_context: Optional[Dict[str, Any]] = None
    ) -> ComponentLogger:
        cache_key = f"{component_name}_{hash(str(extra_context))}"
        if cache_key not in self.component_loggers:
            self.component_loggers[cache_key] = ComponentLogger(
                component_name, extra_context
            )
        return self.component_loggers[cache_key]

    def set_log_level(self, level: str):
        """Set log level for the root logger and its non-error handlers."""
        log_level = getattr(logging, level.upper())
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(log_level)

        for handler in root_logger.handlers:
            if handler.level == logging.ERROR and getattr(handler, "baseFilename", ""):
                continue
            handler.setLevel(log_level)
        self.log_level = log_level

    def get_log_stats(self) -> Dict[str, Any]:
        stats = {
            "log_directory": str(self.log_dir),
            "log_level": logging.getLevelName(self.log_level),
            "component_loggers": len(self.component_loggers),
            "log_files": [],
        }

        if self.file_logging:
            for log_file in self.log_dir.glob("*.log"):
                file_stats = log_file.stat()
                stats["log_files"].append(
                    {
                        "name": log_file.name,
                        "size_bytes": file_stats.st_size,
                        "modified": datetime.fromtimestamp(
                            file_stats.st_mtime
                        ).isoformat(),
                    }
                )

        return stats


# Global logging manager instance
_logging_manager: Optional[LoggingManager] = None


def setup_logging(
    log_dir: str = "logs", log_level: str = "INFO", file_logging: bool = True
) -> LoggingManager:
    """
    Setup global logging configuration.

    Args:
        log_dir: Directory for log files
        log_level: Default log level
        file_logging: Write rotating log files in addition to stdout

    Returns:
        LoggingManager instance
    """
    global _logging_manager
    _logging_manager = LoggingManager(log_dir, log_level, file_logging)
    return _logging_manager


def get_logger(
    component_name: str, extra_context: Optional[Dict[str, Any]] = None
) -> ComponentLogger:
    """
    Get a component logger, initializing console-only logging on first use.
    """
    if _logging_manager is None:
        setup_logging(file_logging=False)
    return _logging_manager.get_component_logger(component_name, extra_context)


def get_logging_stats() -> Dict[str, Any]:
    """Get logging statistics."""
    if _logging_manager is None:
        return {"error": "Logging not initialized"}
    return _logging_manager.get_log_stats()
