"""Enhanced logging using Rich."""
import logging
from pathlib import Path
from typing import Dict, Optional, Union

from rich.logging import RichHandler
from rich.markup import escape

from webgate_mcp_server.constants import EMOJI_MAP
from webgate_mcp_server.utils.logging.console import console


def _logging_settings():
    """Logging section of the loaded config, or defaults before config is loaded."""
    from webgate_mcp_server import config as config_module

    if config_module._config is not None:
        return config_module._config.logging
    return config_module.LoggingConfig()


class GatewayLogger:
    """Enhanced logger with Rich formatting and emojis."""

    def __init__(self, name: str, level: Union[str, int] = None):
        """Initialize the logger.

        Args:
            name: Logger name
            level: Log level; the configured level when omitted
        """
        self.name = name
        self.level = level
        self.configure()

    def configure(self):
        """(Re)build handlers from the current logging settings."""
        settings = _logging_settings()
        level = self.level
        self.emoji_enabled = settings.emoji_enabled

        # Set up Rich handler
        self.console = console
        rich_handler = RichHandler(
            console=self.console,
            rich_tracebacks=True,
            markup=True,
            show_time=settings.show_timestamps,
            show_path=False,
            enable_link_path=False,
        )

        # Set up file handler if configured
        handlers = [rich_handler]
        if settings.file:
            log_path = Path(settings.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            handlers.append(file_handler)

        self.logger = logging.getLogger(self.name)

        level = level or settings.level
        if isinstance(level, str):
            level = getattr(logging, level.upper())
        self.logger.setLevel(level)
        self.logger.propagate = False

        # Remove existing handlers
        for existing in list(self.logger.handlers):
            self.logger.removeHandler(existing)
            existing.close()

        for new_handler in handlers:
            self.logger.addHandler(new_handler)

    def _format_message(self, message: str, emoji_key: Optional[str] = None, **kwargs) -> str:
        """Format log message with emoji and optional metadata.

        Args:
            message: The log message
            emoji_key: Key for emoji lookup
            **kwargs: Additional context data to include

        Returns:
            Formatted message
        """
        emoji = ""
        if self.emoji_enabled and emoji_key and emoji_key in EMOJI_MAP:
            emoji = f"{EMOJI_MAP[emoji_key]} "

        formatted_message = f"{emoji}{escape(str(message))}"

        if kwargs:
            context_pairs = []
            for key, value in kwargs.items():
                if key == "time" and isinstance(value, (int, float)):
                    context_pairs.append(f"[time]{value:.2f}s[/time]")
                elif key == "domain":
                    context_pairs.append(f"[domain]{escape(str(value))}[/domain]")
                elif key == "tool":
                    context_pairs.append(f"[tool]{value}[/tool]")
                else:
                    context_pairs.append(f"{key}={escape(str(value))}")

            if context_pairs:
                formatted_message = f"{formatted_message} " + " ".join(context_pairs)

        return formatted_message

    def debug(self, message: str, emoji_key: Optional[str] = "debug", **kwargs):
        """Log a debug message."""
        self.logger.debug(self._format_message(message, emoji_key, **kwargs))

    def info(self, message: str, emoji_key: Optional[str] = "info", **kwargs):
        """Log an info message."""
        self.logger.info(self._format_message(message, emoji_key, **kwargs))

    def warning(self, message: str, emoji_key: Optional[str] = "warning", **kwargs):
        """Log a warning message."""
        self.logger.warning(self._format_message(message, emoji_key, **kwargs))

    def error(self, message: str, emoji_key: Optional[str] = "error", exc_info=False, **kwargs):
        """Log an error message.

        Args:
            message: The log message
            emoji_key: Key for emoji lookup
            exc_info: Exception info forwarded to the handler for a rich traceback
            **kwargs: Additional context data to include
        """
        self.logger.error(self._format_message(message, emoji_key, **kwargs), exc_info=exc_info)

    def critical(self, message: str, emoji_key: Optional[str] = "critical", exc_info=False, **kwargs):
        """Log a critical message."""
        self.logger.critical(self._format_message(message, emoji_key, **kwargs), exc_info=exc_info)

    def success(self, message: str, emoji_key: Optional[str] = "success", **kwargs):
        """Log a success message (alias for info with success styling)."""
        formatted = self._format_message(message, emoji_key, **kwargs)
        self.logger.info(f"[success]{formatted}[/success]")


_loggers: Dict[str, GatewayLogger] = {}


def get_logger(name: str) -> GatewayLogger:
    """Get a logger instance with caching.

    Args:
        name: Logger name

    Returns:
        GatewayLogger instance
    """
    if name not in _loggers:
        _loggers[name] = GatewayLogger(name)
    return _loggers[name]


def configure_logging() -> None:
    """Apply the loaded logging settings to every logger created so far.

    Loggers are created at import time, before the configuration is loaded;
    the CLI calls this once the configuration is known.
    """
    for gateway_logger in _loggers.values():
        gateway_logger.configure()


logger = get_logger("webgate_mcp_server")
