"""
Logging module for StreaMan.
Provides colored console output, optional rotating log file and
per-recording log context (channel name and recording id).
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


ROOT_LOGGER = 'streamman'


# ANSI color codes for console output
class Colors:
    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


def short_id(record: logging.LogRecord) -> str:
    """First block of the record's recording id, empty when it has none."""
    recording_id = getattr(record, 'recording_id', None)
    return recording_id[:8] if recording_id else ""


class ColoredFormatter(logging.Formatter):
    """Console formatter with colored level names and channel tags."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.MAGENTA,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')

        channel = getattr(record, 'channel', None)
        if channel:
            recording = short_id(record)
            tag = f"{channel} {recording}" if recording else channel
            channel_str = f"{Colors.CYAN}[{tag}]{Colors.RESET} "
        else:
            channel_str = ""

        level_str = f"{color}{record.levelname:8}{Colors.RESET}"
        message = f"{Colors.GRAY}{timestamp}{Colors.RESET} {level_str} {channel_str}{record.getMessage()}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class FileFormatter(logging.Formatter):
    """Plain formatter for file output."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        channel = getattr(record, 'channel', '-')
        recording = short_id(record) or '-'

        message = (
            f"{timestamp} | {record.levelname:8} | {channel:20} | {recording:8} | {record.getMessage()}"
        )

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class ChannelLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps channel and recording id on log records.

    The id is unknown until the registry files the recording, so launcher
    messages carry only the channel.
    """

    def __init__(self, logger: logging.Logger, channel: str, recording_id: Optional[str] = None):
        super().__init__(logger, {'channel': channel, 'recording_id': recording_id})

    def process(self, msg, kwargs):
        kwargs.setdefault('extra', {})
        kwargs['extra']['channel'] = self.extra['channel']
        kwargs['extra']['recording_id'] = self.extra['recording_id']
        return msg, kwargs

    def for_recording(self, recording_id: str) -> 'ChannelLoggerAdapter':
        """Same channel, bound to one recording."""
        return ChannelLoggerAdapter(self.logger, self.extra['channel'], recording_id)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 5
) -> logging.Logger:
    """
    Set up the main application logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Path to log file. If empty, logs only to console.
        max_size_mb: Maximum log file size before rotation.
        backup_count: Number of backup log files to keep.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter())
    console_handler.setLevel(logging.DEBUG)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(FileFormatter())
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get the application logger.

    Args:
        name: Optional name for child logger.

    Returns:
        Logger instance.
    """
    if name:
        return logging.getLogger(f'{ROOT_LOGGER}.{name}')
    return logging.getLogger(ROOT_LOGGER)


def get_channel_logger(
    channel: str,
    name: Optional[str] = None,
    recording_id: Optional[str] = None
) -> ChannelLoggerAdapter:
    """
    Get a logger adapter for a specific channel.

    Args:
        channel: Channel being recorded.
        name: Optional child logger name.
        recording_id: Recording the messages belong to, if already assigned.

    Returns:
        ChannelLoggerAdapter with channel (and recording) context.
    """
    return ChannelLoggerAdapter(get_logger(name), channel, recording_id)
