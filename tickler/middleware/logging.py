"""
Logging setup and the event-log middleware.

Process logs go to ~/.tickler/logs/tickler_YYYYMMDD.log; every bus event is
also appended to events_YYYYMMDD.jsonl so a day's fires can be replayed
from disk.
"""

from __future__ import annotations

import base64
import json
import logging
from datetime import datetime
from pathlib import Path

from tickler.core.bus import MiddlewareNext
from tickler.core.events import Event, EventType

DEFAULT_LOG_DIR = Path.home() / ".tickler" / "logs"


def setup_logging(
    log_dir: Path | None = None,
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Configure the "tickler" logger.

    Args:
        log_dir: Directory for log files (default: ~/.tickler/logs)
        console_level: Minimum level for console output
        file_level: Minimum level for file output

    Returns:
        The configured logger
    """
    log_dir = (log_dir or DEFAULT_LOG_DIR).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("tickler")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console)

    log_file = log_dir / f"tickler_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    logger.info(f"Logging initialized. File: {log_file}")
    return logger


class EventLogger:
    """
    Bus middleware that records scheduler events.

    Usage:
        event_logger = EventLogger(log_dir=config.get_log_dir())
        bus.use(event_logger.middleware)
    """

    def __init__(
        self,
        log_dir: Path | None = None,
        log_events: bool = True,
    ) -> None:
        self._log_dir = (log_dir or DEFAULT_LOG_DIR).expanduser()
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_events = log_events
        self._events_file = self._log_dir / f"events_{datetime.now().strftime('%Y%m%d')}.jsonl"
        self._logger = logging.getLogger("tickler.events")

    @property
    def events_file(self) -> Path:
        return self._events_file

    async def middleware(self, event: Event, next_handler: MiddlewareNext) -> Event:
        """Log the event, then pass it on."""
        intent_id = event.intent_id
        if event.type == EventType.INTENT_FAILED:
            self._logger.warning(f"[{event.type}] {intent_id}: {event.data.get('error')}")
        elif event.type == EventType.HEARTBEAT_ERROR:
            self._logger.warning(f"[{event.type}] {event.data.get('error')}")
        else:
            suffix = f" intent={intent_id}" if intent_id else ""
            self._logger.debug(f"[{event.type}] source={event.source}{suffix}")

        if self._log_events:
            self._write_event(event)

        return await next_handler(event)

    def _write_event(self, event: Event) -> None:
        record = {
            "timestamp": datetime.fromtimestamp(event.timestamp).isoformat(),
            "id": event.id,
            "type": event.type,
            "source": event.source,
            "data": self._safe_serialize(event.data),
            "intent_id": event.intent_id,
        }
        try:
            with open(self._events_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            self._logger.warning(f"Failed to write event log: {e}")

    @staticmethod
    def _safe_serialize(data: dict) -> dict:
        """Make event data JSON-safe. Payload bytes are base64-encoded."""
        result = {}
        for key, value in data.items():
            if isinstance(value, bytes):
                result[key] = base64.b64encode(value).decode("ascii")
                continue
            try:
                json.dumps(value)
                result[key] = value
            except (TypeError, ValueError):
                result[key] = str(value)
        return result
