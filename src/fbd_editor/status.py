from collections import deque
from typing import Callable, Deque, List, Tuple

import structlog

logger = structlog.get_logger(__name__)

StatusListener = Callable[[str, str], None]


class StatusSink:
    """
    Fire-and-forget status collaborator.

    Messages go to the structlog logger and become the current status-bar
    text. Calls never raise: a failing listener is logged and skipped.
    """
    def __init__(self, initial: str = "Ready", history_size: int = 50):
        self.message = initial
        self.level = "info"
        self.history: Deque[Tuple[str, str]] = deque(maxlen=history_size)
        self._listeners: List[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> StatusListener:
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: StatusListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def info(self, message: str, **context):
        self._publish("info", message, context)

    def warn(self, message: str, **context):
        self._publish("warning", message, context)

    def error(self, message: str, **context):
        self._publish("error", message, context)

    def _publish(self, level: str, message: str, context: dict):
        getattr(logger, level)("status", message=message, **context)
        self.message = message
        self.level = level
        self.history.append((level, message))
        for listener in list(self._listeners):
            try:
                listener(level, message)
            except Exception:
                logger.exception("status_listener_failed", listener=repr(listener))
