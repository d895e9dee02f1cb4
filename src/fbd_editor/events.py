from enum import Enum
from typing import Callable, List

from pydantic import BaseModel, ConfigDict


class ChangeKind(str, Enum):
    NODE_ADDED = "node_added"
    NODE_REMOVED = "node_removed"
    GEOMETRY_CHANGED = "geometry_changed"
    ATTRIBUTES_CHANGED = "attributes_changed"
    CONNECTION_ADDED = "connection_added"
    CONNECTION_REMOVED = "connection_removed"
    CONNECTION_UPDATED = "connection_updated"
    SELECTION_CHANGED = "selection_changed"
    CLEARED = "cleared"


class ChangeEvent(BaseModel):
    """A single change to the diagram, keyed by the id of the node or connection it concerns."""
    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    key: str = ""


ChangeListener = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """
    The diagram's one change-notification channel.

    Listeners are called synchronously, in subscription order, inside the
    mutation that emitted the event.
    """
    def __init__(self):
        self._listeners: List[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> ChangeListener:
        if listener not in self._listeners:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: ChangeListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, kind: ChangeKind, key: str = ""):
        event = ChangeEvent(kind=kind, key=key)
        for listener in list(self._listeners):
            listener(event)
