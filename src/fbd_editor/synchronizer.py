import structlog

from .anchors import anchor_position
from .core import Diagram
from .events import ChangeEvent, ChangeKind
from .models import Connection

logger = structlog.get_logger(__name__)


class ConnectionSynchronizer:
    """
    Keeps cached connection endpoints equal to the anchor positions of their nodes.

    Subscribes once to the diagram's change channel. A geometry change of a node
    recomputes the endpoints of every connection whose source or target is that
    node before the mutating call returns. Only the endpoint node itself
    triggers a recomputation.
    """
    def __init__(self, diagram: Diagram):
        self.diagram = diagram
        self._attached = False
        self.attach()

    def attach(self):
        if not self._attached:
            self.diagram.notifier.subscribe(self._on_change)
            self._attached = True

    def detach(self):
        if self._attached:
            self.diagram.notifier.unsubscribe(self._on_change)
            self._attached = False

    def _on_change(self, event: ChangeEvent):
        if event.kind == ChangeKind.GEOMETRY_CHANGED:
            self.sync_node(event.key)
        elif event.kind == ChangeKind.CONNECTION_ADDED:
            conn = self.diagram.find_connection(event.key)
            if conn is not None:
                self.sync_connection(conn)

    def sync_connection(self, conn: Connection) -> bool:
        """Recompute both endpoints of one connection. Returns False if a node is missing."""
        source = self.diagram.find_node(conn.source_node_id)
        target = self.diagram.find_node(conn.target_node_id)
        if source is None or target is None:
            logger.warning("connection_sync_skipped", connection_id=conn.id)
            return False

        start = anchor_position(source, conn.source_anchor)
        end = anchor_position(target, conn.target_anchor)
        if start != conn.start_point or end != conn.end_point:
            conn.start_point = start
            conn.end_point = end
            self.diagram.notifier.emit(ChangeKind.CONNECTION_UPDATED, conn.id)
        return True

    def sync_node(self, node_id: str) -> int:
        """Recompute every connection touching a node; returns how many were synced."""
        synced = 0
        for conn in self.diagram.connections_of(node_id):
            if self.sync_connection(conn):
                synced += 1
        return synced

    def sync_all(self) -> int:
        synced = 0
        for conn in list(self.diagram.connections):
            if self.sync_connection(conn):
                synced += 1
        return synced
