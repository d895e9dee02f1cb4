class DiagramError(Exception):
    """Base class for errors raised by the diagram engine."""


class InvalidConnection(DiagramError, ValueError):
    """Raised when a connection would join anchors of the same kind or a node to itself.

    Rejected at the model boundary before any mutation happens.
    """


class AnchorUnresolved(DiagramError):
    """Raised while loading when a node's anchors are not yet resolvable by the render layer."""

    def __init__(self, node_id: str, attempts: int = 0):
        self.node_id = node_id
        self.attempts = attempts
        super().__init__(f"Anchors of node '{node_id}' unresolved after {attempts} attempt(s)")


class StorageError(DiagramError):
    """Raised for any I/O or format failure while saving or loading a document.

    The message is meant for the user; the underlying cause is chained.
    """


class NotFound(DiagramError, KeyError):
    """Raised when looking up a node or connection id that is not in the diagram."""

    def __str__(self):
        return str(self.args[0]) if self.args else "not found"
