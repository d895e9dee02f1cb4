"""
Pointer-driven interaction state machine.

Each node gets its own NodeInteractionController for drag and resize
gestures; connection drawing uses one ConnectionController shared by the whole
surface. A surface-wide PointerCapture makes the gestures mutually exclusive:
a controller leaves Idle only after acquiring the capture and releases it when
it returns to Idle. Gesture transitions never yield.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

import structlog
from pydantic import BaseModel

from .anchors import anchor_position
from .core import Diagram
from .errors import InvalidConnection
from .events import ChangeEvent, ChangeKind
from .models import AnchorKind, AnchorRef, Connection, Node, Point
from .render import RenderLayer
from .search import ConnectorSearch
from .status import StatusSink

logger = structlog.get_logger(__name__)

MIN_NODE_WIDTH = 100.0
MIN_NODE_HEIGHT = 50.0
NO_TARGET_MESSAGE = "No connection point found"


class InteractionState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    RESIZING = "resizing"
    CONNECTING = "connecting"


class ResizeCorner(str, Enum):
    TOP_LEFT = "top_left"
    TOP_RIGHT = "top_right"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"

    @classmethod
    def _missing_(cls, value: Any):
        # ハンドル名（TopLeftResize など）でも指定できる
        if isinstance(value, str):
            normalized = value.replace("Resize", "").replace("-", "").replace("_", "").lower()
            for member in cls:
                if member.value.replace("_", "") == normalized:
                    return member
        return None


class PointerTargetKind(str, Enum):
    SURFACE = "surface"
    BODY = "body"
    RESIZE_HANDLE = "resize_handle"
    ANCHOR = "anchor"
    INPUT_FIELD = "input_field"
    CONNECTION = "connection"


class PointerTarget(BaseModel):
    """The element the render layer reports under a pointer-down."""
    kind: PointerTargetKind = PointerTargetKind.SURFACE
    node_id: Optional[str] = None
    corner: Optional[ResizeCorner] = None
    anchor: Optional[AnchorKind] = None
    connection_id: Optional[str] = None


class PointerCapture:
    """Surface-wide pointer capture; at most one owner at a time."""
    def __init__(self):
        self.owner: Optional[object] = None

    @property
    def is_captured(self) -> bool:
        return self.owner is not None

    def acquire(self, owner: object) -> bool:
        if self.owner is not None and self.owner is not owner:
            return False
        self.owner = owner
        return True

    def release(self, owner: object):
        if self.owner is owner:
            self.owner = None


class SurfaceContext:
    """
    Everything a controller needs to reach the drawing surface.

    Passed explicitly to the controllers instead of being looked up globally.
    """
    def __init__(
        self,
        diagram: Diagram,
        render_layer: RenderLayer,
        status: StatusSink,
        width: float = 1600.0,
        height: float = 1000.0,
        hit_radius: float = 20.0,
        min_width: float = MIN_NODE_WIDTH,
        min_height: float = MIN_NODE_HEIGHT,
    ):
        self.diagram = diagram
        self.render_layer = render_layer
        self.status = status
        self.width = width
        self.height = height
        self.min_width = min_width
        self.min_height = min_height
        self.capture = PointerCapture()
        self.search = ConnectorSearch(diagram, render_layer, hit_radius=hit_radius)
        self.mouse_position = "Mouse Position: X:0, Y:0"

    def update_mouse_position(self, point: Point):
        self.mouse_position = f"Mouse Position: X:{point.x:.0f}, Y:{point.y:.0f}"

    def resolve_anchor(self, anchor: AnchorRef) -> Optional[Point]:
        """Anchor position from the render layer, falling back to the model geometry."""
        position = self.render_layer.resolve_anchor_screen_position(anchor.node_id, anchor.kind)
        if position is not None:
            return position
        node = self.diagram.find_node(anchor.node_id)
        return anchor_position(node, anchor.kind) if node is not None else None


# --- Geometry policies ---

class DraggingPolicy:
    """Keeps the pointer-to-origin offset of a drag and clamps moves to the surface."""
    def __init__(self):
        self.offset = Point()

    def start(self, node: Node, pointer: Point):
        self.offset = Point(x=pointer.x - node.x, y=pointer.y - node.y)

    def position(self, node: Node, pointer: Point,
                 surface_width: float, surface_height: float) -> Tuple[float, float]:
        x = pointer.x - self.offset.x
        y = pointer.y - self.offset.y
        x = max(0.0, min(x, surface_width - node.width))
        y = max(0.0, min(y, surface_height - node.height))
        return x, y


class ResizePolicy:
    """
    Corner-handle resizing with a minimum size.

    The edges opposite the dragged corner never move: when a dimension hits its
    floor the origin is derived from the fixed edge, not from the cursor.
    """
    def __init__(self, min_width: float = MIN_NODE_WIDTH, min_height: float = MIN_NODE_HEIGHT):
        self.min_width = min_width
        self.min_height = min_height
        self.corner = ResizeCorner.BOTTOM_RIGHT
        self.start_point = Point()
        self.original = (0.0, 0.0, 0.0, 0.0)

    def start(self, node: Node, corner: ResizeCorner, pointer: Point):
        self.corner = corner
        self.start_point = pointer
        self.original = (node.x, node.y, node.width, node.height)

    def geometry(self, pointer: Point) -> Tuple[float, float, float, float]:
        left, top, width, height = self.original
        dx = pointer.x - self.start_point.x
        dy = pointer.y - self.start_point.y

        grows_left = self.corner in (ResizeCorner.TOP_LEFT, ResizeCorner.BOTTOM_LEFT)
        grows_up = self.corner in (ResizeCorner.TOP_LEFT, ResizeCorner.TOP_RIGHT)

        new_width = max(self.min_width, width - dx if grows_left else width + dx)
        new_height = max(self.min_height, height - dy if grows_up else height + dy)
        new_x = left + (width - new_width) if grows_left else left
        new_y = top + (height - new_height) if grows_up else top
        return new_x, new_y, new_width, new_height


# --- Controllers ---

class NodeInteractionController:
    """Drag and resize gestures of one node."""
    def __init__(self, node_id: str, context: SurfaceContext):
        self.node_id = node_id
        self.context = context
        self.state = InteractionState.IDLE
        self.dragging = DraggingPolicy()
        self.resizing = ResizePolicy(context.min_width, context.min_height)

    @property
    def node(self) -> Optional[Node]:
        return self.context.diagram.find_node(self.node_id)

    def press_body(self, point: Point) -> bool:
        node = self.node
        if node is None or self.state != InteractionState.IDLE:
            return False
        if not self.context.capture.acquire(self):
            return False
        self.context.diagram.select_node(self.node_id)
        self.dragging.start(node, point)
        self.state = InteractionState.DRAGGING
        logger.debug("drag_started", node_id=self.node_id, x=point.x, y=point.y)
        return True

    def press_handle(self, corner: ResizeCorner, point: Point) -> bool:
        node = self.node
        if node is None or self.state != InteractionState.IDLE:
            return False
        if not self.context.capture.acquire(self):
            return False
        self.resizing.start(node, corner, point)
        self.state = InteractionState.RESIZING
        logger.debug("resize_started", node_id=self.node_id, corner=corner.value)
        return True

    def move(self, point: Point) -> bool:
        node = self.node
        if node is None:
            self.cancel()
            return False
        if self.state == InteractionState.DRAGGING:
            x, y = self.dragging.position(node, point, self.context.width, self.context.height)
            return self.context.diagram.update_geometry(self.node_id, x, y, node.width, node.height)
        if self.state == InteractionState.RESIZING:
            return self.context.diagram.update_geometry(self.node_id, *self.resizing.geometry(point))
        return False

    def release(self, point: Point) -> bool:
        """End the gesture and commit the final geometry."""
        if self.state == InteractionState.IDLE:
            return False
        node = self.node
        if node is not None:
            if self.state == InteractionState.DRAGGING:
                self.move(point)
            self.context.diagram.update_geometry(self.node_id, node.x, node.y, node.width, node.height)
            logger.debug("gesture_committed", node_id=self.node_id, state=self.state.value,
                         x=node.x, y=node.y, width=node.width, height=node.height)
        self._finish()
        return True

    def cancel(self):
        if self.state != InteractionState.IDLE:
            self._finish()

    def _finish(self):
        self.state = InteractionState.IDLE
        self.context.capture.release(self)


class TransientConnection(BaseModel):
    """The unpersisted link shown while a connection is being drawn."""
    source: AnchorRef
    start_point: Point
    end_point: Point


class ConnectionController:
    """Connection drawing gesture, shared by the whole surface."""
    def __init__(self, context: SurfaceContext):
        self.context = context
        self.state = InteractionState.IDLE
        self.transient: Optional[TransientConnection] = None
        self.connection_status = ""

    def press_anchor(self, anchor: AnchorRef, point: Point) -> bool:
        if self.state != InteractionState.IDLE:
            return False
        start = self.context.resolve_anchor(anchor)
        if start is None:
            return False
        if not self.context.capture.acquire(self):
            return False
        self.transient = TransientConnection(source=anchor, start_point=start, end_point=start)
        self.state = InteractionState.CONNECTING
        self.connection_status = ""
        logger.info("connection_started", node_id=anchor.node_id, anchor=anchor.kind.value)
        return True

    def move(self, point: Point) -> bool:
        if self.state != InteractionState.CONNECTING or self.transient is None:
            return False
        self.transient.end_point = point
        return True

    def release(self, point: Point) -> Optional[Connection]:
        """Finish the gesture; returns the new connection, or None when nothing was connected."""
        if self.state != InteractionState.CONNECTING or self.transient is None:
            return None

        source = self.transient.source
        connection: Optional[Connection] = None
        try:
            outcome = self.context.search.search(point, source)
            if outcome.target is not None:
                connection = self.context.diagram.add_connection(source, outcome.target)
                logger.info("connection_completed", connection_id=connection.id)
            else:
                self._reject(outcome.rejection or NO_TARGET_MESSAGE)
        except InvalidConnection as e:
            self._reject(f"Invalid connection: {e}")
        finally:
            self.cancel()
        return connection

    def _reject(self, message: str):
        self.connection_status = message
        self.context.status.info(message)

    def cancel(self):
        self.transient = None
        self.state = InteractionState.IDLE
        self.context.capture.release(self)


class InteractionRouter:
    """Routes surface pointer events to the node and connection controllers."""
    def __init__(self, context: SurfaceContext):
        self.context = context
        self.connection_controller = ConnectionController(context)
        self._node_controllers: Dict[str, NodeInteractionController] = {}
        context.diagram.notifier.subscribe(self._on_change)

    def _on_change(self, event: ChangeEvent):
        if event.kind == ChangeKind.NODE_REMOVED:
            controller = self._node_controllers.pop(event.key, None)
            if controller is not None:
                controller.cancel()
        elif event.kind == ChangeKind.CLEARED:
            for controller in self._node_controllers.values():
                controller.cancel()
            self._node_controllers.clear()
            self.connection_controller.cancel()

    def node_controller(self, node_id: str) -> NodeInteractionController:
        controller = self._node_controllers.get(node_id)
        if controller is None:
            controller = NodeInteractionController(node_id, self.context)
            self._node_controllers[node_id] = controller
        return controller

    @property
    def active(self) -> Optional[object]:
        return self.context.capture.owner

    @property
    def state(self) -> InteractionState:
        owner = self.active
        return owner.state if owner is not None else InteractionState.IDLE

    @property
    def transient_connection(self) -> Optional[TransientConnection]:
        return self.connection_controller.transient

    def pointer_down(self, point: Point, target: PointerTarget) -> InteractionState:
        if self.context.capture.is_captured:
            return self.state

        diagram = self.context.diagram
        if target.kind == PointerTargetKind.SURFACE:
            diagram.clear_selection()
        elif target.kind == PointerTargetKind.CONNECTION:
            if target.connection_id is not None:
                diagram.select_connection(target.connection_id)
        elif target.node_id is None or diagram.find_node(target.node_id) is None:
            return self.state
        elif target.kind == PointerTargetKind.BODY:
            self.node_controller(target.node_id).press_body(point)
        elif target.kind == PointerTargetKind.RESIZE_HANDLE and target.corner is not None:
            self.node_controller(target.node_id).press_handle(target.corner, point)
        elif target.kind == PointerTargetKind.ANCHOR and target.anchor is not None:
            self.connection_controller.press_anchor(AnchorRef(target.node_id, target.anchor), point)
        elif target.kind == PointerTargetKind.INPUT_FIELD:
            # 入力欄のクリックはジェスチャーを開始しない
            diagram.select_node(target.node_id)
        return self.state

    def pointer_move(self, point: Point) -> InteractionState:
        self.context.update_mouse_position(point)
        owner = self.active
        if owner is not None:
            owner.move(point)
        return self.state

    def pointer_up(self, point: Point) -> Optional[Connection]:
        owner = self.active
        if owner is None:
            return None
        if owner is self.connection_controller:
            return self.connection_controller.release(point)
        owner.release(point)
        return None

    def cancel(self):
        owner = self.active
        if owner is not None:
            owner.cancel()
