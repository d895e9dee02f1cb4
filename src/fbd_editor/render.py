import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from .anchors import anchor_position
from .core import Diagram
from .models import AnchorKind, AnchorRef, Point


class AnchorHit(BaseModel):
    """
    One element reported by a hit test near a point.

    `kind` is None when the render layer reported the node's container rather
    than one of its anchor elements.
    """
    model_config = ConfigDict(frozen=True)

    node_id: str
    kind: Optional[AnchorKind] = None

    @property
    def is_anchor(self) -> bool:
        return self.kind is not None

    @property
    def anchor(self) -> Optional[AnchorRef]:
        return AnchorRef(self.node_id, self.kind) if self.kind is not None else None


class RenderLayer(ABC):
    """
    Narrow interface of the layer that paints nodes and connections.

    Node visuals may materialize only after a layout pass, so anchor positions
    can be unresolved for a while after a node is inserted.
    """

    @abstractmethod
    def resolve_anchor_screen_position(self, node_id: str, kind: AnchorKind) -> Optional[Point]:
        """Surface position of an anchor, or None while it is not laid out yet."""

    @abstractmethod
    def hit_test_anchors_near(self, point: Point, radius: float) -> List[AnchorHit]:
        """Elements (anchors or node containers) found within `radius` of `point`."""

    @abstractmethod
    async def request_layout_pass(self) -> None:
        """Complete once the layer has laid out pending visuals."""


class GeometryRenderLayer(RenderLayer):
    """
    Render layer computed straight from the model geometry.

    Layout is synchronous here, so anchors resolve as soon as a node exists.
    Used by the web backend and the headless tool.
    """
    def __init__(self, diagram: Diagram, anchor_radius: float = 6.0):
        self.diagram = diagram
        self.anchor_radius = anchor_radius

    def resolve_anchor_screen_position(self, node_id: str, kind: AnchorKind) -> Optional[Point]:
        node = self.diagram.find_node(node_id)
        if node is None:
            return None
        return anchor_position(node, kind)

    def hit_test_anchors_near(self, point: Point, radius: float) -> List[AnchorHit]:
        hits: List[AnchorHit] = []
        # 後から追加されたノードほど前面に描画される
        for node in reversed(self.diagram.nodes):
            for kind in AnchorKind:
                if anchor_position(node, kind).distance_to(point) <= radius + self.anchor_radius:
                    hits.append(AnchorHit(node_id=node.id, kind=kind))
            if node.contains(point, margin=radius):
                hits.append(AnchorHit(node_id=node.id))
        return hits

    async def request_layout_pass(self) -> None:
        await asyncio.sleep(0)
