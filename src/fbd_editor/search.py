"""
Connector resolution search.

While a connection is being drawn, finds which anchor lies under the pointer
at release time. The render layer may report a hit on an anchor element or on
the node container around it, so every hit is expanded in both directions
through the diagram index: a container hit yields the anchors it owns, an
anchor hit is checked against the node that owns it.
"""

from typing import Callable, List, Optional

import structlog
from pydantic import BaseModel

from .core import Diagram
from .models import AnchorRef, Point
from .render import AnchorHit, RenderLayer

logger = structlog.get_logger(__name__)

SAME_KIND_MESSAGE = "Invalid connection: Both connection points are of the same type"
SAME_NODE_MESSAGE = "Invalid connection: Cannot connect to the same module"

AnchorResolver = Callable[[AnchorRef], Optional[Point]]


class SearchOutcome(BaseModel):
    candidate: Optional[AnchorRef] = None
    distance: Optional[float] = None
    rejection: Optional[str] = None

    @property
    def target(self) -> Optional[AnchorRef]:
        """The candidate if it is a valid connection target, else None."""
        if self.candidate is None or self.rejection is not None:
            return None
        return self.candidate


def expand_hits(diagram: Diagram, hits: List[AnchorHit]) -> List[AnchorRef]:
    """Anchors reachable from the hit elements, in first-seen order, without duplicates."""
    anchors: List[AnchorRef] = []
    for hit in hits:
        if hit.is_anchor:
            # anchor element: keep it only if a node in the diagram owns it
            candidates = [hit.anchor] if diagram.anchor_owner(hit.anchor) is not None else []
        else:
            # node container: descend to the anchors it owns
            candidates = diagram.anchors_of(hit.node_id)
        for anchor in candidates:
            if anchor not in anchors:
                anchors.append(anchor)
    return anchors


def find_nearest_anchor(
    anchors: List[AnchorRef],
    point: Point,
    resolve: AnchorResolver,
    exclude: Optional[AnchorRef] = None,
) -> Optional[SearchOutcome]:
    best: Optional[SearchOutcome] = None
    for anchor in anchors:
        if anchor == exclude:
            continue
        position = resolve(anchor)
        if position is None:
            continue
        distance = position.distance_to(point)
        if best is None or distance < best.distance:
            best = SearchOutcome(candidate=anchor, distance=distance)
    return best


def validate_target(diagram: Diagram, source: AnchorRef, candidate: AnchorRef) -> Optional[str]:
    """Return the reason a candidate cannot be connected to the source, or None if it can."""
    if candidate.kind == source.kind:
        return SAME_KIND_MESSAGE
    source_owner = diagram.anchor_owner(source)
    candidate_owner = diagram.anchor_owner(candidate)
    if source_owner is None or candidate_owner is None or source_owner == candidate_owner:
        return SAME_NODE_MESSAGE
    return None


class ConnectorSearch:
    """Resolves the anchor under a release point through the render layer's hit test."""
    def __init__(self, diagram: Diagram, render_layer: RenderLayer, hit_radius: float = 20.0):
        self.diagram = diagram
        self.render_layer = render_layer
        self.hit_radius = hit_radius

    def _resolve(self, anchor: AnchorRef) -> Optional[Point]:
        return self.render_layer.resolve_anchor_screen_position(anchor.node_id, anchor.kind)

    def search(self, point: Point, source: AnchorRef) -> SearchOutcome:
        hits = self.render_layer.hit_test_anchors_near(point, self.hit_radius)
        anchors = expand_hits(self.diagram, hits)
        nearest = find_nearest_anchor(anchors, point, self._resolve, exclude=source)
        if nearest is None:
            logger.debug("connector_search_empty", x=point.x, y=point.y, hits=len(hits))
            return SearchOutcome()

        nearest.rejection = validate_target(self.diagram, source, nearest.candidate)
        logger.debug(
            "connector_search_result",
            candidate=nearest.candidate.node_id,
            kind=nearest.candidate.kind.value,
            distance=round(nearest.distance, 2),
            rejected=nearest.rejection is not None,
        )
        return nearest
