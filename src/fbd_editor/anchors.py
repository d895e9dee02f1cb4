"""
Anchor geometry.

Every node has exactly two anchors at fixed offsets from its bounding box:
the input anchor at the middle of the left edge and the output anchor at the
middle of the right edge. Positions are always derived from the node's
current geometry and are expressed in surface coordinates.
"""

from typing import Dict, Tuple

from .models import AnchorKind, AnchorRef, Node, Point

# Horizontal distance of the cubic control points from each endpoint.
CURVE_CONTROL_OFFSET = 50.0


def anchor_offset(node: Node, kind: AnchorKind) -> Tuple[float, float]:
    """Offset of an anchor relative to the node origin."""
    if kind is AnchorKind.INPUT:
        return 0.0, node.height / 2
    return node.width, node.height / 2


def anchor_position(node: Node, kind: AnchorKind) -> Point:
    dx, dy = anchor_offset(node, kind)
    return Point(x=node.x + dx, y=node.y + dy)


def anchor_positions(node: Node) -> Dict[AnchorRef, Point]:
    return {AnchorRef(node.id, kind): anchor_position(node, kind) for kind in AnchorKind}


def curve_control_points(start: Point, end: Point,
                         offset: float = CURVE_CONTROL_OFFSET) -> Tuple[Point, Point]:
    """Control points of the cubic curve drawn between two anchors."""
    return start.offset(offset, 0.0), end.offset(-offset, 0.0)
