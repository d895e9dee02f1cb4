"""
Tests for connector resolution: hit expansion, nearest-anchor choice, validity.
"""

from conftest import DeferredRenderLayer, make_node
from fbd_editor.models import AnchorKind, AnchorRef, Point
from fbd_editor.render import AnchorHit, GeometryRenderLayer
from fbd_editor.search import (
    SAME_KIND_MESSAGE,
    SAME_NODE_MESSAGE,
    ConnectorSearch,
    expand_hits,
    find_nearest_anchor,
    validate_target,
)


def build(diagram):
    a = diagram.add_node(make_node(100, 100, 250, 200))
    b = diagram.add_node(make_node(500, 100, 250, 200))
    return a, b


def test_container_hit_expands_to_owned_anchors(diagram):
    a, _ = build(diagram)
    anchors = expand_hits(diagram, [AnchorHit(node_id=a.id)])
    assert anchors == [AnchorRef(a.id, AnchorKind.INPUT), AnchorRef(a.id, AnchorKind.OUTPUT)]


def test_anchor_hit_needs_owner(diagram):
    a, _ = build(diagram)
    hits = [
        AnchorHit(node_id=a.id, kind=AnchorKind.OUTPUT),
        AnchorHit(node_id="ghost", kind=AnchorKind.INPUT),
        AnchorHit(node_id=a.id),
    ]
    assert expand_hits(diagram, hits) == [
        AnchorRef(a.id, AnchorKind.OUTPUT),
        AnchorRef(a.id, AnchorKind.INPUT),
    ]


def test_nearest_excludes_source_and_unresolved(diagram):
    a, b = build(diagram)
    layer = GeometryRenderLayer(diagram)
    source = AnchorRef(a.id, AnchorKind.OUTPUT)
    anchors = [source, AnchorRef(b.id, AnchorKind.INPUT), AnchorRef("ghost", AnchorKind.INPUT)]

    def resolve(anchor):
        return layer.resolve_anchor_screen_position(anchor.node_id, anchor.kind)

    outcome = find_nearest_anchor(anchors, Point(x=350, y=200), resolve, exclude=source)
    assert outcome.candidate == AnchorRef(b.id, AnchorKind.INPUT)
    assert outcome.distance == 150


def test_validate_target(diagram):
    a, b = build(diagram)
    source = AnchorRef(a.id, AnchorKind.OUTPUT)
    assert validate_target(diagram, source, AnchorRef(b.id, AnchorKind.INPUT)) is None
    assert validate_target(diagram, source, AnchorRef(b.id, AnchorKind.OUTPUT)) == SAME_KIND_MESSAGE
    assert validate_target(diagram, source, AnchorRef(a.id, AnchorKind.INPUT)) == SAME_NODE_MESSAGE


def test_search_prefers_closest_anchor(diagram):
    a, b = build(diagram)
    search = ConnectorSearch(diagram, GeometryRenderLayer(diagram), hit_radius=20)
    outcome = search.search(Point(x=505, y=195), AnchorRef(a.id, AnchorKind.OUTPUT))
    assert outcome.target == AnchorRef(b.id, AnchorKind.INPUT)


def test_search_ignores_anchors_not_laid_out(diagram):
    a, b = build(diagram)
    layer = DeferredRenderLayer(diagram, ready_after={a.id: 0}, default=None)
    search = ConnectorSearch(diagram, layer, hit_radius=20)
    outcome = search.search(Point(x=505, y=200), AnchorRef(a.id, AnchorKind.OUTPUT))
    assert outcome.candidate is None
    assert outcome.target is None


def test_search_outside_radius_finds_nothing(diagram):
    a, _ = build(diagram)
    search = ConnectorSearch(diagram, GeometryRenderLayer(diagram), hit_radius=20)
    outcome = search.search(Point(x=450, y=200), AnchorRef(a.id, AnchorKind.OUTPUT))
    assert outcome.candidate is None
