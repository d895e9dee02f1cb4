"""
Tests for the diagram graph model: index, mutations, selection, notifications.
"""

import pytest

from conftest import make_node
from fbd_editor.block_def import BlockType, available_messages
from fbd_editor.core import Diagram
from fbd_editor.errors import InvalidConnection, NotFound
from fbd_editor.events import ChangeKind
from fbd_editor.models import AnchorKind, AnchorRef


@pytest.fixture
def events(diagram):
    received = []
    diagram.notifier.subscribe(received.append)
    return received


def out(node):
    return AnchorRef(node.id, AnchorKind.OUTPUT)


def inp(node):
    return AnchorRef(node.id, AnchorKind.INPUT)


class TestNodes:

    def test_add_and_lookup(self, diagram, events):
        node = diagram.add_node(make_node(10, 20))
        assert diagram.get_node(node.id) is node
        assert diagram.node_count == 1
        assert diagram.anchors_of(node.id) == [inp(node), out(node)]
        assert diagram.anchor_owner(out(node)) == node.id
        assert [(e.kind, e.key) for e in events] == [(ChangeKind.NODE_ADDED, node.id)]

    def test_duplicate_id_rejected(self, diagram):
        node = diagram.add_node(make_node())
        with pytest.raises(ValueError):
            diagram.add_node(make_node(id=node.id))

    def test_get_missing_node_raises(self, diagram):
        with pytest.raises(NotFound):
            diagram.get_node("missing")
        assert diagram.find_node("missing") is None

    def test_update_geometry_emits(self, diagram, events):
        node = diagram.add_node(make_node())
        events.clear()
        assert diagram.update_geometry(node.id, 5, 6, 300, 150)
        assert (node.x, node.y, node.width, node.height) == (5, 6, 300, 150)
        assert events[0].kind is ChangeKind.GEOMETRY_CHANGED
        assert events[0].key == node.id

    def test_stale_ids_are_noops(self, diagram, events):
        assert diagram.update_geometry("missing", 0, 0, 1, 1) is False
        assert diagram.remove_node("missing") is False
        assert diagram.select_node("missing") is False
        assert events == []

    def test_clone_is_not_added(self, diagram):
        node = diagram.add_node(make_node(name="Pump"))
        clone = diagram.clone(node.id)
        assert clone.id != node.id
        assert clone.name == "Pump"
        assert diagram.find_node(clone.id) is None

    def test_update_attributes(self, diagram, events):
        node = diagram.add_node(make_node())
        events.clear()
        diagram.update_attributes(node.id, name="Alarm", type=BlockType.EXCEPTION_HANDLING, set_value=4)
        assert node.name == "Alarm"
        assert node.type is BlockType.EXCEPTION_HANDLING
        assert node.selected_message == available_messages(BlockType.EXCEPTION_HANDLING)[0]
        assert node.set_value == 4
        assert [e.kind for e in events] == [ChangeKind.ATTRIBUTES_CHANGED]

    def test_update_attributes_rejects_geometry(self, diagram):
        node = diagram.add_node(make_node())
        with pytest.raises(ValueError):
            diagram.update_attributes(node.id, x=10)

    def test_update_attributes_invalid_value_leaves_node_unchanged(self, diagram):
        node = diagram.add_node(make_node(name="Before"))
        with pytest.raises(ValueError):
            diagram.update_attributes(node.id, name="After", type="Robot")
        assert node.name == "Before"


class TestConnections:

    def test_add_connection(self, diagram, events):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        events.clear()
        conn = diagram.add_connection(out(a), inp(b))
        assert conn.source == out(a)
        assert conn.target == inp(b)
        assert diagram.connections_of(a.id) == [conn]
        assert diagram.connections_of(b.id) == [conn]
        assert [(e.kind, e.key) for e in events] == [(ChangeKind.CONNECTION_ADDED, conn.id)]

    def test_same_kind_rejected_without_mutation(self, diagram, events):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        events.clear()
        with pytest.raises(InvalidConnection, match="same type"):
            diagram.add_connection(out(a), out(b))
        assert diagram.connections == []
        assert events == []

    def test_same_node_rejected(self, diagram):
        a = diagram.add_node(make_node())
        with pytest.raises(InvalidConnection, match="same module"):
            diagram.add_connection(out(a), inp(a))
        assert diagram.connections == []

    def test_missing_node_rejected(self, diagram):
        a = diagram.add_node(make_node())
        with pytest.raises(NotFound):
            diagram.add_connection(out(a), AnchorRef("ghost", AnchorKind.INPUT))

    def test_reverse_gesture_keeps_direction(self, diagram):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        conn = diagram.add_connection(inp(b), out(a))
        assert conn.source == inp(b)
        assert conn.target == out(a)

    def test_remove_connection_by_endpoints(self, diagram):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        diagram.add_connection(out(a), inp(b))
        diagram.add_connection(out(a), inp(b))
        assert diagram.remove_connection(a.id, b.id) == 2
        assert diagram.connections == []
        assert diagram.connections_of(a.id) == []

    def test_remove_node_cascades(self, diagram, events):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        c = diagram.add_node(make_node(800, 0))
        ab = diagram.add_connection(out(a), inp(b))
        bc = diagram.add_connection(out(b), inp(c))
        events.clear()

        assert diagram.remove_node(b.id)
        assert diagram.connections == []
        assert diagram.find_connection(ab.id) is None
        assert diagram.find_connection(bc.id) is None
        assert diagram.anchor_owner(inp(b)) is None
        assert [e.kind for e in events] == [
            ChangeKind.CONNECTION_REMOVED,
            ChangeKind.CONNECTION_REMOVED,
            ChangeKind.NODE_REMOVED,
        ]

    def test_remove_node_takes_endpoints_inside_its_bounds(self, synced_diagram):
        diagram, _ = synced_diagram
        a = diagram.add_node(make_node(100, 100))
        # bの入力接続点 (200, 250) はaの矩形内にある
        b = diagram.add_node(make_node(200, 150))
        c = diagram.add_node(make_node(600, 400))
        d = diagram.add_node(make_node(900, 400))
        cb = diagram.add_connection(out(c), inp(b))
        cd = diagram.add_connection(out(c), inp(d))
        assert cb.end_point.model_dump() == {"x": 200, "y": 250}

        assert diagram.remove_node(a.id)
        assert diagram.connections == [cd]
        assert diagram.connections_of(b.id) == []
        assert diagram.find_node(b.id) is b


class TestSelection:

    def test_select_node_then_connection(self, diagram):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        conn = diagram.add_connection(out(a), inp(b))

        diagram.select_node(a.id)
        assert diagram.selected_node is a
        assert a.selected

        diagram.select_connection(conn.id)
        assert diagram.selected_node is None
        assert not a.selected
        assert diagram.selected_connection is conn
        assert conn.selected

    def test_delete_selected_node(self, diagram):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        diagram.add_connection(out(a), inp(b))
        diagram.select_node(a.id)

        assert diagram.delete_selected()
        assert diagram.find_node(a.id) is None
        assert diagram.connections == []
        assert diagram.selected_node is None

    def test_delete_selected_connection(self, diagram):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        conn = diagram.add_connection(out(a), inp(b))
        diagram.select_connection(conn.id)

        assert diagram.delete_selected()
        assert diagram.connections == []
        assert diagram.node_count == 2

    def test_delete_without_selection(self, diagram):
        diagram.add_node(make_node())
        assert diagram.delete_selected() is False

    def test_selected_node_restored_when_added(self, diagram):
        node = diagram.add_node(make_node(selected=True))
        assert diagram.selected_node is node


class TestBulk:

    def test_clear(self, diagram, events):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        diagram.add_connection(out(a), inp(b))
        events.clear()
        diagram.clear()
        assert diagram.nodes == [] and diagram.connections == []
        assert diagram.find_node(a.id) is None
        assert [e.kind for e in events] == [ChangeKind.CLEARED]

    def test_load_nodes_duplicate_leaves_diagram_untouched(self, diagram):
        existing = diagram.add_node(make_node())
        with pytest.raises(ValueError):
            diagram.load_nodes([make_node(id="dup"), make_node(id="dup")])
        assert diagram.nodes == [existing]

    def test_constructed_with_duplicates_rejected(self):
        with pytest.raises(ValueError):
            Diagram(nodes=[make_node(id="x"), make_node(id="x")])

    def test_to_document(self, diagram):
        a = diagram.add_node(make_node(0, 0))
        b = diagram.add_node(make_node(400, 0))
        diagram.add_connection(out(a), inp(b))
        document = diagram.to_document()
        assert [n.id for n in document.nodes] == [a.id, b.id]
        record = document.connections[0]
        assert (record.source_node_id, record.target_node_id) == (a.id, b.id)
        assert record.source_anchor_kind is AnchorKind.OUTPUT
